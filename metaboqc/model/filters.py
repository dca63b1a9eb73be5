"""
Configuration models for the filtering and normalization stages.

This module provides dataclasses for configuring each pipeline stage and a
:class:`PipelineConfig` that aggregates them and can be loaded from or saved
to YAML/JSON files.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import List, Optional

from metaboqc.model.enums import EmptyPartitionPolicy, InsufficientNeighborsPolicy


@dataclass
class BlankFilterConfig:
    """
    Configuration for the blank-contrast filter.

    Attributes
    ----------
    enabled : bool
        Whether to apply the filter.
    n_bins : int
        Number of abundance quantile bins for features detected in every blank.
    empty_partition_policy : str
        Cutoff fallback for partitions without negative differences:
        'zero' or 'pooled'.
    """

    enabled: bool = True
    n_bins: int = 5
    empty_partition_policy: str = EmptyPartitionPolicy.ZERO.value

    def __post_init__(self):
        if self.n_bins < 1:
            raise ValueError(f"n_bins must be >= 1, got {self.n_bins}")
        EmptyPartitionPolicy.from_str(self.empty_partition_policy)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MissingnessFilterConfig:
    """
    Configuration for the missing-value proportion filter.

    Attributes
    ----------
    enabled : bool
        Whether to apply the filter.
    max_missing_fraction : float
        Largest tolerated fraction (inclusive) of not-detected biological
        samples per batch.
    """

    enabled: bool = True
    max_missing_fraction: float = 0.2

    def __post_init__(self):
        if not 0.0 <= self.max_missing_fraction <= 1.0:
            raise ValueError(
                f"max_missing_fraction must be within [0, 1], got {self.max_missing_fraction}"
            )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ImputationConfig:
    """
    Configuration for neighbor imputation.

    Attributes
    ----------
    n_neighbors : int
        Number of donors averaged per missing cell.
    n_jobs : int
        Parallel jobs across feature rows (1 = sequential).
    on_insufficient : str
        'raise' or 'exclude' when fewer than ``n_neighbors`` donors exist.
    """

    n_neighbors: int = 5
    n_jobs: int = 1
    on_insufficient: str = InsufficientNeighborsPolicy.EXCLUDE.value

    def __post_init__(self):
        if self.n_neighbors < 1:
            raise ValueError(f"n_neighbors must be >= 1, got {self.n_neighbors}")
        InsufficientNeighborsPolicy.from_str(self.on_insufficient)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReliabilityFilterConfig:
    """
    Configuration for the ICC reliability filter.

    Attributes
    ----------
    enabled : bool
        Whether to apply the filter.
    icc_threshold : float
        A feature must have ICC strictly above this value in every batch.
    n_jobs : int
        Width of the worker pool for per-feature model fits.
    reml : bool
        Fit variance components by restricted maximum likelihood.
    """

    enabled: bool = True
    icc_threshold: float = 0.2
    n_jobs: int = 4
    reml: bool = True

    def __post_init__(self):
        if not 0.0 <= self.icc_threshold <= 1.0:
            raise ValueError(f"icc_threshold must be within [0, 1], got {self.icc_threshold}")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class NormalizationSearchConfig:
    """
    Configuration for the normalization recipe search.

    Attributes
    ----------
    enabled : bool
        Whether to run the search. When disabled the reliability-filtered
        matrix is the final output.
    scaling_methods : list[str]
        Scaling functions to try: identity, upper_quartile, median_ratio.
    adjust_biology : list[bool]
        Values of the adjust-biology flag to try.
    k_ruv : list[int]
        Numbers of unwanted-variation factors to try.
    adjust_batch : list[bool]
        Values of the adjust-batch flag to try.
    k_qc : list[int]
        Numbers of QC drift factors to try.
    n_negative_controls : int, optional
        Number of negative-control features. Derived from
        ``negative_control_fraction`` when omitted.
    negative_control_fraction : float
        Fraction of features used as negative controls.
    n_diagnostic_factors : int
        Factors estimated and tested in the diagnostic pass.
    screening : bool
        Whether to screen candidates with the diagnostic pass.
    ruv_slack : int
        Extra factors tolerated beyond the diagnostically useful count.
    alpha : float
        Significance level for diagnostics and biological-signal scoring.
    n_pcs : int
        Leading principal components used by the scoring metrics.
    """

    enabled: bool = True
    scaling_methods: List[str] = field(
        default_factory=lambda: ["identity", "upper_quartile", "median_ratio"]
    )
    adjust_biology: List[bool] = field(default_factory=lambda: [False, True])
    k_ruv: List[int] = field(default_factory=lambda: [0, 1, 2, 3])
    adjust_batch: List[bool] = field(default_factory=lambda: [False, True])
    k_qc: List[int] = field(default_factory=lambda: [0, 1, 2])
    n_negative_controls: Optional[int] = None
    negative_control_fraction: float = 0.2
    n_diagnostic_factors: int = 5
    screening: bool = True
    ruv_slack: int = 1
    alpha: float = 0.05
    n_pcs: int = 3

    def __post_init__(self):
        if any(k < 0 for k in self.k_ruv) or any(k < 0 for k in self.k_qc):
            raise ValueError("k_ruv and k_qc values must be non-negative")
        if not 0.0 < self.negative_control_fraction <= 1.0:
            raise ValueError(
                f"negative_control_fraction must be within (0, 1], got {self.negative_control_fraction}"
            )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PipelineConfig:
    """
    Complete configuration combining all stages.

    This is the main configuration class; it can be loaded from or saved to
    YAML/JSON files with :mod:`metaboqc.preprocessing.filters.io`.
    """

    name: str = "default"
    blank: BlankFilterConfig = field(default_factory=BlankFilterConfig)
    missingness: MissingnessFilterConfig = field(default_factory=MissingnessFilterConfig)
    imputation: ImputationConfig = field(default_factory=ImputationConfig)
    reliability: ReliabilityFilterConfig = field(default_factory=ReliabilityFilterConfig)
    normalization: NormalizationSearchConfig = field(default_factory=NormalizationSearchConfig)

    # Processing options
    stop_on_empty: bool = True

    _SECTIONS = {
        "blank": BlankFilterConfig,
        "missingness": MissingnessFilterConfig,
        "imputation": ImputationConfig,
        "reliability": ReliabilityFilterConfig,
        "normalization": NormalizationSearchConfig,
    }

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineConfig":
        """Create configuration from a dictionary."""
        data = data or {}
        sections = {}
        for key, section_cls in cls._SECTIONS.items():
            section_data = data.get(key) or {}
            known = {f.name for f in fields(section_cls)}
            unknown = set(section_data) - known
            if unknown:
                raise ValueError(f"Unknown options in '{key}' section: {sorted(unknown)}")
            sections[key] = section_cls(**section_data)

        return cls(
            name=data.get("name", "custom"),
            stop_on_empty=data.get("stop_on_empty", True),
            **sections,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "blank": self.blank.to_dict(),
            "missingness": self.missingness.to_dict(),
            "imputation": self.imputation.to_dict(),
            "reliability": self.reliability.to_dict(),
            "normalization": self.normalization.to_dict(),
            "stop_on_empty": self.stop_on_empty,
        }

    def apply_overrides(self, overrides: dict) -> None:
        """
        Apply CLI overrides to the configuration.

        Parameters
        ----------
        overrides : dict
            Flat option names mapped to values; ``None`` values are ignored.
        """
        mapping = {
            "n_bins": (self.blank, "n_bins"),
            "empty_partition_policy": (self.blank, "empty_partition_policy"),
            "max_missing_fraction": (self.missingness, "max_missing_fraction"),
            "n_neighbors": (self.imputation, "n_neighbors"),
            "on_insufficient": (self.imputation, "on_insufficient"),
            "icc_threshold": (self.reliability, "icc_threshold"),
            "n_jobs": (self.reliability, "n_jobs"),
            "n_negative_controls": (self.normalization, "n_negative_controls"),
            "screening": (self.normalization, "screening"),
        }
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in mapping:
                raise KeyError(f"Unknown override: {key}")
            target, attr = mapping[key]
            setattr(target, attr, value)
            target.__post_init__()
