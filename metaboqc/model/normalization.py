"""
Scaling methods and normalization candidates.

This module provides the :class:`ScalingMethod` enumeration with registration
of per-sample scaling functions, and the :class:`NormalizationCandidate`
recipe evaluated by the normalization search.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

import numpy as np
import pandas as pd

_scaling_registry: Dict["ScalingMethod", Callable[[pd.DataFrame], pd.DataFrame]] = {}


class ScalingMethod(Enum):
    """
    Per-sample multiplicative scaling applied before factor estimation.

    Scaling functions take and return log2(x + 1) matrices (features x
    samples); the size factors themselves are computed on the linear scale.

    Attributes
    ----------
    IDENTITY : str
        No scaling; the input is returned unchanged.
    UPPER_QUARTILE : str
        Divide each sample by its upper quartile relative to the geometric
        mean of all upper quartiles.
    MEDIAN_RATIO : str
        DESeq-like size factors: median ratio of each sample to the per-feature
        geometric mean.
    """

    IDENTITY = "identity"
    UPPER_QUARTILE = "upper_quartile"
    MEDIAN_RATIO = "median_ratio"

    @classmethod
    def from_str(cls, name: str) -> "ScalingMethod":
        """
        Get the scaling method from a string.

        Raises
        ------
        ValueError
            If the name does not match any scaling method.
        """
        if name is None:
            return cls.IDENTITY
        name_ = name.lower().replace("-", "_").replace(" ", "_")
        aliases = {"none": "identity", "uq": "upper_quartile", "deseq": "median_ratio"}
        name_ = aliases.get(name_, name_)
        for member in cls:
            if member.value == name_:
                return member
        valid = [m.value for m in cls]
        raise ValueError(f"Unknown scaling method: {name}. Valid options: {valid}")

    def register_scaling_fn(
        self, fn: Callable[[pd.DataFrame], pd.DataFrame]
    ) -> Callable[[pd.DataFrame], pd.DataFrame]:
        """Register the scaling function implementing this method."""
        _scaling_registry[self] = fn
        return fn

    def scale(self, log_df: pd.DataFrame) -> pd.DataFrame:
        """Apply the registered scaling function to a log2(x + 1) matrix."""
        fn = _scaling_registry[self]
        return fn(log_df)

    def __call__(self, log_df: pd.DataFrame) -> pd.DataFrame:
        return self.scale(log_df)


def _apply_size_factors(log_df: pd.DataFrame, size_factors: pd.Series) -> pd.DataFrame:
    linear = np.power(2.0, log_df) - 1.0
    return np.log2(linear.div(size_factors, axis=1) + 1.0)


@ScalingMethod.IDENTITY.register_scaling_fn
def identity_scaling(log_df: pd.DataFrame) -> pd.DataFrame:
    """No scaling is performed on the data."""
    return log_df.copy()


@ScalingMethod.UPPER_QUARTILE.register_scaling_fn
def upper_quartile_scaling(log_df: pd.DataFrame) -> pd.DataFrame:
    """Upper-quartile scaling of the data."""
    linear = np.power(2.0, log_df) - 1.0
    uq = linear.where(linear > 0).quantile(0.75)
    if (uq <= 0).any() or uq.isna().any():
        raise ValueError("Upper quartile is undefined for at least one sample")
    size_factors = uq / np.exp(np.log(uq).mean())
    return _apply_size_factors(log_df, size_factors)


@ScalingMethod.MEDIAN_RATIO.register_scaling_fn
def median_ratio_scaling(log_df: pd.DataFrame) -> pd.DataFrame:
    """Median-ratio (DESeq-like) scaling of the data."""
    linear = np.power(2.0, log_df) - 1.0
    positive = (linear > 0).all(axis=1)
    if not positive.any():
        raise ValueError("Median-ratio scaling needs at least one feature observed in every sample")
    log_linear = np.log(linear[positive])
    log_ratios = log_linear.sub(log_linear.mean(axis=1), axis=0)
    size_factors = np.exp(log_ratios.median(axis=0))
    return _apply_size_factors(log_df, size_factors)


@dataclass(frozen=True)
class NormalizationCandidate:
    """
    One normalization recipe.

    Attributes
    ----------
    scaling : ScalingMethod
        Scaling function applied first.
    adjust_biology : bool
        Whether biology is modelled when estimating unwanted factors.
    k_ruv : int
        Number of unwanted-variation factors removed.
    adjust_batch : bool
        Whether the batch x gel confound grouping is regressed out.
    k_qc : int
        Number of QC drift factors removed.
    order : int
        Enumeration position; the ranking tie-break.
    """

    scaling: ScalingMethod
    adjust_biology: bool
    k_ruv: int
    adjust_batch: bool
    k_qc: int
    order: int = 0

    @property
    def is_unadjusted(self) -> bool:
        """True when the recipe removes no unwanted variation."""
        return self.k_ruv == 0 and not self.adjust_batch and self.k_qc == 0

    @property
    def label(self) -> str:
        return (
            f"{self.scaling.value}|bio={int(self.adjust_biology)}|k_ruv={self.k_ruv}"
            f"|batch={int(self.adjust_batch)}|k_qc={self.k_qc}"
        )

    def to_dict(self) -> dict:
        return {
            "candidate": self.label,
            "order": self.order,
            "scaling": self.scaling.value,
            "adjust_biology": self.adjust_biology,
            "k_ruv": self.k_ruv,
            "adjust_batch": self.adjust_batch,
            "k_qc": self.k_qc,
        }


@dataclass
class CandidateEvaluation:
    """
    A candidate together with its normalized matrix and metric scores.

    Attributes
    ----------
    candidate : NormalizationCandidate
        The evaluated recipe.
    matrix : FeatureMatrix
        Normalized log2 snapshot.
    metrics : dict[str, float]
        Metric scores, each oriented so that higher is better.
    combined_score : float, optional
        Mean metric rank (lower is better), set by the ranking.
    rank : int, optional
        Final position in the total order (1 = selected).
    """

    candidate: NormalizationCandidate
    matrix: object
    metrics: Dict[str, float] = field(default_factory=dict)
    combined_score: Optional[float] = None
    rank: Optional[int] = None
