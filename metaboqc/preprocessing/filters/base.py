"""
Base class for feature filters.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from metaboqc.core.logger import get_logger
from metaboqc.model.manifest import ExclusionRecord
from metaboqc.model.matrix import FeatureMatrix, FeatureSet
from metaboqc.model.sample import CovariateTable


logger = get_logger("metaboqc.preprocessing.filters")


@dataclass
class FilterResult:
    """
    Result of applying a filter.

    Attributes
    ----------
    input_count : int
        Number of features before filtering.
    output_count : int
        Number of features after filtering.
    removed_count : int
        Number of features removed.
    filter_name : str
        Name of the filter that was applied.
    stage : str
        Pipeline stage the filter implements.
    retained : FeatureSet
        Surviving feature ids, in input order.
    exclusions : list[ExclusionRecord]
        One record per excluded feature (and failing batch).
    details : dict, optional
        Additional details about the filter operation.
    """

    input_count: int
    output_count: int
    removed_count: int
    filter_name: str
    stage: str
    retained: FeatureSet = field(default_factory=FeatureSet)
    exclusions: List[ExclusionRecord] = field(default_factory=list)
    details: Optional[dict] = field(default_factory=dict)

    @property
    def removal_rate(self) -> float:
        """Calculate the fraction of features removed."""
        if self.input_count == 0:
            return 0.0
        return self.removed_count / self.input_count

    def __repr__(self) -> str:
        return (
            f"FilterResult({self.filter_name}: "
            f"{self.removed_count}/{self.input_count} removed "
            f"({self.removal_rate:.1%}))"
        )


class BaseFilter(ABC):
    """
    Abstract base class for feature filters.

    A filter takes an immutable snapshot and the covariate table and returns
    a narrowed snapshot; it never reorders the surviving features.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the filter name."""
        pass

    @property
    @abstractmethod
    def stage(self) -> str:
        """Return the pipeline stage name used in results and the manifest."""
        pass

    @abstractmethod
    def apply(
        self, matrix: FeatureMatrix, covariates: CovariateTable, **kwargs
    ) -> Tuple[FeatureMatrix, FilterResult]:
        """
        Apply the filter to a snapshot.

        Parameters
        ----------
        matrix : FeatureMatrix
            Input snapshot.
        covariates : CovariateTable
            Sample covariates describing the snapshot's columns.
        **kwargs
            Additional arguments specific to the filter.

        Returns
        -------
        Tuple[FeatureMatrix, FilterResult]
            Narrowed snapshot and filter result metadata.
        """
        pass

    def _finish(
        self,
        matrix: FeatureMatrix,
        retained: FeatureSet,
        reasons: Dict[object, List[Tuple[Optional[str], str]]],
        details: Optional[dict] = None,
    ) -> Tuple[FeatureMatrix, FilterResult]:
        """
        Build the narrowed snapshot and its result.

        ``reasons`` maps each excluded feature to ``(batch, reason)`` pairs.
        """
        exclusions = [
            ExclusionRecord(fid, self.stage, reason, batch)
            for fid in matrix.feature_ids
            if fid not in retained
            for batch, reason in reasons.get(fid, [(None, "excluded")])
        ]
        filtered = matrix.select_features(retained, stage=self.stage)
        result = FilterResult(
            input_count=matrix.shape[0],
            output_count=filtered.shape[0],
            removed_count=matrix.shape[0] - filtered.shape[0],
            filter_name=self.name,
            stage=self.stage,
            retained=filtered.feature_ids,
            exclusions=exclusions,
            details=details or {},
        )
        logger.debug("%s: %r", self.name, result)
        return filtered, result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
