"""
Missing-value proportion filter.
"""

from typing import Dict, List, Optional, Tuple

import pandas as pd

from metaboqc.core.constants import STAGE_MISSINGNESS
from metaboqc.core.exceptions import DataShapeError
from metaboqc.core.logger import get_logger
from metaboqc.model.matrix import FeatureMatrix, FeatureSet
from metaboqc.model.sample import CovariateTable, SampleRole
from metaboqc.preprocessing.filters.base import BaseFilter, FilterResult


logger = get_logger("metaboqc.preprocessing.filters.missingness")


class MissingnessFilter(BaseFilter):
    """
    Keep features detected in enough biological samples of every batch.

    A feature survives when, in each batch, the fraction of its biological
    samples marked missing is at most ``max_missing_fraction``. Blank and QC
    columns are ignored.

    Parameters
    ----------
    max_missing_fraction : float, optional
        Largest tolerated missing fraction, inclusive.
    """

    def __init__(self, max_missing_fraction: float = 0.2):
        if not 0.0 <= max_missing_fraction <= 1.0:
            raise ValueError(
                f"max_missing_fraction must be within [0, 1], got {max_missing_fraction}"
            )
        self.max_missing_fraction = max_missing_fraction

    @property
    def name(self) -> str:
        return "MissingnessFilter"

    @property
    def stage(self) -> str:
        return STAGE_MISSINGNESS

    def missing_fractions(self, matrix: FeatureMatrix, covariates: CovariateTable) -> pd.DataFrame:
        """
        Per-batch missing fraction over biological samples.

        Returns
        -------
        pd.DataFrame
            Features as rows, batches as columns.
        """
        missing = matrix.missing
        fractions = {}
        for batch in covariates.batches():
            biological = covariates.samples(SampleRole.BIOLOGICAL, batch, within=missing.columns)
            if not biological:
                raise DataShapeError(f"Batch '{batch}' has no biological samples")
            fractions[batch] = missing[biological].mean(axis=1)
        return pd.DataFrame(fractions, index=missing.index)

    def apply(
        self, matrix: FeatureMatrix, covariates: CovariateTable, **kwargs
    ) -> Tuple[FeatureMatrix, FilterResult]:
        fractions = self.missing_fractions(matrix, covariates)
        passes = fractions <= self.max_missing_fraction
        keep = passes.all(axis=1)

        reasons: Dict[object, List[Tuple[Optional[str], str]]] = {}
        for fid in fractions.index[~keep]:
            for batch in fractions.columns[~passes.loc[fid]]:
                reasons.setdefault(fid, []).append(
                    (
                        batch,
                        f"missing fraction {fractions.at[fid, batch]:.3f} > {self.max_missing_fraction}",
                    )
                )

        for batch in fractions.columns:
            logger.debug(
                "%s: batch %s retained %d/%d features",
                self.name,
                batch,
                int(passes[batch].sum()),
                len(passes),
            )

        details = {
            "max_missing_fraction": self.max_missing_fraction,
            "missing_fractions": fractions,
        }
        return self._finish(matrix, FeatureSet(fractions.index[keep]), reasons, details)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(max_missing_fraction={self.max_missing_fraction})"
