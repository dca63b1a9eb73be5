"""
ICC-based reliability filter.

For every feature and batch a random-intercept model is fitted to the
biological and QC replicates, with each biological sample as its own group
and all QC replicates of the batch sharing one group. A feature is kept when
its ICC exceeds the threshold in every batch.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from metaboqc.core.constants import QC_LEVEL, STAGE_RELIABILITY
from metaboqc.core.exceptions import (
    DataShapeError,
    InsufficientReplicatesError,
    ModelFitError,
)
from metaboqc.core.logger import get_logger
from metaboqc.model.matrix import FeatureMatrix, FeatureSet
from metaboqc.model.sample import CovariateTable, SampleRole
from metaboqc.preprocessing.filters.base import BaseFilter, FilterResult
from metaboqc.stats.variance_components import fit_variance_components


logger = get_logger("metaboqc.preprocessing.filters.reliability")


def _fit_feature(
    feature_id,
    batch_values: List[Tuple[str, np.ndarray, List[str]]],
    reml: bool,
) -> Tuple[object, Dict[str, float], Dict[str, str]]:
    """
    Fit one feature in every batch.

    Returns the feature id with its per-batch ICCs and per-batch failure
    reasons, so that results can be joined back by key.
    """
    iccs: Dict[str, float] = {}
    failures: Dict[str, str] = {}
    for batch, y, groups in batch_values:
        try:
            iccs[batch] = fit_variance_components(y, groups, reml=reml).icc
        except (InsufficientReplicatesError, ModelFitError) as e:
            failures[batch] = f"{type(e).__name__}: {e}"
    return feature_id, iccs, failures


def replicate_groups(sample_ids: List[str], covariates: CovariateTable) -> List[str]:
    """Group label per sample: QC replicates share one level, biological samples are their own."""
    roles = covariates.role_of(sample_ids)
    return [QC_LEVEL if roles[s] == SampleRole.QC else str(s) for s in sample_ids]


class ReliabilityFilter(BaseFilter):
    """
    Keep features whose ICC exceeds ``icc_threshold`` in every batch.

    Parameters
    ----------
    icc_threshold : float, optional
        Strict lower bound on the ICC.
    n_jobs : int, optional
        Width of the joblib worker pool.
    reml : bool, optional
        Fit by restricted maximum likelihood.
    verbose : int, optional
        joblib verbosity.
    """

    def __init__(self, icc_threshold: float = 0.2, n_jobs: int = 4, reml: bool = True, verbose: int = 0):
        if not 0.0 <= icc_threshold <= 1.0:
            raise ValueError(f"icc_threshold must be within [0, 1], got {icc_threshold}")
        self.icc_threshold = icc_threshold
        self.n_jobs = n_jobs
        self.reml = reml
        self.verbose = verbose

    @property
    def name(self) -> str:
        return "ReliabilityFilter"

    @property
    def stage(self) -> str:
        return STAGE_RELIABILITY

    def compute_icc(
        self, matrix: FeatureMatrix, covariates: CovariateTable
    ) -> Tuple[pd.DataFrame, Dict[object, Dict[str, str]]]:
        """
        ICC for every feature and batch.

        Returns
        -------
        Tuple[pd.DataFrame, dict]
            ICC table (features x batches, NaN where the fit failed) in the
            matrix's row order, and failure reasons keyed by feature id.
        """
        values = matrix.values
        batches = covariates.batches()
        layout = []
        for batch in batches:
            cols = covariates.samples(SampleRole.BIOLOGICAL, batch, within=values.columns)
            cols += covariates.samples(SampleRole.QC, batch, within=values.columns)
            if not cols:
                raise DataShapeError(f"Batch '{batch}' has no biological or QC samples")
            layout.append((batch, cols, replicate_groups(cols, covariates)))

        arr = {batch: values[cols].to_numpy(dtype=float) for batch, cols, _ in layout}

        logger.info(
            "Fitting variance components for %d features in %d batches (n_jobs=%d)",
            len(values),
            len(batches),
            self.n_jobs,
        )
        results = Parallel(n_jobs=self.n_jobs, verbose=self.verbose)(
            delayed(_fit_feature)(
                fid,
                [(batch, arr[batch][i], groups) for batch, _, groups in layout],
                self.reml,
            )
            for i, fid in enumerate(values.index)
        )

        # Join by feature id, then restore the input row order
        by_feature = {fid: (iccs, failures) for fid, iccs, failures in results}
        icc = pd.DataFrame(
            [
                [by_feature[fid][0].get(batch, np.nan) for batch in batches]
                for fid in values.index
            ],
            index=values.index,
            columns=batches,
            dtype=float,
        )
        failures = {fid: f for fid, (_, f) in by_feature.items() if f}
        return icc, failures

    def apply(
        self, matrix: FeatureMatrix, covariates: CovariateTable, **kwargs
    ) -> Tuple[FeatureMatrix, FilterResult]:
        if matrix.n_missing > 0:
            raise DataShapeError("Reliability filtering needs a fully observed (imputed) matrix")

        icc, failures = self.compute_icc(matrix, covariates)
        passes = icc > self.icc_threshold
        pass_count = passes.sum(axis=1)
        keep = pass_count == icc.shape[1]

        reasons: Dict[object, List[Tuple[Optional[str], str]]] = {}
        for fid in icc.index[~keep]:
            for batch in icc.columns[~passes.loc[fid]]:
                if batch in failures.get(fid, {}):
                    reason = failures[fid][batch]
                else:
                    reason = f"ICC {icc.at[fid, batch]:.3f} <= {self.icc_threshold}"
                reasons.setdefault(fid, []).append((batch, reason))

        if failures:
            logger.warning(
                "%s: model fit failed for %d features; they are excluded",
                self.name,
                len(failures),
            )

        details = {
            "icc_threshold": self.icc_threshold,
            "icc": icc,
            "n_fit_failures": len(failures),
        }
        return self._finish(matrix, FeatureSet(icc.index[keep]), reasons, details)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(icc_threshold={self.icc_threshold}, "
            f"n_jobs={self.n_jobs}, reml={self.reml})"
        )
