"""
Nearest-neighbor imputation of missing intensities.

Features are compared with the ``nan_euclidean`` distance of scikit-learn's
KNN imputer (Euclidean over co-observed samples, rescaled to the full sample
count). Unlike :class:`sklearn.impute.KNNImputer`, a missing cell is always
filled from exactly ``k`` donors: neighbors missing at the target sample are
skipped and the next-ranked feature is tried, and a target without ``k``
observed donors is an error rather than a mean of fewer values.
"""

from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed, effective_n_jobs
from sklearn.metrics.pairwise import nan_euclidean_distances

from metaboqc.core.constants import STAGE_IMPUTATION
from metaboqc.core.exceptions import InsufficientNeighborsError
from metaboqc.core.logger import get_logger
from metaboqc.model.enums import InsufficientNeighborsPolicy
from metaboqc.model.manifest import ExclusionRecord
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.preprocessing.filters.base import FilterResult

logger = get_logger("metaboqc.imputation")


def neighbor_distances(arr: np.ndarray) -> np.ndarray:
    """
    All-pairs feature distances with missing cells as NaN.

    Pairs with no co-observed sample get ``inf`` so that they rank last.
    """
    dist = nan_euclidean_distances(arr, arr)
    dist[np.isnan(dist)] = np.inf
    return dist


def _impute_rows(
    rows: np.ndarray,
    arr: np.ndarray,
    missing: np.ndarray,
    dist: np.ndarray,
    n_neighbors: int,
) -> List[Tuple[int, Optional[np.ndarray], Optional[int]]]:
    """
    Fill the missing cells of ``rows``.

    Returns ``(row, filled values, None)`` on success and
    ``(row, None, failing column)`` when a column lacks ``n_neighbors`` donors.
    """
    out = []
    for i, d in zip(rows, dist):
        target_cols = np.flatnonzero(missing[i])
        if target_cols.size == 0:
            out.append((i, arr[i].copy(), None))
            continue

        # ties keep row order
        order = np.argsort(d, kind="stable")
        order = order[order != i]

        filled = arr[i].copy()
        failed = None
        for j in target_cols:
            donors = order[~missing[order, j]][:n_neighbors]
            if donors.size < n_neighbors:
                failed = int(j)
                break
            # donor values come from the input, never from filled cells
            filled[j] = arr[donors, j].mean()

        out.append((i, None, failed) if failed is not None else (i, filled, None))
    return out


class NeighborImputer:
    """
    Fill every missing cell with the mean of its ``k`` nearest valid donors.

    Parameters
    ----------
    n_neighbors : int, optional
        Number of donors averaged per missing cell.
    on_insufficient : InsufficientNeighborsPolicy or str, optional
        ``raise`` an :class:`InsufficientNeighborsError`, or ``exclude`` the
        feature and record it.
    n_jobs : int, optional
        joblib workers across feature rows (1 = sequential).

    Examples
    --------
    >>> imputer = NeighborImputer(n_neighbors=5)
    >>> imputed, result = imputer.impute(log_matrix)
    """

    def __init__(
        self,
        n_neighbors: int = 5,
        on_insufficient=InsufficientNeighborsPolicy.RAISE,
        n_jobs: int = 1,
    ):
        if n_neighbors < 1:
            raise ValueError(f"n_neighbors must be >= 1, got {n_neighbors}")
        if isinstance(on_insufficient, str):
            on_insufficient = InsufficientNeighborsPolicy.from_str(on_insufficient)
        self.n_neighbors = n_neighbors
        self.on_insufficient = on_insufficient
        self.n_jobs = n_jobs

    @property
    def name(self) -> str:
        return "NeighborImputer"

    def impute(self, matrix: FeatureMatrix) -> Tuple[FeatureMatrix, FilterResult]:
        """
        Impute all missing cells of a snapshot.

        Parameters
        ----------
        matrix : FeatureMatrix
            Snapshot with its missing mask (normally log2 biological and QC
            columns).

        Returns
        -------
        Tuple[FeatureMatrix, FilterResult]
            Fully observed snapshot and the result record; features that
            could not be imputed are absent under the ``exclude`` policy.

        Raises
        ------
        InsufficientNeighborsError
            Under the ``raise`` policy, for the first feature (in row order)
            that lacks ``n_neighbors`` donors.
        """
        values = matrix.values
        missing = matrix.missing.to_numpy()
        n_features = values.shape[0]

        if not missing.any():
            logger.debug("%s: no missing cells, input returned unchanged", self.name)
            result = FilterResult(
                input_count=n_features,
                output_count=n_features,
                removed_count=0,
                filter_name=self.name,
                stage=STAGE_IMPUTATION,
                retained=matrix.feature_ids,
                details={"n_imputed": 0, "n_neighbors": self.n_neighbors},
            )
            return matrix.with_values(values, stage=STAGE_IMPUTATION), result

        arr = matrix.to_numpy(missing_as_nan=True)
        dist = neighbor_distances(arr)
        target_rows = np.flatnonzero(missing.any(axis=1))

        logger.info(
            "%s: imputing %d cells in %d features (k=%d)",
            self.name,
            int(missing.sum()),
            len(target_rows),
            self.n_neighbors,
        )

        if self.n_jobs == 1 or len(target_rows) < 2:
            outcomes = _impute_rows(target_rows, arr, missing, dist[target_rows], self.n_neighbors)
        else:
            n_chunks = min(len(target_rows), effective_n_jobs(self.n_jobs))
            chunks = [c for c in np.array_split(target_rows, n_chunks) if c.size > 0]
            parts = Parallel(n_jobs=self.n_jobs)(
                delayed(_impute_rows)(chunk, arr, missing, dist[chunk], self.n_neighbors)
                for chunk in chunks
            )
            outcomes = [o for part in parts for o in part]

        # Reassemble by row position
        outcomes.sort(key=lambda o: o[0])
        imputed = values.to_numpy(dtype=float, copy=True)
        feature_ids = list(values.index)
        sample_ids = list(values.columns)
        exclusions: List[ExclusionRecord] = []
        failed_rows = []

        for i, filled, failed_col in outcomes:
            if failed_col is None:
                imputed[i] = filled
                continue
            fid = feature_ids[i]
            sid = sample_ids[failed_col]
            n_observed = int((~missing[:, failed_col]).sum())
            message = (
                f"fewer than {self.n_neighbors} donors observed at sample '{sid}' "
                f"({n_observed} observed)"
            )
            if self.on_insufficient == InsufficientNeighborsPolicy.RAISE:
                raise InsufficientNeighborsError(
                    f"Cannot impute feature '{fid}': {message}", feature_id=fid, sample_id=sid
                )
            exclusions.append(ExclusionRecord(fid, STAGE_IMPUTATION, message))
            failed_rows.append(i)

        if failed_rows:
            logger.warning(
                "%s: %d features excluded for lack of donors", self.name, len(failed_rows)
            )

        keep = np.ones(n_features, dtype=bool)
        keep[failed_rows] = False
        imputed_df = pd.DataFrame(imputed[keep], index=values.index[keep], columns=values.columns)
        output = matrix.with_values(imputed_df, stage=STAGE_IMPUTATION)

        result = FilterResult(
            input_count=n_features,
            output_count=output.shape[0],
            removed_count=len(failed_rows),
            filter_name=self.name,
            stage=STAGE_IMPUTATION,
            retained=output.feature_ids,
            exclusions=exclusions,
            details={
                "n_imputed": int(missing[keep].sum()),
                "n_neighbors": self.n_neighbors,
            },
        )
        return output, result

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(n_neighbors={self.n_neighbors}, "
            f"on_insufficient={self.on_insufficient.value}, n_jobs={self.n_jobs})"
        )


def impute_missing_values(
    data: Optional[pd.DataFrame],
    n_neighbors: int = 5,
    n_jobs: int = 1,
) -> Optional[pd.DataFrame]:
    """
    Impute NaN cells of a features x samples DataFrame.

    Parameters
    ----------
    data : pd.DataFrame, optional
        Values with NaN marking missing cells.
    n_neighbors : int, optional
        Number of donors averaged per missing cell.
    n_jobs : int, optional
        joblib workers across feature rows.

    Returns
    -------
    pd.DataFrame, optional
        Imputed values, or None when ``data`` is None.

    Raises
    ------
    InsufficientNeighborsError
        If some cell has fewer than ``n_neighbors`` donors.
    """
    if data is None:
        return None
    if not isinstance(data, pd.DataFrame):
        raise ValueError("The input data must be a pandas DataFrame or None.")

    matrix = FeatureMatrix(data, missing=data.isna(), log_scale=True)
    imputed, _ = NeighborImputer(n_neighbors=n_neighbors, n_jobs=n_jobs).impute(matrix)
    return imputed.values
