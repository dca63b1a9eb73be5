"""
Feature matrix snapshots and feature sets.

A :class:`FeatureMatrix` is an immutable features x samples snapshot. Every
pipeline stage takes a snapshot and returns a new one; accessors hand out
copies so that no stage can mutate an earlier snapshot.
"""

from typing import Iterable, Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd

from metaboqc.core.constants import MISSING_SENTINEL, LOG_SENTINEL, STAGE_RAW
from metaboqc.core.exceptions import DataShapeError


class FeatureSet:
    """
    Ordered, duplicate-free set of feature ids.

    Set operations keep the order of the left operand, so narrowing a
    feature set never reorders the survivors.
    """

    def __init__(self, feature_ids: Iterable = ()):
        ids = list(feature_ids)
        seen = set()
        ordered = []
        for fid in ids:
            if fid not in seen:
                seen.add(fid)
                ordered.append(fid)
        self._ids = tuple(ordered)
        self._lookup = frozenset(ordered)

    def intersection(self, other: Iterable) -> "FeatureSet":
        other_ids = other._lookup if isinstance(other, FeatureSet) else set(other)
        return FeatureSet(fid for fid in self._ids if fid in other_ids)

    def difference(self, other: Iterable) -> "FeatureSet":
        other_ids = other._lookup if isinstance(other, FeatureSet) else set(other)
        return FeatureSet(fid for fid in self._ids if fid not in other_ids)

    def to_list(self) -> list:
        return list(self._ids)

    def __and__(self, other) -> "FeatureSet":
        return self.intersection(other)

    def __sub__(self, other) -> "FeatureSet":
        return self.difference(other)

    def __iter__(self) -> Iterator:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, fid) -> bool:
        return fid in self._lookup

    def __eq__(self, other) -> bool:
        if isinstance(other, FeatureSet):
            return self._ids == other._ids
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._ids)

    def __repr__(self) -> str:
        preview = ", ".join(map(str, self._ids[:5]))
        more = ", ..." if len(self._ids) > 5 else ""
        return f"FeatureSet([{preview}{more}], n={len(self._ids)})"


class FeatureMatrix:
    """
    Immutable features x samples intensity snapshot.

    Raw snapshots hold non-negative intensities where ``MISSING_SENTINEL``
    (0.0) marks "not detected". The missing mask is derived from the sentinel
    once, at construction of the raw snapshot, and carried explicitly through
    every transform. :meth:`log_transform` applies ``log2(x + 1)``, which maps
    the sentinel to ``LOG_SENTINEL`` (0.0).

    Parameters
    ----------
    values : pd.DataFrame
        Features as rows (index = feature ids), samples as columns.
    missing : pd.DataFrame, optional
        Boolean mask of missing cells aligned with ``values``. Derived from
        the sentinel when omitted for raw data, from NaN for log data.
    log_scale : bool, optional
        Whether ``values`` are log2-transformed.
    stage : str, optional
        Name of the pipeline stage that produced the snapshot.
    """

    def __init__(
        self,
        values: pd.DataFrame,
        missing: Optional[pd.DataFrame] = None,
        log_scale: bool = False,
        stage: str = STAGE_RAW,
    ):
        if not values.index.is_unique:
            dup = values.index[values.index.duplicated()].unique().tolist()[:5]
            raise DataShapeError(f"Duplicate feature ids in matrix: {dup}")
        if not values.columns.is_unique:
            dup = values.columns[values.columns.duplicated()].unique().tolist()[:5]
            raise DataShapeError(f"Duplicate sample ids in matrix: {dup}")

        values = values.astype(float).copy()

        if missing is None:
            if log_scale:
                missing = values.isna()
            else:
                missing = values == MISSING_SENTINEL
        else:
            missing = missing.astype(bool).copy()
            if not (missing.index.equals(values.index) and missing.columns.equals(values.columns)):
                raise DataShapeError("Missing mask is not aligned with the intensity values")

        if not log_scale:
            arr = values.to_numpy()
            if not np.all(np.isfinite(arr)):
                raise DataShapeError("Raw intensities must be finite; use 0 to mark not-detected cells")
            if np.any(arr < 0):
                raise DataShapeError("Raw intensities must be non-negative")

        self._values = values
        self._missing = missing
        self.log_scale = log_scale
        self.stage = stage

    @classmethod
    def from_frame(cls, df: pd.DataFrame, feature_column: Optional[str] = None) -> "FeatureMatrix":
        """
        Build a raw snapshot from a wide table.

        Parameters
        ----------
        df : pd.DataFrame
            Wide table with one row per feature.
        feature_column : str, optional
            Column holding feature ids. The index is used when omitted.
        """
        if feature_column is not None:
            if feature_column not in df.columns:
                raise DataShapeError(f"Feature id column '{feature_column}' not found")
            df = df.set_index(feature_column)
        non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
        if non_numeric:
            raise DataShapeError(f"Non-numeric sample columns in matrix: {non_numeric[:5]}")
        df = df.fillna(MISSING_SENTINEL)
        df.columns = df.columns.astype(str)
        return cls(df)

    @property
    def values(self) -> pd.DataFrame:
        """Copy of the intensity values."""
        return self._values.copy()

    @property
    def missing(self) -> pd.DataFrame:
        """Copy of the boolean missing mask."""
        return self._missing.copy()

    @property
    def feature_ids(self) -> FeatureSet:
        return FeatureSet(self._values.index)

    @property
    def sample_ids(self) -> List[str]:
        return list(self._values.columns)

    @property
    def shape(self) -> tuple:
        return self._values.shape

    @property
    def n_missing(self) -> int:
        return int(self._missing.to_numpy().sum())

    def to_numpy(self, missing_as_nan: bool = False) -> np.ndarray:
        """
        Copy of the values as an array.

        Parameters
        ----------
        missing_as_nan : bool, optional
            Replace missing cells with NaN.
        """
        arr = self._values.to_numpy(dtype=float, copy=True)
        if missing_as_nan:
            arr[self._missing.to_numpy()] = np.nan
        return arr

    def log_transform(self, stage: Optional[str] = None) -> "FeatureMatrix":
        """
        Return the ``log2(x + 1)`` snapshot; sentinel cells become ``LOG_SENTINEL``.
        """
        if self.log_scale:
            return self
        logged = np.log2(self._values + 1.0)
        logged = logged.mask(self._missing, LOG_SENTINEL)
        return FeatureMatrix(logged, missing=self._missing, log_scale=True, stage=stage or self.stage)

    def select_features(self, feature_ids: Iterable, stage: Optional[str] = None) -> "FeatureMatrix":
        """
        Narrow the snapshot to ``feature_ids``, keeping this snapshot's row order.
        """
        keep = FeatureSet(feature_ids)
        rows = [fid for fid in self._values.index if fid in keep]
        return FeatureMatrix(
            self._values.loc[rows],
            missing=self._missing.loc[rows],
            log_scale=self.log_scale,
            stage=stage or self.stage,
        )

    def select_samples(self, sample_ids: Sequence[str], stage: Optional[str] = None) -> "FeatureMatrix":
        """Restrict the snapshot to ``sample_ids`` in the given order."""
        absent = [s for s in sample_ids if s not in self._values.columns]
        if absent:
            raise DataShapeError(f"Samples not present in matrix: {absent[:5]}")
        cols = list(sample_ids)
        return FeatureMatrix(
            self._values[cols],
            missing=self._missing[cols],
            log_scale=self.log_scale,
            stage=stage or self.stage,
        )

    def with_values(self, values: pd.DataFrame, stage: str, missing: Optional[pd.DataFrame] = None) -> "FeatureMatrix":
        """
        New snapshot on the same scale with replaced values.

        The missing mask is cleared unless one is given, which is what stages
        that fill or transform every cell (imputation, normalization) need.
        """
        if missing is None:
            missing = pd.DataFrame(False, index=values.index, columns=values.columns)
        return FeatureMatrix(values, missing=missing, log_scale=self.log_scale, stage=stage)

    def __repr__(self) -> str:
        scale = "log2" if self.log_scale else "raw"
        return (
            f"FeatureMatrix(stage='{self.stage}', {scale}, "
            f"features={self.shape[0]}, samples={self.shape[1]}, missing={self.n_missing})"
        )
