"""
Sample covariates: roles, batches and confound groups.

The :class:`CovariateTable` is the parallel table to a feature matrix: one row
per sample with its batch, role and (for biological samples) case/control
status, gel-contamination flag, gender, age and run order.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from metaboqc.core.constants import (
    SAMPLE_ID,
    BATCH,
    ROLE,
    CONDITION,
    GEL,
    GENDER,
    AGE,
    RUN_ORDER,
    REQUIRED_COVARIATE_COLUMNS,
    QC_LEVEL,
)
from metaboqc.core.exceptions import DataShapeError
from metaboqc.core.logger import get_logger

logger = get_logger("metaboqc.model.sample")

_TRUE_STRINGS = {"true", "t", "yes", "y", "1", "gel"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0", "", "nan", "none", "clean"}


class SampleRole(Enum):
    """Role of a sample in the acquisition design."""

    BIOLOGICAL = "biological"
    BLANK = "blank"
    QC = "qc"

    @classmethod
    def from_str(cls, name: str) -> "SampleRole":
        """Convert string to enum value (case-insensitive, common aliases accepted)."""
        if isinstance(name, cls):
            return name
        name_ = str(name).strip().lower().replace("-", "_").replace(" ", "_")
        aliases = {"bio": "biological", "sample": "biological", "study": "biological", "pool": "qc",
                   "pooled_qc": "qc", "solvent": "blank", "extraction_blank": "blank"}
        name_ = aliases.get(name_, name_)
        for member in cls:
            if member.value == name_:
                return member
        valid = [m.value for m in cls]
        raise ValueError(f"Unknown sample role: {name}. Valid options: {valid}")


@dataclass(frozen=True, order=True)
class ConfoundGroup:
    """
    A (batch, gel-contamination) combination.

    Used as the typed grouping factor for batch/confound adjustment instead
    of colour or string encodings.
    """

    batch: str
    gel: bool

    @property
    def label(self) -> str:
        return f"{self.batch}|{'gel' if self.gel else 'clean'}"

    def __str__(self) -> str:
        return self.label


def _to_bool(value) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return False
    if isinstance(value, (int, np.integer, float, np.floating)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise DataShapeError(f"Cannot interpret gel flag value: {value!r}")


class CovariateTable:
    """
    Validated per-sample covariates indexed by sample id.

    Parameters
    ----------
    df : pd.DataFrame
        Table with a ``sample_id`` column (or index named ``sample_id``) and at
        least ``batch`` and ``role`` columns. Optional columns: ``condition``,
        ``gel``, ``gender``, ``age``, ``run_order``.

    Raises
    ------
    DataShapeError
        If required columns are missing, sample ids are duplicated, roles are
        unknown, a sample has no batch, a biological sample has no
        case/control status or a biological or QC sample has no numeric
        run order.
    """

    def __init__(self, df: pd.DataFrame):
        df = df.copy()
        if SAMPLE_ID in df.columns:
            df = df.set_index(SAMPLE_ID)
        df.index = df.index.astype(str)
        df.index.name = SAMPLE_ID

        missing_cols = [c for c in REQUIRED_COVARIATE_COLUMNS if c != SAMPLE_ID and c not in df.columns]
        if missing_cols:
            raise DataShapeError(f"Covariate table is missing required columns: {missing_cols}")
        if not df.index.is_unique:
            dup = df.index[df.index.duplicated()].unique().tolist()[:5]
            raise DataShapeError(f"Duplicate sample ids in covariate table: {dup}")

        if df[BATCH].isna().any():
            bad = df.index[df[BATCH].isna()].tolist()[:5]
            raise DataShapeError(f"Samples without a batch label: {bad}")
        df[BATCH] = df[BATCH].astype(str)

        try:
            df[ROLE] = [SampleRole.from_str(r) for r in df[ROLE]]
        except ValueError as e:
            raise DataShapeError(str(e)) from e

        for col in (CONDITION, GENDER):
            if col not in df.columns:
                df[col] = None
        df[GEL] = [_to_bool(v) for v in df[GEL]] if GEL in df.columns else False
        df[AGE] = pd.to_numeric(df[AGE], errors="coerce") if AGE in df.columns else np.nan
        if RUN_ORDER in df.columns:
            parsed = pd.to_numeric(df[RUN_ORDER], errors="coerce")
            measured = df[ROLE].isin([SampleRole.BIOLOGICAL, SampleRole.QC])
            bad = measured & ~np.isfinite(parsed.astype(float))
            if bad.any():
                raise DataShapeError(
                    f"Missing or non-numeric run order for samples: {df.index[bad].tolist()[:5]}"
                )
            df[RUN_ORDER] = parsed
        else:
            # acquisition order is assumed to follow the table order
            df[RUN_ORDER] = np.arange(len(df), dtype=float)

        bio = df[ROLE] == SampleRole.BIOLOGICAL
        no_condition = bio & df[CONDITION].isna()
        if no_condition.any():
            raise DataShapeError(
                f"Biological samples without case/control status: {df.index[no_condition].tolist()[:5]}"
            )
        df.loc[bio, CONDITION] = df.loc[bio, CONDITION].astype(str)

        self._df = df
        logger.debug(
            "Loaded covariates for %d samples in %d batches", len(df), df[BATCH].nunique()
        )

    @property
    def frame(self) -> pd.DataFrame:
        """Copy of the covariate table."""
        return self._df.copy()

    @property
    def sample_ids(self) -> List[str]:
        return list(self._df.index)

    def batches(self) -> List[str]:
        """Batch labels in order of first appearance."""
        return list(pd.unique(self._df[BATCH]))

    def samples(
        self,
        role: Optional[SampleRole] = None,
        batch: Optional[str] = None,
        within: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """
        Sample ids filtered by role and/or batch, in table order.

        Parameters
        ----------
        role : SampleRole, optional
            Restrict to this role.
        batch : str, optional
            Restrict to this batch.
        within : sequence of str, optional
            Restrict to these samples (e.g. a matrix's columns).
        """
        mask = pd.Series(True, index=self._df.index)
        if role is not None:
            mask &= self._df[ROLE] == role
        if batch is not None:
            mask &= self._df[BATCH] == str(batch)
        if within is not None:
            mask &= self._df.index.isin(list(within))
        return list(self._df.index[mask])

    def biological_samples(self, batch: Optional[str] = None) -> List[str]:
        return self.samples(SampleRole.BIOLOGICAL, batch)

    def blank_samples(self, batch: Optional[str] = None) -> List[str]:
        return self.samples(SampleRole.BLANK, batch)

    def qc_samples(self, batch: Optional[str] = None) -> List[str]:
        return self.samples(SampleRole.QC, batch)

    def batch_of(self, sample_ids: Sequence[str]) -> pd.Series:
        return self._df.loc[list(sample_ids), BATCH]

    def role_of(self, sample_ids: Sequence[str]) -> pd.Series:
        return self._df.loc[list(sample_ids), ROLE]

    def conditions(self, sample_ids: Sequence[str]) -> pd.Series:
        """Case/control status per sample; QC samples get their own level."""
        cov = self._df.loc[list(sample_ids)]
        cond = cov[CONDITION].astype(object).copy()
        cond[cov[ROLE] == SampleRole.QC] = QC_LEVEL
        cond[cov[ROLE] == SampleRole.BLANK] = None
        return cond

    def gel_flags(self, sample_ids: Sequence[str]) -> pd.Series:
        return self._df.loc[list(sample_ids), GEL].astype(bool)

    def run_order(self, sample_ids: Sequence[str]) -> pd.Series:
        return self._df.loc[list(sample_ids), RUN_ORDER].astype(float)

    def confound_groups(self, sample_ids: Sequence[str]) -> pd.Series:
        """Per-sample :class:`ConfoundGroup` combining batch and gel flag."""
        cov = self._df.loc[list(sample_ids)]
        groups = [ConfoundGroup(batch=b, gel=bool(g)) for b, g in zip(cov[BATCH], cov[GEL])]
        return pd.Series(groups, index=cov.index, name="confound_group")

    def validate_against(self, sample_ids: Sequence[str]) -> None:
        """
        Check that the matrix columns and the covariate rows describe the same samples.

        Raises
        ------
        DataShapeError
            On any sample present in one table but not the other.
        """
        matrix_ids = set(map(str, sample_ids))
        table_ids = set(self._df.index)
        only_matrix = sorted(matrix_ids - table_ids)
        only_table = sorted(table_ids - matrix_ids)
        if only_matrix or only_table:
            raise DataShapeError(
                "Sample ids differ between matrix and covariate table: "
                f"{len(only_matrix)} only in matrix {only_matrix[:5]}, "
                f"{len(only_table)} only in covariates {only_table[:5]}"
            )

    def __len__(self) -> int:
        return len(self._df)

    def __repr__(self) -> str:
        counts = self._df[ROLE].map(lambda r: r.value).value_counts().to_dict()
        return f"CovariateTable(samples={len(self._df)}, batches={self.batches()}, roles={counts})"
