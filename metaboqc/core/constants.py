"""
Constants and common utilities for the metaboqc package.

This module defines covariate column names, sample roles, the missing-value
sentinel and file loading helpers used throughout the package.
"""

import os

import pandas as pd


# Covariate table column names
SAMPLE_ID = "sample_id"
FEATURE_ID = "feature_id"
BATCH = "batch"
ROLE = "role"
CONDITION = "condition"
GEL = "gel"
GENDER = "gender"
AGE = "age"
RUN_ORDER = "run_order"

COVARIATE_COLUMNS = [SAMPLE_ID, BATCH, ROLE, CONDITION, GEL, GENDER, AGE, RUN_ORDER]
REQUIRED_COVARIATE_COLUMNS = [SAMPLE_ID, BATCH, ROLE]

# Sample roles
ROLE_BIOLOGICAL = "biological"
ROLE_BLANK = "blank"
ROLE_QC = "qc"

# Case/control levels; QC samples are coded as their own level in designs
CASE = "case"
CONTROL = "control"
QC_LEVEL = "QC"

# Raw intensity reserved for "not detected"
MISSING_SENTINEL = 0.0
# log2(MISSING_SENTINEL + 1)
LOG_SENTINEL = 0.0

# Stage names used in results and the exclusion manifest
STAGE_RAW = "raw"
STAGE_BLANK = "blank_contrast"
STAGE_MISSINGNESS = "missingness"
STAGE_IMPUTATION = "imputation"
STAGE_RELIABILITY = "reliability"
STAGE_NORMALIZATION = "normalization"

STAGES = [
    STAGE_RAW,
    STAGE_BLANK,
    STAGE_MISSINGNESS,
    STAGE_IMPUTATION,
    STAGE_RELIABILITY,
    STAGE_NORMALIZATION,
]


def _separator_for(path: str) -> str:
    suffix = os.path.splitext(path)[1][1:].lower()
    return "\t" if suffix in ("tsv", "txt") else ","


def load_table(path: str, index_col=None) -> pd.DataFrame:
    """
    Load a delimited or parquet table as a dataframe.

    Parameters
    ----------
    path : str
        Path to a ``.csv``, ``.tsv``/``.txt`` or ``.parquet`` file.
    index_col : int or str, optional
        Column to use as the row index.

    Returns
    -------
    pd.DataFrame
        Loaded table.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file suffix is not supported.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"{path} does not exist!")
    suffix = os.path.splitext(path)[1][1:].lower()
    if suffix == "parquet" or is_parquet(path):
        df = pd.read_parquet(path)
        if index_col is not None:
            df = df.set_index(df.columns[index_col] if isinstance(index_col, int) else index_col)
        return df
    elif suffix in ("csv", "tsv", "txt"):
        return pd.read_csv(path, sep=_separator_for(path), index_col=index_col)
    else:
        raise ValueError(
            f"{suffix} is not allowed as input, please provide csv, tsv or parquet."
        )


def is_parquet(path: str) -> bool:
    """
    Check if a file is in Parquet format by reading its magic header.

    Parameters
    ----------
    path : str
        The file path to check.

    Returns
    -------
    bool
        True if the file is a Parquet file, False otherwise.
    """
    try:
        with open(path, "rb") as fh:
            header = fh.read(4)
        return header == b"PAR1"
    except IOError:
        return False
