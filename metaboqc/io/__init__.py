"""
Input/Output utilities for the metaboqc package.

This module provides readers for intensity matrices and covariate tables
(CSV, TSV, Parquet) and writers for the pipeline outputs.
"""

from metaboqc.io.tables import (
    load_feature_matrix,
    load_covariates,
    write_table,
    matrix_frame,
    write_pipeline_outputs,
)

__all__ = [
    "load_feature_matrix",
    "load_covariates",
    "write_table",
    "matrix_frame",
    "write_pipeline_outputs",
]
