"""
Core modules for the metaboqc package.

This module provides fundamental utilities including constants, logging
and the exception hierarchy.
"""

from metaboqc.core.constants import (
    SAMPLE_ID,
    FEATURE_ID,
    BATCH,
    ROLE,
    CONDITION,
    GEL,
    GENDER,
    AGE,
    RUN_ORDER,
    ROLE_BIOLOGICAL,
    ROLE_BLANK,
    ROLE_QC,
    CASE,
    CONTROL,
    QC_LEVEL,
    MISSING_SENTINEL,
    LOG_SENTINEL,
    load_table,
)
from metaboqc.core.exceptions import (
    MetaboQCError,
    DataShapeError,
    EmptyPartitionError,
    InsufficientNeighborsError,
    InsufficientReplicatesError,
    ModelFitError,
)
from metaboqc.core.logger import get_logger, configure_logging, log_execution_time

__all__ = [
    # Constants
    "SAMPLE_ID",
    "FEATURE_ID",
    "BATCH",
    "ROLE",
    "CONDITION",
    "GEL",
    "GENDER",
    "AGE",
    "RUN_ORDER",
    "ROLE_BIOLOGICAL",
    "ROLE_BLANK",
    "ROLE_QC",
    "CASE",
    "CONTROL",
    "QC_LEVEL",
    "MISSING_SENTINEL",
    "LOG_SENTINEL",
    "load_table",
    # Exceptions
    "MetaboQCError",
    "DataShapeError",
    "EmptyPartitionError",
    "InsufficientNeighborsError",
    "InsufficientReplicatesError",
    "ModelFitError",
    # Logger
    "get_logger",
    "configure_logging",
    "log_execution_time",
]
