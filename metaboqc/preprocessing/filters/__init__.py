"""
Feature filters for the metaboqc pipeline.

This module provides:
- BlankContrastFilter: abundance-partitioned blank contrast
- MissingnessFilter: missing-value proportion per batch
- ReliabilityFilter: per-batch ICC from variance components
- FilterPipeline and factory helpers
- Configuration file I/O
"""

from metaboqc.preprocessing.filters.base import BaseFilter, FilterResult
from metaboqc.preprocessing.filters.blank import (
    BlankContrastFilter,
    negative_quartile_cutoff,
    abundance_bins,
)
from metaboqc.preprocessing.filters.missingness import MissingnessFilter
from metaboqc.preprocessing.filters.reliability import ReliabilityFilter, replicate_groups
from metaboqc.preprocessing.filters.pipeline import FilterPipeline
from metaboqc.preprocessing.filters.factory import (
    get_filter_pipeline,
    create_blank_filter,
    create_missingness_filter,
    create_reliability_filter,
)
from metaboqc.preprocessing.filters.io import (
    load_pipeline_config,
    save_pipeline_config,
    generate_example_config,
)

__all__ = [
    "BaseFilter",
    "FilterResult",
    "BlankContrastFilter",
    "negative_quartile_cutoff",
    "abundance_bins",
    "MissingnessFilter",
    "ReliabilityFilter",
    "replicate_groups",
    "FilterPipeline",
    "get_filter_pipeline",
    "create_blank_filter",
    "create_missingness_filter",
    "create_reliability_filter",
    "load_pipeline_config",
    "save_pipeline_config",
    "generate_example_config",
]
