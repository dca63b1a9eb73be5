"""
Preprocessing: feature filters and their configuration I/O.
"""

from metaboqc.preprocessing.filters import (
    BaseFilter,
    FilterResult,
    BlankContrastFilter,
    MissingnessFilter,
    ReliabilityFilter,
    FilterPipeline,
    get_filter_pipeline,
    load_pipeline_config,
    save_pipeline_config,
    generate_example_config,
)

__all__ = [
    "BaseFilter",
    "FilterResult",
    "BlankContrastFilter",
    "MissingnessFilter",
    "ReliabilityFilter",
    "FilterPipeline",
    "get_filter_pipeline",
    "load_pipeline_config",
    "save_pipeline_config",
    "generate_example_config",
]
