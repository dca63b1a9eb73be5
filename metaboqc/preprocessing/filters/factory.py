"""
Factory functions for creating feature filters.
"""

from typing import List, Optional

from metaboqc.model.filters import (
    PipelineConfig,
    BlankFilterConfig,
    MissingnessFilterConfig,
    ReliabilityFilterConfig,
)
from metaboqc.preprocessing.filters.base import BaseFilter
from metaboqc.preprocessing.filters.blank import BlankContrastFilter
from metaboqc.preprocessing.filters.missingness import MissingnessFilter
from metaboqc.preprocessing.filters.reliability import ReliabilityFilter
from metaboqc.preprocessing.filters.pipeline import FilterPipeline


def create_blank_filter(config: BlankFilterConfig) -> Optional[BaseFilter]:
    """Create the blank-contrast filter, or None when disabled."""
    if not config.enabled:
        return None
    return BlankContrastFilter(
        n_bins=config.n_bins,
        empty_partition_policy=config.empty_partition_policy,
    )


def create_missingness_filter(config: MissingnessFilterConfig) -> Optional[BaseFilter]:
    """Create the missing-value proportion filter, or None when disabled."""
    if not config.enabled:
        return None
    return MissingnessFilter(max_missing_fraction=config.max_missing_fraction)


def create_reliability_filter(config: ReliabilityFilterConfig) -> Optional[BaseFilter]:
    """Create the ICC reliability filter, or None when disabled."""
    if not config.enabled:
        return None
    return ReliabilityFilter(
        icc_threshold=config.icc_threshold,
        n_jobs=config.n_jobs,
        reml=config.reml,
    )


def get_filter_pipeline(config: PipelineConfig) -> FilterPipeline:
    """
    Create the pre-imputation filter pipeline from configuration.

    The pipeline applies filters in the following order:
    1. Blank-contrast filter (raw intensities, blanks present)
    2. Missing-value proportion filter

    The reliability filter needs an imputed matrix and is created separately
    with :func:`create_reliability_filter`.

    Parameters
    ----------
    config : PipelineConfig
        Complete pipeline configuration.

    Returns
    -------
    FilterPipeline
        Configured filter pipeline ready to apply.
    """
    filters: List[Optional[BaseFilter]] = [
        create_blank_filter(config.blank),
        create_missingness_filter(config.missingness),
    ]
    return FilterPipeline([f for f in filters if f is not None], name=config.name)
