"""
Statistical collaborators: differential abundance and variance components.
"""

from metaboqc.stats.differential import (
    resolve_contrast,
    differential_abundance,
    select_negative_controls,
    fraction_significant,
)
from metaboqc.stats.variance_components import (
    VarianceComponents,
    intraclass_correlation,
    fit_variance_components,
)

__all__ = [
    "resolve_contrast",
    "differential_abundance",
    "select_negative_controls",
    "fraction_significant",
    "VarianceComponents",
    "intraclass_correlation",
    "fit_variance_components",
]
