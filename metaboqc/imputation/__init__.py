"""
Missing value imputation for the metaboqc package.

This module provides the :class:`NeighborImputer`, a nearest-neighbor
imputation that skips donors missing at the target sample.
"""

from metaboqc.imputation.methods import (
    NeighborImputer,
    neighbor_distances,
    impute_missing_values,
)

__all__ = ["NeighborImputer", "neighbor_distances", "impute_missing_values"]
