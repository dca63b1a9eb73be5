"""
Normalization recipe search for the metaboqc package.

This module provides:
- Unwanted-variation factor estimation and removal
- Candidate scoring metrics and rank aggregation
- The NormalizationSearchEngine
"""

from metaboqc.normalization.ruv import (
    biology_design,
    group_dummies,
    estimate_unwanted_factors,
    qc_drift_factors,
    remove_unwanted_variation,
)
from metaboqc.normalization.metrics import (
    METRICS,
    pca_scores,
    batch_silhouette,
    biological_signal,
    qc_stability,
    negative_control_enrichment,
    confounder_pc_association,
    factor_association,
    rank_metrics,
    score_all,
)
from metaboqc.normalization.search import (
    NormalizationSearchEngine,
    DiagnosticResult,
    SearchResult,
)

__all__ = [
    "biology_design",
    "group_dummies",
    "estimate_unwanted_factors",
    "qc_drift_factors",
    "remove_unwanted_variation",
    "METRICS",
    "pca_scores",
    "batch_silhouette",
    "biological_signal",
    "qc_stability",
    "negative_control_enrichment",
    "confounder_pc_association",
    "factor_association",
    "rank_metrics",
    "score_all",
    "NormalizationSearchEngine",
    "DiagnosticResult",
    "SearchResult",
]
