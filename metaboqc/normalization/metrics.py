"""
Scores used to compare normalization candidates.

Every metric is oriented so that a higher value is better. A metric that
cannot be computed for a candidate is reported as NaN; the ranking then gives
that candidate the worst rank for the metric.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.decomposition import PCA
from sklearn.metrics import silhouette_score

from metaboqc.core.logger import get_logger
from metaboqc.stats.differential import differential_abundance, fraction_significant

logger = get_logger("metaboqc.normalization.metrics")

METRICS = [
    "batch_separation_reduction",
    "biological_signal",
    "qc_stability",
    "negative_control_enrichment",
    "confounder_pc_association",
]


def pca_scores(log_df: pd.DataFrame, n_pcs: int = 3) -> np.ndarray:
    """
    Sample scores on the leading principal components.

    Parameters
    ----------
    log_df : pd.DataFrame
        Log intensities, features x samples.
    n_pcs : int, optional
        Number of components (capped by the data shape).

    Returns
    -------
    np.ndarray
        Samples x components.
    """
    X = log_df.to_numpy(dtype=float).T
    n_components = min(n_pcs, X.shape[0] - 1, X.shape[1])
    if n_components < 1:
        return np.empty((X.shape[0], 0))
    return PCA(n_components=n_components).fit_transform(X)


def batch_silhouette(log_df: pd.DataFrame, batches: Sequence, n_pcs: int = 3) -> float:
    """Silhouette of the batch labels on the leading PCs (NaN when undefined)."""
    labels = np.asarray([str(b) for b in batches])
    n_labels = len(np.unique(labels))
    if n_labels < 2 or n_labels >= len(labels):
        return float("nan")
    scores = pca_scores(log_df, n_pcs)
    if scores.shape[1] == 0:
        return float("nan")
    return float(silhouette_score(scores, labels))


def biological_signal(
    log_df: pd.DataFrame,
    conditions: pd.Series,
    alpha: float = 0.05,
    case: Optional[str] = None,
    control: Optional[str] = None,
) -> float:
    """Fraction of features with Welch p < ``alpha`` between case and control."""
    table = differential_abundance(log_df, conditions, case=case, control=control)
    return fraction_significant(table["pvalue"], alpha)


def qc_stability(log_df: pd.DataFrame, qc_samples: Sequence[str]) -> float:
    """Negative median per-feature standard deviation across QC replicates."""
    qc_samples = list(qc_samples)
    if len(qc_samples) < 2:
        return float("nan")
    sd = log_df[qc_samples].std(axis=1, ddof=1)
    return -float(np.median(sd.to_numpy()))


def negative_control_enrichment(table: pd.DataFrame, controls: Sequence) -> float:
    """
    Fraction of negative controls among the least-associated features.

    ``table`` is a :func:`differential_abundance` result; the |controls|
    features with the largest p-values are compared with ``controls``.
    """
    controls = set(controls)
    if not controls:
        return float("nan")
    order = np.argsort(-table["pvalue"].to_numpy(), kind="stable")[: len(controls)]
    least = table.index[order]
    return float(np.mean([fid in controls for fid in least]))


def _r_squared(values: np.ndarray, covariate: pd.Series) -> float:
    """R^2 of one PC against a categorical (eta squared) or numeric covariate."""
    total = np.sum((values - values.mean()) ** 2)
    if total == 0:
        return float("nan")
    if pd.api.types.is_numeric_dtype(covariate) and not pd.api.types.is_bool_dtype(covariate):
        x = covariate.to_numpy(dtype=float)
        if np.std(x) == 0:
            return float("nan")
        r = np.corrcoef(values, x)[0, 1]
        return float(r ** 2)
    labels = covariate.astype(str).to_numpy()
    if len(np.unique(labels)) < 2:
        return float("nan")
    between = 0.0
    for level in np.unique(labels):
        group = values[labels == level]
        between += len(group) * (group.mean() - values.mean()) ** 2
    return float(between / total)


def confounder_pc_association(
    log_df: pd.DataFrame,
    confounders: pd.DataFrame,
    n_pcs: int = 3,
) -> float:
    """
    Negative mean over confounders of their maximum R^2 with the leading PCs.

    Parameters
    ----------
    log_df : pd.DataFrame
        Log intensities, features x samples.
    confounders : pd.DataFrame
        One column per confounder (e.g. batch, gel, run order), indexed by
        sample id.
    n_pcs : int, optional
        Number of leading components.
    """
    scores = pca_scores(log_df, n_pcs)
    if scores.shape[1] == 0:
        return float("nan")
    confounders = confounders.loc[list(log_df.columns)]
    best = []
    for column in confounders.columns:
        r2 = [_r_squared(scores[:, i], confounders[column]) for i in range(scores.shape[1])]
        r2 = [v for v in r2 if np.isfinite(v)]
        if r2:
            best.append(max(r2))
    if not best:
        return float("nan")
    return -float(np.mean(best))


def factor_association(factors: np.ndarray, labels: Sequence) -> pd.DataFrame:
    """
    One-way ANOVA of every factor against a grouping.

    Returns
    -------
    pd.DataFrame
        One row per factor with ``eta2`` and ``pvalue`` (NaN when the
        grouping has fewer than two levels).
    """
    labels = np.asarray([str(label) for label in labels])
    levels = np.unique(labels)
    rows = []
    for i in range(factors.shape[1]):
        values = factors[:, i]
        if len(levels) < 2:
            rows.append({"eta2": np.nan, "pvalue": np.nan})
            continue
        groups = [values[labels == level] for level in levels]
        with np.errstate(divide="ignore", invalid="ignore"):
            _, pvalue = stats.f_oneway(*groups)
        rows.append({"eta2": _r_squared(values, pd.Series(labels)), "pvalue": float(pvalue)})
    return pd.DataFrame(rows, index=pd.RangeIndex(1, factors.shape[1] + 1, name="factor"))


def rank_metrics(metrics: pd.DataFrame, order: Optional[Sequence[int]] = None) -> pd.DataFrame:
    """
    Aggregate per-metric ranks into a total order.

    Parameters
    ----------
    metrics : pd.DataFrame
        One row per candidate, one column per metric (higher is better).
    order : sequence of int, optional
        Enumeration position per row, used to break ties. Row position when
        omitted.

    Returns
    -------
    pd.DataFrame
        ``metrics`` with ``<metric>_rank`` columns for every usable metric,
        ``combined_score`` (mean rank, lower is better) and ``rank`` (1..n),
        sorted by ``rank``.
    """
    table = metrics.copy()
    usable: List[str] = [c for c in metrics.columns if metrics[c].notna().any()]
    dropped = [c for c in metrics.columns if c not in usable]
    if dropped:
        logger.warning("Metrics undefined for every candidate are ignored: %s", dropped)

    rank_columns = []
    for column in usable:
        rank_column = f"{column}_rank"
        table[rank_column] = metrics[column].rank(ascending=False, method="average", na_option="bottom")
        rank_columns.append(rank_column)

    table["combined_score"] = table[rank_columns].mean(axis=1) if rank_columns else 0.0
    table["order"] = list(order) if order is not None else list(range(len(table)))
    table = table.sort_values(["combined_score", "order"], kind="stable")
    table["rank"] = np.arange(1, len(table) + 1)
    return table


def score_all(
    log_df: pd.DataFrame,
    reference_silhouette: float,
    batches: pd.Series,
    conditions: pd.Series,
    qc_samples: Sequence[str],
    controls: Sequence,
    confounders: pd.DataFrame,
    alpha: float = 0.05,
    n_pcs: int = 3,
    case: Optional[str] = None,
    control: Optional[str] = None,
) -> Dict[str, float]:
    """
    All candidate metrics for one normalized matrix.

    ``conditions`` and ``batches`` are indexed by sample id; the biological
    metrics use only samples whose condition is ``case`` or ``control``.
    """
    table = differential_abundance(log_df, conditions, case=case, control=control)
    return {
        "batch_separation_reduction": reference_silhouette
        - batch_silhouette(log_df, batches.loc[list(log_df.columns)], n_pcs),
        "biological_signal": fraction_significant(table["pvalue"], alpha),
        "qc_stability": qc_stability(log_df, qc_samples),
        "negative_control_enrichment": negative_control_enrichment(table, controls),
        "confounder_pc_association": confounder_pc_association(log_df, confounders, n_pcs),
    }
