"""
Per-feature case/control differential abundance.

Welch t-tests per feature, Benjamini-Hochberg q-values, log2 fold changes and
ranks. Used to pick negative-control features (those least associated with
biology) and to score how much biological signal a normalization keeps.
"""

from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from metaboqc.core.constants import CASE, CONTROL, QC_LEVEL
from metaboqc.core.exceptions import DataShapeError
from metaboqc.core.logger import get_logger

logger = get_logger("metaboqc.stats.differential")


def resolve_contrast(conditions: pd.Series) -> Tuple[str, str]:
    """
    Pick the (case, control) levels from per-sample condition labels.

    ``case``/``control`` are used when present; otherwise the two distinct
    non-QC levels are taken in sorted order, the second being the case.

    Raises
    ------
    DataShapeError
        If two levels cannot be identified.
    """
    levels = sorted(
        {str(c) for c in conditions.dropna() if str(c) != QC_LEVEL}
    )
    if CASE in levels and CONTROL in levels:
        return CASE, CONTROL
    if len(levels) == 2:
        return levels[1], levels[0]
    raise DataShapeError(
        f"Cannot determine a case/control contrast from condition levels: {levels}"
    )


def differential_abundance(
    log_df: pd.DataFrame,
    conditions: pd.Series,
    case: Optional[str] = None,
    control: Optional[str] = None,
) -> pd.DataFrame:
    """
    Welch t-test of case versus control for every feature.

    Parameters
    ----------
    log_df : pd.DataFrame
        Log intensities, features x samples.
    conditions : pd.Series
        Condition label per sample (indexed by sample id). Samples whose
        label is neither ``case`` nor ``control`` are ignored.
    case, control : str, optional
        Levels to contrast; resolved with :func:`resolve_contrast` when omitted.

    Returns
    -------
    pd.DataFrame
        Indexed like ``log_df`` with columns ``log2fc``, ``t``, ``pvalue``,
        ``qvalue`` and ``rank`` (1 = most significant).
    """
    if case is None or control is None:
        case, control = resolve_contrast(conditions)

    conditions = conditions.reindex(log_df.columns)
    case_cols = conditions.index[conditions == case]
    control_cols = conditions.index[conditions == control]
    if len(case_cols) < 2 or len(control_cols) < 2:
        raise DataShapeError(
            f"Need at least 2 samples per level, got {len(case_cols)} {case} "
            f"and {len(control_cols)} {control}"
        )

    x = log_df[case_cols].to_numpy(dtype=float)
    y = log_df[control_cols].to_numpy(dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        t_stat, pvalues = stats.ttest_ind(x, y, axis=1, equal_var=False)

    pvalues = np.asarray(pvalues, dtype=float)
    # zero-variance features carry no evidence of association
    pvalues = np.where(np.isnan(pvalues), 1.0, pvalues)
    qvalues = multipletests(pvalues, method="fdr_bh")[1]

    result = pd.DataFrame(
        {
            "log2fc": x.mean(axis=1) - y.mean(axis=1),
            "t": t_stat,
            "pvalue": pvalues,
            "qvalue": qvalues,
        },
        index=log_df.index,
    )
    result["rank"] = result["pvalue"].rank(method="first").astype(int)
    return result


def select_negative_controls(
    table: pd.DataFrame,
    n_controls: Optional[int] = None,
    fraction: float = 0.2,
) -> list:
    """
    Features least associated with biology (largest p-values).

    Parameters
    ----------
    table : pd.DataFrame
        Output of :func:`differential_abundance`.
    n_controls : int, optional
        Number of controls; ``round(fraction * n_features)`` when omitted.
    fraction : float, optional
        Fraction of features used when ``n_controls`` is not given.

    Returns
    -------
    list
        Feature ids in the order of ``table``.
    """
    if n_controls is None:
        n_controls = int(round(fraction * len(table)))
    n_controls = max(1, min(int(n_controls), len(table)))
    # stable sort keeps row order among tied p-values
    order = np.argsort(-table["pvalue"].to_numpy(), kind="stable")[:n_controls]
    chosen = set(table.index[order])
    controls = [fid for fid in table.index if fid in chosen]
    logger.debug("Selected %d negative-control features", len(controls))
    return controls


def fraction_significant(pvalues: Sequence[float], alpha: float = 0.05) -> float:
    """Fraction of p-values below ``alpha``."""
    pvalues = np.asarray(pvalues, dtype=float)
    if pvalues.size == 0:
        return float("nan")
    return float(np.mean(pvalues < alpha))
