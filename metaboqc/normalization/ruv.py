"""
Estimation and removal of unwanted variation.

All functions work on log2 matrices with features as rows and samples as
columns. Unwanted factors are returned as samples x factors arrays.

- :func:`estimate_unwanted_factors` takes the negative-control features,
  optionally regresses the biological design out of them, and returns the
  leading left singular vectors of the (samples x controls) residual matrix.
- :func:`qc_drift_factors` summarises the QC replicates with principal
  components and interpolates the component scores over run order to every
  sample.
- :func:`remove_unwanted_variation` fits one least-squares model per feature
  and subtracts only the unwanted terms.
"""

from typing import Optional, Sequence

import numpy as np
import pandas as pd

from metaboqc.core.logger import get_logger

logger = get_logger("metaboqc.normalization.ruv")


def biology_design(conditions: Optional[pd.Series], n_samples: int) -> np.ndarray:
    """
    Intercept plus treatment-coded condition columns.

    Parameters
    ----------
    conditions : pd.Series, optional
        Condition label per sample (QC samples carry their own level).
        Only the intercept is returned when omitted.
    n_samples : int
        Number of samples.
    """
    intercept = np.ones((n_samples, 1))
    if conditions is None:
        return intercept
    dummies = pd.get_dummies(conditions.astype(str), drop_first=True, dtype=float)
    return np.hstack([intercept, dummies.to_numpy()])


def group_dummies(labels: Sequence) -> np.ndarray:
    """Treatment-coded indicator columns of a grouping, without intercept."""
    labels = pd.Series([str(label) for label in labels])
    return pd.get_dummies(labels, drop_first=True, dtype=float).to_numpy()


def _residualize(y: np.ndarray, design: np.ndarray) -> np.ndarray:
    """Residuals of regressing every row of ``y`` (features x samples) on ``design``."""
    beta, *_ = np.linalg.lstsq(design, y.T, rcond=None)
    return y - (design @ beta).T


def estimate_unwanted_factors(
    log_values: np.ndarray,
    control_rows: Sequence[int],
    k: int,
    design: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Leading unwanted-variation factors from negative-control features.

    Parameters
    ----------
    log_values : np.ndarray
        Log intensities, features x samples.
    control_rows : sequence of int
        Row positions of the negative-control features.
    k : int
        Number of factors.
    design : np.ndarray, optional
        Samples x p design regressed out of the controls first. Defaults to
        an intercept only.

    Returns
    -------
    np.ndarray
        Samples x k factor matrix (orthonormal columns). Fewer than ``k``
        columns are returned when the residual matrix has lower rank.
    """
    n_samples = log_values.shape[1]
    if k <= 0:
        return np.empty((n_samples, 0))
    if design is None:
        design = np.ones((n_samples, 1))

    controls = log_values[np.asarray(control_rows, dtype=int)]
    residuals = _residualize(controls, design)

    u, s, _ = np.linalg.svd(residuals.T, full_matrices=False)
    tol = s.max() * max(residuals.shape) * np.finfo(float).eps if s.size else 0.0
    rank = int((s > tol).sum())
    if rank < k:
        logger.warning(
            "Requested %d unwanted factors but the control residuals have rank %d", k, rank
        )
        k = rank
    return u[:, :k]


def qc_drift_factors(
    log_values: np.ndarray,
    qc_columns: Sequence[int],
    run_order: np.ndarray,
    k: int,
    batches: Optional[Sequence] = None,
) -> np.ndarray:
    """
    QC drift factors interpolated over run order.

    The QC replicates are centred per feature and decomposed; the scores of
    the ``k`` leading components are linearly interpolated over run order to
    every sample. With ``batches`` the interpolation uses only the QC
    replicates of the sample's own batch (all QC replicates when a batch has
    none).

    Parameters
    ----------
    log_values : np.ndarray
        Log intensities, features x samples.
    qc_columns : sequence of int
        Column positions of the QC replicates.
    run_order : np.ndarray
        Run-order index per sample.
    k : int
        Number of factors.
    batches : sequence, optional
        Batch label per sample.

    Returns
    -------
    np.ndarray
        Samples x k factor matrix.
    """
    n_samples = log_values.shape[1]
    qc_columns = np.asarray(qc_columns, dtype=int)
    if k <= 0:
        return np.empty((n_samples, 0))
    if qc_columns.size < 2:
        raise ValueError(f"QC drift factors need at least 2 QC replicates, got {qc_columns.size}")

    qc = log_values[:, qc_columns]
    centred = qc - qc.mean(axis=1, keepdims=True)
    u, s, _ = np.linalg.svd(centred.T, full_matrices=False)
    rank = int((s > s.max() * 1e-10).sum()) if s.size and s.max() > 0 else 0
    if rank < k:
        logger.warning("Requested %d QC factors but the QC replicates have rank %d", k, rank)
        k = rank
    scores = u[:, :k] * s[:k]

    run_order = np.asarray(run_order, dtype=float)
    if not np.all(np.isfinite(run_order)):
        raise ValueError("QC drift factors need a finite run order for every sample")
    qc_order = run_order[qc_columns]
    factors = np.empty((n_samples, k))

    if batches is None:
        groups = {None: np.arange(n_samples)}
        qc_groups = {None: np.arange(qc_columns.size)}
    else:
        batches = np.asarray([str(b) for b in batches])
        groups = {b: np.flatnonzero(batches == b) for b in pd.unique(batches)}
        qc_groups = {b: np.flatnonzero(batches[qc_columns] == b) for b in groups}

    for b, cols in groups.items():
        ref = qc_groups[b]
        if ref.size == 0:
            ref = np.arange(qc_columns.size)
        order = np.argsort(qc_order[ref], kind="stable")
        xp = qc_order[ref][order]
        for f in range(k):
            factors[cols, f] = np.interp(run_order[cols], xp, scores[ref, f][order])
    return factors


def remove_unwanted_variation(
    log_values: np.ndarray,
    kept_design: np.ndarray,
    unwanted: np.ndarray,
) -> np.ndarray:
    """
    Subtract the fitted unwanted terms from every feature.

    One least-squares fit per feature on ``[kept_design, unwanted]``; only
    ``unwanted @ beta_unwanted`` is subtracted, so intercept and biology stay.

    Parameters
    ----------
    log_values : np.ndarray
        Log intensities, features x samples.
    kept_design : np.ndarray
        Samples x p design whose effects are preserved (intercept, biology).
    unwanted : np.ndarray
        Samples x m unwanted covariates. The input is returned unchanged
        when ``m == 0``.
    """
    if unwanted.shape[1] == 0:
        return log_values
    design = np.hstack([kept_design, unwanted])
    if not np.all(np.isfinite(design)):
        bad = np.flatnonzero(~np.isfinite(unwanted).all(axis=0))
        raise ValueError(
            f"Design matrix has non-finite entries (unwanted columns {bad.tolist()}); "
            "check run order and covariates"
        )
    if not np.all(np.isfinite(log_values)):
        raise ValueError("Log intensities have non-finite entries")
    beta, *_ = np.linalg.lstsq(design, log_values.T, rcond=None)
    beta_unwanted = beta[kept_design.shape[1]:]
    return log_values - (unwanted @ beta_unwanted).T
