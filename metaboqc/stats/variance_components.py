"""
Variance components of a random-intercept model.

Thin wrapper around statsmodels MixedLM used by the reliability filter: one
feature's intensities are modelled as ``y ~ 1 + (1 | group)`` and the
between-group and residual variances are turned into an intraclass
correlation coefficient.
"""

import warnings
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf

from metaboqc.core.exceptions import InsufficientReplicatesError, ModelFitError


@dataclass
class VarianceComponents:
    """
    Fitted variance components for one feature.

    Attributes
    ----------
    between_var : float
        Between-group (random intercept) variance.
    residual_var : float
        Within-group residual variance.
    icc : float
        ``between_var / (between_var + residual_var)`` clipped to [0, 1].
    n_obs : int
        Observations used in the fit.
    n_groups : int
        Distinct group levels.
    """

    between_var: float
    residual_var: float
    icc: float
    n_obs: int
    n_groups: int


def intraclass_correlation(between_var: float, residual_var: float) -> float:
    """
    ICC from variance components, clipped to [0, 1].

    Raises
    ------
    ModelFitError
        If a component is not finite or the total variance is not positive.
    """
    if not (np.isfinite(between_var) and np.isfinite(residual_var)):
        raise ModelFitError(
            f"Non-finite variance components (between={between_var}, residual={residual_var})"
        )
    between_var = max(float(between_var), 0.0)
    residual_var = max(float(residual_var), 0.0)
    total = between_var + residual_var
    if total <= 0:
        raise ModelFitError("Total variance is zero")
    return float(np.clip(between_var / total, 0.0, 1.0))


def fit_variance_components(
    values: Sequence[float],
    groups: Sequence,
    reml: bool = True,
) -> VarianceComponents:
    """
    Fit ``y ~ 1 + (1 | group)`` and return its variance components.

    Parameters
    ----------
    values : sequence of float
        Log intensities of one feature.
    groups : sequence
        Group label per observation.
    reml : bool, optional
        Use restricted maximum likelihood.

    Raises
    ------
    InsufficientReplicatesError
        Fewer than two group levels, or no group with two observations.
    ModelFitError
        Zero variance, singular or non-convergent fit, non-finite components.
    """
    df = pd.DataFrame({"y": np.asarray(values, dtype=float), "group": list(groups)}).dropna()
    obs_per_group = df.groupby("group", sort=False).size()

    if len(obs_per_group) < 2:
        raise InsufficientReplicatesError(
            f"Need at least 2 group levels, got {len(obs_per_group)}"
        )
    if not (obs_per_group >= 2).any():
        raise InsufficientReplicatesError("No group has replicate observations")
    if np.var(df["y"].to_numpy()) == 0:
        raise ModelFitError("Total variance is zero")

    with warnings.catch_warnings():
        # boundary and convergence warnings are judged from the result below
        warnings.simplefilter("ignore")
        try:
            model = smf.mixedlm("y ~ 1", df, groups=df["group"])
            result = model.fit(reml=reml)
        except (np.linalg.LinAlgError, ValueError) as e:
            raise ModelFitError(f"Mixed model fit failed: {type(e).__name__}: {e}") from e

    if not result.converged:
        raise ModelFitError("Mixed model did not converge")

    between_var = float(result.cov_re.iloc[0, 0])
    residual_var = float(result.scale)
    icc = intraclass_correlation(between_var, residual_var)

    return VarianceComponents(
        between_var=between_var,
        residual_var=residual_var,
        icc=icc,
        n_obs=len(df),
        n_groups=len(obs_per_group),
    )
