"""
Tests for unwanted-variation removal, candidate metrics and the normalization search.
"""

import numpy as np
import pandas as pd
import pytest

from metaboqc.core.exceptions import MetaboQCError
from metaboqc.model.filters import NormalizationSearchConfig
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.model.normalization import NormalizationCandidate, ScalingMethod
from metaboqc.model.sample import CovariateTable
from metaboqc.normalization import (
    METRICS,
    NormalizationSearchEngine,
    estimate_unwanted_factors,
    factor_association,
    qc_drift_factors,
    rank_metrics,
    remove_unwanted_variation,
)


def build_search_dataset(n_features=40, n_qc=3, seed=1):
    """
    Imputed log matrix of two batches with a strong batch shift.

    Each batch holds 3 case and 3 control samples and ``n_qc`` QC replicates.
    The first 8 features are up in cases.
    """
    rng = np.random.default_rng(seed)
    samples = []
    order = 0
    for batch in ("B1", "B2"):
        for i in range(6):
            samples.append((f"{batch}_bio_{i}", batch, "biological", "case" if i < 3 else "control", order))
            order += 1
        for i in range(n_qc):
            samples.append((f"{batch}_qc_{i}", batch, "qc", None, order))
            order += 1
    frame = pd.DataFrame(samples, columns=["sample_id", "batch", "role", "condition", "run_order"])
    covariates = CovariateTable(frame)

    base = rng.uniform(10.0, 16.0, size=(n_features, 1))
    values = base + rng.normal(0, 0.2, size=(n_features, len(samples)))
    in_b2 = (frame["batch"] == "B2").to_numpy()
    values[:, in_b2] += rng.uniform(1.0, 2.0, size=(n_features, 1))
    is_case = (frame["condition"] == "case").to_numpy()
    values[:8, is_case] += 2.0

    log_df = pd.DataFrame(values, index=[f"f{i}" for i in range(n_features)], columns=frame["sample_id"])
    log_df.columns.name = None
    matrix = FeatureMatrix(
        log_df,
        missing=pd.DataFrame(False, index=log_df.index, columns=log_df.columns),
        log_scale=True,
    )
    return matrix, covariates


def small_config(**kwargs):
    options = dict(
        scaling_methods=["identity", "median_ratio"],
        adjust_biology=[False, True],
        k_ruv=[0, 1],
        adjust_batch=[False, True],
        k_qc=[0, 1],
        screening=False,
    )
    options.update(kwargs)
    return NormalizationSearchConfig(**options)


class TestUnwantedVariation:
    """Tests for factor estimation and removal."""

    def test_no_unwanted_terms(self):
        y = np.arange(12, dtype=float).reshape(3, 4)
        out = remove_unwanted_variation(y, np.ones((4, 1)), np.empty((4, 0)))

        np.testing.assert_array_equal(out, y)

    def test_group_means_equalised(self):
        """Regressing out a grouping removes its mean shift and keeps the intercept."""
        y = np.array([[1.0, 2.0, 5.0, 6.0], [10.0, 12.0, 10.0, 12.0]])
        unwanted = np.array([[0.0], [0.0], [1.0], [1.0]])
        out = remove_unwanted_variation(y, np.ones((4, 1)), unwanted)

        np.testing.assert_allclose(out[0, :2].mean(), out[0, 2:].mean())
        np.testing.assert_allclose(out[:, :2], y[:, :2])

    def test_factor_shape_and_rank_cap(self):
        """Factors are samples x k; k is capped by the residual rank."""
        rng = np.random.default_rng(0)
        y = rng.normal(size=(10, 6))

        assert estimate_unwanted_factors(y, [0, 1, 2, 3], 2).shape == (6, 2)
        # two controls give rank 2 at most
        assert estimate_unwanted_factors(y, [0, 1], 4).shape[1] <= 2
        assert estimate_unwanted_factors(y, [0, 1], 0).shape == (6, 0)

    def test_qc_drift_interpolation(self):
        """QC scores are interpolated linearly over run order."""
        y = np.array([[0.0, 5.0, 2.0, 5.0, 4.0], [0.0, 1.0, 0.0, 1.0, 0.0]])
        qc_columns = [0, 2, 4]
        run_order = np.array([0.0, 1.0, 2.0, 3.0, 4.0])
        factors = qc_drift_factors(y, qc_columns, run_order, 1)

        assert factors.shape == (5, 1)
        np.testing.assert_allclose(factors[1, 0], (factors[0, 0] + factors[2, 0]) / 2)
        np.testing.assert_allclose(factors[3, 0], (factors[2, 0] + factors[4, 0]) / 2)

    def test_qc_drift_needs_two_replicates(self):
        with pytest.raises(ValueError):
            qc_drift_factors(np.ones((3, 4)), [1], np.arange(4.0), 1)

    def test_qc_drift_rejects_missing_run_order(self):
        y = np.array([[0.0, 5.0, 2.0, 5.0, 4.0], [0.0, 1.0, 0.0, 1.0, 0.0]])
        run_order = np.array([np.nan, 1.0, 2.0, 3.0, 4.0])

        with pytest.raises(ValueError, match="finite run order"):
            qc_drift_factors(y, [0, 2, 4], run_order, 1)

    def test_non_finite_design_rejected(self):
        """Non-finite unwanted covariates are reported before any fit."""
        y = np.ones((3, 4))
        kept = np.ones((4, 1))
        unwanted = np.array([[0.0, 1.0], [1.0, np.inf], [0.0, 1.0], [1.0, 0.0]])

        with pytest.raises(ValueError, match=r"non-finite entries \(unwanted columns \[1\]\)"):
            remove_unwanted_variation(y, kept, unwanted)

    def test_factor_association(self):
        """A factor that separates two groups is strongly associated."""
        factors = np.array([[0.0, 1.0], [0.1, -1.0], [5.0, 1.0], [5.1, -1.0]])
        table = factor_association(factors, ["A", "A", "B", "B"])

        assert list(table.index) == [1, 2]
        assert table.loc[1, "pvalue"] < 0.01
        assert table.loc[1, "eta2"] > 0.99
        assert table.loc[2, "eta2"] == pytest.approx(0.0)


class TestRankMetrics:
    """Tests for the rank aggregation."""

    def test_total_order_with_tie_break(self):
        """Equal combined scores are ordered by enumeration position."""
        metrics = pd.DataFrame({"a": [1.0, 2.0, 2.0, 1.0], "b": [2.0, 1.0, 1.0, 2.0]})
        ranked = rank_metrics(metrics, order=[3, 2, 1, 0])

        assert ranked["combined_score"].nunique() == 1
        assert ranked["rank"].tolist() == [1, 2, 3, 4]
        assert ranked["order"].tolist() == [0, 1, 2, 3]

    def test_higher_is_better(self):
        metrics = pd.DataFrame({"a": [0.1, 0.9, 0.5]})
        ranked = rank_metrics(metrics)

        assert ranked.index.tolist() == [1, 2, 0]

    def test_nan_metric_ranks_last(self):
        """A candidate missing a metric gets the worst rank for it."""
        metrics = pd.DataFrame({"a": [np.nan, 0.5, 0.1], "b": [1.0, 1.0, 1.0]})
        ranked = rank_metrics(metrics)

        assert ranked.loc[0, "a_rank"] == 3.0
        assert ranked.index[-1] == 0

    def test_metric_undefined_everywhere_is_ignored(self):
        metrics = pd.DataFrame({"a": [0.2, 0.4], "b": [np.nan, np.nan]})
        ranked = rank_metrics(metrics)

        assert "b_rank" not in ranked.columns
        assert ranked.index.tolist() == [1, 0]


class TestNormalizationSearchEngine:
    """Tests for NormalizationSearchEngine."""

    @pytest.fixture
    def dataset(self):
        return build_search_dataset()

    def test_enumerate_candidates(self):
        engine = NormalizationSearchEngine(small_config())
        candidates = engine.enumerate_candidates()

        assert len(candidates) == 2 * 2 * 2 * 2 * 2
        assert [c.order for c in candidates] == list(range(32))
        assert len({c.label for c in candidates}) == 32

    def test_baseline_reproduces_scaled_input(self, dataset):
        """The identity recipe without adjustments returns the input exactly."""
        matrix, covariates = dataset
        engine = NormalizationSearchEngine(small_config())
        ctx = engine.prepare(matrix, covariates)
        baseline = NormalizationCandidate(ScalingMethod.IDENTITY, False, 0, False, 0)

        pd.testing.assert_frame_equal(engine.normalize(baseline, ctx), ctx.log_df, check_exact=True)
        evaluation = engine.evaluate(baseline, ctx)
        pd.testing.assert_frame_equal(evaluation.matrix.values, matrix.values, check_exact=True)

    def test_batch_adjustment_removes_shift(self, dataset):
        matrix, covariates = dataset
        engine = NormalizationSearchEngine(small_config())
        ctx = engine.prepare(matrix, covariates)
        normalized = engine.normalize(NormalizationCandidate(ScalingMethod.IDENTITY, False, 0, True, 0), ctx)

        b1 = [c for c in normalized.columns if c.startswith("B1")]
        b2 = [c for c in normalized.columns if c.startswith("B2")]
        np.testing.assert_allclose(normalized[b1].mean(axis=1), normalized[b2].mean(axis=1), atol=1e-8)

    def test_negative_controls_chosen_from_data(self, dataset):
        matrix, covariates = dataset
        engine = NormalizationSearchEngine(small_config(n_negative_controls=10))
        ctx = engine.prepare(matrix, covariates)

        assert len(ctx.controls) == 10
        assert not set(ctx.controls) & {f"f{i}" for i in range(8)}

    def test_negative_controls_given(self, dataset):
        matrix, covariates = dataset
        engine = NormalizationSearchEngine(small_config())
        ctx = engine.prepare(matrix, covariates, negative_controls=["f30", "f20", "unknown"])

        assert ctx.controls == ["f20", "f30"]

    def test_search_ranks_every_candidate(self, dataset):
        """Every evaluated candidate gets a distinct rank; rank 1 is selected."""
        matrix, covariates = dataset
        result = NormalizationSearchEngine(small_config()).search(matrix, covariates)

        assert len(result.evaluations) + len(result.failed) == 32
        assert sorted(e.rank for e in result.evaluations) == list(range(1, len(result.evaluations) + 1))
        assert result.best.rank == 1
        assert result.ranking["rank"].tolist() == list(range(1, len(result.evaluations) + 1))
        assert result.ranking.loc[0, "candidate"] == result.best.candidate.label
        assert set(METRICS) <= set(result.ranking.columns)
        assert result.best.matrix.shape == matrix.shape

    def test_batch_separation_improves(self, dataset):
        """Removing the batch shift scores better than leaving it."""
        matrix, covariates = dataset
        engine = NormalizationSearchEngine(small_config())
        ctx = engine.prepare(matrix, covariates)
        raw = engine.evaluate(NormalizationCandidate(ScalingMethod.IDENTITY, True, 0, False, 0), ctx)
        adjusted = engine.evaluate(NormalizationCandidate(ScalingMethod.IDENTITY, True, 0, True, 0), ctx)

        assert raw.metrics["batch_separation_reduction"] == pytest.approx(0.0)
        assert adjusted.metrics["batch_separation_reduction"] > 0.0

    def test_diagnose(self, dataset):
        matrix, covariates = dataset
        engine = NormalizationSearchEngine(small_config(n_diagnostic_factors=3))
        ctx = engine.prepare(matrix, covariates)
        diagnostics = engine.diagnose(ctx)

        assert diagnostics.factors.shape[0] == matrix.shape[1]
        assert diagnostics.factors.shape[1] <= 3
        assert 0 <= diagnostics.useful_k <= diagnostics.factors.shape[1]
        assert {"batch_pvalue", "gel_pvalue", "significant"} <= set(diagnostics.association.columns)

    def test_screen(self):
        engine = NormalizationSearchEngine(small_config(k_ruv=[0, 1, 2, 3], ruv_slack=1))
        candidates = engine.enumerate_candidates()
        kept = engine.screen(candidates, useful_k=1)

        assert max(c.k_ruv for c in kept) == 2
        assert not any(c.is_unadjusted for c in kept)
        assert len(engine.screen(candidates, useful_k=0)) == sum(c.k_ruv <= 1 for c in candidates)

    def test_failed_candidates_are_not_ranked(self):
        """With a single QC replicate, drift candidates fail and the rest are ranked."""
        matrix, covariates = build_search_dataset(n_qc=1)
        keep = [s for s in matrix.sample_ids if s != "B2_qc_0"]
        matrix = matrix.select_samples(keep)
        covariates = CovariateTable(covariates.frame.drop(index="B2_qc_0").reset_index())

        result = NormalizationSearchEngine(small_config()).search(matrix, covariates)

        assert len(result.failed) == 16
        assert all("k_qc=1" in label for label in result.failed)
        assert all(e.candidate.k_qc == 0 for e in result.evaluations)

    def test_nothing_evaluable(self):
        matrix, covariates = build_search_dataset(n_qc=1)
        keep = [s for s in matrix.sample_ids if s != "B2_qc_0"]
        matrix = matrix.select_samples(keep)
        covariates = CovariateTable(covariates.frame.drop(index="B2_qc_0").reset_index())

        with pytest.raises(MetaboQCError):
            NormalizationSearchEngine(small_config(k_qc=[1])).search(matrix, covariates)
