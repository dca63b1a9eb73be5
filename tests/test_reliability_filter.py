"""
Tests for variance components and the ICC reliability filter.
"""

import numpy as np
import pandas as pd
import pytest

from metaboqc.core.constants import QC_LEVEL, STAGE_RELIABILITY
from metaboqc.core.exceptions import (
    DataShapeError,
    InsufficientReplicatesError,
    ModelFitError,
)
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.model.sample import CovariateTable
from metaboqc.preprocessing.filters import ReliabilityFilter, replicate_groups
from metaboqc.stats import fit_variance_components, intraclass_correlation


class TestIntraclassCorrelation:
    """Tests for the ICC formula."""

    def test_formula(self):
        assert intraclass_correlation(3.0, 1.0) == pytest.approx(0.75)
        assert intraclass_correlation(1.0, 1.0) == pytest.approx(0.5)

    def test_range(self):
        """ICC stays within [0, 1], negative components are treated as zero."""
        assert intraclass_correlation(0.0, 2.0) == 0.0
        assert intraclass_correlation(-0.5, 2.0) == 0.0
        assert intraclass_correlation(2.0, -1e-9) == 1.0

    def test_vanishing_residual(self):
        """As residual variance goes to zero the ICC goes to one."""
        values = [intraclass_correlation(1.0, r) for r in (1.0, 1e-2, 1e-4, 1e-8)]

        assert values == sorted(values)
        assert values[-1] == pytest.approx(1.0, abs=1e-7)

    def test_degenerate_components(self):
        with pytest.raises(ModelFitError):
            intraclass_correlation(0.0, 0.0)
        with pytest.raises(ModelFitError):
            intraclass_correlation(np.nan, 1.0)


class TestFitVarianceComponents:
    """Tests for the random-intercept fit."""

    def test_tight_qc_gives_high_icc(self):
        """Spread biological samples with tight QC replicates are reliable."""
        rng = np.random.default_rng(3)
        bio = 15.0 + rng.normal(0, 1.0, 10)
        qc = 15.0 + rng.normal(0, 0.05, 6)
        groups = [f"s{i}" for i in range(10)] + [QC_LEVEL] * 6

        vc = fit_variance_components(np.concatenate([bio, qc]), groups)

        assert 0.0 <= vc.icc <= 1.0
        assert vc.icc > 0.8
        assert vc.n_obs == 16
        assert vc.n_groups == 11

    def test_single_group(self):
        """One group level cannot separate variance components."""
        with pytest.raises(InsufficientReplicatesError):
            fit_variance_components([1.0, 2.0, 3.0], ["QC", "QC", "QC"])

    def test_no_replicated_group(self):
        """Without a group holding two observations the residual is not identified."""
        with pytest.raises(InsufficientReplicatesError):
            fit_variance_components([1.0, 2.0, 3.0], ["a", "b", "c"])

    def test_constant_values(self):
        """A feature without variance cannot be fitted."""
        with pytest.raises(ModelFitError):
            fit_variance_components([5.0] * 6, ["a", "b", "QC", "QC", "QC", "QC"])


def build_reliability_dataset():
    """Two batches of 8 biological samples and 5 QC replicates on the log scale."""
    rng = np.random.default_rng(11)
    samples = []
    for batch in ("B1", "B2"):
        samples += [(f"{batch}_bio_{i}", batch, "biological", "case" if i % 2 else "control") for i in range(8)]
        samples += [(f"{batch}_qc_{i}", batch, "qc", None) for i in range(5)]
    covariates = CovariateTable(pd.DataFrame(samples, columns=["sample_id", "batch", "role", "condition"]))

    roles = np.array([s[2] for s in samples])
    bio = roles == "biological"
    rows = {}
    # subject effects dominate, QC replicates agree
    reliable = np.where(bio, 14.0 + rng.normal(0, 1.0, len(samples)), 14.0 + rng.normal(0, 0.05, len(samples)))
    rows["reliable"] = reliable
    # identical biological samples, scattered QC replicates
    rows["unreliable"] = np.where(bio, 12.0, 12.0 + rng.normal(0, 1.0, len(samples)))
    values = pd.DataFrame.from_dict(rows, orient="index", columns=[s[0] for s in samples])
    matrix = FeatureMatrix(values, missing=pd.DataFrame(False, index=values.index, columns=values.columns), log_scale=True)
    return matrix, covariates


class TestReliabilityFilter:
    """Tests for ReliabilityFilter."""

    @pytest.fixture
    def dataset(self):
        return build_reliability_dataset()

    def test_replicate_groups(self, dataset):
        """Biological samples are their own group, QC replicates share one."""
        _, covariates = dataset
        groups = replicate_groups(["B1_bio_0", "B1_bio_1", "B1_qc_0", "B1_qc_1"], covariates)

        assert groups == ["B1_bio_0", "B1_bio_1", QC_LEVEL, QC_LEVEL]

    def test_filter(self, dataset):
        """The reliable feature passes in both batches; the unreliable one does not."""
        matrix, covariates = dataset
        filtered, result = ReliabilityFilter(icc_threshold=0.5, n_jobs=1).apply(matrix, covariates)

        assert filtered.feature_ids.to_list() == ["reliable"]
        assert result.stage == STAGE_RELIABILITY
        icc = result.details["icc"]
        assert list(icc.columns) == ["B1", "B2"]
        assert (icc.loc["reliable"] > 0.5).all()
        assert {r.feature_id for r in result.exclusions} == {"unreliable"}

    def test_row_order_with_workers(self, dataset):
        """Results are joined back by feature id whatever the pool width."""
        matrix, covariates = dataset
        icc_1, _ = ReliabilityFilter(n_jobs=1).compute_icc(matrix, covariates)
        icc_2, _ = ReliabilityFilter(n_jobs=2).compute_icc(matrix, covariates)

        assert list(icc_2.index) == list(matrix.values.index)
        pd.testing.assert_frame_equal(icc_1, icc_2)

    def test_requires_imputed_matrix(self, dataset):
        """Missing cells must be imputed first."""
        matrix, covariates = dataset
        missing = matrix.missing
        missing.iloc[0, 0] = True
        incomplete = FeatureMatrix(matrix.values, missing=missing, log_scale=True)

        with pytest.raises(DataShapeError):
            ReliabilityFilter(n_jobs=1).apply(incomplete, covariates)

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            ReliabilityFilter(icc_threshold=-0.1)
