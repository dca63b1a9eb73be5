"""
Tests for the scaling methods and normalization candidates.
"""

import numpy as np
import pandas as pd
import pytest

from metaboqc.model.normalization import NormalizationCandidate, ScalingMethod


@pytest.fixture
def log_df():
    rng = np.random.default_rng(5)
    linear = rng.uniform(100.0, 10000.0, size=(50, 1))
    # s2 is s1 with twice the loading, s3 with half
    return pd.DataFrame(
        np.log2(np.hstack([linear, 2.0 * linear, 0.5 * linear]) + 1.0),
        index=[f"f{i}" for i in range(50)],
        columns=["s1", "s2", "s3"],
    )


class TestScalingMethod:
    """Tests for ScalingMethod lookup and the registered functions."""

    def test_from_str(self):
        assert ScalingMethod.from_str("identity") == ScalingMethod.IDENTITY
        assert ScalingMethod.from_str("Upper-Quartile") == ScalingMethod.UPPER_QUARTILE
        assert ScalingMethod.from_str("deseq") == ScalingMethod.MEDIAN_RATIO
        assert ScalingMethod.from_str(None) == ScalingMethod.IDENTITY

    def test_from_str_unknown(self):
        with pytest.raises(ValueError):
            ScalingMethod.from_str("quantile")

    def test_identity(self, log_df):
        """Identity scaling returns an equal copy."""
        scaled = ScalingMethod.IDENTITY(log_df)

        pd.testing.assert_frame_equal(scaled, log_df)
        assert scaled is not log_df

    @pytest.mark.parametrize("method", [ScalingMethod.UPPER_QUARTILE, ScalingMethod.MEDIAN_RATIO])
    def test_removes_loading_differences(self, log_df, method):
        """Samples that differ only by a multiplicative factor become equal."""
        scaled = method.scale(log_df)
        linear = np.power(2.0, scaled) - 1.0

        np.testing.assert_allclose(linear["s1"], linear["s2"], rtol=1e-6)
        np.testing.assert_allclose(linear["s1"], linear["s3"], rtol=1e-6)

    def test_median_ratio_keeps_geometric_mean(self, log_df):
        """Size factors are centred, so the geometric mean loading is preserved."""
        scaled = ScalingMethod.MEDIAN_RATIO(log_df)
        linear = np.power(2.0, scaled) - 1.0
        original = np.power(2.0, log_df) - 1.0

        np.testing.assert_allclose(linear["s1"], original["s1"], rtol=1e-6)

    def test_median_ratio_needs_complete_feature(self):
        log_df = pd.DataFrame({"s1": [0.0, 3.0], "s2": [4.0, 0.0]}, index=["a", "b"])

        with pytest.raises(ValueError):
            ScalingMethod.MEDIAN_RATIO(log_df)


class TestNormalizationCandidate:
    """Tests for NormalizationCandidate."""

    def test_unadjusted(self):
        baseline = NormalizationCandidate(ScalingMethod.MEDIAN_RATIO, True, 0, False, 0)
        adjusted = NormalizationCandidate(ScalingMethod.IDENTITY, False, 0, True, 0)

        assert baseline.is_unadjusted
        assert not adjusted.is_unadjusted

    def test_label_and_dict(self):
        candidate = NormalizationCandidate(ScalingMethod.UPPER_QUARTILE, True, 2, False, 1, order=7)

        assert candidate.label == "upper_quartile|bio=1|k_ruv=2|batch=0|k_qc=1"
        assert candidate.to_dict()["order"] == 7
        assert candidate.to_dict()["scaling"] == "upper_quartile"
