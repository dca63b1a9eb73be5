"""
Tests for the missing-value proportion filter.
"""

import numpy as np
import pandas as pd
import pytest

from metaboqc.core.constants import STAGE_MISSINGNESS
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.model.sample import CovariateTable
from metaboqc.preprocessing.filters import MissingnessFilter


N_BIO = 20


def build_dataset(missing_counts):
    """
    Two batches of 20 biological samples and 2 blanks each.

    ``missing_counts`` maps feature ids to ``(missing in B1, missing in B2)``.
    Blanks are always not-detected.
    """
    samples = []
    for batch in ("B1", "B2"):
        samples += [(f"{batch}_bio_{i}", batch, "biological", "case" if i % 2 else "control") for i in range(N_BIO)]
        samples += [(f"{batch}_blank_{i}", batch, "blank", None) for i in range(2)]
    covariates = CovariateTable(
        pd.DataFrame(samples, columns=["sample_id", "batch", "role", "condition"])
    )

    values = pd.DataFrame(1000.0, index=list(missing_counts), columns=[s[0] for s in samples])
    for fid, counts in missing_counts.items():
        for batch, n_missing in zip(("B1", "B2"), counts):
            values.loc[fid, [f"{batch}_bio_{i}" for i in range(n_missing)]] = 0.0
            values.loc[fid, [f"{batch}_blank_{i}" for i in range(2)]] = 0.0
    return FeatureMatrix(values), covariates


class TestMissingnessFilter:
    """Tests for MissingnessFilter."""

    @pytest.fixture
    def dataset(self):
        return build_dataset(
            {
                "complete": (0, 0),
                "three": (3, 3),
                "four": (4, 4),
                "five_in_b2": (0, 5),
                "five_in_both": (5, 5),
            }
        )

    def test_threshold_is_inclusive(self, dataset):
        """4 of 20 missing equals the 0.2 threshold and is retained; 5 of 20 is not."""
        matrix, covariates = dataset
        filtered, result = MissingnessFilter(max_missing_fraction=0.2).apply(matrix, covariates)

        assert filtered.feature_ids.to_list() == ["complete", "three", "four"]
        assert result.removed_count == 2
        assert result.stage == STAGE_MISSINGNESS

    def test_every_batch_must_pass(self, dataset):
        """Failing one batch is enough to be excluded, and only that batch is reported."""
        matrix, covariates = dataset
        _, result = MissingnessFilter(0.2).apply(matrix, covariates)

        by_feature = {}
        for record in result.exclusions:
            by_feature.setdefault(record.feature_id, []).append(record.batch)
        assert by_feature == {"five_in_b2": ["B2"], "five_in_both": ["B1", "B2"]}

    def test_stricter_threshold(self, dataset):
        """A 0.15 threshold keeps 3 of 20 missing but not 4 of 20."""
        matrix, covariates = dataset
        filtered, _ = MissingnessFilter(0.15).apply(matrix, covariates)

        assert filtered.feature_ids.to_list() == ["complete", "three"]

    def test_blanks_do_not_count(self, dataset):
        """Blank columns are missing everywhere yet do not raise the fraction."""
        matrix, covariates = dataset
        filter_obj = MissingnessFilter(0.2)
        fractions = filter_obj.missing_fractions(matrix, covariates)

        assert fractions.loc["complete"].tolist() == [0.0, 0.0]
        assert fractions.loc["four"].tolist() == pytest.approx([0.2, 0.2])
        assert list(fractions.columns) == ["B1", "B2"]

    def test_blank_columns_kept(self, dataset):
        """The filter narrows features only; all sample columns stay."""
        matrix, covariates = dataset
        filtered, _ = MissingnessFilter(0.2).apply(matrix, covariates)

        assert filtered.sample_ids == matrix.sample_ids
        assert np.array_equal(
            filtered.missing.to_numpy(), matrix.missing.loc[filtered.feature_ids.to_list()].to_numpy()
        )

    def test_invalid_threshold(self):
        """The threshold is a fraction."""
        with pytest.raises(ValueError):
            MissingnessFilter(1.5)
