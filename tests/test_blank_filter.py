"""
Tests for the blank-contrast filter.
"""

import numpy as np
import pandas as pd
import pytest

from metaboqc.core.constants import STAGE_BLANK
from metaboqc.core.exceptions import DataShapeError, EmptyPartitionError
from metaboqc.model.enums import EmptyPartitionPolicy
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.model.sample import CovariateTable
from metaboqc.preprocessing.filters import (
    BlankContrastFilter,
    abundance_bins,
    negative_quartile_cutoff,
)


def raw_from_log(log_values):
    """Raw intensities whose log2(x + 1) equals ``log_values`` (0 = not detected)."""
    return np.power(2.0, np.asarray(log_values, dtype=float)) - 1.0


def make_covariates(layout):
    """Covariates from ``[(sample_id, batch, role), ...]``; biological samples alternate case/control."""
    rows = []
    n_bio = 0
    for sample_id, batch, role in layout:
        condition = None
        if role == "biological":
            condition = "case" if n_bio % 2 == 0 else "control"
            n_bio += 1
        rows.append({"sample_id": sample_id, "batch": batch, "role": role, "condition": condition})
    return CovariateTable(pd.DataFrame(rows))


class TestCutoffHelpers:
    """Tests for the partition cutoff and the abundance bins."""

    def test_negative_quartile_cutoff(self):
        """The cutoff is the absolute first quartile of the negative values only."""
        diffs = np.array([-2.0, -1.5, -1.0, -0.5, 3.0, 7.0])
        assert negative_quartile_cutoff(diffs) == pytest.approx(1.625)

    def test_negative_quartile_cutoff_without_negatives(self):
        """A partition without negative differences has no cutoff."""
        with pytest.raises(EmptyPartitionError):
            negative_quartile_cutoff(np.array([0.0, 0.5, 2.0]))

    def test_abundance_bins_are_quantiles(self):
        """Equal-sized quantile bins over distinct values."""
        mean = pd.Series(np.arange(10, dtype=float), index=[f"f{i}" for i in range(10)])
        bins = abundance_bins(mean, 5)

        assert bins.tolist() == [0, 0, 1, 1, 2, 2, 3, 3, 4, 4]

    def test_abundance_bins_merge_duplicate_edges(self):
        """Constant means collapse into a single bin."""
        mean = pd.Series([3.0, 3.0, 3.0], index=["a", "b", "c"])
        bins = abundance_bins(mean, 5)

        assert bins.nunique() == 1


class TestScenarioContaminatedFeatures:
    """Features whose blank intensity matches the biological intensity are removed."""

    @pytest.fixture
    def dataset(self):
        rng = np.random.default_rng(0)
        blanks = [f"blank_{i}" for i in range(5)]
        qcs = [f"qc_{i}" for i in range(5)]
        bios = [f"bio_{i}" for i in range(10)]

        rows = {}
        for i in range(80):
            level = 13.0 + 2.0 * i / 80
            rows[f"clean_{i}"] = np.concatenate(
                [
                    level - 6.0 + rng.normal(0, 0.05, 5),
                    level + rng.normal(0, 0.05, 5),
                    level + rng.normal(0, 0.05, 10),
                ]
            )
        for i in range(20):
            level = 16.0 + 2.0 * i / 20
            # blank at the biological level, the difference on either side of zero
            shift = (0.1 + 0.02 * (i // 2)) if i % 2 == 0 else -(0.02 + 0.005 * (i // 2))
            rows[f"contaminant_{i}"] = np.concatenate(
                [
                    level + shift + rng.normal(0, 0.01, 5),
                    level + rng.normal(0, 0.01, 5),
                    level + rng.normal(0, 0.01, 10),
                ]
            )

        columns = blanks + qcs + bios
        log_df = pd.DataFrame.from_dict(rows, orient="index", columns=columns)
        matrix = FeatureMatrix(pd.DataFrame(raw_from_log(log_df), index=log_df.index, columns=columns))
        layout = (
            [(s, "B1", "blank") for s in blanks]
            + [(s, "B1", "qc") for s in qcs]
            + [(s, "B1", "biological") for s in bios]
        )
        return matrix, make_covariates(layout)

    def test_contaminants_excluded(self, dataset):
        """At least 18 of the 20 contaminated features are excluded."""
        matrix, covariates = dataset
        filtered, result = BlankContrastFilter(n_bins=5).apply(matrix, covariates)

        contaminants = [f"contaminant_{i}" for i in range(20)]
        excluded = [fid for fid in contaminants if fid not in filtered.feature_ids]
        assert len(excluded) >= 18
        assert result.stage == STAGE_BLANK
        assert {r.feature_id for r in result.exclusions} >= set(excluded)

    def test_clean_features_retained(self, dataset):
        """Features well above the blank level survive, in input order."""
        matrix, covariates = dataset
        filtered, result = BlankContrastFilter(n_bins=5).apply(matrix, covariates)

        clean = [f"clean_{i}" for i in range(80)]
        assert [fid for fid in filtered.feature_ids if fid.startswith("clean_")] == clean
        assert result.output_count == filtered.shape[0]
        assert result.input_count == 100

    def test_qc_columns_ignored(self, dataset):
        """QC columns do not enter the contrast."""
        matrix, covariates = dataset
        values = matrix.values
        values[[f"qc_{i}" for i in range(5)]] = 0.0
        altered = FeatureMatrix(values)

        filtered_a, _ = BlankContrastFilter().apply(matrix, covariates)
        filtered_b, _ = BlankContrastFilter().apply(altered, covariates)
        assert filtered_a.feature_ids == filtered_b.feature_ids

    def test_input_snapshot_unchanged(self, dataset):
        """The filter returns a new snapshot and leaves its input alone."""
        matrix, covariates = dataset
        before = matrix.values
        filtered, _ = BlankContrastFilter().apply(matrix, covariates)

        pd.testing.assert_frame_equal(matrix.values, before)
        assert filtered is not matrix
        assert filtered.stage == STAGE_BLANK


class TestAbundanceBinCutoff:
    """Features detected in every blank are judged against the cutoff of their abundance bin."""

    BLANKS = ["blank_1", "blank_2"]
    BIOS = ["bio_1", "bio_2"]

    # (blank level, biological - blank difference)
    LOW = {"low_a": -2.0, "low_b": -1.0, "low_c": -0.5, "low_d": -0.2, "low_small": 0.5, "low_big": 4.0}
    HIGH = {"high_a": -0.4, "high_b": -0.3, "high_c": -0.2, "high_d": -0.1, "high_mid": 0.5, "high_tiny": 0.05}

    @pytest.fixture
    def dataset(self):
        rows = {}
        for level, diffs in ((8.0, self.LOW), (20.0, self.HIGH)):
            for fid, diff in diffs.items():
                rows[fid] = [level, level, level + diff, level + diff]
        log_df = pd.DataFrame.from_dict(rows, orient="index", columns=self.BLANKS + self.BIOS)
        raw = pd.DataFrame(raw_from_log(log_df), index=log_df.index, columns=log_df.columns)
        layout = [(s, "B1", "blank") for s in self.BLANKS] + [(s, "B1", "biological") for s in self.BIOS]
        return FeatureMatrix(raw), make_covariates(layout)

    def test_positive_difference_below_cutoff_excluded(self, dataset):
        """Negatives -2, -1, -0.5, -0.2 give Q1 = -1.25, so +0.5 is excluded and +4 kept."""
        matrix, covariates = dataset
        filtered, result = BlankContrastFilter(n_bins=2).apply(matrix, covariates)

        table = result.details["contrast_table"]
        assert table.loc["low_small", "cutoff"] == pytest.approx(1.25)
        assert "low_small" not in filtered.feature_ids
        assert "low_big" in filtered.feature_ids

    def test_cutoff_is_local_to_the_bin(self, dataset):
        """The same +0.5 difference passes in the bin whose negatives are small."""
        matrix, covariates = dataset
        filtered, result = BlankContrastFilter(n_bins=2).apply(matrix, covariates)

        table = result.details["contrast_table"]
        assert table.loc["high_mid", "cutoff"] == pytest.approx(0.325)
        assert "high_mid" in filtered.feature_ids
        assert "high_tiny" not in filtered.feature_ids
        assert filtered.feature_ids.to_list() == ["low_big", "high_mid"]
        assert result.details["empty_partitions"] == []


class TestScenarioPartiallyDetected:
    """Features missing in some blanks are judged within their missing-count group."""

    BLANKS = ["blank_1", "blank_2", "blank_3"]
    BIOS = ["bio_1", "bio_2", "bio_3", "bio_4"]

    def build(self, log_rows):
        log_df = pd.DataFrame.from_dict(log_rows, orient="index", columns=self.BLANKS + self.BIOS)
        raw = pd.DataFrame(raw_from_log(log_df), index=log_df.index, columns=log_df.columns)
        layout = [(s, "B1", "blank") for s in self.BLANKS] + [(s, "B1", "biological") for s in self.BIOS]
        return FeatureMatrix(raw), make_covariates(layout)

    @pytest.fixture
    def one_of_three(self):
        # detected in blank_1 only: blank mean is 9 / 3 = 3
        rows = {
            "neg_2.0": [9, 0, 0, 1, 1, 1, 1],
            "neg_1.5": [9, 0, 0, 1, 2, 1, 2],
            "neg_1.0": [9, 0, 0, 2, 2, 2, 2],
            "neg_0.5": [9, 0, 0, 2, 3, 2, 3],
            "strong": [9, 0, 0, 7, 7, 7, 7],
            "weak": [9, 0, 0, 3, 4, 3, 4],
            "never_in_blank": [0, 0, 0, 1, 1, 1, 1],
        }
        return self.build(rows)

    def test_large_difference_retained(self, one_of_three):
        """A large positive difference relative to the group's noise is retained."""
        matrix, covariates = one_of_three
        filtered, result = BlankContrastFilter().apply(matrix, covariates)

        assert "strong" in filtered.feature_ids
        assert "weak" not in filtered.feature_ids

    def test_group_cutoff(self, one_of_three):
        """The cutoff is |Q1| of the negative differences of the missing-count group."""
        matrix, covariates = one_of_three
        _, result = BlankContrastFilter().apply(matrix, covariates)

        table = result.details["contrast_table"]
        assert table.loc["strong", "diff"] == pytest.approx(4.0)
        assert table.loc["weak", "diff"] == pytest.approx(0.5)
        assert table.loc["weak", "cutoff"] == pytest.approx(1.625)
        assert table.loc["weak", "partition"] == "missing 2/3"

    def test_missing_in_every_blank_retained(self, one_of_three):
        """A feature never seen in a blank cannot be blank background."""
        matrix, covariates = one_of_three
        filtered, _ = BlankContrastFilter().apply(matrix, covariates)

        assert "never_in_blank" in filtered.feature_ids

    def test_exclusion_reason(self, one_of_three):
        """Excluded features carry the batch and the failed comparison."""
        matrix, covariates = one_of_three
        _, result = BlankContrastFilter().apply(matrix, covariates)

        weak = [r for r in result.exclusions if r.feature_id == "weak"]
        assert len(weak) == 1
        assert weak[0].batch == "B1"
        assert "cutoff 1.625" in weak[0].reason

    @pytest.fixture
    def positive_group(self):
        rows = {
            "neg_2.0": [9, 0, 0, 1, 1, 1, 1],
            "neg_1.5": [9, 0, 0, 1, 2, 1, 2],
            "neg_1.0": [9, 0, 0, 2, 2, 2, 2],
            "neg_0.5": [9, 0, 0, 2, 3, 2, 3],
            # detected in two blanks: blank mean is 2 * 3 / 3 = 2
            "small_pos": [3, 3, 0, 2, 3, 2, 3],
            "large_pos": [3, 3, 0, 5, 5, 5, 5],
        }
        return self.build(rows)

    def test_empty_partition_zero(self, positive_group):
        """Without negative differences the cutoff falls back to zero."""
        matrix, covariates = positive_group
        filtered, result = BlankContrastFilter(
            empty_partition_policy=EmptyPartitionPolicy.ZERO
        ).apply(matrix, covariates)

        assert "small_pos" in filtered.feature_ids
        assert "large_pos" in filtered.feature_ids
        assert len(result.details["empty_partitions"]) == 1

    def test_empty_partition_pooled(self, positive_group):
        """The pooled policy borrows the cutoff of all partially detected features."""
        matrix, covariates = positive_group
        filtered, result = BlankContrastFilter(empty_partition_policy="pooled").apply(
            matrix, covariates
        )

        table = result.details["contrast_table"]
        assert table.loc["small_pos", "cutoff"] == pytest.approx(1.625)
        assert "small_pos" not in filtered.feature_ids
        assert "large_pos" in filtered.feature_ids


class TestBatches:
    """Per-batch evaluation and intersection."""

    def test_intersection_across_batches(self):
        """A feature must pass in every batch; the reason names the failing batch."""
        columns = ["b1_blank", "b1_bio1", "b1_bio2", "b2_blank", "b2_bio1", "b2_bio2"]
        log_rows = {
            "both": [4, 10, 10, 4, 10, 10],
            "only_b1": [4, 10, 10, 10, 4, 4],
            "reference": [6, 5, 5, 6, 5, 5],
        }
        log_df = pd.DataFrame.from_dict(log_rows, orient="index", columns=columns)
        matrix = FeatureMatrix(pd.DataFrame(raw_from_log(log_df), index=log_df.index, columns=columns))
        covariates = make_covariates(
            [
                ("b1_blank", "B1", "blank"),
                ("b1_bio1", "B1", "biological"),
                ("b1_bio2", "B1", "biological"),
                ("b2_blank", "B2", "blank"),
                ("b2_bio1", "B2", "biological"),
                ("b2_bio2", "B2", "biological"),
            ]
        )

        filtered, result = BlankContrastFilter(n_bins=1).apply(matrix, covariates)

        assert filtered.feature_ids.to_list() == ["both"]
        only_b1 = [r for r in result.exclusions if r.feature_id == "only_b1"]
        assert [r.batch for r in only_b1] == ["B2"]

    def test_batch_without_blanks(self):
        """Contrasting is impossible without blank samples."""
        matrix = FeatureMatrix(pd.DataFrame({"bio1": [10.0, 20.0], "bio2": [11.0, 21.0]}, index=["a", "b"]))
        covariates = make_covariates([("bio1", "B1", "biological"), ("bio2", "B1", "biological")])

        with pytest.raises(DataShapeError):
            BlankContrastFilter().apply(matrix, covariates)

    def test_invalid_bins(self):
        """At least one abundance bin is required."""
        with pytest.raises(ValueError):
            BlankContrastFilter(n_bins=0)
