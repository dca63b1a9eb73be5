"""
Blank-contrast feature filter.

Per batch, each feature's mean log intensity across biological replicates is
contrasted with its mean across blank replicates. Features detected in every
blank are partitioned into abundance quantile bins; features missing in some
blanks are partitioned by how many blanks miss them. Inside each partition the
noise cutoff is the absolute first quartile of the negative differences, so
the threshold follows the background observed at that abundance. The retained
set is the intersection of the per-batch retained sets.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from metaboqc.core.constants import STAGE_BLANK
from metaboqc.core.exceptions import DataShapeError, EmptyPartitionError
from metaboqc.core.logger import get_logger
from metaboqc.model.enums import EmptyPartitionPolicy
from metaboqc.model.matrix import FeatureMatrix, FeatureSet
from metaboqc.model.sample import CovariateTable
from metaboqc.preprocessing.filters.base import BaseFilter, FilterResult


logger = get_logger("metaboqc.preprocessing.filters.blank")


def negative_quartile_cutoff(diffs: np.ndarray) -> float:
    """
    Absolute first quartile of the negative values in ``diffs``.

    Raises
    ------
    EmptyPartitionError
        If ``diffs`` holds no negative value.
    """
    diffs = np.asarray(diffs, dtype=float)
    negative = diffs[diffs < 0]
    if negative.size == 0:
        raise EmptyPartitionError("No negative differences to derive a cutoff from")
    return abs(float(np.quantile(negative, 0.25)))


def abundance_bins(mean: pd.Series, n_bins: int) -> pd.Series:
    """
    Assign each value to a quantile bin with edges at empirical quantiles.

    Duplicate edges are merged, so fewer than ``n_bins`` bins may result.
    """
    if len(mean) == 0:
        return pd.Series([], index=mean.index, dtype=int)
    edges = np.unique(np.quantile(mean.to_numpy(), np.linspace(0.0, 1.0, n_bins + 1)))
    if len(edges) < 2:
        return pd.Series(0, index=mean.index, dtype=int)
    bins = pd.cut(mean, bins=edges, labels=False, include_lowest=True)
    return bins.astype(int)


class BlankContrastFilter(BaseFilter):
    """
    Remove features whose biological signal is not distinguishable from blanks.

    Parameters
    ----------
    n_bins : int, optional
        Number of abundance quantile bins for features detected in every blank.
    empty_partition_policy : EmptyPartitionPolicy or str, optional
        Cutoff fallback when a partition has no negative differences.
    """

    def __init__(
        self,
        n_bins: int = 5,
        empty_partition_policy=EmptyPartitionPolicy.ZERO,
    ):
        if n_bins < 1:
            raise ValueError(f"n_bins must be >= 1, got {n_bins}")
        self.n_bins = n_bins
        if isinstance(empty_partition_policy, str):
            empty_partition_policy = EmptyPartitionPolicy.from_str(empty_partition_policy)
        self.empty_partition_policy = empty_partition_policy

    @property
    def name(self) -> str:
        return "BlankContrastFilter"

    @property
    def stage(self) -> str:
        return STAGE_BLANK

    def _cutoff(self, diffs: pd.Series, pool: pd.Series, label: str, fallbacks: List[str]) -> float:
        try:
            return negative_quartile_cutoff(diffs.to_numpy())
        except EmptyPartitionError:
            fallbacks.append(label)
            if self.empty_partition_policy == EmptyPartitionPolicy.POOLED:
                try:
                    cutoff = negative_quartile_cutoff(pool.to_numpy())
                    logger.warning("%s: %s has no negative differences, using pooled cutoff %.3f",
                                   self.name, label, cutoff)
                    return cutoff
                except EmptyPartitionError:
                    pass
            logger.warning("%s: %s has no negative differences, using cutoff 0", self.name, label)
            return 0.0

    def contrast_table(
        self, log_values: pd.DataFrame, missing: pd.DataFrame, blanks: List[str], biological: List[str]
    ) -> pd.DataFrame:
        """
        Per-feature blank/biological means and their difference for one batch.

        Sentinel cells enter the means at their log value (0.0).
        """
        blank_mean = log_values[blanks].mean(axis=1)
        obs_mean = log_values[biological].mean(axis=1)
        return pd.DataFrame(
            {
                "blank_mean": blank_mean,
                "obs_mean": obs_mean,
                "diff": obs_mean - blank_mean,
                "mean": (blank_mean + obs_mean) / 2.0,
                "missing_blanks": missing[blanks].sum(axis=1).astype(int),
            }
        )

    def evaluate_batch(
        self,
        log_values: pd.DataFrame,
        missing: pd.DataFrame,
        blanks: List[str],
        biological: List[str],
        batch: Optional[str] = None,
    ) -> Tuple[pd.DataFrame, List[str]]:
        """
        Decide retention for every feature of one batch.

        Returns
        -------
        Tuple[pd.DataFrame, list[str]]
            Contrast table extended with ``partition``, ``cutoff`` and
            ``retained`` columns, and the labels of partitions that needed the
            empty-partition fallback.
        """
        table = self.contrast_table(log_values, missing, blanks, biological)
        table["partition"] = ""
        table["cutoff"] = np.nan
        table["retained"] = False
        fallbacks: List[str] = []
        n_blanks = len(blanks)

        # Set A: detected in every blank, partitioned by abundance
        set_a = table.index[table["missing_blanks"] == 0]
        if len(set_a) > 0:
            diff_a = table.loc[set_a, "diff"]
            bins = abundance_bins(table.loc[set_a, "mean"], self.n_bins)
            for b in sorted(bins.unique()):
                members = bins.index[bins == b]
                label = f"batch {batch} abundance bin {b + 1}"
                cutoff = self._cutoff(diff_a.loc[members], diff_a, label, fallbacks)
                d = table.loc[members, "diff"]
                table.loc[members, "partition"] = f"bin {b + 1}"
                table.loc[members, "cutoff"] = cutoff
                table.loc[members, "retained"] = (d > 0) & (d > cutoff)

        # Set B: partitioned by the number of blanks that miss the feature
        partial = table.index[(table["missing_blanks"] > 0) & (table["missing_blanks"] < n_blanks)]
        diff_b = table.loc[partial, "diff"]
        for m in sorted(table.loc[table["missing_blanks"] > 0, "missing_blanks"].unique()):
            members = table.index[table["missing_blanks"] == m]
            table.loc[members, "partition"] = f"missing {m}/{n_blanks}"
            if m == n_blanks:
                table.loc[members, "cutoff"] = -np.inf
                table.loc[members, "retained"] = True
                continue
            label = f"batch {batch} missing-count group {m}/{n_blanks}"
            cutoff = self._cutoff(diff_b.loc[members], diff_b, label, fallbacks)
            table.loc[members, "cutoff"] = cutoff
            table.loc[members, "retained"] = table.loc[members, "diff"] > cutoff

        table["retained"] = table["retained"].astype(bool)
        return table, fallbacks

    def apply(
        self, matrix: FeatureMatrix, covariates: CovariateTable, **kwargs
    ) -> Tuple[FeatureMatrix, FilterResult]:
        logged = matrix.log_transform()
        log_values = logged.values
        missing = logged.missing

        retained = matrix.feature_ids
        reasons: Dict[object, List[Tuple[Optional[str], str]]] = {}
        tables = []
        all_fallbacks: List[str] = []

        for batch in covariates.batches():
            blanks = covariates.blank_samples(batch)
            biological = covariates.biological_samples(batch)
            blanks = [s for s in blanks if s in log_values.columns]
            biological = [s for s in biological if s in log_values.columns]
            if not blanks:
                raise DataShapeError(f"Batch '{batch}' has no blank samples to contrast against")
            if not biological:
                raise DataShapeError(f"Batch '{batch}' has no biological samples")

            table, fallbacks = self.evaluate_batch(log_values, missing, blanks, biological, batch)
            all_fallbacks.extend(fallbacks)

            batch_retained = FeatureSet(table.index[table["retained"]])
            for fid, row in table.loc[~table["retained"]].iterrows():
                reasons.setdefault(fid, []).append(
                    (
                        batch,
                        f"diff {row['diff']:.3f} <= cutoff {row['cutoff']:.3f} ({row['partition']})",
                    )
                )
            retained = retained & batch_retained

            logger.debug(
                "%s: batch %s retained %d/%d features (%d blanks, %d biological)",
                self.name,
                batch,
                len(batch_retained),
                len(table),
                len(blanks),
                len(biological),
            )
            tables.append(table.assign(batch=batch))

        details = {
            "n_bins": self.n_bins,
            "empty_partition_policy": self.empty_partition_policy.value,
            "empty_partitions": all_fallbacks,
            "contrast_table": pd.concat(tables) if tables else pd.DataFrame(),
        }
        return self._finish(matrix, retained, reasons, details)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(n_bins={self.n_bins}, "
            f"empty_partition_policy={self.empty_partition_policy.value})"
        )
