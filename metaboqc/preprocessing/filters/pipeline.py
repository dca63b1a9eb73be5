"""
Sequential application of feature filters over a snapshot chain.
"""

from typing import Iterable, Iterator, List, Optional, Tuple

import pandas as pd

from metaboqc.core.logger import get_logger
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.model.sample import CovariateTable
from metaboqc.preprocessing.filters.base import BaseFilter, FilterResult


logger = get_logger("metaboqc.preprocessing.filters.pipeline")


class FilterPipeline:
    """
    Ordered feature filters; each one narrows the snapshot left by the previous.

    Parameters
    ----------
    filters : iterable of BaseFilter, optional
        Filters in application order.
    name : str, optional
        Label used in log messages.
    """

    def __init__(self, filters: Optional[Iterable[BaseFilter]] = None, name: str = "default"):
        self.name = name
        self.filters: List[BaseFilter] = list(filters or [])

    def add_filter(self, filter_obj: BaseFilter) -> "FilterPipeline":
        """Append ``filter_obj``; returns the pipeline for chaining."""
        self.filters.append(filter_obj)
        return self

    def iter_apply(
        self,
        matrix: FeatureMatrix,
        covariates: CovariateTable,
        stop_on_empty: bool = True,
    ) -> Iterator[Tuple[FeatureMatrix, FilterResult]]:
        """
        Yield the snapshot and result of every filter in turn.

        Parameters
        ----------
        matrix : FeatureMatrix
            Raw snapshot; it is never modified.
        covariates : CovariateTable
            Sample covariates.
        stop_on_empty : bool, optional
            Skip the remaining filters once no feature is left.
        """
        current = matrix
        for filter_obj in self.filters:
            if stop_on_empty and current.shape[0] == 0:
                logger.warning(
                    "Pipeline '%s': no features left before %s, remaining filters skipped",
                    self.name,
                    filter_obj.name,
                )
                return

            try:
                current, result = filter_obj.apply(current, covariates)
            except Exception as e:
                logger.error("Pipeline '%s': %s failed: %s", self.name, filter_obj.name, e)
                raise

            logger.info(
                "Pipeline '%s': %s kept %d of %d features",
                self.name,
                result.filter_name,
                result.output_count,
                result.input_count,
            )
            yield current, result

    def apply(
        self,
        matrix: FeatureMatrix,
        covariates: CovariateTable,
        stop_on_empty: bool = True,
    ) -> Tuple[FeatureMatrix, List[FilterResult]]:
        """Run every filter and return the last snapshot with all results."""
        current = matrix
        results = []
        for current, result in self.iter_apply(matrix, covariates, stop_on_empty):
            results.append(result)
        return current, results

    @staticmethod
    def exclusion_counts(results: List[FilterResult]) -> pd.DataFrame:
        """
        Excluded features per stage and batch.

        Exclusions without a batch (decided over all batches) are counted
        under ``"all"``. A feature rejected by several batches counts once
        for each of them.
        """
        rows = [
            (record.stage, record.batch if record.batch is not None else "all", record.feature_id)
            for result in results
            for record in result.exclusions
        ]
        if not rows:
            return pd.DataFrame(columns=["stage", "batch", "n_excluded"])
        frame = pd.DataFrame(rows, columns=["stage", "batch", "feature_id"])
        counts = frame.groupby(["stage", "batch"], sort=False)["feature_id"].nunique()
        return counts.rename("n_excluded").reset_index()

    def __len__(self) -> int:
        return len(self.filters)

    def __repr__(self) -> str:
        return f"FilterPipeline(name='{self.name}', filters={[f.name for f in self.filters]})"
