"""
End-to-end processing of a profiling experiment.

The :class:`ProfilingPipeline` chains the stages raw -> blank-filtered ->
missingness-filtered -> imputed -> reliability-filtered -> normalized. Every
intermediate snapshot is kept, exclusions are collected in one manifest and
the normalization ranking is attached to the result.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd

from metaboqc.core.constants import (
    STAGE_IMPUTATION,
    STAGE_NORMALIZATION,
    STAGE_RAW,
)
from metaboqc.core.logger import get_logger, log_execution_time
from metaboqc.imputation.methods import NeighborImputer
from metaboqc.model.filters import PipelineConfig
from metaboqc.model.manifest import ExclusionManifest
from metaboqc.model.matrix import FeatureMatrix, FeatureSet
from metaboqc.model.sample import CovariateTable, SampleRole
from metaboqc.normalization.search import NormalizationSearchEngine, SearchResult
from metaboqc.preprocessing.filters.base import FilterResult
from metaboqc.preprocessing.filters.pipeline import FilterPipeline
from metaboqc.preprocessing.filters.factory import (
    create_reliability_filter,
    get_filter_pipeline,
)

logger = get_logger("metaboqc.pipeline")


@dataclass
class PipelineResult:
    """
    Everything produced by one pipeline run.

    Attributes
    ----------
    snapshots : dict[str, FeatureMatrix]
        Snapshot per completed stage, in stage order.
    results : list[FilterResult]
        One record per applied filtering or imputation stage.
    manifest : ExclusionManifest
        Every excluded feature with stage, reason and batch.
    search : SearchResult, optional
        Normalization search outcome, when the search ran.
    """

    snapshots: Dict[str, FeatureMatrix] = field(default_factory=dict)
    results: List[FilterResult] = field(default_factory=list)
    manifest: ExclusionManifest = field(default_factory=ExclusionManifest)
    search: Optional[SearchResult] = None

    @property
    def final(self) -> FeatureMatrix:
        """The last snapshot of the chain."""
        return list(self.snapshots.values())[-1]

    @property
    def imputed(self) -> Optional[FeatureMatrix]:
        return self.snapshots.get(STAGE_IMPUTATION)

    @property
    def normalized(self) -> Optional[FeatureMatrix]:
        return self.snapshots.get(STAGE_NORMALIZATION)

    @property
    def ranking(self) -> Optional[pd.DataFrame]:
        return self.search.ranking if self.search is not None else None

    def feature_sets(self) -> Dict[str, FeatureSet]:
        """Retained feature ids per completed stage."""
        return {stage: snap.feature_ids for stage, snap in self.snapshots.items()}

    def retained_table(self) -> pd.DataFrame:
        """Long table of (stage, feature_id) for every retained feature."""
        rows = [
            {"stage": stage, "feature_id": fid}
            for stage, features in self.feature_sets().items()
            for fid in features
        ]
        return pd.DataFrame(rows, columns=["stage", "feature_id"])

    def summary(self) -> dict:
        return {
            "stages": {stage: snap.shape[0] for stage, snap in self.snapshots.items()},
            "excluded": len(self.manifest.excluded_features()),
            "exclusions_by_batch": FilterPipeline.exclusion_counts(self.results).to_dict("records"),
            "selected_normalization": (
                self.search.best.candidate.label if self.search is not None else None
            ),
        }


class ProfilingPipeline:
    """
    Run all stages configured in a :class:`PipelineConfig`.

    Parameters
    ----------
    config : PipelineConfig, optional
        Stage configuration. Defaults are used when omitted.

    Examples
    --------
    >>> pipeline = ProfilingPipeline(load_pipeline_config("config.yaml"))
    >>> result = pipeline.run(matrix, covariates)
    >>> result.normalized
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    def _empty(self, result: PipelineResult, stage: str) -> bool:
        if self.config.stop_on_empty and result.snapshots[stage].shape[0] == 0:
            logger.warning("No features left after stage '%s'; later stages are skipped", stage)
            return True
        return False

    @log_execution_time()
    def run(
        self,
        matrix: FeatureMatrix,
        covariates: CovariateTable,
        negative_controls: Optional[Sequence] = None,
    ) -> PipelineResult:
        """
        Process a raw snapshot.

        Parameters
        ----------
        matrix : FeatureMatrix
            Raw intensities (sentinel 0.0 for not detected).
        covariates : CovariateTable
            Covariates of every matrix column.
        negative_controls : sequence, optional
            Negative-control features for the normalization search.

        Raises
        ------
        DataShapeError
            If the matrix and the covariate table disagree.
        """
        covariates.validate_against(matrix.sample_ids)
        cfg = self.config
        result = PipelineResult()
        result.snapshots[STAGE_RAW] = matrix

        logger.info("Pipeline '%s' started on %r", cfg.name, matrix)

        current = matrix
        for current, filter_result in get_filter_pipeline(cfg).iter_apply(
            matrix, covariates, stop_on_empty=cfg.stop_on_empty
        ):
            result.snapshots[filter_result.stage] = current
            result.results.append(filter_result)
            result.manifest.extend(filter_result.exclusions)
        if self._empty(result, list(result.snapshots)[-1]):
            return result

        # Imputation and later stages work on log2 biological + QC columns
        columns = covariates.samples(SampleRole.BIOLOGICAL, within=current.sample_ids)
        columns += covariates.samples(SampleRole.QC, within=current.sample_ids)
        columns = [s for s in current.sample_ids if s in set(columns)]
        logged = current.select_samples(columns).log_transform()

        imputer = NeighborImputer(
            n_neighbors=cfg.imputation.n_neighbors,
            on_insufficient=cfg.imputation.on_insufficient,
            n_jobs=cfg.imputation.n_jobs,
        )
        current, impute_result = imputer.impute(logged)
        result.snapshots[STAGE_IMPUTATION] = current
        result.results.append(impute_result)
        result.manifest.extend(impute_result.exclusions)
        if self._empty(result, STAGE_IMPUTATION):
            return result

        reliability = create_reliability_filter(cfg.reliability)
        if reliability is not None:
            current, rel_result = reliability.apply(current, covariates)
            result.snapshots[rel_result.stage] = current
            result.results.append(rel_result)
            result.manifest.extend(rel_result.exclusions)
            if self._empty(result, rel_result.stage):
                return result

        if cfg.normalization.enabled:
            engine = NormalizationSearchEngine(cfg.normalization)
            result.search = engine.search(current, covariates, negative_controls)
            result.snapshots[STAGE_NORMALIZATION] = result.search.best.matrix

        logger.info(
            "Pipeline '%s' finished: %s",
            cfg.name,
            ", ".join(f"{s}={n}" for s, n in result.summary()["stages"].items()),
        )
        return result

