"""
Search over normalization recipes.

The :class:`NormalizationSearchEngine` enumerates candidate recipes
(scaling x adjust-biology x k_ruv x adjust-batch x k_qc), prunes them with a
diagnostic pass over unwanted-variation factors, normalizes the matrix with
every surviving recipe, scores each result and ranks the candidates. The top
candidate's matrix is the final output of the pipeline.
"""

import itertools
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from metaboqc.core.constants import BATCH, GEL, RUN_ORDER, STAGE_NORMALIZATION
from metaboqc.core.exceptions import DataShapeError, MetaboQCError
from metaboqc.core.logger import get_logger, log_execution_time
from metaboqc.model.filters import NormalizationSearchConfig
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.model.normalization import (
    CandidateEvaluation,
    NormalizationCandidate,
    ScalingMethod,
)
from metaboqc.model.sample import CovariateTable, SampleRole
from metaboqc.normalization.metrics import (
    METRICS,
    batch_silhouette,
    factor_association,
    rank_metrics,
    score_all,
)
from metaboqc.normalization.ruv import (
    biology_design,
    estimate_unwanted_factors,
    group_dummies,
    qc_drift_factors,
    remove_unwanted_variation,
)
from metaboqc.stats.differential import (
    differential_abundance,
    resolve_contrast,
    select_negative_controls,
)

logger = get_logger("metaboqc.normalization.search")


@dataclass
class DiagnosticResult:
    """
    Outcome of the diagnostic pass.

    Attributes
    ----------
    factors : pd.DataFrame
        Samples x factors, the unwanted-variation factors estimated with
        identity scaling and biology adjusted.
    association : pd.DataFrame
        One row per factor: ANOVA ``eta2``/``pvalue`` against batch and gel
        labels and whether the factor is significantly associated.
    useful_k : int
        Position of the last significantly associated factor (0 if none).
    """

    factors: pd.DataFrame
    association: pd.DataFrame
    useful_k: int


@dataclass
class SearchResult:
    """
    Ranked outcome of a normalization search.

    Attributes
    ----------
    best : CandidateEvaluation
        Rank-1 candidate; its matrix is the normalized output.
    evaluations : list[CandidateEvaluation]
        All evaluated candidates in rank order.
    ranking : pd.DataFrame
        Candidate parameters, metrics, per-metric ranks, combined score and
        final rank.
    diagnostics : DiagnosticResult, optional
        Diagnostic pass, when screening ran.
    negative_controls : list
        Negative-control feature ids.
    screened_out : list[NormalizationCandidate]
        Candidates removed by screening.
    failed : dict
        Candidate label to error message for candidates that could not be
        evaluated.
    """

    best: CandidateEvaluation
    evaluations: List[CandidateEvaluation]
    ranking: pd.DataFrame
    diagnostics: Optional[DiagnosticResult] = None
    negative_controls: list = field(default_factory=list)
    screened_out: List[NormalizationCandidate] = field(default_factory=list)
    failed: dict = field(default_factory=dict)


@dataclass
class _SearchContext:
    log_df: pd.DataFrame
    conditions: pd.Series
    case: str
    control: str
    batches: pd.Series
    confound_labels: List[str]
    qc_samples: List[str]
    qc_columns: np.ndarray
    run_order: np.ndarray
    confounders: pd.DataFrame
    controls: list
    control_rows: np.ndarray
    reference_silhouette: float


class NormalizationSearchEngine:
    """
    Enumerate, score and rank normalization recipes.

    Parameters
    ----------
    config : NormalizationSearchConfig, optional
        Search ranges and scoring options. Defaults are used when omitted.

    Examples
    --------
    >>> engine = NormalizationSearchEngine()
    >>> result = engine.search(reliable_matrix, covariates)
    >>> result.best.candidate.label
    'median_ratio|bio=1|k_ruv=1|batch=0|k_qc=0'
    """

    def __init__(self, config: Optional[NormalizationSearchConfig] = None):
        self.config = config or NormalizationSearchConfig()

    def enumerate_candidates(self) -> List[NormalizationCandidate]:
        """All recipes in enumeration order; ``order`` is the position."""
        cfg = self.config
        scalings = [ScalingMethod.from_str(s) for s in cfg.scaling_methods]
        grid = itertools.product(
            scalings, cfg.adjust_biology, cfg.k_ruv, cfg.adjust_batch, cfg.k_qc
        )
        return [
            NormalizationCandidate(
                scaling=scaling,
                adjust_biology=bool(bio),
                k_ruv=int(k_ruv),
                adjust_batch=bool(batch),
                k_qc=int(k_qc),
                order=i,
            )
            for i, (scaling, bio, k_ruv, batch, k_qc) in enumerate(grid)
        ]

    def prepare(
        self,
        matrix: FeatureMatrix,
        covariates: CovariateTable,
        negative_controls: Optional[Sequence] = None,
    ) -> _SearchContext:
        """Restrict to biological and QC samples and derive the shared inputs."""
        if matrix.n_missing > 0:
            raise DataShapeError("Normalization needs a fully observed (imputed) matrix")
        logged = matrix.log_transform()
        columns = logged.sample_ids
        samples = covariates.samples(SampleRole.BIOLOGICAL, within=columns)
        samples += covariates.samples(SampleRole.QC, within=columns)
        samples = [s for s in columns if s in set(samples)]
        log_df = logged.values[samples]

        conditions = covariates.conditions(samples)
        case, control = resolve_contrast(conditions)
        qc_samples = covariates.samples(SampleRole.QC, within=samples)
        frame = covariates.frame.loc[samples]
        confounders = pd.DataFrame(
            {
                BATCH: frame[BATCH].astype(str),
                GEL: frame[GEL].astype(bool),
                RUN_ORDER: frame[RUN_ORDER].astype(float),
            },
            index=samples,
        )
        batches = confounders[BATCH]

        if negative_controls is None:
            table = differential_abundance(log_df, conditions, case=case, control=control)
            controls = select_negative_controls(
                table,
                n_controls=self.config.n_negative_controls,
                fraction=self.config.negative_control_fraction,
            )
        else:
            wanted = set(negative_controls)
            controls = [fid for fid in log_df.index if fid in wanted]
            if len(controls) < len(wanted):
                logger.warning(
                    "%d negative controls are not in the matrix and are ignored",
                    len(wanted) - len(controls),
                )
            if not controls:
                raise DataShapeError("None of the negative-control features is in the matrix")

        position = {fid: i for i, fid in enumerate(log_df.index)}
        return _SearchContext(
            log_df=log_df,
            conditions=conditions,
            case=case,
            control=control,
            batches=batches,
            confound_labels=[g.label for g in covariates.confound_groups(samples)],
            qc_samples=qc_samples,
            qc_columns=np.array([samples.index(s) for s in qc_samples], dtype=int),
            run_order=confounders[RUN_ORDER].to_numpy(),
            confounders=confounders,
            controls=controls,
            control_rows=np.array([position[fid] for fid in controls], dtype=int),
            reference_silhouette=batch_silhouette(log_df, batches, self.config.n_pcs),
        )

    def diagnose(self, ctx: _SearchContext) -> DiagnosticResult:
        """
        Estimate diagnostic factors and test them against batch and gel labels.
        """
        cfg = self.config
        y = ctx.log_df.to_numpy(dtype=float)
        design = biology_design(ctx.conditions, y.shape[1])
        factors = estimate_unwanted_factors(y, ctx.control_rows, cfg.n_diagnostic_factors, design=design)

        by_batch = factor_association(factors, ctx.confounders[BATCH])
        by_gel = factor_association(factors, ctx.confounders[GEL])
        association = pd.DataFrame(
            {
                "batch_eta2": by_batch["eta2"],
                "batch_pvalue": by_batch["pvalue"],
                "gel_eta2": by_gel["eta2"],
                "gel_pvalue": by_gel["pvalue"],
            },
            index=by_batch.index,
        )
        association["significant"] = (
            (association["batch_pvalue"] < cfg.alpha) | (association["gel_pvalue"] < cfg.alpha)
        )
        significant = association.index[association["significant"]]
        useful_k = int(significant.max()) if len(significant) else 0

        logger.info(
            "Diagnostic pass: %d factors estimated, useful_k=%d", factors.shape[1], useful_k
        )
        factor_frame = pd.DataFrame(
            factors,
            index=ctx.log_df.columns,
            columns=[f"W_{i}" for i in range(1, factors.shape[1] + 1)],
        )
        return DiagnosticResult(factors=factor_frame, association=association, useful_k=useful_k)

    def screen(
        self, candidates: List[NormalizationCandidate], useful_k: int
    ) -> List[NormalizationCandidate]:
        """
        Drop candidates that the diagnostic pass rules out.

        Candidates with more factors than ``useful_k + ruv_slack`` go, and so
        do fully unadjusted candidates when ``useful_k > 0``.
        """
        max_k = useful_k + self.config.ruv_slack
        kept = [
            c
            for c in candidates
            if c.k_ruv <= max_k and not (useful_k > 0 and c.is_unadjusted)
        ]
        logger.info("Screening kept %d of %d candidates", len(kept), len(candidates))
        return kept

    def normalize(self, candidate: NormalizationCandidate, ctx: _SearchContext) -> pd.DataFrame:
        """
        Apply one recipe to the search input.

        Returns the scaled matrix itself when the recipe has no unwanted terms.
        """
        scaled = candidate.scaling.scale(ctx.log_df)
        y = scaled.to_numpy(dtype=float)
        n_samples = y.shape[1]
        kept = biology_design(ctx.conditions if candidate.adjust_biology else None, n_samples)

        unwanted = []
        if candidate.k_ruv > 0:
            unwanted.append(estimate_unwanted_factors(y, ctx.control_rows, candidate.k_ruv, design=kept))
        if candidate.adjust_batch:
            unwanted.append(group_dummies(ctx.confound_labels))
        if candidate.k_qc > 0:
            unwanted.append(
                qc_drift_factors(y, ctx.qc_columns, ctx.run_order, candidate.k_qc, ctx.batches)
            )

        unwanted = np.hstack(unwanted) if unwanted else np.empty((n_samples, 0))
        if unwanted.shape[1] == 0:
            return scaled
        corrected = remove_unwanted_variation(y, kept, unwanted)
        return pd.DataFrame(corrected, index=scaled.index, columns=scaled.columns)

    def evaluate(self, candidate: NormalizationCandidate, ctx: _SearchContext) -> CandidateEvaluation:
        """Normalize with ``candidate`` and compute its metrics."""
        normalized = self.normalize(candidate, ctx)
        matrix = FeatureMatrix(
            normalized,
            missing=pd.DataFrame(False, index=normalized.index, columns=normalized.columns),
            log_scale=True,
            stage=STAGE_NORMALIZATION,
        )
        metrics = score_all(
            normalized,
            reference_silhouette=ctx.reference_silhouette,
            batches=ctx.batches,
            conditions=ctx.conditions,
            qc_samples=ctx.qc_samples,
            controls=ctx.controls,
            confounders=ctx.confounders,
            alpha=self.config.alpha,
            n_pcs=self.config.n_pcs,
            case=ctx.case,
            control=ctx.control,
        )
        return CandidateEvaluation(candidate=candidate, matrix=matrix, metrics=metrics)

    def rank(self, evaluations: List[CandidateEvaluation]) -> pd.DataFrame:
        """
        Rank evaluated candidates and record ``combined_score``/``rank`` on each.

        Returns
        -------
        pd.DataFrame
            Ranking table sorted by final rank.
        """
        metrics = pd.DataFrame(
            [[e.metrics.get(m, np.nan) for m in METRICS] for e in evaluations],
            columns=METRICS,
            dtype=float,
        )
        ranked = rank_metrics(metrics, order=[e.candidate.order for e in evaluations])
        for pos, row in ranked.iterrows():
            evaluations[pos].combined_score = float(row["combined_score"])
            evaluations[pos].rank = int(row["rank"])

        params = pd.DataFrame([e.candidate.to_dict() for e in evaluations])
        params = params.drop(columns=["order"]).loc[ranked.index]
        return pd.concat([params, ranked], axis=1).reset_index(drop=True)

    @log_execution_time()
    def search(
        self,
        matrix: FeatureMatrix,
        covariates: CovariateTable,
        negative_controls: Optional[Sequence] = None,
    ) -> SearchResult:
        """
        Run diagnostic pass, screening, evaluation, scoring and selection.

        Parameters
        ----------
        matrix : FeatureMatrix
            Reliability-filtered, fully observed snapshot.
        covariates : CovariateTable
            Sample covariates.
        negative_controls : sequence, optional
            Negative-control feature ids. Chosen as the features least
            associated with case/control status when omitted.

        Returns
        -------
        SearchResult
            Ranked candidates with the selected one in ``best``.
        """
        ctx = self.prepare(matrix, covariates, negative_controls)
        candidates = self.enumerate_candidates()
        logger.info(
            "Normalization search over %d candidates (%d features, %d samples, %d controls)",
            len(candidates),
            ctx.log_df.shape[0],
            ctx.log_df.shape[1],
            len(ctx.controls),
        )

        diagnostics = None
        screened_out: List[NormalizationCandidate] = []
        if self.config.screening:
            diagnostics = self.diagnose(ctx)
            kept = self.screen(candidates, diagnostics.useful_k)
            kept_ids = {c.order for c in kept}
            screened_out = [c for c in candidates if c.order not in kept_ids]
            candidates = kept

        evaluations: List[CandidateEvaluation] = []
        failed = {}
        for candidate in candidates:
            try:
                evaluations.append(self.evaluate(candidate, ctx))
            except (ValueError, np.linalg.LinAlgError) as e:
                logger.warning("Candidate %s could not be evaluated: %s", candidate.label, e)
                failed[candidate.label] = str(e)

        if not evaluations:
            raise MetaboQCError("No normalization candidate could be evaluated")

        ranking = self.rank(evaluations)
        evaluations = sorted(evaluations, key=lambda e: e.rank)
        best = evaluations[0]
        logger.info(
            "Selected normalization %s (combined score %.2f)",
            best.candidate.label,
            best.combined_score,
        )
        return SearchResult(
            best=best,
            evaluations=evaluations,
            ranking=ranking,
            diagnostics=diagnostics,
            negative_controls=list(ctx.controls),
            screened_out=screened_out,
            failed=failed,
        )
