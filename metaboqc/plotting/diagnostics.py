"""
Diagnostic plots for the normalization search.

This module provides plots of the diagnostic unwanted-variation factors, PCA
views of a snapshot and a multi-page PDF report of a pipeline run.
"""

from typing import Optional

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
from matplotlib.backends.backend_pdf import PdfPages

from metaboqc.core.constants import BATCH, GEL, STAGE_NORMALIZATION, STAGE_RELIABILITY
from metaboqc.core.logger import get_logger
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.model.sample import CovariateTable
from metaboqc.normalization.metrics import pca_scores

logger = get_logger("metaboqc.plotting")


def plot_factor_diagnostics(diagnostics, covariates: CovariateTable, output_file=None):
    """
    Boxplots of each diagnostic factor by batch, coloured by gel flag.

    Parameters
    ----------
    diagnostics : DiagnosticResult
        Output of :meth:`NormalizationSearchEngine.diagnose`.
    covariates : CovariateTable
        Sample covariates.
    output_file : str, optional
        Save the figure here; the figure is returned open otherwise.
    """
    factors = diagnostics.factors
    frame = covariates.frame.loc[factors.index, [BATCH, GEL]]
    long = factors.join(frame).melt(
        id_vars=[BATCH, GEL], var_name="factor", value_name="value"
    )

    n = factors.shape[1]
    fig, axes = plt.subplots(1, max(n, 1), figsize=(3.5 * max(n, 1), 4), squeeze=False)
    for ax, factor in zip(axes[0], factors.columns):
        sns.boxplot(data=long[long["factor"] == factor], x=BATCH, y="value", hue=GEL, ax=ax)
        position = factors.columns.get_loc(factor) + 1
        row = diagnostics.association.loc[position]
        ax.set_title(
            f"{factor}\nbatch p={row['batch_pvalue']:.2g}, gel p={row['gel_pvalue']:.2g}"
        )
    fig.suptitle(f"Unwanted-variation factors (useful k = {diagnostics.useful_k})")
    plt.tight_layout()

    if output_file is not None:
        plt.savefig(output_file, bbox_inches="tight")
        plt.close(fig)
    return fig


def plot_pca(
    matrix: FeatureMatrix,
    covariates: CovariateTable,
    output_file: Optional[str] = None,
    hue_col: str = BATCH,
    palette: str = "Set2",
    title: str = "PCA plot",
    figsize: tuple = (8, 6),
):
    """
    PC1/PC2 scatter of a log snapshot coloured by a covariate.

    Parameters
    ----------
    matrix : FeatureMatrix
        Snapshot to plot (log-transformed on the fly if raw).
    covariates : CovariateTable
        Sample covariates.
    output_file : str, optional
        Save the figure here; the figure is returned open otherwise.
    hue_col : str, optional
        Covariate column for colour grouping (default: "batch").
    """
    log_df = matrix.log_transform().values
    scores = pca_scores(log_df, n_pcs=2)
    df_pca = pd.DataFrame(
        scores, index=log_df.columns, columns=[f"PC{i}" for i in range(1, scores.shape[1] + 1)]
    )
    df_pca[hue_col] = covariates.frame.loc[df_pca.index, hue_col].astype(str)

    fig, ax = plt.subplots(figsize=figsize)
    sns.scatterplot(x="PC1", y="PC2", hue=hue_col, data=df_pca, palette=palette, ax=ax)
    ax.set_title(title)
    ax.legend(loc="center left", bbox_to_anchor=(1.05, 0.5))
    plt.tight_layout()

    if output_file is not None:
        plt.savefig(output_file, bbox_inches="tight")
        plt.close(fig)
    return fig


def write_diagnostic_report(result, covariates: CovariateTable, output_file: str) -> None:
    """
    Multi-page PDF: factor diagnostics, then PCA before and after normalization.

    Parameters
    ----------
    result : PipelineResult
        Pipeline output.
    covariates : CovariateTable
        Sample covariates.
    output_file : str
        Path of the PDF.
    """
    with PdfPages(output_file) as pdf:
        if result.search is not None and result.search.diagnostics is not None:
            fig = plot_factor_diagnostics(result.search.diagnostics, covariates)
            pdf.savefig(fig)
            plt.close(fig)
        for stage, title in (
            (STAGE_RELIABILITY, "Before normalization"),
            (STAGE_NORMALIZATION, "After normalization"),
        ):
            snapshot = result.snapshots.get(stage)
            if snapshot is None or snapshot.shape[0] < 2:
                continue
            fig = plot_pca(snapshot, covariates, title=f"{title} ({snapshot.shape[0]} features)")
            pdf.savefig(fig)
            plt.close(fig)
    logger.info("Wrote diagnostic report to %s", output_file)
