"""
CLI command for the unwanted-variation diagnostic pass.
"""

import logging

import click

from metaboqc.core.exceptions import MetaboQCError
from metaboqc.io.tables import load_covariates, load_feature_matrix, write_table
from metaboqc.model.filters import PipelineConfig
from metaboqc.normalization.search import NormalizationSearchEngine
from metaboqc.pipeline.profiling import ProfilingPipeline
from metaboqc.preprocessing.filters.io import load_pipeline_config

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@click.command("diagnose", short_help="Test unwanted-variation factors against batch and gel.")
@click.option(
    "-m",
    "--matrix",
    help="Intensity matrix (CSV/TSV/Parquet, first column = feature id)",
    required=True,
    type=click.Path(exists=True),
)
@click.option(
    "-c",
    "--covariates",
    help="Sample covariate table",
    required=True,
    type=click.Path(exists=True),
)
@click.option(
    "-o",
    "--output",
    help="Output table of factor associations (CSV/TSV/Parquet)",
    required=True,
    type=click.Path(),
)
@click.option(
    "--config",
    "config_file",
    help="Pipeline configuration file (YAML or JSON)",
    type=click.Path(exists=True),
    default=None,
)
@click.option(
    "--n-factors",
    "n_factors",
    type=int,
    default=None,
    help="Number of factors to estimate",
)
@click.option(
    "--plot",
    "plot_file",
    help="Save boxplots of the factors here (needs matplotlib and seaborn)",
    type=click.Path(),
    default=None,
)
def diagnose(
    matrix: str,
    covariates: str,
    output: str,
    config_file: str,
    n_factors: int,
    plot_file: str,
) -> None:
    """
    Estimate unwanted-variation factors on the reliability-filtered matrix and
    report their association with batch and gel contamination.

    \b
    EXAMPLES:
      metaboqc diagnose -m features.csv -c samples.csv -o factors.csv
      metaboqc diagnose -m features.csv -c samples.csv -o factors.csv --plot factors.pdf
    """
    config = load_pipeline_config(config_file) if config_file else PipelineConfig()
    config.normalization.enabled = False
    if n_factors is not None:
        config.normalization.n_diagnostic_factors = n_factors

    try:
        covariate_table = load_covariates(covariates)
        result = ProfilingPipeline(config).run(load_feature_matrix(matrix), covariate_table)
        engine = NormalizationSearchEngine(config.normalization)
        ctx = engine.prepare(result.final, covariate_table)
        diagnostics = engine.diagnose(ctx)
    except MetaboQCError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")

    logger.info("Diagnostic pass on %d features", result.final.shape[0])
    write_table(diagnostics.association.reset_index(), output)

    if plot_file:
        from metaboqc.plotting import plot_factor_diagnostics

        plot_factor_diagnostics(diagnostics, covariate_table, output_file=plot_file)

    click.echo(f"Useful unwanted-variation factors: {diagnostics.useful_k}")
    click.echo(f"Factor associations saved to: {output}")
