"""
CLI command for the complete filtering and normalization pipeline.
"""

import logging
from pathlib import Path

import click

from metaboqc.core.exceptions import MetaboQCError
from metaboqc.io.tables import (
    OUTPUT_FORMATS,
    load_covariates,
    load_feature_matrix,
    write_pipeline_outputs,
)
from metaboqc.model.enums import EmptyPartitionPolicy, InsufficientNeighborsPolicy
from metaboqc.model.filters import PipelineConfig
from metaboqc.pipeline.profiling import ProfilingPipeline
from metaboqc.preprocessing.filters.io import load_pipeline_config

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def read_feature_list(path: str) -> list:
    """Feature ids from a file with one id per line (blank lines ignored)."""
    with open(path, "r") as f:
        return [line.strip() for line in f if line.strip()]


@click.command("run", short_help="Filter, impute and normalize a feature matrix.")
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
    help="Sample covariate table (sample_id, batch, role, condition, gel, gender, age, run_order)",
    required=True,
    type=click.Path(exists=True),
)
@click.option(
    "-o",
    "--output-dir",
    "output_dir",
    help="Directory for the output tables",
    required=True,
    type=click.Path(file_okay=False),
)
@click.option(
    "--config",
    "config_file",
    help="Pipeline configuration file (YAML or JSON)",
    type=click.Path(exists=True),
    default=None,
)
@click.option(
    "--format",
    "output_format",
    help="Format of the output tables",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="csv",
    show_default=True,
)
# Stage overrides
@click.option("--n-bins", "n_bins", type=int, default=None, help="Abundance bins of the blank filter")
@click.option(
    "--empty-partition-policy",
    "empty_partition_policy",
    type=click.Choice([p.value for p in EmptyPartitionPolicy], case_sensitive=False),
    default=None,
    help="Cutoff for partitions without negative differences",
)
@click.option(
    "--max-missing-fraction",
    "max_missing_fraction",
    type=float,
    default=None,
    help="Largest tolerated missing fraction per batch",
)
@click.option("--n-neighbors", "n_neighbors", type=int, default=None, help="Imputation donors per cell")
@click.option(
    "--on-insufficient",
    "on_insufficient",
    type=click.Choice([p.value for p in InsufficientNeighborsPolicy], case_sensitive=False),
    default=None,
    help="Features lacking imputation donors: raise or exclude",
)
@click.option("--icc-threshold", "icc_threshold", type=float, default=None, help="Reliability ICC threshold")
@click.option("--n-jobs", "n_jobs", type=int, default=None, help="Worker pool width for reliability fits")
@click.option(
    "--negative-controls",
    "negative_controls_file",
    help="File with negative-control feature ids (one per line)",
    type=click.Path(exists=True),
    default=None,
)
@click.option(
    "--n-negative-controls",
    "n_negative_controls",
    type=int,
    default=None,
    help="Number of negative controls chosen from the data",
)
@click.option("--no-screening", "no_screening", is_flag=True, help="Evaluate every candidate")
@click.option(
    "--skip-normalization",
    "skip_normalization",
    is_flag=True,
    help="Stop after the reliability filter",
)
@click.option(
    "--report",
    "report_file",
    help="Write a diagnostic PDF here (needs matplotlib and seaborn)",
    type=click.Path(),
    default=None,
)
def run(
    matrix: str,
    covariates: str,
    output_dir: str,
    config_file: str,
    output_format: str,
    n_bins: int,
    empty_partition_policy: str,
    max_missing_fraction: float,
    n_neighbors: int,
    on_insufficient: str,
    icc_threshold: float,
    n_jobs: int,
    negative_controls_file: str,
    n_negative_controls: int,
    no_screening: bool,
    skip_normalization: bool,
    report_file: str,
) -> None:
    """
    Run blank-contrast, missingness, imputation, reliability and normalization.

    \b
    OUTPUTS (in --output-dir):
      retained_features   - feature ids kept by each stage
      exclusions          - feature, stage, reason and batch of every exclusion
      imputed_matrix      - log2 biological + QC matrix after imputation
      normalized_matrix   - matrix of the selected normalization
      candidate_ranking   - metrics and ranks of every normalization candidate
      diagnostic_factors  - association of unwanted factors with batch and gel

    \b
    EXAMPLES:
      metaboqc run -m features.csv -c samples.csv -o results/
      metaboqc run -m features.parquet -c samples.tsv -o results/ --config pipeline.yaml
      metaboqc run -m features.csv -c samples.csv -o results/ --icc-threshold 0.3 --no-screening
    """
    config = load_pipeline_config(config_file) if config_file else PipelineConfig()
    config.apply_overrides(
        {
            "n_bins": n_bins,
            "empty_partition_policy": empty_partition_policy,
            "max_missing_fraction": max_missing_fraction,
            "n_neighbors": n_neighbors,
            "on_insufficient": on_insufficient,
            "icc_threshold": icc_threshold,
            "n_jobs": n_jobs,
            "n_negative_controls": n_negative_controls,
            "screening": False if no_screening else None,
        }
    )
    if skip_normalization:
        config.normalization.enabled = False
    logger.info("Using pipeline configuration '%s'", config.name)

    negative_controls = read_feature_list(negative_controls_file) if negative_controls_file else None

    try:
        feature_matrix = load_feature_matrix(matrix)
        covariate_table = load_covariates(covariates)
        result = ProfilingPipeline(config).run(feature_matrix, covariate_table, negative_controls)
    except MetaboQCError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")

    written = write_pipeline_outputs(result, output_dir, fmt=output_format.lower())

    if report_file:
        from metaboqc.plotting import write_diagnostic_report

        write_diagnostic_report(result, covariate_table, report_file)

    summary = result.summary()
    for stage, n_features in summary["stages"].items():
        click.echo(f"{stage}: {n_features} features")
    if summary["selected_normalization"]:
        click.echo(f"Selected normalization: {summary['selected_normalization']}")
    click.echo(f"Outputs written to: {Path(output_dir)} ({len(written)} files)")
