"""
Reading inputs and writing pipeline outputs.

Intensity matrices are wide tables (first column = feature id, one column per
sample) in CSV, TSV or Parquet. Covariate tables hold one row per sample.
"""

from pathlib import Path
from typing import Dict, Union

import pandas as pd

from metaboqc.core.constants import FEATURE_ID, load_table
from metaboqc.core.logger import get_logger
from metaboqc.model.matrix import FeatureMatrix
from metaboqc.model.sample import CovariateTable

logger = get_logger("metaboqc.io")

OUTPUT_FORMATS = ["csv", "tsv", "parquet"]


def load_feature_matrix(path: Union[str, Path]) -> FeatureMatrix:
    """
    Load a raw intensity matrix.

    Empty cells are read as not detected (sentinel 0.0).

    Parameters
    ----------
    path : str or Path
        CSV, TSV or Parquet file whose first column holds feature ids.
    """
    df = load_table(str(path))
    feature_column = df.columns[0]
    df[feature_column] = df[feature_column].astype(str)
    matrix = FeatureMatrix.from_frame(df, feature_column=feature_column)
    logger.info("Loaded %r from %s", matrix, path)
    return matrix


def load_covariates(path: Union[str, Path]) -> CovariateTable:
    """Load and validate a covariate table (CSV or TSV)."""
    df = load_table(str(path))
    covariates = CovariateTable(df)
    logger.info("Loaded %r from %s", covariates, path)
    return covariates


def write_table(df: pd.DataFrame, path: Union[str, Path], index: bool = False) -> Path:
    """
    Write a table in the format implied by the file suffix.

    ``.parquet`` is written with pyarrow; ``.tsv``/``.txt`` tab-separated;
    anything else comma-separated.
    """
    path = Path(path)
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(path, index=index, engine="pyarrow")
    elif suffix in (".tsv", ".txt"):
        df.to_csv(path, sep="\t", index=index)
    else:
        df.to_csv(path, index=index)
    logger.debug("Wrote %s (%d rows)", path, len(df))
    return path


def matrix_frame(matrix: FeatureMatrix) -> pd.DataFrame:
    """Wide table of a snapshot with the feature id as first column."""
    df = matrix.values
    df.index.name = FEATURE_ID
    return df.reset_index()


def write_pipeline_outputs(
    result,
    output_dir: Union[str, Path],
    fmt: str = "csv",
) -> Dict[str, Path]:
    """
    Write the artefacts of a :class:`~metaboqc.pipeline.PipelineResult`.

    Files: ``retained_features``, ``exclusions``, ``imputed_matrix``,
    ``normalized_matrix``, ``candidate_ranking`` and ``diagnostic_factors``
    (the last four only when the stage ran).

    Parameters
    ----------
    result : PipelineResult
        Pipeline output.
    output_dir : str or Path
        Directory to write into (created if needed).
    fmt : str, optional
        One of ``csv``, ``tsv`` or ``parquet``; matrices and tables alike.

    Returns
    -------
    dict[str, Path]
        Written file per artefact name.
    """
    if fmt not in OUTPUT_FORMATS:
        raise ValueError(f"Unknown output format: {fmt}. Valid options: {OUTPUT_FORMATS}")
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    tables = {
        "retained_features": result.retained_table(),
        "exclusions": result.manifest.to_frame().astype({"feature_id": str}),
    }
    if result.imputed is not None:
        tables["imputed_matrix"] = matrix_frame(result.imputed)
    if result.normalized is not None:
        tables["normalized_matrix"] = matrix_frame(result.normalized)
    if result.search is not None:
        tables["candidate_ranking"] = result.search.ranking
        if result.search.diagnostics is not None:
            tables["diagnostic_factors"] = result.search.diagnostics.association.reset_index()

    written = {
        name: write_table(df, output_dir / f"{name}.{fmt}") for name, df in tables.items()
    }
    logger.info("Wrote %d output files to %s", len(written), output_dir)
    return written
