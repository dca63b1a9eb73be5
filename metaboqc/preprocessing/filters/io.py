"""
Reading and writing pipeline configurations as YAML or JSON.
"""

import json
from pathlib import Path
from typing import Optional, Union

import yaml

from metaboqc.core.logger import get_logger
from metaboqc.model.filters import PipelineConfig


logger = get_logger("metaboqc.preprocessing.filters.io")

YAML_SUFFIXES = (".yaml", ".yml")

_SECTION_HEADERS = {
    "blank": "Blank-contrast filter (per batch, log2(x + 1) scale)",
    "missingness": "Missing-value proportion filter (biological samples only)",
    "imputation": "Nearest-neighbor imputation (biological + QC samples)",
    "reliability": "ICC reliability filter",
    "normalization": "Normalization recipe search",
}

_OPTION_NOTES = {
    ("blank", "n_bins"): "abundance quantile bins for features seen in every blank",
    ("blank", "empty_partition_policy"): "partition without negative differences: zero or pooled",
    ("missingness", "max_missing_fraction"): "inclusive, must hold in every batch",
    ("imputation", "n_neighbors"): "donors averaged per missing cell",
    ("imputation", "n_jobs"): "parallel rows (1 = sequential)",
    ("imputation", "on_insufficient"): "fewer than n_neighbors donors: raise or exclude",
    ("reliability", "icc_threshold"): "ICC must exceed this in every batch",
    ("reliability", "n_jobs"): "worker pool width for model fits",
    ("normalization", "scaling_methods"): "identity, upper_quartile, median_ratio",
    ("normalization", "k_ruv"): "unwanted-variation factors",
    ("normalization", "adjust_batch"): "regress out the batch x gel grouping",
    ("normalization", "k_qc"): "QC drift factors",
    ("normalization", "n_negative_controls"): "null = negative_control_fraction of the features",
    ("normalization", "screening"): "prune candidates with the diagnostic pass",
    ("normalization", "n_pcs"): "leading PCs used by the scores",
}


def _resolve_format(path: Path, format: Optional[str]) -> str:
    if format is None:
        return "json" if path.suffix.lower() == ".json" else "yaml"
    format = format.lower()
    if format not in ("yaml", "json"):
        raise ValueError(f"Unsupported config format: {format}. Use 'yaml' or 'json'")
    return format


def load_pipeline_config(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Load a pipeline configuration.

    Sections left out of the file keep their defaults.

    Parameters
    ----------
    config_path : str or Path
        ``.yaml``, ``.yml`` or ``.json`` file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the suffix is not supported or the file holds unknown options.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    with open(config_path, "r") as f:
        if suffix in YAML_SUFFIXES:
            data = yaml.safe_load(f)
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml or .json")

    config = PipelineConfig.from_dict(data)
    logger.info("Loaded pipeline configuration '%s' from %s", config.name, config_path)
    return config


def save_pipeline_config(
    config: PipelineConfig,
    output_path: Union[str, Path],
    format: Optional[str] = None,
) -> None:
    """Write ``config``; the format follows the suffix unless ``format`` is given."""
    output_path = Path(output_path)
    data = config.to_dict()
    with open(output_path, "w") as f:
        if _resolve_format(output_path, format) == "yaml":
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(data, f, indent=2)
    logger.info("Saved pipeline configuration to %s", output_path)


def _annotated_yaml(config: PipelineConfig) -> str:
    # JSON scalars and lists are valid YAML flow values
    data = config.to_dict()
    lines = [
        "# metaboqc pipeline configuration",
        "# Stages run in order: blank -> missingness -> imputation -> reliability -> normalization",
        "",
        f"name: {json.dumps(data['name'])}",
        f"stop_on_empty: {json.dumps(data['stop_on_empty'])}",
    ]
    for section, header in _SECTION_HEADERS.items():
        lines += ["", f"# {header}", f"{section}:"]
        for key, value in data[section].items():
            line = f"  {key}: {json.dumps(value)}"
            note = _OPTION_NOTES.get((section, key))
            if note:
                line = f"{line:<40} # {note}"
            lines.append(line)
    return "\n".join(lines) + "\n"


def generate_example_config(
    output_path: Union[str, Path],
    format: Optional[str] = None,
) -> None:
    """
    Write the default configuration as a starting point.

    The YAML flavour carries a comment on every option that needs one; JSON
    has no comments and is written plainly.

    Parameters
    ----------
    output_path : str or Path
        Output file.
    format : str, optional
        'yaml' or 'json'; inferred from the suffix when omitted.
    """
    output_path = Path(output_path)
    config = PipelineConfig(name="example_config")
    if _resolve_format(output_path, format) == "yaml":
        with open(output_path, "w") as f:
            f.write(_annotated_yaml(config))
    else:
        save_pipeline_config(config, output_path, format="json")
    logger.info("Generated example pipeline configuration at %s", output_path)
