"""
CLI entry point for the metaboqc package.
"""

import logging
from pathlib import Path

import click

from metaboqc.core.logger import configure_logging
from metaboqc.commands.run import run
from metaboqc.commands.diagnose import diagnose
from metaboqc.commands.generate_config import generate_config

import metaboqc

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

LOG_LEVELS = ["debug", "info", "warn"]
LOG_LEVELS_TO_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARN,
}
LOG_FORMAT = "%(asctime)s [%(funcName)s] - %(message)s"


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(
    version=metaboqc.__version__,
    package_name="metaboqc",
    message="%(package)s %(version)s",
)
@click.option(
    "-v",
    "--log-level",
    type=click.Choice(LOG_LEVELS, False),
    default="info",
    help="Set the logging level.",
)
@click.option(
    "--log-file",
    type=click.Path(writable=True, path_type=Path),
    required=False,
    help="Write log to this file.",
)
def cli(log_level: str, log_file: Path):
    """
    metaboqc - Adaptive filtering and normalization of untargeted profiling data.

    Remove blank-like, sparse and unreliable features from a feature x sample
    intensity matrix, impute the remaining gaps and select a normalization
    recipe by scoring candidates on the data itself.
    """
    level = LOG_LEVELS_TO_LEVELS[log_level.lower()]
    logging.basicConfig(format=LOG_FORMAT, level=level)
    logging.captureWarnings(True)
    configure_logging(level, log_file=log_file, fmt=LOG_FORMAT)


cli.add_command(run)
cli.add_command(diagnose)
cli.add_command(generate_config)


def main():
    """
    Main function to run the CLI.
    """
    try:
        cli()
    except SystemExit as e:
        if e.code != 0:
            raise


if __name__ == "__main__":
    main()
