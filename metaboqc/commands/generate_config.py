"""
CLI command for writing an example pipeline configuration.
"""

import click

from metaboqc.preprocessing.filters.io import generate_example_config


@click.command("generate-config", short_help="Write an annotated example configuration.")
@click.option(
    "-o",
    "--output",
    help="Output file (.yaml, .yml or .json)",
    required=True,
    type=click.Path(),
)
@click.option(
    "--format",
    "config_format",
    help="Output format (inferred from the extension when omitted)",
    type=click.Choice(["yaml", "json"], case_sensitive=False),
    default=None,
)
def generate_config(output: str, config_format: str) -> None:
    """
    Write a configuration file with every option at its default value.

    \b
    EXAMPLES:
      metaboqc generate-config -o pipeline.yaml
      metaboqc generate-config -o pipeline.json
    """
    generate_example_config(output, format=config_format)
    click.echo(f"Example configuration saved to: {output}")
