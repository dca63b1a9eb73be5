"""
CLI commands for the metaboqc package.

This module provides Click commands for the metaboqc CLI.
"""

from metaboqc.commands.run import run
from metaboqc.commands.diagnose import diagnose
from metaboqc.commands.generate_config import generate_config

__all__ = [
    "run",
    "diagnose",
    "generate_config",
]
