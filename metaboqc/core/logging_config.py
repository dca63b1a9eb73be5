"""
Default logging setup applied when the package is imported.
"""

import logging

from metaboqc.core.logger import ROOT_LOGGER_NAME

_INITIALIZED = False


def initialize_logging() -> None:
    """
    Install a ``NullHandler`` on the package logger.

    The package stays silent until an application configures logging, e.g.
    the CLI through ``logging.basicConfig`` or
    :func:`metaboqc.core.logger.configure_logging`.
    """
    global _INITIALIZED
    if _INITIALIZED:
        return
    logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())
    _INITIALIZED = True
