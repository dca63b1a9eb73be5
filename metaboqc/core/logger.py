"""
Logging helpers for the metaboqc package.

All modules obtain their logger through :func:`get_logger` so that records are
namespaced under ``metaboqc`` and can be configured in one place.
"""

import functools
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Union

DEFAULT_FORMAT = "%(asctime)s [%(funcName)s] - %(message)s"
ROOT_LOGGER_NAME = "metaboqc"


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger inside the ``metaboqc`` namespace.

    Parameters
    ----------
    name : str
        Logger name. Names outside the package namespace are prefixed.

    Returns
    -------
    logging.Logger
        The namespaced logger.
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Configure the package logger.

    Parameters
    ----------
    level : int or str, optional
        Logging level, e.g. ``logging.DEBUG`` or ``"info"``.
    log_file : str or Path, optional
        Also write records to this file.
    fmt : str, optional
        Record format.

    Returns
    -------
    logging.Logger
        The configured package logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    if log_file is not None:
        log_file = Path(log_file)
        if not log_file.parent.exists():
            log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)

    return logger


def log_execution_time(logger: Optional[logging.Logger] = None, level: int = logging.INFO):
    """
    Decorator that logs how long the wrapped call took.

    Parameters
    ----------
    logger : logging.Logger, optional
        Logger to write to. Defaults to the wrapped function's module logger.
    level : int, optional
        Level of the timing record.
    """

    def decorator(fn: Callable) -> Callable:
        log = logger or get_logger(fn.__module__)

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.time()
            result = fn(*args, **kwargs)
            log.log(level, "%s completed in %.2f seconds", fn.__qualname__, time.time() - start)
            return result

        return wrapper

    return decorator
