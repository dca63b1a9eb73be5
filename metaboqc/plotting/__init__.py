"""
Diagnostic plots for the normalization search.

matplotlib and seaborn are optional (``pip install metaboqc[plotting]``); the
plot functions are imported on first access so the rest of the package works
without them.
"""

import importlib.util
from typing import TYPE_CHECKING

_DIAGNOSTIC_PLOTS = ("plot_factor_diagnostics", "plot_pca", "write_diagnostic_report")


def is_plotting_available() -> bool:
    """True when both matplotlib and seaborn can be imported."""
    return all(importlib.util.find_spec(pkg) is not None for pkg in ("matplotlib", "seaborn"))


def __getattr__(name):
    if name in _DIAGNOSTIC_PLOTS:
        if not is_plotting_available():
            raise ImportError(
                f"{name} needs matplotlib and seaborn: pip install metaboqc[plotting]"
            )
        from metaboqc.plotting import diagnostics

        return getattr(diagnostics, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


if TYPE_CHECKING:
    from metaboqc.plotting.diagnostics import (
        plot_factor_diagnostics,
        plot_pca,
        write_diagnostic_report,
    )


__all__ = ["is_plotting_available", *_DIAGNOSTIC_PLOTS]
