"""
metaboqc - Adaptive filtering and normalization of untargeted profiling data.

This package removes unreliable features and unwanted technical variation from
feature x sample intensity matrices (biological, blank and QC replicates in
processing batches) using thresholds derived from the data itself.
"""

__version__ = "0.1.0"

# Import logging configuration
from metaboqc.core.logging_config import initialize_logging

# Initialize logging with default settings
initialize_logging()

# Availability checks for optional dependencies
from metaboqc.plotting import is_plotting_available

__all__ = [
    "__version__",
    "is_plotting_available",
]
