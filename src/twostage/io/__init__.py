"""
Input/output adapters for the two-stage pipeline.

Loading and writing are kept out of the statistical core; these helpers only
translate between delimited files and the table shapes the core consumes
and produces.
"""

from twostage.io.loaders import load_covariates, load_observations, log2_transform
from twostage.io.writers import write_report

__all__ = [
    "load_observations",
    "load_covariates",
    "log2_transform",
    "write_report",
]
