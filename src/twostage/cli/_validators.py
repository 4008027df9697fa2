"""argparse ``type=`` callables for the analyze options.

Out-of-range values are rejected at parse time, so ``--fdr 2`` or
``--min-per-group 0`` fail with a usage message instead of a traceback from
deep inside the pipeline.
"""

from __future__ import annotations

import argparse


def _group_size(value: str) -> int:
    """Minimum number of runs per condition (>= 1)."""
    size = int(value)
    if size < 1:
        raise argparse.ArgumentTypeError(f"group size must be at least 1, got {value}")
    return size


def _n_jobs(value: str) -> int:
    """joblib worker count: a positive integer, or -1 for all cores."""
    jobs = int(value)
    if jobs == 0 or jobs < -1:
        raise argparse.ArgumentTypeError(f"{value} is not a valid job count (use >= 1 or -1)")
    return jobs


def _unit_interval(value: str) -> float:
    """Thresholds and confidence levels, strictly between 0 and 1."""
    level = float(value)
    if not 0 < level < 1:
        raise argparse.ArgumentTypeError(f"{value} must lie strictly between 0 and 1")
    return level
