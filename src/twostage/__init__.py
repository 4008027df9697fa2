"""
twostage - Two-stage per-protein differential abundance

Fits a fixed-effects model per protein to obtain run-level abundance
summaries, compares two conditions per protein on those summaries and
controls the false discovery rate across proteins.
"""

__version__ = "0.1.0"

from twostage.config import AnalysisConfig
from twostage.errors import (
    CorrectionInputEmpty,
    InsufficientGroups,
    JoinMismatch,
    ModelFitFailed,
    ModelUnderdetermined,
    UndefinedTestStatistic,
)
from twostage.pipeline import TwoStageReport, run_two_stage_analysis

__all__ = [
    "AnalysisConfig",
    "TwoStageReport",
    "run_two_stage_analysis",
    "ModelUnderdetermined",
    "ModelFitFailed",
    "InsufficientGroups",
    "JoinMismatch",
    "UndefinedTestStatistic",
    "CorrectionInputEmpty",
]
