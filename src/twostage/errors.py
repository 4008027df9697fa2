"""
Failure taxonomy for the two-stage pipeline.

Per-entity errors (``ModelUnderdetermined``, ``ModelFitFailed``,
``InsufficientGroups``, ``UndefinedTestStatistic``) are isolated: the
pipeline converts them into :class:`EntityFailure` rows and keeps going. ``CorrectionInputEmpty`` is
fatal to the correction stage. ``JoinMismatch`` is a warning category, not
an exception that is ever raised.

Warning convention:
    warnings.warn() -- user-facing (data quality, join mismatches)
    logger.warning() -- operator-facing (excluded entities, fallbacks)
"""

from __future__ import annotations

from dataclasses import dataclass

import pandas as pd


class TwoStageError(Exception):
    """Base class for all pipeline errors."""
    pass


class EntityError(TwoStageError):
    """An error confined to a single entity (protein)."""

    def __init__(self, entity: str | None, message: str):
        super().__init__(message)
        self.entity = entity
        self.message = message

    def __str__(self) -> str:
        if self.entity is None:
            return self.message
        return f"{self.entity}: {self.message}"


class ModelUnderdetermined(EntityError):
    """Partition has fewer independent observations than free parameters."""
    pass


class ModelFitFailed(EntityError):
    """Numerical failure while fitting, or extraction from a failed fit."""
    pass


class InsufficientGroups(EntityError):
    """Second-stage test is missing one of the two comparison levels."""
    pass


class UndefinedTestStatistic(EntityError):
    """Second-stage test ran but its p-value is undefined (e.g. zero variance)."""
    pass


class CorrectionInputEmpty(TwoStageError):
    """No successful test results are available for multiple-testing correction.

    Attributes:
        failures: Table of excluded entities (may be empty), so callers can
            still report why nothing was tested.
    """

    def __init__(self, message: str, failures: pd.DataFrame | None = None):
        super().__init__(message)
        self.failures = failures if failures is not None else empty_failure_table()


class JoinMismatch(UserWarning):
    """Derived summaries whose group label has no covariate row."""
    pass


FAILURE_COLUMNS = ["entity", "stage", "reason", "message"]


@dataclass(frozen=True)
class EntityFailure:
    """An entity excluded from downstream stages.

    Attributes:
        entity: Entity key (e.g. protein accession)
        stage: Pipeline stage that excluded it ("fit", "second_stage")
        reason: Failure class name (e.g. "ModelUnderdetermined")
        message: Human-readable detail
    """

    entity: str
    stage: str
    reason: str
    message: str

    @classmethod
    def from_exception(cls, entity: str, stage: str, exc: BaseException) -> EntityFailure:
        message = exc.message if isinstance(exc, EntityError) else str(exc)
        return cls(entity=entity, stage=stage, reason=type(exc).__name__, message=message)

    def to_dict(self) -> dict:
        return {
            'entity': self.entity,
            'stage': self.stage,
            'reason': self.reason,
            'message': self.message,
        }


def failures_to_dataframe(failures: list[EntityFailure]) -> pd.DataFrame:
    """Convert failure records to a table with a stable column set."""
    if not failures:
        return empty_failure_table()
    return pd.DataFrame([f.to_dict() for f in failures], columns=FAILURE_COLUMNS)


def empty_failure_table() -> pd.DataFrame:
    return pd.DataFrame({col: pd.Series(dtype=object) for col in FAILURE_COLUMNS})
