"""
Second-stage per-entity two-sample comparison.

Takes the derived group-level summaries (one scalar per entity per run),
re-partitions them by entity and compares the scalar value between the two
levels of a comparison variable (e.g. disease status) with a t-test.

Failures are isolated: an entity that lacks one of the two levels gets an
:class:`~twostage.errors.InsufficientGroups` failure record and the rest of
the batch is unaffected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from twostage.errors import EntityFailure, InsufficientGroups
from twostage.stats.labels import as_label, label_series
from twostage.stats.partition import iter_partitions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwoSampleTest:
    """Result handle of a two-sample t-test for one entity.

    Attributes:
        entity: Entity key
        levels: (level1, level2); the estimate is mean(level1) - mean(level2)
        estimate: Difference in means
        estimate1: Mean of level1
        estimate2: Mean of level2
        statistic: t-statistic
        p_value: Two-sided (or one-sided, per ``alternative``) p-value
        df: Degrees of freedom (Welch-Satterthwaite when unequal variances)
        conf_low: Lower confidence bound for ``estimate``
        conf_high: Upper confidence bound for ``estimate``
        confidence_level: Confidence level of the interval
        n1: Observations in level1
        n2: Observations in level2
        method: Test name
        alternative: "two-sided", "less" or "greater"
    """

    entity: str | None
    levels: tuple[str, str]
    estimate: float
    estimate1: float
    estimate2: float
    statistic: float
    p_value: float
    df: float
    conf_low: float
    conf_high: float
    confidence_level: float
    n1: int
    n2: int
    method: str
    alternative: str

    @property
    def success(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {
            'estimate': self.estimate,
            'estimate1': self.estimate1,
            'estimate2': self.estimate2,
            'statistic': self.statistic,
            'p_value': self.p_value,
            'df': self.df,
            'conf_low': self.conf_low,
            'conf_high': self.conf_high,
            'n1': self.n1,
            'n2': self.n2,
            'method': self.method,
            'alternative': self.alternative,
        }


def resolve_levels(
    derived: pd.DataFrame,
    group_variable: str,
    levels: Sequence[str] | None = None,
) -> tuple[str, str]:
    """
    Determine the two comparison levels.

    Args:
        derived: Derived summaries joined with covariates.
        group_variable: Comparison column (e.g. "condition").
        levels: Explicit (level1, level2). If None, the column must hold
            exactly two distinct non-missing values, taken in first-appearance
            order.

    Returns:
        (level1, level2) in canonical string form (see :mod:`twostage.stats.labels`).

    Raises:
        KeyError: If ``group_variable`` is not a column.
        ValueError: If the levels cannot be resolved to exactly two.
    """
    if group_variable not in derived.columns:
        raise KeyError(f"Comparison column '{group_variable}' not found in derived summaries")

    if levels is not None:
        levels = tuple(as_label(level) for level in levels)
        if len(levels) != 2 or levels[0] == levels[1]:
            raise ValueError(f"Need exactly two distinct comparison levels, got {levels}")
        return levels

    observed = list(pd.unique(label_series(derived[group_variable]).dropna()))
    if len(observed) != 2:
        raise ValueError(
            f"Comparison column '{group_variable}' must have exactly 2 levels "
            f"when none are given, found {len(observed)}: {observed}"
        )
    return observed[0], observed[1]


def two_sample_test(
    partition: pd.DataFrame,
    group_variable: str,
    levels: tuple[str, str],
    value_column: str = "estimate",
    equal_var: bool = False,
    confidence_level: float = 0.95,
    alternative: str = "two-sided",
    min_per_group: int = 2,
    entity: str | None = None,
) -> TwoSampleTest:
    """
    Compare ``value_column`` between the two levels of ``group_variable``.

    Rows with a missing comparison label or a non-finite value are ignored.
    Labels are compared in canonical string form, so a condition coded 0/1
    matches levels given as "0" and "1".

    Args:
        partition: Derived summaries of one entity.
        group_variable: Comparison column.
        levels: (level1, level2); estimate is level1 minus level2.
        value_column: Scalar summary column.
        equal_var: Pooled-variance Student test if True, Welch otherwise.
        confidence_level: Confidence level for the interval.
        alternative: "two-sided", "less" or "greater".
        min_per_group: Minimum finite values required in each level.
        entity: Entity key for the result and failures.

    Returns:
        TwoSampleTest.

    Raises:
        InsufficientGroups: If either level has fewer than ``min_per_group``
            finite values.
    """
    values = pd.to_numeric(partition[value_column], errors='coerce').to_numpy(dtype=np.float64)
    labels = label_series(partition[group_variable]).to_numpy()
    levels = (as_label(levels[0]), as_label(levels[1]))
    finite = np.isfinite(values)

    x = values[finite & (labels == levels[0])]
    y = values[finite & (labels == levels[1])]

    absent = [lvl for lvl, arr in zip(levels, (x, y)) if len(arr) == 0]
    if absent:
        raise InsufficientGroups(
            entity, f"no observations for level(s) {absent} of '{group_variable}'"
        )
    short = [f"{lvl} (n={len(arr)})" for lvl, arr in zip(levels, (x, y)) if len(arr) < min_per_group]
    if short:
        raise InsufficientGroups(
            entity,
            f"fewer than {min_per_group} observations for level(s) {', '.join(short)}",
        )

    with np.errstate(invalid='ignore', divide='ignore'):
        res = scipy_stats.ttest_ind(x, y, equal_var=equal_var, alternative=alternative)
        ci = res.confidence_interval(confidence_level=confidence_level)

    mean1 = float(np.mean(x))
    mean2 = float(np.mean(y))
    method = "Two Sample t-test" if equal_var else "Welch Two Sample t-test"

    return TwoSampleTest(
        entity=entity,
        levels=(levels[0], levels[1]),
        estimate=mean1 - mean2,
        estimate1=mean1,
        estimate2=mean2,
        statistic=float(res.statistic),
        p_value=float(res.pvalue),
        df=float(res.df),
        conf_low=float(ci.low),
        conf_high=float(ci.high),
        confidence_level=confidence_level,
        n1=len(x),
        n2=len(y),
        method=method,
        alternative=alternative,
    )


def run_second_stage(
    derived: pd.DataFrame,
    entity_column: str,
    group_variable: str,
    value_column: str = "estimate",
    levels: Sequence[str] | None = None,
    equal_var: bool = False,
    confidence_level: float = 0.95,
    alternative: str = "two-sided",
    min_per_group: int = 2,
    expected_entities: Sequence[str] | None = None,
) -> tuple[dict[str, TwoSampleTest], list[EntityFailure]]:
    """
    Run the two-sample test for every entity in ``derived``.

    Args:
        derived: Derived summaries joined with covariates (long format).
        entity_column: Entity key column.
        group_variable: Comparison column.
        value_column: Scalar summary column.
        levels: Comparison levels; resolved from the data when None.
        equal_var: Pooled-variance test if True, Welch otherwise.
        confidence_level: Confidence level for intervals.
        alternative: Alternative hypothesis.
        min_per_group: Minimum finite values per level.
        expected_entities: Entities that should be tested. Any of them without
            derived rows is reported as InsufficientGroups instead of being
            dropped silently.

    Returns:
        Tuple of (tests keyed by entity, failure records).
    """
    tests: dict[str, TwoSampleTest] = {}
    failures: list[EntityFailure] = []
    seen: set = set()

    resolved = resolve_levels(derived, group_variable, levels) if not derived.empty else None

    for entity, rows in iter_partitions(derived, entity_column):
        seen.add(entity)
        try:
            tests[entity] = two_sample_test(
                rows,
                group_variable=group_variable,
                levels=resolved,
                value_column=value_column,
                equal_var=equal_var,
                confidence_level=confidence_level,
                alternative=alternative,
                min_per_group=min_per_group,
                entity=entity,
            )
        except InsufficientGroups as e:
            failures.append(EntityFailure.from_exception(entity, "second_stage", e))

    if expected_entities is not None:
        for entity in expected_entities:
            if entity not in seen:
                e = InsufficientGroups(entity, "no derived summaries matched the term pattern")
                failures.append(EntityFailure.from_exception(entity, "second_stage", e))

    if failures:
        logger.warning(
            "Second stage: %d entities excluded for insufficient groups", len(failures)
        )
    if resolved is not None:
        logger.info("Second stage: tested %d entities (%s vs %s)", len(tests), *resolved)

    return tests, failures
