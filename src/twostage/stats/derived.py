"""
Derived group-level summaries from aggregated coefficient tables.

The fixed-effects fit yields one coefficient per run (``runR1``, ``runR2``,
...) for every protein. Those rows are selected by a term pattern, the known
prefix is stripped to recover the run label, and the estimate becomes the
protein's abundance summary for that run. Run-level annotation (subject,
condition, ...) is then attached with a left join; runs without annotation
are kept and flagged.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
import pandas as pd

from twostage.errors import JoinMismatch
from twostage.stats.labels import label_series

logger = logging.getLogger(__name__)

JOIN_FLAG_COLUMN = "join_mismatch"


def derive_summaries(
    coefficients: pd.DataFrame,
    term_pattern: str,
    strip_prefix: str,
    entity_column: str = "entity",
    group_column: str = "run",
    value_column: str = "estimate",
) -> pd.DataFrame:
    """
    Select coefficient rows by term pattern and turn them into group summaries.

    Args:
        coefficients: Aggregated coefficient-level table with ``term`` and
            ``estimate`` columns plus the entity column.
        term_pattern: Literal substring a term must contain (e.g. "run").
        strip_prefix: Prefix removed from matching terms to give the group
            label (e.g. "run" turns "runR1" into "R1").
        entity_column: Entity key column.
        group_column: Name of the group label column in the output.
        value_column: Name of the scalar value column in the output.

    Returns:
        DataFrame with columns [entity_column, group_column, value_column],
        in the input row order.

    Example:
        >>> derive_summaries(coefs, term_pattern="run", strip_prefix="run")
          entity run  estimate
        0     P1  R1  3.292481
        1     P1  R2  4.292481
    """
    for col in (entity_column, "term", "estimate"):
        if col not in coefficients.columns:
            raise KeyError(f"Column '{col}' not found in coefficient table")

    terms = coefficients["term"].astype(str)
    selected = coefficients.loc[terms.str.contains(term_pattern, regex=False)]

    labels = selected["term"].astype(str)
    if strip_prefix:
        labels = labels.str.removeprefix(strip_prefix)

    derived = pd.DataFrame({
        entity_column: selected[entity_column].to_numpy(),
        group_column: labels.to_numpy(),
        value_column: selected["estimate"].to_numpy(dtype=np.float64),
    })

    logger.info(
        "Derived %d group summaries for %d entities from terms matching '%s'",
        len(derived), derived[entity_column].nunique(), term_pattern,
    )
    return derived


def join_covariates(
    derived: pd.DataFrame,
    covariates: pd.DataFrame,
    group_column: str = "run",
    covariate_key: str | None = None,
) -> pd.DataFrame:
    """
    Left-join run-level covariates onto derived summaries.

    Every derived row survives. Rows whose group label has no covariate row
    keep missing covariate fields, get ``join_mismatch=True`` and trigger a
    :class:`~twostage.errors.JoinMismatch` warning.

    Keys on both sides are compared in canonical string form
    (:func:`~twostage.stats.labels.as_label`), so an integer run column in the
    observations matches an annotation key read as ``1.0``. Covariate rows
    with a missing key can never match and are dropped.

    Args:
        derived: Output of :func:`derive_summaries`.
        covariates: External annotation table, one row per group label.
        group_column: Group label column in ``derived``.
        covariate_key: Key column in ``covariates``; defaults to ``group_column``.

    Returns:
        Joined DataFrame with a boolean ``join_mismatch`` column.

    Raises:
        pandas.errors.MergeError: If ``covariates`` has duplicate keys
            (the join must be many-to-one).
    """
    covariate_key = covariate_key or group_column
    if covariate_key not in covariates.columns:
        raise KeyError(f"Covariate key '{covariate_key}' not found in covariate table")

    left = derived.copy()
    left[group_column] = label_series(left[group_column])

    right = covariates.copy()
    right[covariate_key] = label_series(right[covariate_key])
    unkeyed = right[covariate_key].isna()
    if unkeyed.any():
        logger.warning(
            "Dropping %d covariate rows with a missing '%s'", int(unkeyed.sum()), covariate_key
        )
        right = right.loc[~unkeyed]
    if covariate_key != group_column:
        right = right.rename(columns={covariate_key: group_column})

    clashing = [c for c in right.columns if c != group_column and c in derived.columns]
    if clashing:
        raise ValueError(f"Covariate columns clash with derived summary columns: {clashing}")

    joined = left.merge(
        right,
        on=group_column,
        how="left",
        validate="many_to_one",
        indicator=True,
        sort=False,
    )
    joined[JOIN_FLAG_COLUMN] = joined.pop("_merge").eq("left_only").to_numpy()

    n_unmatched = int(joined[JOIN_FLAG_COLUMN].sum())
    if n_unmatched:
        missing_labels = sorted(joined.loc[joined[JOIN_FLAG_COLUMN], group_column].unique())
        warnings.warn(
            f"{n_unmatched} derived summaries have no covariate row for "
            f"{group_column} {missing_labels}; covariate fields left missing",
            JoinMismatch,
            stacklevel=2,
        )

    return joined
