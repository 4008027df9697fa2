"""
Tidy extraction of fitted models and test results.

Every result handle produced by the pipeline can be turned into one of three
canonical flat tables:

* ``coefficient`` -- one row per estimated term
* ``observation`` -- one row per observation used in the fit, with fitted
  value and residual
* ``model`` -- exactly one row summarizing the whole fit or test

All rows of one extraction share the same columns. Extracting from a failed
fit raises :class:`~twostage.errors.ModelFitFailed`; it never yields an
empty or partial table.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from twostage.errors import ModelFitFailed
from twostage.stats.fixed_effects import FittedModel
from twostage.stats.second_stage import TwoSampleTest


class TidyKind(Enum):
    """Canonical extraction shapes."""

    COEFFICIENT = "coefficient"
    OBSERVATION = "observation"
    MODEL = "model"


COEFFICIENT_COLUMNS = ["term", "estimate", "std_error", "statistic", "p_value"]
MODEL_COLUMNS = [
    "r_squared", "adj_r_squared", "sigma", "statistic", "p_value", "df",
    "df_residual", "log_likelihood", "aic", "bic", "deviance", "nobs", "saturated",
]
TEST_COLUMNS = [
    "estimate", "estimate1", "estimate2", "statistic", "p_value", "df",
    "conf_low", "conf_high", "n1", "n2", "method", "alternative",
]


def extract(
    model: FittedModel | TwoSampleTest,
    kind: TidyKind | str = TidyKind.COEFFICIENT,
    conf_int: bool = False,
    conf_level: float = 0.95,
) -> pd.DataFrame:
    """
    Extract a canonical tidy table from a result handle.

    Args:
        model: A FittedModel from the fitter or a TwoSampleTest from the
            second stage.
        kind: Extraction shape ("coefficient", "observation", "model").
        conf_int: For coefficient extraction of a FittedModel, add
            ``conf_low``/``conf_high`` columns.
        conf_level: Confidence level of those bounds.

    Returns:
        DataFrame in the requested shape.

    Raises:
        ModelFitFailed: If ``model`` is a failed fit.
        TypeError: If the handle does not support ``kind``.
    """
    if isinstance(kind, str):
        kind = TidyKind(kind)

    if isinstance(model, TwoSampleTest):
        if kind == TidyKind.OBSERVATION:
            raise TypeError("Observation-level extraction is not defined for a two-sample test")
        # A test has a single summary row; coefficient and model views agree
        return htest_table(model)

    if not isinstance(model, FittedModel):
        raise TypeError(f"Cannot extract from {type(model).__name__}")

    if not model.success:
        raise ModelFitFailed(
            model.entity,
            f"cannot extract from failed fit ({type(model.error).__name__}: {model.error.message})",
        )

    if kind == TidyKind.COEFFICIENT:
        return coefficient_table(model, conf_int=conf_int, conf_level=conf_level)
    elif kind == TidyKind.OBSERVATION:
        return observation_table(model)
    else:
        return model_table(model)


def coefficient_table(
    model: FittedModel,
    conf_int: bool = False,
    conf_level: float = 0.95,
) -> pd.DataFrame:
    """One row per term, in fitter order (not re-sorted)."""
    estimates = model.estimates
    se = model.std_errors
    df = model.df_residual

    with np.errstate(invalid='ignore', divide='ignore'):
        statistic = np.where(se > 0, estimates / se, np.nan)
        if df > 0:
            p_value = 2 * scipy_stats.t.sf(np.abs(statistic), df)
        else:
            p_value = np.full(len(estimates), np.nan)

    table = pd.DataFrame({
        'term': list(model.terms),
        'estimate': estimates,
        'std_error': se,
        'statistic': statistic,
        'p_value': p_value,
    })

    if conf_int:
        t_crit = scipy_stats.t.ppf(0.5 + conf_level / 2, df) if df > 0 else np.nan
        table['conf_low'] = estimates - t_crit * se
        table['conf_high'] = estimates + t_crit * se

    return table


def observation_table(model: FittedModel) -> pd.DataFrame:
    """Rows used in the fit, augmented with fitted values and residuals."""
    table = model.data.copy()
    table['fitted'] = model.fitted
    table['residual'] = model.residuals
    return table


def model_table(model: FittedModel) -> pd.DataFrame:
    """Single-row fit summary."""
    row = {col: model.statistics.get(col, np.nan) for col in MODEL_COLUMNS if col != 'saturated'}
    row['nobs'] = int(model.nobs)
    row['df_residual'] = int(model.df_residual)
    row['saturated'] = model.saturated
    return pd.DataFrame([row], columns=MODEL_COLUMNS)


def htest_table(test: TwoSampleTest) -> pd.DataFrame:
    """Single-row two-sample test summary."""
    return pd.DataFrame([test.to_dict()], columns=TEST_COLUMNS)

