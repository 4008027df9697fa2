"""
Per-entity fixed-effects linear model.

For one entity's partition the model is

    y ~ 0 + group + nuisance_1 + ... + nuisance_k

with no intercept. The grouping covariate (e.g. run or subject-visit) is
dummy coded with one column per level, so each group coefficient is
directly the group mean on the response (log2) scale. Nuisance covariates
(e.g. feature/peptide identity) are sum-to-zero coded: k-1 columns, with the
last level's effect recovered as the negative sum of the others. Every
level of every covariate therefore receives its own coefficient and no
reference level is dropped.

Rank policy: explicit failure. A partition with fewer usable rows than free
parameters, or whose design has aliased columns, produces a FittedModel
carrying :class:`~twostage.errors.ModelUnderdetermined` instead of silently
dropping terms. Saturated fits (zero residual df) succeed with NaN
standard errors and ``saturated=True``.

References:
    - Choi et al. (2014) MSstats: Bioinformatics 30(17):2524-2526
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from twostage.errors import EntityError, ModelFitFailed, ModelUnderdetermined

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FittedModel:
    """Result of fitting the fixed-effects model to one partition.

    Never mutated after creation; extractors in :mod:`twostage.stats.tidy`
    only read it.

    Attributes:
        entity: Entity key this model belongs to
        terms: Term names in fitter order (``<covariate><level>``)
        estimates: Coefficient per term, aligned with ``terms``
        covariance: Covariance matrix of ``estimates`` (terms x terms)
        df_residual: Residual degrees of freedom (n_obs - n_params)
        n_params: Number of free parameters actually estimated
        fitted: Fitted values for the rows used in the fit
        residuals: Residuals for the rows used in the fit
        data: The rows used in the fit (covariates and response)
        response: Name of the response column
        statistics: Model-level fit statistics (R², sigma, F, ...)
        error: Failure condition; None when the fit succeeded
    """

    entity: str | None
    terms: tuple[str, ...]
    estimates: NDArray[np.float64]
    covariance: NDArray[np.float64]
    df_residual: int
    n_params: int
    fitted: NDArray[np.float64]
    residuals: NDArray[np.float64]
    data: pd.DataFrame
    response: str
    statistics: dict[str, float] = field(default_factory=dict)
    error: EntityError | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def saturated(self) -> bool:
        """True when the fit has zero residual degrees of freedom."""
        return self.success and self.df_residual == 0

    @property
    def nobs(self) -> int:
        return len(self.data)

    @property
    def std_errors(self) -> NDArray[np.float64]:
        with np.errstate(invalid='ignore'):
            return np.sqrt(np.diag(self.covariance))

    def raise_for_status(self) -> None:
        """Re-raise the stored failure, if any."""
        if self.error is not None:
            raise self.error

    @classmethod
    def failed(
        cls,
        entity: str | None,
        error: EntityError,
        data: pd.DataFrame,
        response: str,
    ) -> FittedModel:
        empty = np.empty(0, dtype=np.float64)
        return cls(
            entity=entity,
            terms=(),
            estimates=empty,
            covariance=np.empty((0, 0), dtype=np.float64),
            df_residual=0,
            n_params=0,
            fitted=empty,
            residuals=empty,
            data=data,
            response=response,
            error=error,
        )


@dataclass(frozen=True)
class FixedEffectsDesign:
    """Design matrix plus the map from parameters to reported terms.

    Attributes:
        X: Design matrix (n_obs, n_params)
        param_names: Column names of ``X``
        terms: Reported term names (one per covariate level)
        term_map: Matrix L (n_terms, n_params) with term effects = L @ beta
    """

    X: pd.DataFrame
    param_names: list[str]
    terms: list[str]
    term_map: NDArray[np.float64]

    @property
    def n_params(self) -> int:
        return self.X.shape[1]


def build_fixed_effects_design(
    data: pd.DataFrame,
    group_covariate: str,
    nuisance_covariates: Sequence[str] = (),
) -> FixedEffectsDesign:
    """
    Build the no-intercept fixed-effects design for one partition.

    Levels are taken in first-appearance order within ``data``, so term order
    is deterministic and follows the data rather than alphabetical order.

    Args:
        data: Rows to be fitted (already cleaned of missing values).
        group_covariate: Grouping covariate, fully dummy coded.
        nuisance_covariates: Covariates sum-to-zero coded.

    Returns:
        FixedEffectsDesign.
    """
    columns: dict[str, NDArray[np.float64]] = {}
    terms: list[str] = []
    # One row of L per term, as {param_name: weight}
    term_rows: list[dict[str, float]] = []

    group_values = data[group_covariate].to_numpy()
    for level in pd.unique(group_values):
        name = f"{group_covariate}{level}"
        columns[name] = (group_values == level).astype(np.float64)
        terms.append(name)
        term_rows.append({name: 1.0})

    for covariate in nuisance_covariates:
        values = data[covariate].to_numpy()
        levels = list(pd.unique(values))
        if not levels:
            continue
        last = levels[-1]
        last_indicator = (values == last).astype(np.float64)
        free_names = []
        for level in levels[:-1]:
            name = f"{covariate}{level}"
            columns[name] = (values == level).astype(np.float64) - last_indicator
            terms.append(name)
            term_rows.append({name: 1.0})
            free_names.append(name)
        # Sum-to-zero: last level = -(sum of the others)
        terms.append(f"{covariate}{last}")
        term_rows.append({name: -1.0 for name in free_names})

    X = pd.DataFrame(columns, index=data.index)
    param_names = list(X.columns)
    param_index = {name: i for i, name in enumerate(param_names)}

    term_map = np.zeros((len(terms), len(param_names)), dtype=np.float64)
    for i, row in enumerate(term_rows):
        for name, weight in row.items():
            term_map[i, param_index[name]] = weight

    return FixedEffectsDesign(X=X, param_names=param_names, terms=terms, term_map=term_map)


def fit_fixed_effects(
    partition: pd.DataFrame,
    group_covariate: str,
    nuisance_covariates: Sequence[str] = (),
    response: str = "log2_intensity",
    entity: str | None = None,
) -> FittedModel:
    """
    Fit the fixed-effects linear model to one entity's partition.

    Rows with a missing/non-finite response or a missing covariate value are
    excluded from this fit only.

    Args:
        partition: Observations for a single entity.
        group_covariate: Grouping covariate (e.g. "run"); one coefficient per level.
        nuisance_covariates: Nuisance covariates (e.g. ["feature"]).
        response: Numeric response column (log-scale intensity).
        entity: Entity key, carried on the result and on failures.

    Returns:
        FittedModel. On failure the model carries ``error`` (ModelUnderdetermined
        or ModelFitFailed) and ``success`` is False; nothing is raised.

    Raises:
        KeyError: If a required column is missing (a schema error, not a
            per-entity condition).

    Example:
        >>> model = fit_fixed_effects(rows, "run", ["feature"], "log2_intensity", entity="P1")
        >>> model.terms
        ('runR1', 'runR2', 'featureF1', 'featureF2')
    """
    import statsmodels.api as sm

    nuisance_covariates = list(nuisance_covariates)
    required = [group_covariate, *nuisance_covariates, response]
    missing = [col for col in required if col not in partition.columns]
    if missing:
        raise KeyError(f"Columns not found in partition: {missing}")

    y_all = pd.to_numeric(partition[response], errors='coerce').astype(np.float64)
    valid = np.isfinite(y_all.to_numpy())
    valid &= partition[[group_covariate, *nuisance_covariates]].notna().all(axis=1).to_numpy()

    data = partition.loc[valid, required].copy()
    data[response] = y_all[valid]
    n_obs = len(data)

    if n_obs == 0:
        return FittedModel.failed(
            entity,
            ModelUnderdetermined(entity, "no observations with a finite response"),
            data,
            response,
        )

    design = build_fixed_effects_design(data, group_covariate, nuisance_covariates)
    n_params = design.n_params

    if n_obs < n_params:
        return FittedModel.failed(
            entity,
            ModelUnderdetermined(
                entity, f"{n_obs} observations for {n_params} free parameters"
            ),
            data,
            response,
        )

    rank = int(np.linalg.matrix_rank(design.X.to_numpy()))
    if rank < n_params:
        return FittedModel.failed(
            entity,
            ModelUnderdetermined(
                entity,
                f"design is rank deficient (rank {rank} < {n_params} parameters); "
                f"covariate levels are aliased",
            ),
            data,
            response,
        )

    y = data[response].to_numpy()

    try:
        result = sm.OLS(y, design.X.to_numpy()).fit()
    except (np.linalg.LinAlgError, ValueError) as e:
        return FittedModel.failed(
            entity, ModelFitFailed(entity, f"least squares failed: {e}"), data, response
        )

    beta = np.asarray(result.params, dtype=np.float64)
    if not np.all(np.isfinite(beta)):
        return FittedModel.failed(
            entity, ModelFitFailed(entity, "non-finite coefficient estimates"), data, response
        )

    df_residual = n_obs - n_params
    if df_residual > 0:
        cov_params = np.asarray(result.cov_params(), dtype=np.float64)
    else:
        cov_params = np.full((n_params, n_params), np.nan)

    L = design.term_map
    estimates = L @ beta
    with np.errstate(invalid='ignore'):
        covariance = L @ cov_params @ L.T

    fitted = np.asarray(result.fittedvalues, dtype=np.float64)
    residuals = y - fitted

    statistics = _fit_statistics(result, y, residuals, n_params, df_residual)

    if df_residual == 0:
        logger.debug("%s: saturated fit (zero residual df)", entity)

    return FittedModel(
        entity=entity,
        terms=tuple(design.terms),
        estimates=estimates,
        covariance=covariance,
        df_residual=df_residual,
        n_params=n_params,
        fitted=fitted,
        residuals=residuals,
        data=data,
        response=response,
        statistics=statistics,
    )


def _fit_statistics(
    result,
    y: NDArray[np.float64],
    residuals: NDArray[np.float64],
    n_params: int,
    df_residual: int,
) -> dict[str, float]:
    """Model-level statistics; undefined quantities are NaN rather than inf."""
    from scipy import stats as scipy_stats

    n_obs = len(y)
    ssr = float(residuals @ residuals)
    centered_tss = float(np.sum((y - y.mean()) ** 2))
    # Group dummies span the constant, so the null model is intercept-only
    df_model = n_params - 1

    r_squared = 1.0 - ssr / centered_tss if centered_tss > 0 else np.nan
    scale = ssr / df_residual if df_residual > 0 else np.nan

    adj_r_squared = np.nan
    f_statistic = np.nan
    f_pvalue = np.nan
    if df_residual > 0 and np.isfinite(r_squared):
        adj_r_squared = 1.0 - (1.0 - r_squared) * (n_obs - 1) / df_residual
        if df_model > 0 and scale > 0:
            f_statistic = ((centered_tss - ssr) / df_model) / scale
            f_pvalue = float(scipy_stats.f.sf(f_statistic, df_model, df_residual))

    if df_residual > 0 and ssr > 0:
        log_likelihood = float(result.llf)
        aic = float(result.aic)
        bic = float(result.bic)
    else:
        log_likelihood = aic = bic = np.nan

    return {
        'r_squared': float(r_squared),
        'adj_r_squared': float(adj_r_squared),
        'sigma': float(np.sqrt(scale)) if np.isfinite(scale) else np.nan,
        'statistic': float(f_statistic),
        'p_value': float(f_pvalue),
        'df': float(df_model),
        'df_residual': float(df_residual),
        'log_likelihood': log_likelihood,
        'aic': aic,
        'bic': bic,
        'deviance': ssr,
        'nobs': float(n_obs),
    }
