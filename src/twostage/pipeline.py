"""
Two-stage differential abundance pipeline.

Stage 1 fits a fixed-effects model per protein and keeps only the tidy
coefficient rows. Stage 2 turns the run coefficients into run-level
abundance summaries, joins run annotation, compares two conditions per
protein and corrects the resulting p-values across proteins.

    observations -> partition -> fit -> extract(coefficient) -> aggregate
        -> derive + join -> partition -> t-test -> extract(model)
        -> aggregate -> correct -> report

Per-protein work is independent and can run on a joblib worker pool;
correction is a barrier that waits for every protein. Proteins excluded at
any stage are listed in ``TwoStageReport.failures``, never dropped silently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from twostage.config import AnalysisConfig
from twostage.errors import (
    CorrectionInputEmpty,
    EntityFailure,
    UndefinedTestStatistic,
    failures_to_dataframe,
)
from twostage.io.loaders import log2_transform
from twostage.stats.aggregate import aggregate
from twostage.stats.derived import derive_summaries, join_covariates
from twostage.stats.fixed_effects import fit_fixed_effects
from twostage.stats.multiple_testing import correct
from twostage.stats.partition import iter_partitions
from twostage.stats.second_stage import run_second_stage
from twostage.stats.tidy import TidyKind, extract

logger = logging.getLogger(__name__)


@dataclass
class EntityFit:
    """Tidy output of stage 1 for one entity; the fitted model is not kept.

    Attributes:
        entity: Entity key
        coefficients: Coefficient-level table (None on failure)
        observations: Observation-level table, if requested
        model_summary: Model-level table, if requested
        failure: Failure record when the fit did not succeed
    """

    entity: str
    coefficients: pd.DataFrame | None = None
    observations: pd.DataFrame | None = None
    model_summary: pd.DataFrame | None = None
    failure: EntityFailure | None = None


def fit_entity(entity: str, rows: pd.DataFrame, config: AnalysisConfig) -> EntityFit:
    """Fit one partition and run every requested extraction."""
    model = fit_fixed_effects(
        rows,
        group_covariate=config.group_covariate,
        nuisance_covariates=config.nuisance_covariates,
        response=config.response_column,
        entity=entity,
    )
    if not model.success:
        return EntityFit(entity, failure=EntityFailure.from_exception(entity, "fit", model.error))

    return EntityFit(
        entity,
        coefficients=extract(model, TidyKind.COEFFICIENT),
        observations=extract(model, TidyKind.OBSERVATION) if config.keep_observations else None,
        model_summary=extract(model, TidyKind.MODEL) if config.keep_model_summaries else None,
    )


def fit_all_entities(observations: pd.DataFrame, config: AnalysisConfig) -> list[EntityFit]:
    """
    Stage 1 fan-out over all entities.

    Runs sequentially when ``config.n_jobs == 1``, otherwise on a joblib pool.
    Results come back in partition (first-appearance) order either way.
    """
    partitions = iter_partitions(observations, config.entity_column)

    if config.n_jobs == 1:
        return [fit_entity(entity, rows, config) for entity, rows in partitions]

    from joblib import Parallel, delayed

    return Parallel(n_jobs=config.n_jobs)(
        delayed(fit_entity)(entity, rows, config) for entity, rows in partitions
    )


@dataclass
class TwoStageReport:
    """Complete two-stage analysis results.

    Attributes:
        results: One row per tested entity with raw and adjusted p-values,
            sorted by adjusted p-value
        failures: Excluded entities (entity, stage, reason, message)
        coefficients: Aggregated stage-1 coefficient table
        derived: Run-level summaries joined with covariates
        config: Configuration used
        observations: Aggregated observation-level table (if requested)
        model_summaries: Aggregated model-level table (if requested)
    """

    results: pd.DataFrame
    failures: pd.DataFrame
    coefficients: pd.DataFrame
    derived: pd.DataFrame
    config: AnalysisConfig
    observations: pd.DataFrame | None = None
    model_summaries: pd.DataFrame | None = None

    @property
    def n_tested(self) -> int:
        return len(self.results)

    @property
    def n_excluded(self) -> int:
        return len(self.failures)

    def to_dataframe(self) -> pd.DataFrame:
        """Tested and excluded entities in one table, with a ``status`` column."""
        entity_column = self.config.entity_column
        tested = self.results.assign(status="tested")
        excluded = self.failures.rename(columns={'entity': entity_column}).assign(status="excluded")
        return pd.concat([tested, excluded], ignore_index=True)

    def significant_entities(self) -> list[str]:
        if 'significant' not in self.results.columns:
            return []
        hits = self.results.loc[self.results['significant'], self.config.entity_column]
        return hits.tolist()

    def summary(self) -> str:
        """Human-readable summary of the run."""
        cfg = self.config
        lines = [
            "Two-stage differential analysis",
            f"  Entities tested:   {self.n_tested}",
            f"  Entities excluded: {self.n_excluded}",
            f"  Correction:        {cfg.correction_method} (threshold {cfg.fdr_threshold})",
            f"  Significant:       {len(self.significant_entities())}",
        ]
        if self.n_excluded:
            lines.append("  Exclusions by reason:")
            for reason, count in self.failures['reason'].value_counts().items():
                lines.append(f"    {reason}: {count}")
        return "\n".join(lines)


def run_two_stage_analysis(
    observations: pd.DataFrame,
    covariates: pd.DataFrame,
    config: AnalysisConfig | None = None,
) -> TwoStageReport:
    """
    Run the full two-stage pipeline.

    Args:
        observations: Long-format table, one row per measurement, with the
            entity, group covariate, nuisance covariate(s) and response columns.
        covariates: Run-level annotation keyed by the group label, holding the
            comparison column.
        config: Analysis configuration; defaults to ``AnalysisConfig()``.

    Returns:
        TwoStageReport.

    Raises:
        KeyError: If required columns are missing.
        CorrectionInputEmpty: If no entity could be tested; ``failures`` on
            the exception lists why.

    Example:
        >>> report = run_two_stage_analysis(
        ...     observations, run_annotation,
        ...     AnalysisConfig(comparison_column="condition",
        ...                    comparison_levels=("ALS", "Control")),
        ... )
        >>> report.results.head()
    """
    config = config or AnalysisConfig()

    required = [
        config.entity_column,
        config.group_covariate,
        *config.nuisance_covariates,
        config.response_column,
    ]
    missing = [col for col in required if col not in observations.columns]
    if missing:
        raise KeyError(f"Columns not found in observation table: {missing}")

    if config.log2_transform:
        observations = log2_transform(observations, config.response_column)

    n_entities = observations[config.entity_column].nunique()
    logger.info(
        "Stage 1: fitting %d entities (%s ~ 0 + %s%s), n_jobs=%d",
        n_entities,
        config.response_column,
        config.group_covariate,
        "".join(f" + {c}" for c in config.nuisance_covariates),
        config.n_jobs,
    )

    fits = fit_all_entities(observations, config)

    failures: list[EntityFailure] = [f.failure for f in fits if f.failure is not None]
    succeeded = [f for f in fits if f.failure is None]
    if failures:
        logger.warning("Stage 1: %d of %d entities failed to fit", len(failures), len(fits))
    if not succeeded:
        raise CorrectionInputEmpty(
            f"No entity could be fitted ({len(failures)} excluded)",
            failures=failures_to_dataframe(failures),
        )

    entity_column = config.entity_column
    coefficients = aggregate(((f.entity, f.coefficients) for f in succeeded), entity_column)
    observation_table = (
        aggregate(((f.entity, f.observations) for f in succeeded), entity_column)
        if config.keep_observations else None
    )
    model_summaries = (
        aggregate(((f.entity, f.model_summary) for f in succeeded), entity_column)
        if config.keep_model_summaries else None
    )
    derived = derive_summaries(
        coefficients,
        term_pattern=config.term_pattern,
        strip_prefix=config.strip_prefix,
        entity_column=entity_column,
        group_column=config.group_covariate,
    )
    derived = join_covariates(
        derived,
        covariates,
        group_column=config.group_covariate,
        covariate_key=config.covariate_key,
    )

    tests, test_failures = run_second_stage(
        derived,
        entity_column=entity_column,
        group_variable=config.comparison_column,
        levels=config.comparison_levels,
        equal_var=config.equal_var,
        confidence_level=config.confidence_level,
        alternative=config.alternative,
        min_per_group=config.min_per_group,
        expected_entities=[f.entity for f in succeeded],
    )
    failures.extend(test_failures)
    failure_table = failures_to_dataframe(failures)

    if not tests:
        raise CorrectionInputEmpty(
            f"No entity passed both stages ({len(failures)} excluded)",
            failures=failure_table,
        )

    test_results = aggregate(
        ((entity, extract(test, TidyKind.MODEL)) for entity, test in tests.items()),
        entity_column,
    )
    undefined = test_results.loc[test_results['p_value'].isna(), entity_column].tolist()
    if len(undefined) == len(test_results):
        failures.extend(
            EntityFailure.from_exception(
                entity,
                "correction",
                UndefinedTestStatistic(entity, "test p-value is undefined (no within-group variance)"),
            )
            for entity in undefined
        )
        raise CorrectionInputEmpty(
            f"No tested entity has a defined p-value ({len(undefined)} undefined)",
            failures=failures_to_dataframe(failures),
        )
    if undefined:
        logger.warning(
            "%d entities have an undefined p-value; kept with a missing adjusted p-value",
            len(undefined),
        )

    corrected = correct(
        test_results,
        method=config.correction_method,
        fdr_threshold=config.fdr_threshold,
    )
    corrected = corrected.sort_values(
        'adj_p_value', kind='mergesort', na_position='last'
    ).reset_index(drop=True)

    report = TwoStageReport(
        results=corrected,
        failures=failure_table,
        coefficients=coefficients,
        derived=derived,
        config=config,
        observations=observation_table,
        model_summaries=model_summaries,
    )
    logger.info(
        "Done: %d tested, %d excluded, %d significant at %s < %g",
        report.n_tested,
        report.n_excluded,
        int(np.sum(corrected['significant'])),
        config.correction_method,
        config.fdr_threshold,
    )
    return report
