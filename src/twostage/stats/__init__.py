"""
Statistical core of the two-stage pipeline.

Exports the per-stage building blocks:
- Partitioning by entity
- Fixed-effects fitting and tidy extraction
- Aggregation and derived run-level summaries
- Second-stage two-sample tests
- Multiple testing correction (FDR)
"""

from .labels import as_label, label_series
from .partition import iter_partitions, partition
from .fixed_effects import FittedModel, build_fixed_effects_design, fit_fixed_effects
from .second_stage import TwoSampleTest, resolve_levels, run_second_stage, two_sample_test
from .tidy import TidyKind, extract
from .aggregate import aggregate, entity_rows
from .derived import derive_summaries, join_covariates
from .multiple_testing import correct, fdr_correction

__all__ = [
    "as_label",
    "label_series",
    "iter_partitions",
    "partition",
    "FittedModel",
    "build_fixed_effects_design",
    "fit_fixed_effects",
    "TwoSampleTest",
    "resolve_levels",
    "run_second_stage",
    "two_sample_test",
    "TidyKind",
    "extract",
    "aggregate",
    "entity_rows",
    "derive_summaries",
    "join_covariates",
    "correct",
    "fdr_correction",
]
