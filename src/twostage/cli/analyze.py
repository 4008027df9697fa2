"""
CLI for two-stage per-protein differential abundance analysis.

Stage 1 fits ``log2_intensity ~ 0 + run + feature`` per protein and keeps
the run coefficients as run-level abundance. Stage 2 compares those
summaries between two conditions per protein and applies FDR correction.

Usage:
    twostage analyze \\
        --data output/features.csv \\
        --covariates output/runs.csv \\
        --output output/twostage \\
        --comparison-col condition \\
        --levels ALS Control
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from twostage.cli._validators import _group_size, _n_jobs, _unit_interval

logger = logging.getLogger(__name__)


def setup_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the analyze subcommand to the parser."""
    parser = subparsers.add_parser(
        "analyze",
        help="Two-stage differential abundance (fixed-effects run summaries + t-test)",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Input files
    parser.add_argument(
        "--data", "-d",
        type=Path,
        required=True,
        help="Long-format observation CSV/TSV (one row per measurement)",
    )
    parser.add_argument(
        "--covariates", "-m",
        type=Path,
        required=True,
        help="Run annotation CSV/TSV (one row per run)",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        required=True,
        help="Output directory for results",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="YAML/JSON config file; explicit CLI arguments override it",
    )

    # Schema
    parser.add_argument("--entity-col", dest="entity_column", default=None,
                        help="Entity identifier column (default: protein)")
    parser.add_argument("--response-col", dest="response_column", default=None,
                        help="Response column (default: log2_intensity)")
    parser.add_argument("--group-col", dest="group_covariate", default=None,
                        help="Grouping covariate with one coefficient per level (default: run)")
    parser.add_argument("--nuisance-col", dest="nuisance_covariates", nargs="+", default=None,
                        help="Nuisance covariate column(s) (default: feature)")
    parser.add_argument("--log2", dest="log2_transform", action="store_true", default=None,
                        help="Log2-transform the response before fitting")

    # Derived summaries
    parser.add_argument("--term-pattern", default=None,
                        help="Substring selecting group coefficients (default: run)")
    parser.add_argument("--strip-prefix", default=None,
                        help="Prefix stripped from selected terms (default: run)")
    parser.add_argument("--covariate-key", default=None,
                        help="Key column in the covariate table (default: the group column)")

    # Second stage
    parser.add_argument("--comparison-col", dest="comparison_column", default=None,
                        help="Covariate column with the two conditions (default: condition)")
    parser.add_argument("--levels", dest="comparison_levels", nargs=2, default=None,
                        metavar=("LEVEL1", "LEVEL2"),
                        help="Conditions to compare; estimate is LEVEL1 - LEVEL2")
    parser.add_argument("--equal-var", action="store_true", default=None,
                        help="Pooled-variance t-test instead of Welch")
    parser.add_argument("--min-per-group", type=_group_size, default=None,
                        help="Minimum runs per condition for a protein to be tested (default: 2)")
    parser.add_argument("--confidence-level", type=_unit_interval, default=None,
                        help="Confidence level for intervals (default: 0.95)")

    # Correction
    parser.add_argument("--correction", dest="correction_method", default=None,
                        choices=["BH", "BY", "bonferroni", "holm"],
                        help="Multiple testing correction (default: BH)")
    parser.add_argument("--fdr", dest="fdr_threshold", type=_unit_interval, default=None,
                        help="Adjusted p-value threshold for significance (default: 0.05)")

    # Outputs and execution
    parser.add_argument("--keep-observations", action="store_true", default=None,
                        help="Also write observation-level fitted values and residuals")
    parser.add_argument("--keep-model-summaries", action="store_true", default=None,
                        help="Also write per-protein model fit summaries")
    parser.add_argument("--n-jobs", "-j", type=_n_jobs, default=None,
                        help="Parallel workers for stage 1 (-1 = all cores, default: 1)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug-level logging")

    parser.set_defaults(func=run_analyze)


_CONFIG_ARGS = [
    "entity_column", "response_column", "group_covariate", "nuisance_covariates",
    "log2_transform", "term_pattern", "strip_prefix", "covariate_key",
    "comparison_column", "comparison_levels", "equal_var", "min_per_group",
    "confidence_level", "correction_method", "fdr_threshold",
    "keep_observations", "keep_model_summaries", "n_jobs",
]


def run_analyze(args: argparse.Namespace) -> int:
    """Execute the two-stage analysis."""
    from twostage.config import load_config, merge_config
    from twostage.errors import CorrectionInputEmpty
    from twostage.io import load_covariates, load_observations, write_report
    from twostage.pipeline import run_two_stage_analysis

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        file_values = load_config(args.config) if args.config else {}
        config = merge_config(file_values, {k: getattr(args, k) for k in _CONFIG_ARGS})
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("=" * 70)
    print("  Two-Stage Differential Abundance Analysis")
    print("=" * 70)
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print()

    try:
        observations = load_observations(
            args.data,
            entity_column=config.entity_column,
            group_covariate=config.group_covariate,
            nuisance_covariates=config.nuisance_covariates,
            response_column=config.response_column,
        )
        covariates = load_covariates(
            args.covariates, key_column=config.covariate_key or config.group_covariate
        )
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        report = run_two_stage_analysis(observations, covariates, config)
    except CorrectionInputEmpty as e:
        print(f"Error: {e}", file=sys.stderr)
        if not e.failures.empty:
            args.output.mkdir(parents=True, exist_ok=True)
            e.failures.to_csv(args.output / "failures.csv", index=False)
            print(f"Excluded entities written to {args.output / 'failures.csv'}", file=sys.stderr)
        return 1

    written = write_report(report, args.output)

    print()
    print(report.summary())
    print()
    print(f"Results written to {written['results']}")
    return 0
