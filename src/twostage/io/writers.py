"""
Writers for two-stage analysis reports.

Output Files (in the output directory):
    results.csv       - tested entities with raw/adjusted p-values
    failures.csv      - excluded entities with stage and reason
    coefficients.csv  - stage-1 coefficient table
    derived.csv       - run-level summaries joined with annotation
    observations.csv  - observation-level table (if kept)
    model_summaries.csv - model-level table (if kept)
    parameters.json   - configuration and run provenance
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from twostage.pipeline import TwoStageReport

logger = logging.getLogger(__name__)

__all__ = ['write_report']


def write_report(report: TwoStageReport, output_dir: Path) -> dict[str, Path]:
    """
    Write every table of a report as CSV plus a parameters file.

    Args:
        report: Result of :func:`twostage.pipeline.run_two_stage_analysis`.
        output_dir: Directory to write into (created if needed).

    Returns:
        Mapping of table name to written path.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    tables = {
        'results': report.results,
        'failures': report.failures,
        'coefficients': report.coefficients,
        'derived': report.derived,
    }
    if report.observations is not None:
        tables['observations'] = report.observations
    if report.model_summaries is not None:
        tables['model_summaries'] = report.model_summaries

    written: dict[str, Path] = {}
    for name, table in tables.items():
        path = output_dir / f"{name}.csv"
        table.to_csv(path, index=False)
        written[name] = path
        logger.info("Wrote %s (%d rows) to %s", name, len(table), path)

    params_path = output_dir / "parameters.json"
    with open(params_path, 'w') as f:
        json.dump(
            {
                'timestamp': datetime.now().isoformat(),
                'n_tested': report.n_tested,
                'n_excluded': report.n_excluded,
                'config': report.config.to_dict(),
            },
            f,
            indent=2,
        )
    written['parameters'] = params_path

    return written
