"""
Loaders for long-format observation tables and run annotation.

Expected observation format (one row per measurement):
```
protein,run,feature,intensity
P1,R1,PEPTIDEA_2,1034.5
P1,R1,PEPTIDEB_3,2211.0
```

Expected run annotation format (one row per run):
```
run,subject,condition
R1,S01,ALS
R2,S02,Control
```

The delimiter is chosen from the file suffix (.tsv/.txt -> tab, otherwise comma).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

__all__ = ['load_observations', 'load_covariates', 'log2_transform']


def _read_table(path: Path, key_columns: Sequence[str]) -> pd.DataFrame:
    if not isinstance(path, Path):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    sep = "\t" if path.suffix.lower() in (".tsv", ".txt") else ","
    # Identifier columns stay strings so "01" and "1" remain distinct labels
    table = pd.read_csv(path, sep=sep, dtype={col: str for col in key_columns})

    missing = [col for col in key_columns if col not in table.columns]
    if missing:
        raise ValueError(f"{path.name}: missing required columns {missing}")
    return table


def load_observations(
    path: Path,
    entity_column: str = "protein",
    group_covariate: str = "run",
    nuisance_covariates: Sequence[str] = ("feature",),
    response_column: str = "log2_intensity",
) -> pd.DataFrame:
    """
    Load a long-format observation table.

    Args:
        path: CSV/TSV file.
        entity_column: Entity identifier column.
        group_covariate: Grouping covariate column.
        nuisance_covariates: Nuisance covariate columns.
        response_column: Numeric response column.

    Returns:
        DataFrame with identifier columns as strings and a float response.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If required columns are missing
    """
    key_columns = [entity_column, group_covariate, *nuisance_covariates]
    table = _read_table(Path(path), key_columns)

    if response_column not in table.columns:
        raise ValueError(f"{Path(path).name}: missing response column '{response_column}'")

    response = pd.to_numeric(table[response_column], errors='coerce')
    n_bad = int(response.isna().sum() - table[response_column].isna().sum())
    if n_bad:
        logger.warning("%d non-numeric values in '%s' set to NaN", n_bad, response_column)
    table[response_column] = response.astype(np.float64)

    logger.info(
        "Loaded %d observations for %d entities from %s",
        len(table), table[entity_column].nunique(), path,
    )
    return table


def load_covariates(path: Path, key_column: str = "run") -> pd.DataFrame:
    """
    Load a run-level annotation table.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the key column is missing or not unique
    """
    table = _read_table(Path(path), [key_column])
    duplicated = table[key_column].duplicated()
    if duplicated.any():
        dupes = sorted(table.loc[duplicated, key_column].unique())
        raise ValueError(f"Covariate key '{key_column}' is not unique: {dupes}")
    return table


def log2_transform(table: pd.DataFrame, column: str) -> pd.DataFrame:
    """
    Return a copy with ``column`` on the log2 scale.

    Non-positive intensities have no logarithm and become NaN, so the fitter
    excludes them like any other missing response.
    """
    values = pd.to_numeric(table[column], errors='coerce').to_numpy(dtype=np.float64)
    positive = values > 0
    n_nonpositive = int(np.sum(~positive & ~np.isnan(values)))
    if n_nonpositive:
        logger.warning("%d non-positive values in '%s' set to NaN before log2", n_nonpositive, column)

    transformed = np.full_like(values, np.nan)
    transformed[positive] = np.log2(values[positive])

    result = table.copy()
    result[column] = transformed
    return result
