"""
Split a long-format observation table into per-entity partitions.

Partitions are yielded in first-appearance order of the entity key so that
every downstream table (and the final report before sorting) is reproducible
across runs. Rows with a missing entity key belong to no partition.
"""

from __future__ import annotations

from typing import Iterator

import pandas as pd


def iter_partitions(table: pd.DataFrame, key: str) -> Iterator[tuple[str, pd.DataFrame]]:
    """
    Lazily yield ``(entity, partition)`` pairs.

    Args:
        table: Long-format table with one row per observation.
        key: Column holding the entity identifier.

    Yields:
        Tuples of entity key and the sub-table of its rows (original index
        preserved). Only entities present in the data are produced.

    Raises:
        KeyError: If ``key`` is not a column of ``table``.
    """
    if key not in table.columns:
        raise KeyError(f"Partition key '{key}' not found in columns: {list(table.columns)}")

    if table.empty:
        return

    grouped = table.groupby(key, sort=False, observed=True, dropna=True)
    for entity, rows in grouped:
        yield entity, rows


def partition(table: pd.DataFrame, key: str) -> dict[str, pd.DataFrame]:
    """
    Split ``table`` into a mapping of entity key to partition.

    The mapping preserves first-appearance order of the keys.

    Example:
        >>> parts = partition(observations, "protein")
        >>> list(parts)
        ['P1', 'P2']
    """
    return dict(iter_partitions(table, key))
