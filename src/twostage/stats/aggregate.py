"""
Fan-in of per-entity tidy tables into one flat table.

The aggregator accepts the per-entity tables as a mapping or as a lazy
iterable of ``(entity, table)`` pairs. Tables are buffered once and
concatenated in a single pass, so only the extracted tidy rows are ever
held, never the partitions or fitted models they came from.
"""

from __future__ import annotations

from typing import Iterable, Mapping

import pandas as pd


def aggregate(
    tidy_by_entity: Mapping[str, pd.DataFrame] | Iterable[tuple[str, pd.DataFrame]],
    entity_column: str = "entity",
) -> pd.DataFrame:
    """
    Concatenate per-entity tidy tables, prefixing each row with its entity key.

    Entity iteration order and per-entity row order are preserved.

    Args:
        tidy_by_entity: Mapping of entity -> tidy table, or an iterable of
            (entity, tidy table) pairs.
        entity_column: Name of the entity key column inserted first.

    Returns:
        Flat DataFrame with a fresh RangeIndex. Empty input yields an empty
        table with just the entity column.

    Raises:
        ValueError: If a tidy table already has a column named ``entity_column``.
    """
    items = tidy_by_entity.items() if isinstance(tidy_by_entity, Mapping) else tidy_by_entity

    buffer: list[pd.DataFrame] = []
    for entity, table in items:
        if entity_column in table.columns:
            raise ValueError(
                f"Tidy table for '{entity}' already has a '{entity_column}' column"
            )
        keyed = table.reset_index(drop=True)
        keyed.insert(0, entity_column, entity)
        buffer.append(keyed)

    if not buffer:
        return pd.DataFrame({entity_column: pd.Series(dtype=object)})

    return pd.concat(buffer, ignore_index=True)


def entity_rows(aggregated: pd.DataFrame, entity: str, entity_column: str = "entity") -> pd.DataFrame:
    """Recover one entity's tidy rows (without the key column) from an aggregate."""
    rows = aggregated.loc[aggregated[entity_column] == entity]
    return rows.drop(columns=entity_column).reset_index(drop=True)
