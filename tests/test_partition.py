"""
Tests for entity partitioning.

Verifies that:
1. Partitions come back in first-appearance order of the key
2. Partitions are disjoint and cover every keyed row
3. Rows with a missing key belong to no partition
4. A missing key column is a schema error
"""

import numpy as np
import pandas as pd
import pytest

from twostage.stats.partition import iter_partitions, partition


@pytest.fixture
def interleaved():
    return pd.DataFrame({
        'protein': ["B", "A", "B", "C", "A", "B"],
        'value': [1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
    })


class TestPartition:

    def test_first_appearance_order(self, interleaved):
        parts = partition(interleaved, "protein")
        assert list(parts) == ["B", "A", "C"]

    def test_rows_keep_original_order_and_index(self, interleaved):
        parts = partition(interleaved, "protein")
        assert parts["B"]['value'].tolist() == [1.0, 3.0, 6.0]
        assert parts["B"].index.tolist() == [0, 2, 5]

    def test_partitions_are_disjoint_and_cover_table(self, interleaved):
        parts = partition(interleaved, "protein")
        indices = [idx for rows in parts.values() for idx in rows.index]
        assert sorted(indices) == list(interleaved.index)
        assert len(indices) == len(set(indices))

    def test_missing_key_rows_excluded(self):
        table = pd.DataFrame({
            'protein': ["A", None, "A", np.nan],
            'value': [1.0, 2.0, 3.0, 4.0],
        })
        parts = partition(table, "protein")
        assert list(parts) == ["A"]
        assert len(parts["A"]) == 2

    def test_empty_table(self):
        table = pd.DataFrame({'protein': pd.Series(dtype=object), 'value': pd.Series(dtype=float)})
        assert partition(table, "protein") == {}

    def test_missing_key_column(self, interleaved):
        with pytest.raises(KeyError, match="gene"):
            partition(interleaved, "gene")

    def test_iter_is_lazy(self, interleaved):
        it = iter_partitions(interleaved, "protein")
        entity, rows = next(it)
        assert entity == "B"
        assert len(rows) == 3
