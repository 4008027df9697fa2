"""
Canonical string form of group and condition labels.

Run labels come out of term names as strings, while annotation tables read
from CSV may hold the same labels as integers or floats (``1`` or ``1.0``).
Both sides of every label comparison go through :func:`as_label`, so ``1``,
``1.0`` and ``"1"`` are the same label.
"""

from __future__ import annotations

import numpy as np
import pandas as pd


def as_label(value) -> str | None:
    """String form of one label; None for a missing value."""
    if pd.isna(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def label_series(values: pd.Series) -> pd.Series:
    """Apply :func:`as_label` element-wise, keeping the index."""
    return values.map(as_label).astype(object)
