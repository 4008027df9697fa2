"""
Multiple-testing correction across entity-level test results.

Correction is a barrier: it needs the complete set of raw p-values, since
rank-based adjustment depends on the whole distribution. Only successfully
tested entities are passed in; excluded entities are reported separately by
the pipeline.

References:
    - Benjamini & Hochberg (1995) JRSS-B 57(1):289-300
    - Benjamini & Yekutieli (2001) Ann Stat 29(4):1165-1188
"""

from __future__ import annotations

from typing import Literal

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from twostage.errors import CorrectionInputEmpty

CorrectionMethod = Literal["BH", "BY", "bonferroni", "holm"]

_METHOD_MAP = {"BH": "fdr_bh", "BY": "fdr_by", "bonferroni": "bonferroni", "holm": "holm"}


def fdr_correction(
    pvalues: NDArray[np.float64],
    method: CorrectionMethod = "BH",
) -> NDArray[np.float64]:
    """
    Adjust an array of raw p-values.

    For BH, the adjusted value at ascending rank i of n is
    ``min over j >= i of p_(j) * n / j``, capped at 1.

    Args:
        pvalues: Raw p-values; NaN entries stay NaN and are not counted.
        method: "BH", "BY", "bonferroni" or "holm".

    Returns:
        Adjusted p-values aligned with the input.

    Raises:
        ValueError: For an unknown method.
        CorrectionInputEmpty: If there is no non-NaN p-value.
    """
    from statsmodels.stats.multitest import multipletests

    if method not in _METHOD_MAP:
        raise ValueError(f"Unknown correction method '{method}'. Use one of {list(_METHOD_MAP)}")

    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid_mask = ~np.isnan(pvalues)
    if not np.any(valid_mask):
        raise CorrectionInputEmpty("No p-values available for multiple-testing correction")

    adjusted = np.full_like(pvalues, np.nan)
    _, adjusted[valid_mask], _, _ = multipletests(
        pvalues[valid_mask],
        method=_METHOD_MAP[method],
    )
    return np.minimum(adjusted, 1.0)


def correct(
    results: pd.DataFrame,
    method: CorrectionMethod = "BH",
    p_column: str = "p_value",
    adjusted_column: str = "adj_p_value",
    fdr_threshold: float | None = 0.05,
) -> pd.DataFrame:
    """
    Add adjusted p-values to a table of per-entity test results.

    Row order and the entity association of every row are preserved; the
    adjustment only depends on the multiset of raw p-values.

    Args:
        results: One row per successfully tested entity.
        method: Correction method.
        p_column: Raw p-value column.
        adjusted_column: Name of the adjusted p-value column to write.
        fdr_threshold: If not None, add a boolean ``significant`` column.

    Returns:
        Copy of ``results`` with the adjusted column (and ``significant``).

    Raises:
        CorrectionInputEmpty: If ``results`` is empty or all p-values are NaN.
    """
    if results.empty:
        raise CorrectionInputEmpty("No successful test results to correct")
    if p_column not in results.columns:
        raise KeyError(f"Column '{p_column}' not found in test results")

    corrected = results.copy()
    corrected[adjusted_column] = fdr_correction(
        corrected[p_column].to_numpy(dtype=np.float64), method=method
    )
    if fdr_threshold is not None:
        corrected['significant'] = corrected[adjusted_column] < fdr_threshold
    return corrected
