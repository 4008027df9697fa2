"""
Tests for multiple-testing correction.

Verifies that:
1. BH-adjusted values match hand-computed step-up values
2. Adjusted values are monotone in the raw p-values and bounded by 1
3. Correction is idempotent and independent of row order
4. Empty input is a fatal CorrectionInputEmpty error
"""

import numpy as np
import pandas as pd
import pytest

from twostage.errors import CorrectionInputEmpty
from twostage.stats.multiple_testing import correct, fdr_correction


@pytest.fixture
def results():
    return pd.DataFrame({
        'protein': ["P1", "P2", "P3", "P4", "P5"],
        'estimate': [1.2, -0.8, 0.9, 0.1, 0.3],
        'p_value': [0.01, 0.04, 0.03, 0.50, 0.20],
    })


class TestFdrCorrection:

    def test_bh_values(self):
        adjusted = fdr_correction(np.array([0.01, 0.04, 0.03, 0.50, 0.20]))
        np.testing.assert_allclose(
            adjusted, [0.05, 0.2 / 3, 0.2 / 3, 0.5, 0.25], rtol=1e-10
        )

    def test_monotone_and_bounded(self):
        rng = np.random.default_rng(3)
        raw = rng.uniform(0, 1, 200) ** 3
        adjusted = fdr_correction(raw)
        order = np.argsort(raw)
        assert np.all(np.diff(adjusted[order]) >= -1e-15)
        assert np.all(adjusted >= raw - 1e-15)
        assert np.all(adjusted <= 1.0)

    def test_nan_preserved_and_not_counted(self):
        adjusted = fdr_correction(np.array([0.01, np.nan, 0.02]))
        assert np.isnan(adjusted[1])
        np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.02])

    def test_bonferroni_capped(self):
        adjusted = fdr_correction(np.array([0.01, 0.4, 0.9]), method="bonferroni")
        np.testing.assert_allclose(adjusted, [0.03, 1.0, 1.0])

    def test_by_is_more_conservative(self):
        raw = np.array([0.001, 0.01, 0.02, 0.04])
        assert np.all(fdr_correction(raw, "BY") >= fdr_correction(raw, "BH"))

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown correction method"):
            fdr_correction(np.array([0.1]), method="qvalue")

    def test_all_nan(self):
        with pytest.raises(CorrectionInputEmpty):
            fdr_correction(np.array([np.nan, np.nan]))


class TestCorrect:

    def test_adds_columns_in_place_order(self, results):
        corrected = correct(results)
        assert corrected['protein'].tolist() == results['protein'].tolist()
        np.testing.assert_allclose(
            corrected['adj_p_value'], [0.05, 0.2 / 3, 0.2 / 3, 0.5, 0.25], rtol=1e-10
        )
        assert corrected['significant'].tolist() == [False] * 5
        assert 'adj_p_value' not in results.columns

    def test_threshold(self, results):
        corrected = correct(results, fdr_threshold=0.1)
        assert corrected['significant'].tolist() == [True, True, True, False, False]

    def test_no_threshold(self, results):
        corrected = correct(results, fdr_threshold=None)
        assert 'significant' not in corrected.columns

    def test_idempotent(self, results):
        once = correct(results)
        twice = correct(once)
        pd.testing.assert_frame_equal(once, twice)

    def test_order_invariant(self, results):
        shuffled = results.sample(frac=1.0, random_state=5)
        a = correct(results).set_index('protein')['adj_p_value']
        b = correct(shuffled).set_index('protein')['adj_p_value']
        pd.testing.assert_series_equal(a.sort_index(), b.sort_index())

    def test_empty(self, results):
        with pytest.raises(CorrectionInputEmpty):
            correct(results.iloc[0:0])

    def test_missing_column(self, results):
        with pytest.raises(KeyError):
            correct(results, p_column="pvalue")
