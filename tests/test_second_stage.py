"""
Tests for the second-stage two-sample comparison.

Verifies that:
1. Welch and pooled tests agree with scipy
2. An entity missing a comparison level fails with InsufficientGroups
3. Failures are isolated: the rest of the batch is still tested
4. Fitted entities without derived rows are reported, not dropped
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats as scipy_stats

from twostage.errors import InsufficientGroups
from twostage.stats.second_stage import resolve_levels, run_second_stage, two_sample_test


@pytest.fixture
def derived():
    """Run-level summaries for two proteins; P2 only observed in Case runs."""
    return pd.DataFrame({
        'protein': ["P1"] * 6 + ["P2"] * 3,
        'run': ["R1", "R2", "R3", "R4", "R5", "R6", "R1", "R2", "R3"],
        'estimate': [5.1, 5.4, 4.9, 3.0, 3.3, 2.8, 9.0, 9.2, 8.7],
        'condition': ["Case"] * 3 + ["Control"] * 3 + ["Case"] * 3,
    })


# ---------------------------------------------------------------------------
# Single entity
# ---------------------------------------------------------------------------


class TestTwoSampleTest:

    def test_welch_matches_scipy(self, derived):
        rows = derived[derived['protein'] == "P1"]
        result = two_sample_test(rows, "condition", ("Case", "Control"), entity="P1")

        x = [5.1, 5.4, 4.9]
        y = [3.0, 3.3, 2.8]
        reference = scipy_stats.ttest_ind(x, y, equal_var=False)

        assert result.statistic == pytest.approx(reference.statistic)
        assert result.p_value == pytest.approx(reference.pvalue)
        assert result.df == pytest.approx(reference.df)
        assert result.estimate == pytest.approx(np.mean(x) - np.mean(y))
        assert result.estimate1 == pytest.approx(np.mean(x))
        assert result.n1 == 3 and result.n2 == 3
        assert result.conf_low < result.estimate < result.conf_high
        assert result.method == "Welch Two Sample t-test"

    def test_pooled_variance(self, derived):
        rows = derived[derived['protein'] == "P1"]
        result = two_sample_test(rows, "condition", ("Case", "Control"), equal_var=True)
        assert result.df == pytest.approx(4.0)
        assert result.method == "Two Sample t-test"

    def test_level_order_sets_sign(self, derived):
        rows = derived[derived['protein'] == "P1"]
        forward = two_sample_test(rows, "condition", ("Case", "Control"))
        reverse = two_sample_test(rows, "condition", ("Control", "Case"))
        assert forward.estimate == pytest.approx(-reverse.estimate)
        assert forward.p_value == pytest.approx(reverse.p_value)

    def test_missing_level(self, derived):
        rows = derived[derived['protein'] == "P2"]
        with pytest.raises(InsufficientGroups, match="Control") as exc_info:
            two_sample_test(rows, "condition", ("Case", "Control"), entity="P2")
        assert exc_info.value.entity == "P2"

    def test_below_min_per_group(self, derived):
        rows = derived[derived['protein'] == "P1"].iloc[:4]
        with pytest.raises(InsufficientGroups, match="n=1"):
            two_sample_test(rows, "condition", ("Case", "Control"))

    def test_unlabelled_rows_ignored(self, derived):
        rows = derived[derived['protein'] == "P1"].copy()
        extra = rows.iloc[[0]].assign(condition=np.nan, estimate=100.0)
        with_extra = pd.concat([rows, extra])
        a = two_sample_test(rows, "condition", ("Case", "Control"))
        b = two_sample_test(with_extra, "condition", ("Case", "Control"))
        assert a.p_value == pytest.approx(b.p_value)


class TestResolveLevels:

    def test_first_appearance(self, derived):
        assert resolve_levels(derived, "condition") == ("Case", "Control")

    def test_explicit(self, derived):
        assert resolve_levels(derived, "condition", ["Control", "Case"]) == ("Control", "Case")

    def test_more_than_two_levels(self, derived):
        three = derived.assign(condition=["A", "B", "C"] * 3)
        with pytest.raises(ValueError, match="exactly 2"):
            resolve_levels(three, "condition")

    def test_identical_explicit_levels(self, derived):
        with pytest.raises(ValueError):
            resolve_levels(derived, "condition", ("Case", "Case"))

    def test_missing_column(self, derived):
        with pytest.raises(KeyError):
            resolve_levels(derived, "disease")


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


class TestRunSecondStage:

    def test_failure_is_isolated(self, derived):
        tests, failures = run_second_stage(derived, "protein", "condition")
        assert list(tests) == ["P1"]
        assert len(failures) == 1
        assert failures[0].entity == "P2"
        assert failures[0].reason == "InsufficientGroups"
        assert failures[0].stage == "second_stage"

    def test_batch_result_equals_single_test(self, derived):
        tests, _ = run_second_stage(derived, "protein", "condition")
        single = two_sample_test(
            derived[derived['protein'] == "P1"], "condition", ("Case", "Control"), entity="P1"
        )
        assert tests["P1"] == single

    def test_expected_entities_without_rows(self, derived):
        tests, failures = run_second_stage(
            derived, "protein", "condition", expected_entities=["P1", "P2", "P3"]
        )
        assert [f.entity for f in failures] == ["P2", "P3"]
        assert all(f.reason == "InsufficientGroups" for f in failures)


class TestNumericConditionCodes:

    @pytest.fixture
    def coded(self, derived):
        return derived.assign(condition=derived['condition'].map({"Case": 1, "Control": 0}))

    def test_string_levels_match_integer_codes(self, coded, derived):
        rows = coded[coded['protein'] == "P1"]
        result = two_sample_test(rows, "condition", ("1", "0"), entity="P1")
        reference = two_sample_test(
            derived[derived['protein'] == "P1"], "condition", ("Case", "Control")
        )
        assert result.p_value == pytest.approx(reference.p_value)
        assert result.levels == ("1", "0")

    def test_float_codes_match(self, coded):
        rows = coded[coded['protein'] == "P1"].astype({'condition': float})
        result = two_sample_test(rows, "condition", (1, 0))
        assert result.n1 == 3 and result.n2 == 3

    def test_resolved_levels_are_strings(self, coded):
        assert resolve_levels(coded, "condition") == ("1", "0")
        assert resolve_levels(coded, "condition", [1, 0]) == ("1", "0")
