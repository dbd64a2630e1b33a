import pytest

from Schemas.statistician import AnalysisRequest
from Utils.assumptions_requirements_registry import ASSUMPTION_REGISTRY
from Utils.test_requirements_registry import TEST_REQUIREMENTS
from core.assumption_engine import CHECKS, _build_summary_message, check_assumptions
from core.errors import InvalidVariableError, UnsupportedTestError


def _request(test_type, rows, dv, iv=None, grp=None, **options):
    return AnalysisRequest(
        test_type=test_type,
        dependent_variables=dv,
        independent_variables=iv or [],
        grouping_variable=grp,
        data=rows,
        options=options,
    )


def _by_name(output):
    return {r.name: r for r in output.assumptions}


def test_registry_covers_every_test_with_known_checks():
    assert set(ASSUMPTION_REGISTRY) == set(TEST_REQUIREMENTS)
    for entries in ASSUMPTION_REGISTRY.values():
        for entry in entries:
            assert entry["test_fn"] in CHECKS


def test_summary_wording():
    assert _build_summary_message(4, 4).startswith("All 4 assumptions passed")
    assert _build_summary_message(3, 4).startswith("3 of 4 assumptions passed")
    assert _build_summary_message(1, 4).startswith("Only 1 of 4 assumptions passed")


def test_one_way_anova_checks_each_group(survey):
    output = check_assumptions(_request("one-way-anova", survey, ["score"], grp="group"))
    results = _by_name(output)

    assert {"Normality (A)", "Normality (B)", "Normality (C)"} <= set(results)
    assert results["Normality (A)"].test_used == "Shapiro-Wilk"
    assert results["Sample Size Adequacy"].passed
    assert results["Sample Size Adequacy"].value == 90
    assert results["Homogeneity of Variances"].test_used == "Levene's Test"
    assert output.total_count == len(output.assumptions)
    assert output.passed_count == sum(r.passed for r in output.assumptions)
    assert output.overall_pass == (output.passed_count == output.total_count)


def test_check_that_cannot_run_is_reported_as_failed(records):
    rows = records(v=[1, 1, 1, 2, 2, 2], g=["a"] * 3 + ["b"] * 3)
    output = check_assumptions(_request("independent-t-test", rows, ["v"], grp="g"))
    results = _by_name(output)

    failed = results["Homogeneity Of Variances"]
    assert failed.passed is False
    assert "could not be completed" in failed.interpretation
    assert results["Normality (a)"].passed is False
    assert not output.overall_pass


def test_sparse_contingency_table_fails_expected_frequencies(records):
    rows = records(a=["p", "q", "p", "q", "p", "r"], b=["m", "n", "m", "n", "n", "m"])
    results = _by_name(check_assumptions(_request("chi-square", rows, ["a"], ["b"])))

    assert results["Expected Cell Frequencies"].passed is False
    assert results["Sample Size Adequacy"].passed is False
    assert "Fisher" in results["Expected Cell Frequencies"].recommendation


def test_regression_checks(survey):
    output = check_assumptions(_request("multiple-regression", survey, ["y"], ["x", "z"]))
    results = _by_name(output)

    assert {"Linearity (x)", "Linearity (z)", "Normality (residuals)", "Homoscedasticity", "Multicollinearity"} <= set(results)
    assert results["Multicollinearity"].passed
    assert results["Linearity (x)"].passed
    assert results["Sample Size Adequacy"].passed


def test_outlier_check_names_values(records):
    rows = records(v=[1, 2, 3, 4, 5, 6, 7, 8, 9, 100])
    results = _by_name(check_assumptions(_request("descriptives", rows, ["v"])))
    assert results["Outliers (v)"].passed is False
    assert "100" in results["Outliers (v)"].value


def test_paired_and_repeated_measures_checks(survey):
    paired = _by_name(check_assumptions(_request("paired-t-test", survey, ["pre", "post"])))
    assert "Normality (pre - post)" in paired

    repeated = _by_name(check_assumptions(_request("repeated-measures-anova", survey, ["pre", "post", "follow"])))
    assert repeated["Sphericity"].test_used == "Mauchly's Test"


def test_factor_analysis_checks(two_factor_items):
    names = ["a1", "a2", "a3", "b1", "b2", "b3"]
    results = _by_name(check_assumptions(_request("efa", two_factor_items, names)))
    assert results["Sampling Adequacy"].passed
    assert results["Linearity"].passed


def test_request_level_errors_still_raise(survey):
    with pytest.raises(UnsupportedTestError):
        check_assumptions(_request("no-such-test", survey, ["score"]))
    with pytest.raises(InvalidVariableError):
        check_assumptions(_request("descriptives", survey, ["height"]))


def test_unused_grouping_variable_is_not_required(survey):
    output = check_assumptions(_request("descriptives", survey, ["score"], grp="no-such-column"))
    results = _by_name(output)

    assert results["Sample Size Adequacy"].value == 90
    assert results["Sample Size Adequacy"].passed
    assert output.total_count == len(output.assumptions) >= 2
