import pytest

from Schemas.statistician import AnalysisRequest, MeasureLevel, VariableDescriptor
from Utils.test_requirements_registry import TEST_REQUIREMENTS
from core.errors import (
    InvalidVariableError,
    RestrictedTestError,
    UnsupportedTestError,
)
from core.statistician_engine import HANDLERS, calculate_statistics, run_analysis, validate_request


def test_every_catalog_entry_has_a_handler():
    assert set(HANDLERS) == set(TEST_REQUIREMENTS)
    assert len(HANDLERS) == 27


def test_catalog_entries_hold_only_the_fields_validation_reads():
    fields = {"name", "family", "dependent", "independent", "pooled", "grouping", "measures", "is_pro"}
    for test_type, entry in TEST_REQUIREMENTS.items():
        assert set(entry) == fields, test_type


def test_unknown_test_id_is_rejected(survey):
    with pytest.raises(UnsupportedTestError) as exc:
        calculate_statistics("anova-of-doom", ["score"], data=survey)
    assert exc.value.kind == "unsupported_test"
    assert "one-way-anova" in exc.value.message


def test_restricted_tests_respect_the_capability_flag(survey):
    with pytest.raises(RestrictedTestError) as exc:
        calculate_statistics("multiple-regression", ["y"], ["x", "z"], data=survey, allow_pro=False)
    assert exc.value.to_dict()["kind"] == "restricted_test"

    # unrestricted tests run either way
    result = calculate_statistics("pearson", ["x", "y"], data=survey, allow_pro=False)
    assert result.test_name == "Pearson Correlation"


@pytest.mark.parametrize(
    "test_type, dv, iv",
    [
        ("independent-t-test", ["score", "x"], []),
        ("simple-linear-regression", ["y"], ["x", "z"]),
        ("paired-t-test", ["pre"], []),
        ("pearson", ["x"], []),
        ("chi-square", ["smoker"], []),
    ],
)
def test_wrong_variable_counts_are_rejected(test_type, dv, iv):
    request = AnalysisRequest(test_type=test_type, dependent_variables=dv, independent_variables=iv,
                              grouping_variable="group")
    with pytest.raises(InvalidVariableError):
        validate_request(request)


def test_missing_grouping_variable(survey):
    with pytest.raises(InvalidVariableError, match="grouping variable"):
        calculate_statistics("one-way-anova", ["score"], data=survey)


def test_unknown_column_lists_available_columns(survey):
    with pytest.raises(InvalidVariableError) as exc:
        calculate_statistics("descriptives", ["height"], data=survey)
    assert "'height'" in exc.value.message
    assert "score" in exc.value.message


def test_declared_measure_must_suit_the_test(survey):
    request = AnalysisRequest(
        test_type="descriptives",
        dependent_variables=["x"],
        data=survey,
        variables=[VariableDescriptor(name="x", measure=MeasureLevel.NOMINAL)],
    )
    with pytest.raises(InvalidVariableError, match="declared nominal"):
        run_analysis(request)


def test_camel_case_payload_is_accepted(survey):
    request = AnalysisRequest.model_validate({
        "testType": "one-sample-t-test",
        "dependentVariables": ["x"],
        "data": survey,
        "options": {"testValue": 10, "confidenceLevel": 0.9},
    })
    result = run_analysis(request)
    assert result.table("One-Sample Test").rows[0]["Test Value"] == 10
    assert "90% CI Lower" in result.table("One-Sample Test").headers


def test_grouping_variable_is_ignored_where_unused(survey):
    result = calculate_statistics("descriptives", ["score"], grouping_variable="no-such-column", data=survey)
    assert result.n_observations == 90


@pytest.mark.parametrize(
    "test_type, dv, iv, grp",
    [
        ("descriptives", ["score", "x"], [], None),
        ("one-way-anova", ["score"], [], "group"),
        ("chi-square", ["smoker"], ["group"], None),
        ("multiple-regression", ["y"], ["x", "z"], None),
        ("efa", ["score", "x", "y", "pre", "post", "follow"], [], None),
    ],
)
def test_results_are_deterministic(survey, test_type, dv, iv, grp):
    first = calculate_statistics(test_type, dv, iv, grp, data=survey)
    second = calculate_statistics(test_type, dv, iv, grp, data=list(survey))
    assert first.model_dump() == second.model_dump()
    assert first.family.value == TEST_REQUIREMENTS[test_type]["family"].value
