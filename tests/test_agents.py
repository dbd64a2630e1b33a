from Agents.assumption_checker import format_checker_response, run_assumption_checker
from Agents.statistician import handle_request


def _payload(rows, **overrides):
    payload = {
        "testType": "independent-t-test",
        "dependentVariables": ["score"],
        "groupingVariable": "group",
        "data": rows,
    }
    payload.update(overrides)
    return payload


# =============================================================================
# Statistician
# =============================================================================

def test_handle_request_success(two_small_groups):
    outcome = handle_request(_payload(two_small_groups))
    results = outcome["results"]

    assert "error" not in outcome
    assert results["test_type"] == "independent-t-test"
    assert results["family"] == "compare-means"
    assert [t["title"] for t in results["tables"]][:2] == ["Group Statistics", "Independent Samples Test"]


def test_handle_request_analysis_error(two_small_groups):
    outcome = handle_request(_payload(two_small_groups, dependentVariables=["height"]))
    assert outcome["error"]["kind"] == "invalid_variable"
    assert "height" in outcome["error"]["message"]


def test_handle_request_restricted(two_small_groups):
    outcome = handle_request(_payload(two_small_groups, testType="kruskal-wallis", allowPro=False))
    assert outcome["error"]["kind"] == "restricted_test"


def test_handle_request_malformed_payload():
    outcome = handle_request({"dependentVariables": "score", "options": {"alpha": 2}})
    assert outcome["error"]["kind"] == "invalid_request"
    assert outcome["error"]["message"].startswith("Invalid request:")
    assert "testType" in outcome["error"]["message"]


def test_handle_request_unexpected_failure(monkeypatch, caplog, two_small_groups):
    def broken(request):
        raise RuntimeError("eigenvalues did not converge")

    monkeypatch.setattr("Agents.statistician.run_analysis", broken)
    with caplog.at_level("ERROR", logger="Agents.statistician"):
        outcome = handle_request(_payload(two_small_groups))

    assert outcome["error"]["kind"] == "internal"
    assert "eigenvalues did not converge" in outcome["error"]["message"]
    assert "results" not in outcome
    assert any(record.exc_info for record in caplog.records)


# =============================================================================
# Assumption checker
# =============================================================================

def test_run_assumption_checker(survey):
    outcome = run_assumption_checker(_payload(survey, testType="one-way-anova"))
    output = outcome["checker_output"]

    assert output["test_type"] == "one-way-anova"
    assert output["total_count"] == len(output["assumptions"])
    assert outcome["final_response"].startswith("Assumption checks for one-way-anova:")
    assert output["summary"] in outcome["final_response"]


def test_format_checker_response_marks_failures(records):
    rows = records(a=["p", "q", "p", "q", "p", "r"], b=["m", "n", "m", "n", "n", "m"])
    outcome = run_assumption_checker({
        "testType": "chi-square", "dependentVariables": ["a"], "independentVariables": ["b"], "data": rows,
    })
    text = outcome["final_response"]
    assert "[FAIL] Expected Cell Frequencies" in text
    assert "Fisher's exact test" in text


def test_run_assumption_checker_error():
    outcome = run_assumption_checker({"testType": "no-such-test", "dependentVariables": ["x"], "data": []})
    assert outcome["error"]["kind"] == "unsupported_test"


def test_run_assumption_checker_unexpected_failure(monkeypatch, survey):
    def broken(request):
        raise RuntimeError("boom")

    monkeypatch.setattr("Agents.assumption_checker.check_assumptions", broken)
    outcome = run_assumption_checker(_payload(survey, testType="one-way-anova"))
    assert outcome["error"] == {"kind": "internal", "message": "Internal error: boom"}
