import numpy as np
import pytest
from scipy import stats

from core.correlation_engine import correlation_p, fisher_interval
from core.errors import InsufficientDataError, InvalidVariableError, RestrictedTestError


def _matrix(result, names, statistic):
    rows = [r for r in result.table("Correlations").rows if r["Statistic"] == statistic]
    return np.array([[r[other] for other in names] for r in rows], dtype=float)


def test_correlation_p_edges():
    assert correlation_p(1.0, 5) == 0.0
    assert correlation_p(-1.0, 5) == 0.0
    r, n = 0.5, 30
    t = r * np.sqrt((n - 2) / (1 - r ** 2))
    assert correlation_p(r, n) == pytest.approx(2 * stats.t.sf(t, n - 2))


def test_fisher_interval_edges():
    assert fisher_interval(0.5, 3, 0.95) == (None, None)
    assert fisher_interval(1.0, 10, 0.95) == (1.0, 1.0)
    low, high = fisher_interval(0.5, 30, 0.95)
    assert low < 0.5 < high


def test_perfect_correlation_scenario(analyse, records):
    rows = records(x=[1, 2, 3, 4, 5], y=[2, 4, 6, 8, 10])
    result = analyse("pearson", rows, ["x", "y"])
    pair = result.table("Pairwise Correlations").rows[0]

    assert pair["Pearson Correlation"] == pytest.approx(1.0)
    assert pair["Sig. (2-tailed)"] < 0.001
    assert pair["N"] == 5
    assert pair["Strength"] == "large positive"
    assert "p < .001" in result.summary
    assert result.charts[0].type.value == "scatter"


def test_matrix_is_symmetric_with_unit_diagonal(analyse, survey):
    names = ["score", "x", "y", "z", "pre"]
    for test_type in ("pearson", "spearman"):
        result = analyse(test_type, survey, names)
        label = "Pearson Correlation" if test_type == "pearson" else "Spearman's rho"
        m = _matrix(result, names, label)
        np.testing.assert_allclose(m, m.T, atol=1e-12)
        np.testing.assert_allclose(np.diag(m), 1.0)


def test_pearson_matches_scipy(analyse, survey):
    result = analyse("pearson", survey, ["x"], ["y"])
    pair = result.table("Pairwise Correlations").rows[0]
    x = np.array([r["x"] for r in survey])
    y = np.array([r["y"] for r in survey])
    expected = stats.pearsonr(x, y)

    assert pair["Pearson Correlation"] == pytest.approx(expected.statistic)
    assert pair["Sig. (2-tailed)"] == pytest.approx(expected.pvalue, rel=1e-6)
    assert pair["95% CI Lower"] < pair["Pearson Correlation"] < pair["95% CI Upper"]


def test_pearson_invariant_under_positive_affine_transform(analyse, survey, records):
    base = analyse("pearson", survey, ["x", "y"]).table("Pairwise Correlations").rows[0]
    moved = records(
        x=[3.5 * r["x"] - 40 for r in survey],
        y=[0.01 * r["y"] + 7 for r in survey],
    )
    shifted = analyse("pearson", moved, ["x", "y"]).table("Pairwise Correlations").rows[0]

    assert shifted["Pearson Correlation"] == pytest.approx(base["Pearson Correlation"], abs=1e-12)
    assert shifted["Sig. (2-tailed)"] == pytest.approx(base["Sig. (2-tailed)"], rel=1e-9)


def test_spearman_invariant_under_monotone_transform(analyse, survey, records):
    base = analyse("spearman", survey, ["x", "y"]).table("Pairwise Correlations").rows[0]
    bent = records(
        x=[r["x"] ** 3 for r in survey],
        y=[float(np.exp(r["y"])) for r in survey],
    )
    transformed = analyse("spearman", bent, ["x", "y"]).table("Pairwise Correlations").rows[0]

    assert transformed["Spearman's rho"] == pytest.approx(base["Spearman's rho"], abs=1e-12)
    x = np.array([r["x"] for r in survey])
    y = np.array([r["y"] for r in survey])
    assert base["Spearman's rho"] == pytest.approx(stats.spearmanr(x, y).statistic)


def test_kendall_tau_b_matches_scipy(analyse, records):
    x = [1, 2, 2, 3, 4, 5, 5, 6]
    y = [2, 1, 3, 3, 5, 4, 6, 6]
    result = analyse("kendall-tau", records(x=x, y=y), ["x", "y"])
    pair = result.table("Pairwise Correlations").rows[0]
    expected = stats.kendalltau(x, y, variant="b")

    assert pair["Kendall's tau-b"] == pytest.approx(expected.statistic)
    assert pair["Sig. (2-tailed)"] == pytest.approx(expected.pvalue)


def test_kendall_is_a_restricted_test(analyse, records):
    rows = records(x=[1, 2, 3], y=[3, 2, 1])
    with pytest.raises(RestrictedTestError):
        analyse("kendall-tau", rows, ["x", "y"], allow_pro=False)


def test_pairwise_and_listwise_missing_values(analyse, records):
    rows = records(
        a=[1, 2, 3, 4, 5, 6, None],
        b=[2, 1, 4, 3, 6, 5, 8],
        c=[1, None, 2, 5, 4, 7, 6],
    )
    pairwise = analyse("correlation", rows, ["a", "b", "c"])
    counts = {(r["Variable 1"], r["Variable 2"]): r["N"] for r in pairwise.table("Pairwise Correlations").rows}
    assert counts == {("a", "b"): 6, ("a", "c"): 5, ("b", "c"): 6}

    listwise = analyse("correlation", rows, ["a", "b", "c"], missing="listwise")
    assert {r["N"] for r in listwise.table("Pairwise Correlations").rows} == {5}


def test_correlation_method_option(analyse, survey):
    result = analyse("correlation", survey, ["x", "y"], method="spearman")
    assert "Spearman's rho" in result.table("Pairwise Correlations").headers


def test_constant_variable_gives_undefined_pair(analyse, records):
    rows = records(a=[1, 2, 3, 4], b=[5, 5, 5, 5], c=[2, 4, 5, 9])
    result = analyse("pearson", rows, ["a", "b", "c"])
    pairs = {(r["Variable 1"], r["Variable 2"]): r for r in result.table("Pairwise Correlations").rows}

    assert pairs[("a", "b")]["Pearson Correlation"] == "-"
    assert pairs[("a", "c")]["Pearson Correlation"] != "-"
    assert any("constant" in w for w in result.warnings)


def test_all_pairs_undefined_raises(analyse, records):
    rows = records(a=[1, 1, 1, 1], b=[2, 2, 2, 2])
    with pytest.raises(InsufficientDataError):
        analyse("pearson", rows, ["a", "b"])


def test_same_variable_in_both_roles_is_rejected(analyse, survey):
    with pytest.raises(InvalidVariableError) as exc:
        analyse("pearson", survey, ["x"], ["x"])
    assert exc.value.kind == "invalid_variable"
    assert "at least two distinct variables" in exc.value.message
