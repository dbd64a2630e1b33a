import numpy as np
import pytest
from scipy import stats

from core.errors import InsufficientDataError, InsufficientGroupsError
from core.nonparametric_engine import continuity_z, mann_whitney, tie_sum, wilcoxon_signed_rank


def test_tie_sum():
    assert tie_sum(np.array([1.0, 2.0, 3.0])) == 0
    # one pair (2³-2 = 6) and one triple (3³-3 = 24)
    assert tie_sum(np.array([1.0, 1.0, 2.0, 2.0, 2.0])) == 30


def test_continuity_correction_shrinks_towards_zero():
    assert continuity_z(10.0, 8.0, 1.0) == pytest.approx(1.5)
    assert continuity_z(6.0, 8.0, 1.0) == pytest.approx(-1.5)
    assert continuity_z(8.2, 8.0, 1.0) == 0.0
    assert continuity_z(3.0, 1.0, 0.0) == 0.0


# =============================================================================
# Mann-Whitney U
# =============================================================================

def test_mann_whitney_exact_for_small_untied_samples():
    x1 = np.array([1.1, 2.3, 3.8, 4.2, 5.9])
    x2 = np.array([6.4, 7.7, 8.1, 9.5, 10.2, 3.0])
    res = mann_whitney(x1, x2)

    assert res["exact"] is True
    expected = stats.mannwhitneyu(x1, x2, alternative="two-sided", method="exact")
    assert res["p"] == pytest.approx(expected.pvalue)
    assert res["u"] == pytest.approx(min(expected.statistic, len(x1) * len(x2) - expected.statistic))


def test_mann_whitney_normal_approximation_with_ties(analyse, records):
    values = [1, 2, 2, 3, 4, 4, 5, 6, 6, 7] * 3
    rows = records(v=values, g=["a"] * 15 + ["b"] * 15)
    result = analyse("mann-whitney", rows, ["v"], grp="g")
    row = result.table("Test Statistics").rows[0]

    a = np.array(values[:15], dtype=float)
    b = np.array(values[15:], dtype=float)
    expected = stats.mannwhitneyu(a, b, alternative="two-sided", method="asymptotic", use_continuity=True)
    assert row["Method"].startswith("Asymptotic")
    assert row["Sig. (2-tailed)"] == pytest.approx(expected.pvalue, rel=1e-6)
    assert row["Effect Size r"] == pytest.approx(abs(row["Z"]) / np.sqrt(30))


def test_mann_whitney_is_invariant_under_monotone_transform(analyse, survey, records):
    base = analyse("mann-whitney", survey, ["score"], grp="gender")
    transformed_rows = records(
        score=[float(np.exp(r["score"] / 10)) for r in survey],
        gender=[r["gender"] for r in survey],
    )
    transformed = analyse("mann-whitney", transformed_rows, ["score"], grp="gender")

    a = base.table("Test Statistics").rows[0]
    b = transformed.table("Test Statistics").rows[0]
    for key in ("Mann-Whitney U", "Wilcoxon W", "Z", "Sig. (2-tailed)"):
        assert a[key] == pytest.approx(b[key])
    assert base.table("Ranks").rows == transformed.table("Ranks").rows


def test_mann_whitney_ranks_table(analyse, two_small_groups):
    result = analyse("mann-whitney", two_small_groups, ["score"], grp="group")
    ranks = result.table("Ranks").rows
    assert ranks[0]["Mean Rank"] == pytest.approx(3.0)
    assert ranks[1]["Mean Rank"] == pytest.approx(8.0)
    test = result.table("Test Statistics").rows[0]
    assert test["Mann-Whitney U"] == 0
    assert test["Method"] == "Exact"
    assert test["Sig. (2-tailed)"] == pytest.approx(2 / 252)


# =============================================================================
# Wilcoxon signed-rank
# =============================================================================

def test_wilcoxon_signed_rank_drops_zero_differences():
    diff = np.array([0.0, 1.5, -0.5, 2.5, 3.5, 0.0, 4.5])
    res = wilcoxon_signed_rank(diff)
    assert res["zeros"] == 2
    assert res["n"] == 5
    assert res["w_pos"] + res["w_neg"] == pytest.approx(15)
    assert res["exact"] is False


def test_wilcoxon_all_zero_differences():
    with pytest.raises(InsufficientDataError):
        wilcoxon_signed_rank(np.zeros(5))


def test_wilcoxon_exact_matches_scipy(analyse, records):
    a = [10.2, 11.5, 9.8, 12.1, 10.9, 11.3, 10.4, 12.7]
    b = [11.0, 12.9, 10.1, 12.0, 12.5, 13.4, 10.9, 14.9]
    result = analyse("wilcoxon", records(a=a, b=b), ["a"], ["b"])
    row = result.table("Test Statistics").rows[0]
    diff = np.array(b) - np.array(a)

    assert row["Method"] == "Exact"
    assert row["Pair"] == "b - a"
    assert row["Sig. (2-tailed)"] == pytest.approx(stats.wilcoxon(diff, method="exact").pvalue)
    assert row["W"] == pytest.approx(stats.wilcoxon(diff, method="exact").statistic)


def test_wilcoxon_large_sample(analyse, survey):
    result = analyse("wilcoxon", survey, ["pre", "post"])
    row = result.table("Test Statistics").rows[0]
    assert row["Method"].startswith("Asymptotic")
    assert row["Sig. (2-tailed)"] < 0.001
    ranks = {r["Ranks"]: r for r in result.table("Ranks").rows}
    assert ranks["Total"]["N"] == 90


# =============================================================================
# Kruskal-Wallis and Friedman
# =============================================================================

def test_kruskal_wallis_matches_scipy(analyse, survey):
    result = analyse("kruskal-wallis", survey, ["score"], grp="group")
    row = result.table("Test Statistics").rows[0]
    samples = [np.array([r["score"] for r in survey if r["group"] == g]) for g in "ABC"]
    expected = stats.kruskal(*samples)

    assert row["Kruskal-Wallis H"] == pytest.approx(expected.statistic)
    assert row["Asymp. Sig."] == pytest.approx(expected.pvalue)
    assert row["Epsilon Squared"] == pytest.approx(expected.statistic / 89)
    dunn = result.table("Pairwise Comparisons (Dunn)").rows
    assert len(dunn) == 3
    assert all(r["Adj. Sig. (Bonferroni)"] >= r["Sig."] for r in dunn)


def test_kruskal_wallis_with_ties_matches_scipy(analyse, records):
    values = [1, 2, 2, 3, 3, 3, 4, 4, 5, 5, 6, 6]
    groups = ["x", "y", "z"] * 4
    result = analyse("kruskal-wallis", records(v=values, g=groups), ["v"], grp="g")
    samples = [np.array([v for v, g in zip(values, groups) if g == label], dtype=float) for label in "xyz"]
    assert result.table("Test Statistics").rows[0]["Kruskal-Wallis H"] == pytest.approx(
        stats.kruskal(*samples).statistic
    )


def test_friedman_matches_scipy(analyse, survey):
    result = analyse("friedman", survey, ["pre", "post", "follow"])
    row = result.table("Test Statistics").rows[0]
    columns = [np.array([r[name] for r in survey]) for name in ("pre", "post", "follow")]
    expected = stats.friedmanchisquare(*columns)

    assert row["Chi-Square"] == pytest.approx(expected.statistic)
    assert row["Asymp. Sig."] == pytest.approx(expected.pvalue)
    assert 0 <= row["Kendall's W"] <= 1
    assert row["N"] == 90


# =============================================================================
# Chi-square / crosstabs
# =============================================================================

def test_chi_square_matches_scipy(analyse, survey):
    result = analyse("chi-square", survey, ["smoker"], ["group"])
    tests = {row["Test"]: row for row in result.table("Chi-Square Tests").rows}

    rows_labels = [r["smoker"] for r in survey]
    cols_labels = [r["group"] for r in survey]
    order_r = list(dict.fromkeys(rows_labels))
    order_c = list(dict.fromkeys(cols_labels))
    observed = np.array([
        [sum(1 for a, b in zip(rows_labels, cols_labels) if a == r and b == c) for c in order_c]
        for r in order_r
    ])
    chi, p, dof, _ = stats.chi2_contingency(observed, correction=False)

    assert tests["Pearson Chi-Square"]["Value"] == pytest.approx(chi)
    assert tests["Pearson Chi-Square"]["Asymp. Sig. (2-sided)"] == pytest.approx(p)
    assert tests["Pearson Chi-Square"]["df"] == dof
    assert tests["N of Valid Cases"]["Value"] == 90
    assert "Fisher's Exact Test" not in tests
    assert result.table("Symmetric Measures").rows[0]["Measure"] == "Cramér's V"
    assert result.table("smoker * group Crosstabulation").rows[-1]["Total"] == 90


def test_two_by_two_table_adds_exact_and_phi(analyse, records):
    rows = records(
        treated=["yes"] * 20 + ["no"] * 20,
        improved=["yes"] * 15 + ["no"] * 5 + ["yes"] * 6 + ["no"] * 14,
    )
    result = analyse("chi-square", rows, ["treated"], ["improved"])
    tests = {row["Test"]: row for row in result.table("Chi-Square Tests").rows}
    observed = np.array([[15, 5], [6, 14]])

    assert tests["Continuity Correction"]["Value"] == pytest.approx(
        stats.chi2_contingency(observed, correction=True)[0]
    )
    assert tests["Fisher's Exact Test"]["Exact Sig. (2-sided)"] == pytest.approx(
        stats.fisher_exact(observed).pvalue
    )
    measures = {row["Measure"]: row for row in result.table("Symmetric Measures").rows}
    assert abs(measures["Phi"]["Value"]) == pytest.approx(measures["Cramér's V"]["Value"])


def test_sparse_table_warns_about_expected_counts(analyse, records):
    rows = records(a=["p", "q", "p", "q", "p", "r"], b=["m", "n", "m", "n", "n", "m"])
    result = analyse("crosstabs", rows, ["a"], ["b"])
    assert result.test_name == "Crosstabs"
    assert any("expected counts" in w for w in result.warnings)


def test_single_category_table_is_rejected(analyse, records):
    rows = records(a=["p", "p", "p"], b=["m", "n", "m"])
    with pytest.raises(InsufficientGroupsError):
        analyse("chi-square", rows, ["a"], ["b"])
