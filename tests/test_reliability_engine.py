import numpy as np
import pytest

from core.errors import ConvergenceError, InsufficientDataError, SingularMatrixError
from core.reliability_engine import bartlett_sphericity, cronbach_alpha, kmo, varimax


# =============================================================================
# Cronbach's alpha
# =============================================================================

def test_cronbach_alpha_of_parallel_items(analyse, parallel_items):
    result = analyse("cronbach-alpha", parallel_items, ["item1", "item2", "item3"])
    row = result.table("Reliability Statistics").rows[0]

    assert row["Cronbach's Alpha"] == pytest.approx(0.923, abs=0.02)
    assert row["N of Items"] == 3
    assert row["N of Cases"] == 2000
    assert "excellent" in result.summary


def test_cronbach_alpha_known_matrix():
    items = np.array([
        [1.0, 2.0, 2.0],
        [2.0, 3.0, 3.0],
        [3.0, 3.0, 4.0],
        [4.0, 5.0, 4.0],
        [5.0, 5.0, 6.0],
    ])
    k = items.shape[1]
    expected = k / (k - 1) * (1 - items.var(axis=0, ddof=1).sum() / items.sum(axis=1).var(ddof=1))
    assert cronbach_alpha(items) == pytest.approx(expected)


def test_single_item_is_rejected(analyse, parallel_items):
    with pytest.raises(InsufficientDataError) as exc:
        analyse("cronbach-alpha", parallel_items, ["item1"])
    assert "minimum required: 2" in exc.value.message


def test_zero_variance_scale_is_rejected(analyse, records):
    rows = records(a=[3, 3, 3, 3], b=[4, 4, 4, 4])
    with pytest.raises(InsufficientDataError):
        analyse("cronbach-alpha", rows, ["a", "b"])


def test_item_total_statistics(analyse, parallel_items):
    rng = np.random.default_rng(9)
    rows = [dict(r, noise=float(v)) for r, v in zip(parallel_items, rng.normal(size=len(parallel_items)))]
    result = analyse("item-total", rows, ["item1", "item2", "item3", "noise"])

    stats_by_item = {row["Item"]: row for row in result.table("Item-Total Statistics").rows}
    assert stats_by_item["noise"]["Corrected Item-Total Correlation"] < 0.3
    assert stats_by_item["noise"]["Cronbach's Alpha if Item Deleted"] > result.table(
        "Reliability Statistics"
    ).rows[0]["Cronbach's Alpha"]
    assert "noise" in result.summary

    matrix = result.table("Inter-Item Correlation Matrix")
    assert matrix.headers == ["Item", "item1", "item2", "item3", "noise"]
    assert matrix.rows[0]["item1"] == pytest.approx(1.0)


# =============================================================================
# KMO / Bartlett
# =============================================================================

def test_kmo_and_bartlett(analyse, two_factor_items):
    names = ["a1", "a2", "a3", "b1", "b2", "b3"]
    result = analyse("kmo-bartlett", two_factor_items, names)
    measures = {row["Measure"]: row["Value"] for row in result.table("KMO and Bartlett's Test").rows}

    assert 0.5 <= measures["Kaiser-Meyer-Olkin Measure of Sampling Adequacy"] <= 1
    assert measures["Bartlett's Test df"] == 15
    assert measures["Bartlett's Test Sig."] < 0.001
    assert len(result.table("Measures of Sampling Adequacy").rows) == 6
    assert "are suitable" in result.summary


def test_kmo_and_bartlett_match_closed_form(two_factor_items):
    names = ["a1", "a2", "a3", "b1", "b2", "b3"]
    x = np.array([[row[name] for name in names] for row in two_factor_items])
    n, p = x.shape
    corr = np.corrcoef(x, rowvar=False)

    chi_sq, df, sig = bartlett_sphericity(x)
    assert chi_sq == pytest.approx(-(n - 1 - (2 * p + 5) / 6) * np.log(np.linalg.det(corr)))
    assert df == 15
    assert sig < 0.001

    inv = np.linalg.inv(corr)
    partial = -inv / np.sqrt(np.outer(np.diag(inv), np.diag(inv)))
    off = ~np.eye(p, dtype=bool)
    r2, q2 = np.where(off, corr ** 2, 0), np.where(off, partial ** 2, 0)
    overall, per_variable = kmo(x)
    assert overall == pytest.approx(r2.sum() / (r2.sum() + q2.sum()))
    np.testing.assert_allclose(per_variable, r2.sum(axis=0) / (r2.sum(axis=0) + q2.sum(axis=0)))


def test_collinear_items_are_singular(analyse, records):
    a = [1.0, 2.0, 4.0, 3.0, 6.0, 5.0]
    rows = records(a=a, b=[2 * v for v in a], c=[3.0, 1.0, 2.0, 6.0, 4.0, 5.0])
    with pytest.raises(SingularMatrixError):
        analyse("kmo-bartlett", rows, ["a", "b", "c"])


# =============================================================================
# Exploratory factor analysis
# =============================================================================

def test_efa_recovers_two_factors(analyse, two_factor_items):
    names = ["a1", "a2", "a3", "b1", "b2", "b3"]
    result = analyse("efa", two_factor_items, names)

    variance = result.table("Total Variance Explained").rows
    assert variance[0]["Initial Eigenvalue"] > 1
    assert variance[1]["Initial Eigenvalue"] > 1
    assert variance[2]["Initial Eigenvalue"] < 1
    assert variance[2]["Extraction SS Loadings"] == "-"

    rotated = {row["Variable"]: row for row in result.table("Rotated Component Matrix").rows}
    primary = {name: max(("Factor 1", "Factor 2"), key=lambda f: abs(rotated[name][f])) for name in names}
    assert primary["a1"] == primary["a2"] == primary["a3"]
    assert primary["b1"] == primary["b2"] == primary["b3"]
    assert primary["a1"] != primary["b1"]
    assert all(rotated[name][primary[name]] > 0.7 for name in names)

    communalities = result.table("Communalities").rows
    assert all(0 < row["Extraction"] <= 1 for row in communalities)
    assert result.charts[0].title == "Scree Plot"


def test_efa_with_fixed_factor_count(analyse, two_factor_items):
    names = ["a1", "a2", "a3", "b1", "b2", "b3"]
    result = analyse("efa", two_factor_items, names, n_factors=1)
    assert result.table("Rotated Component Matrix").headers == ["Variable", "Factor 1"]
    assert any("cannot be rotated" in w for w in result.warnings)


def test_varimax_preserves_communalities():
    rng = np.random.default_rng(3)
    loadings = rng.uniform(-0.9, 0.9, size=(6, 2))
    rotated, converged, _ = varimax(loadings)
    assert converged
    np.testing.assert_allclose((rotated ** 2).sum(axis=1), (loadings ** 2).sum(axis=1))


def test_rotation_non_convergence(analyse, two_factor_items):
    names = ["a1", "a2", "a3", "b1", "b2", "b3"]
    result = analyse("efa", two_factor_items, names, max_iter=1)
    assert any(w.startswith("ConvergenceError:") for w in result.warnings)

    with pytest.raises(ConvergenceError):
        analyse("efa", two_factor_items, names, max_iter=1, strict_convergence=True)
