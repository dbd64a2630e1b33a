import numpy as np
import pytest
from scipy import stats

from core.descriptive_engine import describe, detect_outliers, normality_statistic
from core.errors import InsufficientDataError


def test_describe_known_values():
    d = describe(np.array([1.0, 2.0, 3.0, 4.0, 5.0]))

    assert d["n"] == 5
    assert d["mean"] == pytest.approx(3.0)
    assert d["sd"] == pytest.approx(np.sqrt(2.5))
    assert d["variance"] == pytest.approx(2.5)
    assert d["median"] == pytest.approx(3.0)
    assert d["range"] == pytest.approx(4.0)
    assert d["skewness"] == pytest.approx(0.0, abs=1e-12)
    assert d["kurtosis"] == pytest.approx(-1.2)


def test_describe_constant_sample_has_no_shape():
    d = describe(np.array([4.0, 4.0, 4.0, 4.0]))
    assert d["sd"] == 0.0
    assert d["skewness"] is None
    assert d["kurtosis"] is None


def test_normality_statistic_switches_on_size():
    rng = np.random.default_rng(0)
    name, stat, p = normality_statistic(rng.normal(size=50))
    assert name == "Shapiro-Wilk"
    assert 0 < stat <= 1 and 0 <= p <= 1

    name, _, _ = normality_statistic(rng.normal(size=6000))
    assert name == "D'Agostino-Pearson"

    assert normality_statistic(np.array([1.0, 2.0])) == ("Shapiro-Wilk", None, None)


def test_detect_outliers_iqr_fences():
    values = np.array([1, 2, 3, 4, 5, 6, 7, 8, 9, 100], dtype=float)
    o = detect_outliers(values)
    assert o["iqr_outliers"] == [100.0]
    assert o["lower"] < 1 < 9 < o["upper"] < 100


def test_descriptives_table(analyse, survey):
    result = analyse("descriptives", survey, ["score", "x"])
    table = result.table("Descriptive Statistics")

    assert [row["Variable"] for row in table.rows] == ["score", "x"]
    scores = np.array([r["score"] for r in survey])
    assert table.rows[0]["Mean"] == pytest.approx(scores.mean())
    assert table.rows[0]["Std. Deviation"] == pytest.approx(scores.std(ddof=1))
    assert table.rows[0]["Skewness"] == pytest.approx(stats.skew(scores, bias=False))
    assert result.charts[0].type.value == "bar"
    assert result.family.value == "descriptive"


def test_descriptives_per_variable_deletion(analyse, records):
    rows = records(a=[1, 2, None, 4], b=[1, 2, 3, 4])
    table = analyse("descriptives", rows, ["a", "b"]).table("Descriptive Statistics")
    assert table.rows[0]["N"] == 3
    assert table.rows[0]["Missing"] == 1
    assert table.rows[1]["N"] == 4


def test_frequencies_with_missing_values(analyse, records):
    rows = records(colour=["red", "blue", "red", None, "green", "red"])
    result = analyse("frequencies", rows, ["colour"])
    table = result.table("Frequencies: colour")
    by_value = {row["Value"]: row for row in table.rows}

    assert [row["Value"] for row in table.rows] == ["red", "blue", "green", "Missing", "Total"]
    assert by_value["red"]["Frequency"] == 3
    assert by_value["red"]["Percent"] == pytest.approx(50.0)
    assert by_value["red"]["Valid Percent"] == pytest.approx(60.0)
    assert by_value["green"]["Cumulative Percent"] == pytest.approx(100.0)
    assert by_value["Missing"]["Frequency"] == 1
    assert by_value["Total"]["Frequency"] == 6
    assert "'red'" in result.summary


def test_frequencies_descending_sort(analyse, records):
    rows = records(answer=["no", "yes", "yes", "maybe", "yes", "maybe"])
    table = analyse("frequencies", rows, ["answer"], sort="descending").table("Frequencies: answer")
    assert [row["Value"] for row in table.rows[:3]] == ["yes", "maybe", "no"]


def test_frequencies_of_numeric_codes(analyse, records):
    rows = records(rating=[1, 2, 2.0, 3])
    table = analyse("frequencies", rows, ["rating"]).table("Frequencies: rating")
    assert [row["Value"] for row in table.rows[:3]] == ["1", "2", "3"]


def test_normality_by_group(analyse, survey):
    result = analyse("normality-test", survey, ["score"], grp="group")
    table = result.table("Tests of Normality")

    assert [row["Group"] for row in table.rows] == ["A", "B", "C"]
    group_a = np.array([r["score"] for r in survey if r["group"] == "A"])
    assert table.rows[0]["Statistic"] == pytest.approx(stats.shapiro(group_a).statistic)
    assert table.rows[0]["Test"] == "Shapiro-Wilk"
    assert table.rows[0]["K-S Sig."] != "-"


def test_normality_flags_skewed_data(analyse, records):
    rng = np.random.default_rng(3)
    rows = records(v=[float(x) for x in rng.exponential(1.0, 200)])
    result = analyse("normality-test", rows, ["v"])
    assert result.table("Tests of Normality").rows[0]["Normality"] == "Violated"
    assert "violated" in result.summary


def test_outlier_detection(analyse, records):
    rows = records(v=[1, 2, 3, 4, 5, 6, 7, 8, 9, 100])
    result = analyse("outlier-detection", rows, ["v"])
    row = result.table("Outlier Summary").rows[0]
    assert row["IQR Outliers"] == 1
    assert row["Outlier Values"] == "100"
    assert "'v' (1)" in result.summary


def test_outlier_detection_needs_four_values(analyse, records):
    with pytest.raises(InsufficientDataError):
        analyse("outlier-detection", records(v=[1, 2, 3]), ["v"])
