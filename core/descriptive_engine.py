"""
FILE: core/descriptive_engine.py
----------------------------------
Descriptive & preliminary analyses: descriptives, frequencies,
normality tests and outlier screening.
No LangChain or LLM dependencies, just pandas, numpy, scipy and statsmodels.

These are per-variable analyses: each variable uses every row where it is
present, so one variable's missing cells never shrink another's N.
"""

import logging

import numpy as np
from scipy import stats

from Schemas.statistician import AnalysisRequest, AnalysisResult, ChartType
from constants.statistician import (
    IQR_MULTIPLIER,
    MAX_LISTED_OUTLIERS,
    SHAPIRO_MAX_N,
    Z_SCORE_LIMIT,
)
from core.errors import InsufficientDataError
from core.final_report_engine import (
    build_result,
    fmt,
    make_chart,
    make_table,
)
from core.preprocessor_engine import Dataset, categories_in_order

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

def describe(values: np.ndarray) -> dict[str, float | int | None]:
    """
    Moments and range of a 1-D sample. Skewness is the adjusted
    Fisher-Pearson G1 and kurtosis the excess G2, as SPSS reports them.
    """
    n = len(values)
    mean = float(np.mean(values))
    sd = float(np.std(values, ddof=1)) if n > 1 else None
    spread = sd is not None and sd > 0

    skew = float(stats.skew(values, bias=False)) if n >= 3 and spread else None
    kurt = float(stats.kurtosis(values, fisher=True, bias=False)) if n >= 4 and spread else None
    se_skew = (
        float(np.sqrt(6.0 * n * (n - 1) / ((n - 2) * (n + 1) * (n + 3))))
        if n >= 3 else None
    )
    se_kurt = (
        float(2.0 * se_skew * np.sqrt((n * n - 1.0) / ((n - 3) * (n + 5))))
        if n >= 4 and se_skew is not None else None
    )

    return {
        "n":        n,
        "mean":     mean,
        "se_mean":  sd / np.sqrt(n) if sd is not None else None,
        "sd":       sd,
        "variance": sd ** 2 if sd is not None else None,
        "min":      float(np.min(values)),
        "max":      float(np.max(values)),
        "range":    float(np.max(values) - np.min(values)),
        "median":   float(np.median(values)),
        "skewness": skew,
        "se_skewness": se_skew,
        "kurtosis": kurt,
        "se_kurtosis": se_kurt,
    }


def normality_statistic(values: np.ndarray) -> tuple[str, float | None, float | None]:
    """
    Shapiro-Wilk up to SHAPIRO_MAX_N observations, D'Agostino-Pearson K² above.
    Returns (test name, statistic, p-value); statistic and p are None for
    constant data or fewer than 3 values.
    """
    n = len(values)
    if n > SHAPIRO_MAX_N:
        if np.ptp(values) == 0:
            return "D'Agostino-Pearson", None, None
        stat, p = stats.normaltest(values)
        return "D'Agostino-Pearson", float(stat), float(p)

    if n < 3 or np.ptp(values) == 0:
        return "Shapiro-Wilk", None, None
    stat, p = stats.shapiro(values)
    return "Shapiro-Wilk", float(stat), float(p)


def lilliefors_statistic(values: np.ndarray) -> tuple[float | None, float | None]:
    """Kolmogorov-Smirnov with Lilliefors correction (needs N >= 5)."""
    from statsmodels.stats.diagnostic import lilliefors

    if len(values) < 5 or np.ptp(values) == 0:
        return None, None
    stat, p = lilliefors(values, dist="norm", pvalmethod="table")
    return float(stat), float(p)


def _valid_values(data: Dataset, name: str) -> np.ndarray:
    values = data.numeric(name).dropna().to_numpy(dtype=float)
    if len(values) == 0:
        raise InsufficientDataError(f"Variable '{name}' has no valid values", minimum=1)
    return values


# ─────────────────────────────────────────────
# DESCRIPTIVES
# ─────────────────────────────────────────────

def run_descriptives(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """N, mean, SD, variance, range, skewness and kurtosis per scale variable."""
    rows = []
    chart_points = []
    described = []

    for name in request.dependent_variables:
        values = _valid_values(data, name)
        d = describe(values)
        described.append((name, d))
        rows.append({
            "Variable":           name,
            "N":                  d["n"],
            "Missing":            data.n_rows - d["n"],
            "Mean":               d["mean"],
            "Std. Error of Mean": d["se_mean"],
            "Std. Deviation":     d["sd"],
            "Variance":           d["variance"],
            "Minimum":            d["min"],
            "Maximum":            d["max"],
            "Range":              d["range"],
            "Median":             d["median"],
            "Skewness":           d["skewness"],
            "Std. Error of Skewness": d["se_skewness"],
            "Kurtosis":           d["kurtosis"],
            "Std. Error of Kurtosis": d["se_kurtosis"],
        })
        chart_points.append({"name": name, "value": d["mean"]})

    headers = [
        "Variable", "N", "Missing", "Mean", "Std. Error of Mean", "Std. Deviation",
        "Variance", "Minimum", "Maximum", "Range", "Median",
        "Skewness", "Std. Error of Skewness", "Kurtosis", "Std. Error of Kurtosis",
    ]
    parts = [
        f"'{name}' M = {fmt(d['mean'])}, SD = {fmt(d['sd'])} (N = {d['n']})"
        for name, d in described[:3]
    ]
    more = f" and {len(described) - 3} more" if len(described) > 3 else ""
    summary = f"Descriptive statistics for {len(described)} variable(s): {'; '.join(parts)}{more}."

    return build_result(
        request.test_type,
        tables=[make_table("Descriptive Statistics", headers, rows)],
        charts=[make_chart(ChartType.BAR, "Mean by Variable", chart_points)],
        summary=summary,
        warnings=data.warnings,
        n_observations=data.n_rows,
    )


# ─────────────────────────────────────────────
# FREQUENCIES
# ─────────────────────────────────────────────

def run_frequencies(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """Counts and percentages per category, first-appearance or descending order."""
    tables = []
    charts = []
    headlines = []
    headers = ["Value", "Frequency", "Percent", "Valid Percent", "Cumulative Percent"]

    for name in request.dependent_variables:
        labels = data.labels(name)
        valid = labels[labels.notna()]
        if valid.empty:
            raise InsufficientDataError(f"Variable '{name}' has no valid values", minimum=1)

        order = categories_in_order(valid)
        counts = {c: int((valid == c).sum()) for c in order}
        if request.options.sort == "descending":
            order = sorted(order, key=lambda c: -counts[c])

        total = data.n_rows
        n_valid = len(valid)
        n_missing = total - n_valid

        rows = []
        cumulative = 0.0
        for category in order:
            count = counts[category]
            valid_pct = count / n_valid * 100
            cumulative += valid_pct
            rows.append({
                "Value":              category,
                "Frequency":          count,
                "Percent":            count / total * 100,
                "Valid Percent":      valid_pct,
                "Cumulative Percent": cumulative,
            })
        if n_missing:
            rows.append({"Value": "Missing", "Frequency": n_missing, "Percent": n_missing / total * 100})
        rows.append({"Value": "Total", "Frequency": total, "Percent": 100.0})

        tables.append(make_table(f"Frequencies: {name}", headers, rows))
        charts.append(make_chart(
            ChartType.BAR,
            f"{name} Distribution",
            [{"name": c, "value": counts[c]} for c in order],
        ))

        top = max(order, key=lambda c: counts[c])
        headlines.append(
            f"the most frequent category of '{name}' is '{top}' "
            f"(n = {counts[top]}, {counts[top] / n_valid * 100:.1f}% of valid responses)"
        )

    summary = f"Frequencies for {len(tables)} variable(s); " + "; ".join(headlines) + "."
    return build_result(
        request.test_type,
        tables=tables,
        charts=charts,
        summary=summary,
        warnings=data.warnings,
        n_observations=data.n_rows,
    )


# ─────────────────────────────────────────────
# NORMALITY
# ─────────────────────────────────────────────

def run_normality_test(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """
    Shapiro-Wilk (D'Agostino-Pearson above SHAPIRO_MAX_N) plus Lilliefors K-S,
    optionally split by a grouping variable.
    """
    alpha = request.options.alpha
    grp_var = request.grouping_variable
    rows = []
    violated = []

    for name in request.dependent_variables:
        if grp_var:
            frame = data.complete_cases(numeric=[name], categorical=[grp_var], min_n=3)
            samples = {
                label: values
                for label, values in data.split_groups(
                    frame, name, grp_var, min_size=3, min_groups=1
                ).items()
            }
        else:
            samples = {"All": _valid_values(data, name)}

        for group, values in samples.items():
            test_name, w, p = normality_statistic(values)
            ks, ks_p = lilliefors_statistic(values)
            d = describe(values)
            normal = None if p is None else bool(p >= alpha)
            if normal is False:
                violated.append(name if group == "All" else f"{name} ({group})")
            rows.append({
                "Variable":   name,
                "Group":      group,
                "N":          len(values),
                "Test":       test_name,
                "Statistic":  w,
                "Sig.":       p,
                "K-S Statistic (Lilliefors)": ks,
                "K-S Sig.":   ks_p,
                "Skewness":   d["skewness"],
                "Kurtosis":   d["kurtosis"],
                "Normality":  "-" if normal is None else ("Assumed" if normal else "Violated"),
            })

    headers = [
        "Variable", "Group", "N", "Test", "Statistic", "Sig.",
        "K-S Statistic (Lilliefors)", "K-S Sig.", "Skewness", "Kurtosis", "Normality",
    ]
    if violated:
        summary = (
            f"Normality is violated (p < {alpha}) for {', '.join(violated)}; "
            f"consider a non-parametric alternative or a transformation."
        )
    else:
        summary = f"No normality test reached significance (all p >= {alpha}); normality can be assumed."

    notes = [f"Shapiro-Wilk is replaced by D'Agostino-Pearson above N = {SHAPIRO_MAX_N}."]
    return build_result(
        request.test_type,
        tables=[make_table("Tests of Normality", headers, rows, notes)],
        summary=summary,
        warnings=data.warnings,
        n_observations=data.n_rows,
    )


# ─────────────────────────────────────────────
# OUTLIERS
# ─────────────────────────────────────────────

def detect_outliers(values: np.ndarray) -> dict:
    """IQR fences and |z| > Z_SCORE_LIMIT screening."""
    q1, q3 = np.percentile(values, [25, 75])
    iqr = q3 - q1
    lower = q1 - IQR_MULTIPLIER * iqr
    upper = q3 + IQR_MULTIPLIER * iqr
    iqr_mask = (values < lower) | (values > upper)

    sd = np.std(values, ddof=1) if len(values) > 1 else 0.0
    if sd > 0:
        z_mask = np.abs((values - np.mean(values)) / sd) > Z_SCORE_LIMIT
    else:
        z_mask = np.zeros(len(values), dtype=bool)

    return {
        "q1": float(q1), "q3": float(q3), "iqr": float(iqr),
        "lower": float(lower), "upper": float(upper),
        "iqr_outliers": values[iqr_mask].tolist(),
        "z_outliers": values[z_mask].tolist(),
    }


def run_outlier_detection(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    rows = []
    flagged = []

    for name in request.dependent_variables:
        values = _valid_values(data, name)
        if len(values) < 4:
            raise InsufficientDataError(f"Outlier screening of '{name}' needs more values", minimum=4)
        o = detect_outliers(values)
        listed = o["iqr_outliers"][:MAX_LISTED_OUTLIERS]
        suffix = "..." if len(o["iqr_outliers"]) > MAX_LISTED_OUTLIERS else ""
        rows.append({
            "Variable":      name,
            "N":             len(values),
            "Q1":            o["q1"],
            "Q3":            o["q3"],
            "IQR":           o["iqr"],
            "Lower Fence":   o["lower"],
            "Upper Fence":   o["upper"],
            "IQR Outliers":  len(o["iqr_outliers"]),
            f"|z| > {Z_SCORE_LIMIT:g}": len(o["z_outliers"]),
            "Outlier Values": ", ".join(f"{v:g}" for v in listed) + suffix if listed else "None",
        })
        if o["iqr_outliers"]:
            flagged.append(f"'{name}' ({len(o['iqr_outliers'])})")

    headers = [
        "Variable", "N", "Q1", "Q3", "IQR", "Lower Fence", "Upper Fence",
        "IQR Outliers", f"|z| > {Z_SCORE_LIMIT:g}", "Outlier Values",
    ]
    if flagged:
        summary = (
            f"Potential outliers beyond {IQR_MULTIPLIER} × IQR were found in {', '.join(flagged)}; "
            f"review them for data-entry errors before analysis."
        )
    else:
        summary = "No outliers were detected with the IQR method."

    return build_result(
        request.test_type,
        tables=[make_table("Outlier Summary", headers, rows)],
        summary=summary,
        warnings=data.warnings,
        n_observations=data.n_rows,
    )


