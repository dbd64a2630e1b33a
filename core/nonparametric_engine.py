"""
FILE: core/nonparametric_engine.py
------------------------------------
Rank-based tests and contingency-table analysis:
Mann-Whitney U, Wilcoxon signed-rank, Kruskal-Wallis H, Friedman,
and the chi-square family (also used for crosstabs).
No LangChain or LLM dependencies.

Ties receive midranks (scipy.stats.rankdata). Mann-Whitney and Wilcoxon
use exact p-values when N <= EXACT_TEST_MAX_N and the data are free of
ties (and zero differences); otherwise a normal approximation with
continuity correction and tie-corrected variance. Kruskal-Wallis and
Friedman use the chi-square approximation.
"""

import logging

import numpy as np
import pandas as pd
from scipy import stats

from Schemas.statistician import AnalysisRequest, AnalysisResult, ChartType
from constants.assumption_checker import EXPECTED_COUNT_MAX_SHARE, EXPECTED_COUNT_MINIMUM
from constants.statistician import EXACT_TEST_MAX_N
from core.errors import InsufficientDataError, InsufficientGroupsError
from core.final_report_engine import (
    CORRELATION_CUTOFFS,
    build_result,
    fmt,
    magnitude,
    make_chart,
    make_table,
    p_text,
    significance_word,
)
from core.group_comparison_engine import paired_columns, pick_two_groups
from core.preprocessor_engine import Dataset, categories_in_order

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

def tie_sum(values: np.ndarray) -> float:
    """Σ (t³ - t) over groups of tied values."""
    _, counts = np.unique(values, return_counts=True)
    return float(((counts ** 3) - counts).sum())


def has_ties(values: np.ndarray) -> bool:
    return len(np.unique(values)) < len(values)


def continuity_z(statistic: float, mean: float, sd: float) -> float:
    if sd == 0:
        return 0.0
    diff = statistic - mean
    return float(np.sign(diff) * max(abs(diff) - 0.5, 0.0) / sd)


def two_sided_p(z: float) -> float:
    return float(2 * stats.norm.sf(abs(z)))


def mean_rank_rows(labels: list[str], ranks: list[np.ndarray]) -> list[dict]:
    return [
        {"Group": label, "N": len(r), "Mean Rank": float(np.mean(r)), "Sum of Ranks": float(np.sum(r))}
        for label, r in zip(labels, ranks)
    ]


# ─────────────────────────────────────────────
# MANN-WHITNEY U
# ─────────────────────────────────────────────

def mann_whitney(x1: np.ndarray, x2: np.ndarray) -> dict:
    n1, n2 = len(x1), len(x2)
    pooled = np.concatenate([x1, x2])
    n = n1 + n2
    ranks = stats.rankdata(pooled)
    r1, r2 = ranks[:n1], ranks[n1:]

    u1 = float(r1.sum() - n1 * (n1 + 1) / 2)
    u2 = n1 * n2 - u1
    u = min(u1, u2)
    w = float(r1.sum()) if u1 <= u2 else float(r2.sum())

    mu = n1 * n2 / 2
    var = n1 * n2 / 12 * ((n + 1) - tie_sum(pooled) / (n * (n - 1)))
    z = continuity_z(u1, mu, np.sqrt(max(var, 0.0)))

    exact = n <= EXACT_TEST_MAX_N and not has_ties(pooled)
    if exact:
        p = float(stats.mannwhitneyu(x1, x2, alternative="two-sided", method="exact").pvalue)
    else:
        p = two_sided_p(z)

    return {
        "u": u, "w": w, "z": z, "p": p, "exact": exact,
        "r": abs(z) / np.sqrt(n), "ranks": (r1, r2),
    }


def run_mann_whitney(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    dv = request.dependent_variables[0]
    grp = request.grouping_variable
    opts = request.options

    frame = data.complete_cases(numeric=[dv], categorical=[grp], min_n=2)
    groups = data.split_groups(frame, dv, grp)
    (l1, x1), (l2, x2) = pick_two_groups(data, groups, opts, grp)
    res = mann_whitney(x1, x2)
    r1, r2 = res["ranks"]

    method = "Exact" if res["exact"] else "Asymptotic (continuity corrected)"
    tables = [
        make_table("Ranks", ["Group", "N", "Mean Rank", "Sum of Ranks"], mean_rank_rows([l1, l2], [r1, r2])),
        make_table(
            "Test Statistics",
            ["Mann-Whitney U", "Wilcoxon W", "Z", "Sig. (2-tailed)", "Method", "Effect Size r"],
            [{
                "Mann-Whitney U": res["u"], "Wilcoxon W": res["w"], "Z": res["z"],
                "Sig. (2-tailed)": res["p"], "Method": method, "Effect Size r": res["r"],
            }],
        ),
    ]
    summary = (
        f"A Mann-Whitney U test found {significance_word(res['p'], opts.alpha)} difference in '{dv}' "
        f"between '{l1}' (mean rank = {fmt(np.mean(r1))}) and '{l2}' (mean rank = {fmt(np.mean(r2))}), "
        f"U = {fmt(res['u'])}, Z = {fmt(res['z'])}, {p_text(res['p'])}, r = {fmt(res['r'])} "
        f"({magnitude(res['r'], CORRELATION_CUTOFFS)} effect)."
    )
    chart = make_chart(
        ChartType.BAR,
        f"Mean Rank of {dv} by {grp}",
        [{"name": l1, "value": float(np.mean(r1))}, {"name": l2, "value": float(np.mean(r2))}],
    )
    return build_result(
        request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=len(x1) + len(x2)
    )


# ─────────────────────────────────────────────
# WILCOXON SIGNED-RANK
# ─────────────────────────────────────────────

def wilcoxon_signed_rank(diff: np.ndarray) -> dict:
    zeros = int((diff == 0).sum())
    nonzero = diff[diff != 0]
    n = len(nonzero)
    if n == 0:
        raise InsufficientDataError("Every paired difference is zero; the signed-rank test is undefined")

    ranks = stats.rankdata(np.abs(nonzero))
    w_pos = float(ranks[nonzero > 0].sum())
    w_neg = float(ranks[nonzero < 0].sum())

    mu = n * (n + 1) / 4
    var = n * (n + 1) * (2 * n + 1) / 24 - tie_sum(np.abs(nonzero)) / 48
    z = continuity_z(w_pos, mu, np.sqrt(max(var, 0.0)))

    exact = n <= EXACT_TEST_MAX_N and zeros == 0 and not has_ties(np.abs(nonzero))
    if exact:
        p = float(stats.wilcoxon(nonzero, alternative="two-sided", method="exact").pvalue)
    else:
        p = two_sided_p(z)

    return {
        "n": n, "zeros": zeros, "w_pos": w_pos, "w_neg": w_neg,
        "n_pos": int((nonzero > 0).sum()), "n_neg": int((nonzero < 0).sum()),
        "mean_pos": float(ranks[nonzero > 0].mean()) if (nonzero > 0).any() else None,
        "mean_neg": float(ranks[nonzero < 0].mean()) if (nonzero < 0).any() else None,
        "t": min(w_pos, w_neg), "z": z, "p": p, "exact": exact,
        "r": abs(z) / np.sqrt(n + zeros),
    }


def run_wilcoxon(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    a, b = paired_columns(request)
    opts = request.options

    frame = data.complete_cases(numeric=[a, b], min_n=2)
    diff = frame[b].to_numpy() - frame[a].to_numpy()
    res = wilcoxon_signed_rank(diff)
    if res["zeros"]:
        data.warn(f"{res['zeros']} pair(s) with a zero difference were excluded from the ranking.")

    label = f"{b} - {a}"
    tables = [
        make_table(
            "Ranks",
            ["Pair", "Ranks", "N", "Mean Rank", "Sum of Ranks"],
            [
                {"Pair": label, "Ranks": "Negative Ranks", "N": res["n_neg"],
                 "Mean Rank": res["mean_neg"], "Sum of Ranks": res["w_neg"]},
                {"Pair": label, "Ranks": "Positive Ranks", "N": res["n_pos"],
                 "Mean Rank": res["mean_pos"], "Sum of Ranks": res["w_pos"]},
                {"Pair": label, "Ranks": "Ties", "N": res["zeros"]},
                {"Pair": label, "Ranks": "Total", "N": len(diff)},
            ],
        ),
        make_table(
            "Test Statistics",
            ["Pair", "W", "Z", "Sig. (2-tailed)", "Method", "Effect Size r"],
            [{
                "Pair": label, "W": res["t"], "Z": res["z"], "Sig. (2-tailed)": res["p"],
                "Method": "Exact" if res["exact"] else "Asymptotic (continuity corrected)",
                "Effect Size r": res["r"],
            }],
        ),
    ]
    summary = (
        f"A Wilcoxon signed-rank test found {significance_word(res['p'], opts.alpha)} difference "
        f"between '{a}' and '{b}', W = {fmt(res['t'])}, Z = {fmt(res['z'])}, {p_text(res['p'])}, "
        f"r = {fmt(res['r'])} ({magnitude(res['r'], CORRELATION_CUTOFFS)} effect)."
    )
    return build_result(request.test_type, tables, summary, data.warnings, n_observations=len(diff))


# ─────────────────────────────────────────────
# KRUSKAL-WALLIS H
# ─────────────────────────────────────────────

def kruskal_wallis(samples: list[np.ndarray]) -> dict:
    pooled = np.concatenate(samples)
    n = len(pooled)
    k = len(samples)
    ranks = stats.rankdata(pooled)
    bounds = np.cumsum([0] + [len(s) for s in samples])
    grouped = [ranks[bounds[i]:bounds[i + 1]] for i in range(k)]

    correction = 1 - tie_sum(pooled) / (n ** 3 - n)
    if correction <= 0:
        raise InsufficientDataError("All values are tied; the Kruskal-Wallis statistic is undefined")
    h = (12 / (n * (n + 1)) * sum(r.sum() ** 2 / len(r) for r in grouped) - 3 * (n + 1)) / correction
    df = k - 1

    return {
        "h": float(h), "df": df, "p": float(stats.chi2.sf(h, df)),
        "epsilon_sq": float(h / (n - 1)),
        "eta_sq_h": float((h - k + 1) / (n - k)) if n > k else None,
        "ranks": grouped, "n": n, "tie_sum": tie_sum(pooled),
    }


def dunn_rows(labels: list[str], ranks: list[np.ndarray], n: int, ties: float) -> list[dict]:
    """Dunn's pairwise comparisons on mean ranks, Bonferroni-adjusted."""
    m = len(labels) * (len(labels) - 1) // 2
    base = n * (n + 1) / 12 - ties / (12 * (n - 1))
    rows = []
    for i in range(len(labels)):
        for j in range(i + 1, len(labels)):
            diff = float(np.mean(ranks[i]) - np.mean(ranks[j]))
            se = float(np.sqrt(base * (1 / len(ranks[i]) + 1 / len(ranks[j]))))
            z = diff / se if se > 0 else 0.0
            p = two_sided_p(z)
            rows.append({
                "Group I": labels[i], "Group J": labels[j], "Mean Rank Difference": diff,
                "Std. Error": se, "Z": z, "Sig.": p, "Adj. Sig. (Bonferroni)": min(1.0, p * m),
            })
    return rows


def run_kruskal_wallis(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    dv = request.dependent_variables[0]
    grp = request.grouping_variable
    opts = request.options

    frame = data.complete_cases(numeric=[dv], categorical=[grp], min_n=3)
    groups = data.split_groups(frame, dv, grp)
    labels = list(groups)
    res = kruskal_wallis(list(groups.values()))

    tables = [
        make_table("Ranks", ["Group", "N", "Mean Rank", "Sum of Ranks"], mean_rank_rows(labels, res["ranks"])),
        make_table(
            "Test Statistics",
            ["Kruskal-Wallis H", "df", "Asymp. Sig.", "Epsilon Squared", "Eta Squared (H)"],
            [{
                "Kruskal-Wallis H": res["h"], "df": res["df"], "Asymp. Sig.": res["p"],
                "Epsilon Squared": res["epsilon_sq"], "Eta Squared (H)": res["eta_sq_h"],
            }],
        ),
    ]
    if res["p"] < opts.alpha and len(labels) >= 3:
        tables.append(make_table(
            "Pairwise Comparisons (Dunn)",
            ["Group I", "Group J", "Mean Rank Difference", "Std. Error", "Z", "Sig.", "Adj. Sig. (Bonferroni)"],
            dunn_rows(labels, res["ranks"], res["n"], res["tie_sum"]),
        ))

    summary = (
        f"A Kruskal-Wallis H test found {significance_word(res['p'], opts.alpha)} difference in '{dv}' "
        f"across {len(labels)} groups of '{grp}', H({res['df']}) = {fmt(res['h'])}, {p_text(res['p'])}, "
        f"ε² = {fmt(res['epsilon_sq'], 3)}."
    )
    chart = make_chart(
        ChartType.BAR,
        f"Mean Rank of {dv} by {grp}",
        [{"name": label, "value": float(np.mean(r))} for label, r in zip(labels, res["ranks"])],
    )
    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=res["n"])


# ─────────────────────────────────────────────
# FRIEDMAN
# ─────────────────────────────────────────────

def friedman(y: np.ndarray) -> dict:
    n, k = y.shape
    ranks = stats.rankdata(y, axis=1)
    rank_sums = ranks.sum(axis=0)

    ties = sum(tie_sum(row) for row in y)
    correction = 1 - ties / (n * (k ** 3 - k))
    if correction <= 0:
        raise InsufficientDataError("Every row is fully tied; the Friedman statistic is undefined")

    chi_sq = (12 / (n * k * (k + 1)) * float((rank_sums ** 2).sum()) - 3 * n * (k + 1)) / correction
    df = k - 1
    return {
        "chi_sq": float(chi_sq), "df": df, "p": float(stats.chi2.sf(chi_sq, df)),
        "w": float(chi_sq / (n * (k - 1))), "mean_ranks": ranks.mean(axis=0),
    }


def run_friedman(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    names = request.dependent_variables
    opts = request.options

    frame = data.complete_cases(numeric=names, min_n=2)
    y = frame[names].to_numpy(dtype=float)
    res = friedman(y)

    tables = [
        make_table(
            "Ranks",
            ["Measure", "Mean Rank"],
            [{"Measure": name, "Mean Rank": float(r)} for name, r in zip(names, res["mean_ranks"])],
        ),
        make_table(
            "Test Statistics",
            ["N", "Chi-Square", "df", "Asymp. Sig.", "Kendall's W"],
            [{"N": len(y), "Chi-Square": res["chi_sq"], "df": res["df"],
              "Asymp. Sig.": res["p"], "Kendall's W": res["w"]}],
        ),
    ]
    summary = (
        f"A Friedman test found {significance_word(res['p'], opts.alpha)} difference across "
        f"{len(names)} related measures, χ²({res['df']}, N = {len(y)}) = {fmt(res['chi_sq'])}, "
        f"{p_text(res['p'])}, Kendall's W = {fmt(res['w'], 3)}."
    )
    chart = make_chart(
        ChartType.BAR,
        "Mean Rank by Measure",
        [{"name": name, "value": float(r)} for name, r in zip(names, res["mean_ranks"])],
    )
    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=len(y))


# ─────────────────────────────────────────────
# CHI-SQUARE / CROSSTABS
# ─────────────────────────────────────────────

def contingency_table(frame: pd.DataFrame, row_var: str, col_var: str) -> pd.DataFrame:
    """Observed counts with both axes in first-appearance order."""
    rows = categories_in_order(frame[row_var])
    cols = categories_in_order(frame[col_var])
    observed = pd.crosstab(frame[row_var], frame[col_var]).reindex(index=rows, columns=cols, fill_value=0)
    if len(rows) < 2 or len(cols) < 2:
        raise InsufficientGroupsError(
            f"A contingency table needs at least 2 categories per variable "
            f"('{row_var}': {len(rows)}, '{col_var}': {len(cols)})."
        )
    return observed


def chi_square_tests(observed: np.ndarray) -> dict:
    n = observed.sum()
    pearson, p, dof, expected = stats.chi2_contingency(observed, correction=False)
    lr, lr_p, _, _ = stats.chi2_contingency(observed, correction=False, lambda_="log-likelihood")
    r, c = observed.shape

    out = {
        "pearson": float(pearson), "p": float(p), "df": int(dof), "expected": expected,
        "lr": float(lr), "lr_p": float(lr_p), "n": int(n),
        "cramers_v": float(np.sqrt(pearson / (n * (min(r, c) - 1)))),
        "low_expected": int((expected < EXPECTED_COUNT_MINIMUM).sum()),
        "min_expected": float(expected.min()),
        "yates": None, "yates_p": None, "fisher_p": None, "phi": None,
    }
    if (r, c) == (2, 2):
        yates, yates_p, _, _ = stats.chi2_contingency(observed, correction=True)
        out["yates"], out["yates_p"] = float(yates), float(yates_p)
        out["fisher_p"] = float(stats.fisher_exact(observed).pvalue)
        (a, b), (c_, d) = observed
        denom = np.sqrt(float((a + b) * (c_ + d) * (a + c_) * (b + d)))
        out["phi"] = float((a * d - b * c_) / denom) if denom > 0 else None
    return out


def run_chi_square(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """Chi-square test of independence; also serves the crosstabs test id."""
    row_var = request.dependent_variables[0]
    col_var = request.independent_variables[0]
    opts = request.options

    frame = data.complete_cases(categorical=[row_var, col_var], min_n=2)
    observed = contingency_table(frame, row_var, col_var)
    counts = observed.to_numpy()
    res = chi_square_tests(counts)
    total = res["n"]

    cross_rows = []
    for i, row_label in enumerate(observed.index):
        row_total = int(counts[i].sum())
        count_row = {row_var: row_label, "Statistic": "Count", "Total": row_total}
        expected_row = {row_var: row_label, "Statistic": "Expected Count", "Total": float(row_total)}
        pct_row = {row_var: row_label, "Statistic": f"% within {row_var}", "Total": 100.0}
        for j, col_label in enumerate(observed.columns):
            count_row[col_label] = int(counts[i, j])
            expected_row[col_label] = float(res["expected"][i, j])
            pct_row[col_label] = counts[i, j] / row_total * 100
        cross_rows.extend([count_row, expected_row, pct_row])
    col_totals = {col: int(counts[:, j].sum()) for j, col in enumerate(observed.columns)}
    cross_rows.append({row_var: "Total", "Statistic": "Count", **col_totals, "Total": total})
    headers = [row_var, "Statistic", *observed.columns, "Total"]

    test_rows = [
        {"Test": "Pearson Chi-Square", "Value": res["pearson"], "df": res["df"], "Asymp. Sig. (2-sided)": res["p"]},
    ]
    if res["yates"] is not None:
        test_rows.append({"Test": "Continuity Correction", "Value": res["yates"], "df": 1,
                          "Asymp. Sig. (2-sided)": res["yates_p"]})
    test_rows.append({"Test": "Likelihood Ratio", "Value": res["lr"], "df": res["df"],
                      "Asymp. Sig. (2-sided)": res["lr_p"]})
    if res["fisher_p"] is not None:
        test_rows.append({"Test": "Fisher's Exact Test", "Exact Sig. (2-sided)": res["fisher_p"]})
    test_rows.append({"Test": "N of Valid Cases", "Value": total})

    n_cells = counts.size
    share_low = res["low_expected"] / n_cells
    note = (
        f"{res['low_expected']} cells ({share_low * 100:.1f}%) have expected count less than "
        f"{EXPECTED_COUNT_MINIMUM}. The minimum expected count is {res['min_expected']:.2f}."
    )
    if share_low > EXPECTED_COUNT_MAX_SHARE:
        data.warn(
            f"More than {int(EXPECTED_COUNT_MAX_SHARE * 100)}% of expected counts are below "
            f"{EXPECTED_COUNT_MINIMUM}; the chi-square approximation may be unreliable"
            + ("; use Fisher's exact test." if res["fisher_p"] is not None else ".")
        )

    measure_rows = [{"Measure": "Cramér's V", "Value": res["cramers_v"], "Approx. Sig.": res["p"]}]
    if res["phi"] is not None:
        measure_rows.insert(0, {"Measure": "Phi", "Value": res["phi"], "Approx. Sig.": res["p"]})

    tables = [
        make_table(f"{row_var} * {col_var} Crosstabulation", headers, cross_rows),
        make_table(
            "Chi-Square Tests",
            ["Test", "Value", "df", "Asymp. Sig. (2-sided)", "Exact Sig. (2-sided)"],
            test_rows,
            [note],
        ),
        make_table("Symmetric Measures", ["Measure", "Value", "Approx. Sig."], measure_rows),
    ]

    summary = (
        f"A chi-square test of independence found {significance_word(res['p'], opts.alpha)} association "
        f"between '{row_var}' and '{col_var}', χ²({res['df']}, N = {total}) = {fmt(res['pearson'])}, "
        f"{p_text(res['p'])}, Cramér's V = {fmt(res['cramers_v'], 3)} "
        f"({magnitude(res['cramers_v'], CORRELATION_CUTOFFS)} association)."
    )
    chart = make_chart(
        ChartType.BAR,
        f"{row_var} by {col_var}",
        [
            {"name": row_label, **{col: int(counts[i, j]) for j, col in enumerate(observed.columns)}}
            for i, row_label in enumerate(observed.index)
        ],
    )
    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=total)
