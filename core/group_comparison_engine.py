"""
FILE: core/group_comparison_engine.py
---------------------------------------
Parametric mean comparisons: one-sample, independent and paired t-tests,
one-way ANOVA with post hoc tests, two-way (factorial) ANOVA and
repeated-measures ANOVA.
No LangChain or LLM dependencies.

Edge policy shared by every between-groups test:
  - groups with fewer than MIN_OBS_PER_GROUP observations are excluded
    with a warning (Dataset.split_groups)
  - fewer than two remaining groups raise InsufficientGroupsError
"""

import logging

import numpy as np
import pandas as pd
from scipy import stats

from Schemas.statistician import AnalysisOptions, AnalysisRequest, AnalysisResult, ChartType
from core.errors import (
    InsufficientDataError,
    InsufficientGroupsError,
    InvalidVariableError,
)
from core.final_report_engine import (
    COHEN_D_CUTOFFS,
    ETA_SQUARED_CUTOFFS,
    build_result,
    fmt,
    magnitude,
    make_chart,
    make_table,
    p_text,
    significance_word,
)
from core.preprocessor_engine import Dataset, categories_in_order

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

def ci_headers(confidence_level: float) -> tuple[str, str]:
    pct = f"{confidence_level * 100:g}%"
    return f"{pct} CI Lower", f"{pct} CI Upper"


def df_text(df: float) -> str:
    """Integral degrees of freedom print without decimals, Welch df with two."""
    return str(int(df)) if float(df).is_integer() else f"{df:.2f}"


def t_interval(center: float, se: float, df: float, confidence_level: float) -> tuple[float, float]:
    margin = stats.t.ppf(1 - (1 - confidence_level) / 2, df) * se
    return center - margin, center + margin


def levene_test(samples: list[np.ndarray]) -> tuple[float | None, float | None]:
    """Mean-centred Levene test; (None, None) when every group is constant."""
    if all(np.ptp(s) == 0 for s in samples):
        return None, None
    stat, p = stats.levene(*samples, center="mean")
    if not np.isfinite(stat):
        return None, None
    return float(stat), float(p)


def pooled_sd(x1: np.ndarray, x2: np.ndarray) -> float:
    n1, n2 = len(x1), len(x2)
    return float(np.sqrt(
        ((n1 - 1) * np.var(x1, ddof=1) + (n2 - 1) * np.var(x2, ddof=1)) / (n1 + n2 - 2)
    ))


def group_statistics_rows(groups: dict[str, np.ndarray]) -> list[dict]:
    rows = []
    for label, values in groups.items():
        sd = float(np.std(values, ddof=1)) if len(values) > 1 else None
        rows.append({
            "Group":           label,
            "N":               len(values),
            "Mean":            float(np.mean(values)),
            "Std. Deviation":  sd,
            "Std. Error Mean": sd / np.sqrt(len(values)) if sd is not None else None,
            "Minimum":         float(np.min(values)),
            "Maximum":         float(np.max(values)),
        })
    return rows


def pick_two_groups(
    data: Dataset,
    groups: dict[str, np.ndarray],
    options: AnalysisOptions,
    group_col: str,
) -> list[tuple[str, np.ndarray]]:
    """
    The two groups a two-sample test compares: `options.groups` if given,
    else the first two in appearance order (with a warning when there are more).
    """
    if options.groups:
        wanted = [str(g) for g in options.groups]
        if len(wanted) != 2:
            raise InvalidVariableError("Exactly two groups must be named for a two-sample comparison.")
        absent = [g for g in wanted if g not in groups]
        if absent:
            raise InsufficientGroupsError(
                f"Group(s) {', '.join(repr(g) for g in absent)} of '{group_col}' "
                f"are absent or have too few observations."
            )
        return [(g, groups[g]) for g in wanted]

    pairs = list(groups.items())
    if len(pairs) > 2:
        data.warn(
            f"'{group_col}' has {len(pairs)} groups; only '{pairs[0][0]}' and '{pairs[1][0]}' "
            f"were compared. Use a one-way ANOVA or Kruskal-Wallis test for all groups."
        )
    return pairs[:2]


def _means_chart(title: str, groups: dict[str, np.ndarray]):
    return make_chart(
        ChartType.BAR,
        title,
        [{"name": label, "value": float(np.mean(values))} for label, values in groups.items()],
    )


# ─────────────────────────────────────────────
# T-TESTS
# ─────────────────────────────────────────────

def run_one_sample_t_test(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """One-sample t-test against options.test_value."""
    dv = request.dependent_variables[0]
    opts = request.options
    mu = opts.test_value

    x = data.complete_cases(numeric=[dv], min_n=2)[dv].to_numpy()
    n = len(x)
    mean = float(np.mean(x))
    sd = float(np.std(x, ddof=1))
    if sd == 0:
        raise InsufficientDataError(f"'{dv}' is constant; the t statistic is undefined")

    se = sd / np.sqrt(n)
    t_stat, p = stats.ttest_1samp(x, mu)
    t_stat, p = float(t_stat), float(p)
    diff = mean - mu
    lower, upper = t_interval(diff, se, n - 1, opts.confidence_level)
    d = diff / sd
    lo_h, hi_h = ci_headers(opts.confidence_level)

    tables = [
        make_table(
            "One-Sample Statistics",
            ["Variable", "N", "Mean", "Std. Deviation", "Std. Error Mean"],
            [{"Variable": dv, "N": n, "Mean": mean, "Std. Deviation": sd, "Std. Error Mean": se}],
        ),
        make_table(
            "One-Sample Test",
            ["Variable", "Test Value", "t", "df", "Sig. (2-tailed)", "Mean Difference", lo_h, hi_h, "Cohen's d"],
            [{
                "Variable": dv, "Test Value": mu, "t": t_stat, "df": n - 1,
                "Sig. (2-tailed)": p, "Mean Difference": diff, lo_h: lower, hi_h: upper,
                "Cohen's d": d,
            }],
        ),
    ]
    summary = (
        f"A one-sample t-test found {significance_word(p, opts.alpha)} difference between the mean of "
        f"'{dv}' (M = {fmt(mean)}, SD = {fmt(sd)}) and the test value {mu:g}, "
        f"t({n - 1}) = {fmt(t_stat)}, {p_text(p)}, d = {fmt(d)} ({magnitude(d, COHEN_D_CUTOFFS)} effect)."
    )
    return build_result(request.test_type, tables, summary, data.warnings, n_observations=n)


def run_independent_t_test(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """
    Independent-samples t-test. Both the pooled-variance and Welch rows are
    reported; Welch is selected when Levene's test is significant.
    """
    dv = request.dependent_variables[0]
    grp = request.grouping_variable
    opts = request.options

    frame = data.complete_cases(numeric=[dv], categorical=[grp], min_n=4)
    groups = data.split_groups(frame, dv, grp)
    (l1, x1), (l2, x2) = pick_two_groups(data, groups, opts, grp)
    n1, n2 = len(x1), len(x2)
    m1, m2 = float(np.mean(x1)), float(np.mean(x2))
    v1, v2 = float(np.var(x1, ddof=1)), float(np.var(x2, ddof=1))

    sp = pooled_sd(x1, x2)
    if sp == 0:
        raise InsufficientDataError(f"'{dv}' has no variance within either group; t is undefined")

    lev_f, lev_p = levene_test([x1, x2])
    use_welch = lev_p is not None and lev_p < opts.alpha

    diff = m1 - m2
    t_pooled, p_pooled = (float(v) for v in stats.ttest_ind(x1, x2, equal_var=True))
    df_pooled = float(n1 + n2 - 2)
    se_pooled = sp * np.sqrt(1 / n1 + 1 / n2)

    t_welch, p_welch = (float(v) for v in stats.ttest_ind(x1, x2, equal_var=False))
    se_welch = float(np.sqrt(v1 / n1 + v2 / n2))
    df_welch = se_welch ** 4 / ((v1 / n1) ** 2 / (n1 - 1) + (v2 / n2) ** 2 / (n2 - 1))

    d = diff / sp
    hedges_g = d * (1 - 3 / (4 * (n1 + n2) - 9))
    lo_h, hi_h = ci_headers(opts.confidence_level)

    test_rows = []
    for label, t_stat, df, p, se, selected, with_levene in (
        ("Equal variances assumed", t_pooled, df_pooled, p_pooled, se_pooled, not use_welch, True),
        ("Equal variances not assumed", t_welch, df_welch, p_welch, se_welch, use_welch, False),
    ):
        lower, upper = t_interval(diff, se, df, opts.confidence_level)
        test_rows.append({
            "Assumption":            label,
            "Levene's F":            lev_f if with_levene else None,
            "Levene Sig.":           lev_p if with_levene else None,
            "t":                     t_stat,
            "df":                    df,
            "Sig. (2-tailed)":       p,
            "Mean Difference":       diff,
            "Std. Error Difference": se,
            lo_h:                    lower,
            hi_h:                    upper,
            "Selected":              selected,
        })

    pair = {l1: x1, l2: x2}
    notes = []
    if use_welch:
        notes.append("Levene's test is significant; Welch's t-test (equal variances not assumed) is reported.")
        logger.info("Levene p=%.4f < %.2f, using Welch for '%s'", lev_p, opts.alpha, dv)

    tables = [
        make_table(
            "Group Statistics",
            ["Group", "N", "Mean", "Std. Deviation", "Std. Error Mean"],
            group_statistics_rows(pair),
        ),
        make_table(
            "Independent Samples Test",
            ["Assumption", "Levene's F", "Levene Sig.", "t", "df", "Sig. (2-tailed)",
             "Mean Difference", "Std. Error Difference", lo_h, hi_h, "Selected"],
            test_rows,
            notes,
        ),
        make_table(
            "Independent Samples Effect Sizes",
            ["Measure", "Standardizer", "Point Estimate"],
            [
                {"Measure": "Cohen's d", "Standardizer": sp, "Point Estimate": d},
                {"Measure": "Hedges' g", "Standardizer": sp, "Point Estimate": hedges_g},
            ],
        ),
    ]

    t_stat, df, p = (t_welch, df_welch, p_welch) if use_welch else (t_pooled, df_pooled, p_pooled)
    summary = (
        f"An independent-samples t-test found {significance_word(p, opts.alpha)} difference in '{dv}' "
        f"between '{l1}' (M = {fmt(m1)}, SD = {fmt(np.sqrt(v1))}) and '{l2}' "
        f"(M = {fmt(m2)}, SD = {fmt(np.sqrt(v2))}), t({df_text(df)}) = {fmt(t_stat)}, {p_text(p)}, "
        f"d = {fmt(d)} ({magnitude(d, COHEN_D_CUTOFFS)} effect)."
    )
    if use_welch:
        summary += " Welch's correction was applied because Levene's test indicated unequal variances."

    return build_result(
        request.test_type,
        tables,
        summary,
        data.warnings,
        charts=[_means_chart(f"Mean {dv} by {grp}", pair)],
        n_observations=n1 + n2,
    )


def paired_columns(request: AnalysisRequest) -> tuple[str, str]:
    """The two related measures, taken from dependent then independent variables."""
    names = [*request.dependent_variables, *request.independent_variables]
    return names[0], names[1]


def run_paired_t_test(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """Paired-samples t-test on row-wise differences; incomplete pairs are dropped."""
    a, b = paired_columns(request)
    opts = request.options

    frame = data.complete_cases(numeric=[a, b], min_n=2)
    xa, xb = frame[a].to_numpy(), frame[b].to_numpy()
    diff = xa - xb
    n = len(diff)
    mean_diff = float(np.mean(diff))
    sd_diff = float(np.std(diff, ddof=1))
    if sd_diff == 0:
        raise InsufficientDataError(f"The differences between '{a}' and '{b}' are constant; t is undefined")

    se = sd_diff / np.sqrt(n)
    t_stat, p = (float(v) for v in stats.ttest_rel(xa, xb))
    lower, upper = t_interval(mean_diff, se, n - 1, opts.confidence_level)
    dz = mean_diff / sd_diff
    lo_h, hi_h = ci_headers(opts.confidence_level)

    if n >= 3 and np.ptp(xa) > 0 and np.ptp(xb) > 0:
        r, r_p = (float(v) for v in stats.pearsonr(xa, xb))
    else:
        r, r_p = None, None

    pair_label = f"{a} - {b}"
    stats_rows = [
        {
            "Variable": name, "N": n, "Mean": float(np.mean(x)),
            "Std. Deviation": float(np.std(x, ddof=1)),
            "Std. Error Mean": float(np.std(x, ddof=1) / np.sqrt(n)),
        }
        for name, x in ((a, xa), (b, xb))
    ]
    tables = [
        make_table(
            "Paired Samples Statistics",
            ["Variable", "N", "Mean", "Std. Deviation", "Std. Error Mean"],
            stats_rows,
        ),
        make_table(
            "Paired Samples Correlations",
            ["Pair", "N", "Correlation", "Sig."],
            [{"Pair": pair_label, "N": n, "Correlation": r, "Sig.": r_p}],
        ),
        make_table(
            "Paired Samples Test",
            ["Pair", "Mean", "Std. Deviation", "Std. Error Mean", lo_h, hi_h,
             "t", "df", "Sig. (2-tailed)", "Cohen's dz"],
            [{
                "Pair": pair_label, "Mean": mean_diff, "Std. Deviation": sd_diff,
                "Std. Error Mean": se, lo_h: lower, hi_h: upper,
                "t": t_stat, "df": n - 1, "Sig. (2-tailed)": p, "Cohen's dz": dz,
            }],
        ),
    ]
    summary = (
        f"A paired-samples t-test found {significance_word(p, opts.alpha)} difference between "
        f"'{a}' (M = {fmt(stats_rows[0]['Mean'])}) and '{b}' (M = {fmt(stats_rows[1]['Mean'])}), "
        f"t({n - 1}) = {fmt(t_stat)}, {p_text(p)}, dz = {fmt(dz)} "
        f"({magnitude(dz, COHEN_D_CUTOFFS)} effect)."
    )
    chart = make_chart(
        ChartType.BAR,
        "Paired Means",
        [{"name": row["Variable"], "value": row["Mean"]} for row in stats_rows],
    )
    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=n)


# ─────────────────────────────────────────────
# ONE-WAY ANOVA
# ─────────────────────────────────────────────

def _tukey_rows(groups: dict[str, np.ndarray], ms_within: float, confidence_level: float) -> list[dict]:
    labels = list(groups)
    res = stats.tukey_hsd(*groups.values())
    ci = res.confidence_interval(confidence_level=confidence_level)
    lo_h, hi_h = ci_headers(confidence_level)
    rows = []
    for i in range(len(labels)):
        for j in range(i + 1, len(labels)):
            ni, nj = len(groups[labels[i]]), len(groups[labels[j]])
            rows.append({
                "Group I":         labels[i],
                "Group J":         labels[j],
                "Mean Difference": float(res.statistic[i, j]),
                "Std. Error":      float(np.sqrt(ms_within * (1 / ni + 1 / nj))),
                "Sig.":            float(res.pvalue[i, j]),
                lo_h:              float(ci.low[i, j]),
                hi_h:              float(ci.high[i, j]),
            })
    return rows


def _bonferroni_rows(
    groups: dict[str, np.ndarray],
    ms_within: float,
    df_within: int,
    confidence_level: float,
) -> list[dict]:
    labels = list(groups)
    n_comparisons = len(labels) * (len(labels) - 1) // 2
    t_crit = stats.t.ppf(1 - (1 - confidence_level) / (2 * n_comparisons), df_within)
    lo_h, hi_h = ci_headers(confidence_level)
    rows = []
    for i in range(len(labels)):
        for j in range(i + 1, len(labels)):
            gi, gj = groups[labels[i]], groups[labels[j]]
            diff = float(np.mean(gi) - np.mean(gj))
            se = float(np.sqrt(ms_within * (1 / len(gi) + 1 / len(gj))))
            p = 2 * stats.t.sf(abs(diff / se), df_within)
            rows.append({
                "Group I":         labels[i],
                "Group J":         labels[j],
                "Mean Difference": diff,
                "Std. Error":      se,
                "Sig.":            min(1.0, p * n_comparisons),
                lo_h:              diff - t_crit * se,
                hi_h:              diff + t_crit * se,
            })
    return rows


def welch_anova(samples: list[np.ndarray]) -> tuple[float, float, float, float] | None:
    """Welch's robust F: (F, df1, df2, p), or None when a group has zero variance."""
    from statsmodels.stats.oneway import anova_oneway

    if any(np.var(s, ddof=1) == 0 for s in samples):
        return None
    res = anova_oneway(samples, use_var="unequal", welch_correction=True)
    df1, df2 = res.df
    return float(res.statistic), float(df1), float(df2), float(res.pvalue)


def run_one_way_anova(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """One-way ANOVA with Levene's test, Welch's F and Tukey / Bonferroni post hoc tests."""
    dv = request.dependent_variables[0]
    grp = request.grouping_variable
    opts = request.options

    frame = data.complete_cases(numeric=[dv], categorical=[grp], min_n=4)
    groups = data.split_groups(frame, dv, grp)
    samples = list(groups.values())
    k = len(groups)
    all_values = np.concatenate(samples)
    n = len(all_values)

    grand_mean = float(np.mean(all_values))
    ss_between = float(sum(len(s) * (np.mean(s) - grand_mean) ** 2 for s in samples))
    ss_within = float(sum(((s - np.mean(s)) ** 2).sum() for s in samples))
    ss_total = ss_between + ss_within
    df_between, df_within = k - 1, n - k
    if df_within <= 0:
        raise InsufficientDataError("Not enough observations for the within-groups error term", minimum=k + 1)

    ms_between = ss_between / df_between
    ms_within = ss_within / df_within
    if ms_within == 0:
        raise InsufficientDataError(f"'{dv}' has no variance within groups; F is undefined")

    f_stat = ms_between / ms_within
    p = float(stats.f.sf(f_stat, df_between, df_within))
    eta_sq = ss_between / ss_total if ss_total > 0 else None
    omega_sq = (ss_between - df_between * ms_within) / (ss_total + ms_within)

    lev_f, lev_p = levene_test(samples)
    unequal = lev_p is not None and lev_p < opts.alpha

    tables = [
        make_table(
            "Descriptives",
            ["Group", "N", "Mean", "Std. Deviation", "Std. Error Mean", "Minimum", "Maximum"],
            group_statistics_rows(groups),
        ),
        make_table(
            "Test of Homogeneity of Variances",
            ["Levene Statistic", "df1", "df2", "Sig."],
            [{"Levene Statistic": lev_f, "df1": df_between, "df2": df_within, "Sig.": lev_p}],
        ),
        make_table(
            "ANOVA",
            ["Source", "Sum of Squares", "df", "Mean Square", "F", "Sig."],
            [
                {"Source": "Between Groups", "Sum of Squares": ss_between, "df": df_between,
                 "Mean Square": ms_between, "F": f_stat, "Sig.": p},
                {"Source": "Within Groups", "Sum of Squares": ss_within, "df": df_within,
                 "Mean Square": ms_within},
                {"Source": "Total", "Sum of Squares": ss_total, "df": n - 1},
            ],
        ),
        make_table(
            "Effect Size",
            ["Measure", "Value"],
            [
                {"Measure": "Eta Squared (η²)", "Value": eta_sq},
                {"Measure": "Partial Eta Squared", "Value": eta_sq},
                {"Measure": "Omega Squared (ω²)", "Value": omega_sq},
            ],
        ),
    ]

    welch = welch_anova(samples) if unequal else None
    if welch is not None:
        w_f, w_df1, w_df2, w_p = welch
        tables.append(make_table(
            "Robust Tests of Equality of Means",
            ["Test", "Statistic", "df1", "df2", "Sig."],
            [{"Test": "Welch", "Statistic": w_f, "df1": w_df1, "df2": w_df2, "Sig.": w_p}],
        ))
    elif unequal:
        data.warn("Welch's F could not be computed because a group has zero variance.")

    decision_p = welch[3] if welch is not None else p
    if decision_p < opts.alpha and k >= 3:
        if opts.post_hoc == "bonferroni":
            title, rows = "Multiple Comparisons (Bonferroni)", _bonferroni_rows(
                groups, ms_within, df_within, opts.confidence_level
            )
        else:
            title, rows = "Multiple Comparisons (Tukey HSD)", _tukey_rows(
                groups, ms_within, opts.confidence_level
            )
        lo_h, hi_h = ci_headers(opts.confidence_level)
        tables.append(make_table(
            title,
            ["Group I", "Group J", "Mean Difference", "Std. Error", "Sig.", lo_h, hi_h],
            rows,
        ))

    summary = (
        f"A one-way ANOVA found {significance_word(p, opts.alpha)} difference in '{dv}' across "
        f"{k} groups of '{grp}', F({df_between}, {df_within}) = {fmt(f_stat)}, {p_text(p)}, "
        f"η² = {fmt(eta_sq, 3)} ({magnitude(eta_sq, ETA_SQUARED_CUTOFFS)} effect)."
    )
    if welch is not None:
        summary += (
            f" Levene's test indicated unequal variances; Welch's F({fmt(welch[1])}, {fmt(welch[2])}) "
            f"= {fmt(welch[0])}, {p_text(welch[3])}."
        )

    return build_result(
        request.test_type,
        tables,
        summary,
        data.warnings,
        charts=[_means_chart(f"Mean {dv} by {grp}", groups)],
        n_observations=n,
    )


# ─────────────────────────────────────────────
# TWO-WAY ANOVA
# ─────────────────────────────────────────────

def factor_names(request: AnalysisRequest) -> list[str]:
    names = [*request.independent_variables]
    if request.grouping_variable:
        names.append(request.grouping_variable)
    return list(dict.fromkeys(names))


def run_two_way_anova(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """
    Factorial ANOVA with Type III sums of squares (sum-to-zero contrasts).
    A significant interaction is reported before the main effects.
    """
    from statsmodels.formula.api import ols
    from statsmodels.stats.anova import anova_lm

    dv = request.dependent_variables[0]
    opts = request.options
    factors = factor_names(request)
    if len(factors) != 2:
        raise InvalidVariableError(
            f"A two-way ANOVA needs exactly two factors (independent variables plus grouping); got {len(factors)}."
        )
    fa, fb = factors

    frame = data.complete_cases(numeric=[dv], categorical=[fa, fb], min_n=5)
    levels_a = categories_in_order(frame[fa])
    levels_b = categories_in_order(frame[fb])
    for name, levels in ((fa, levels_a), (fb, levels_b)):
        if len(levels) < 2:
            raise InsufficientGroupsError(f"Factor '{name}' has {len(levels)} level(s); at least 2 are needed.")

    empty = [
        f"{a} × {b}"
        for a in levels_a for b in levels_b
        if not ((frame[fa] == a) & (frame[fb] == b)).any()
    ]
    if empty:
        raise InsufficientDataError(f"Empty factor cell(s): {', '.join(empty)}", minimum=1)

    model_frame = pd.DataFrame({
        "y": frame[dv].to_numpy(),
        "a": pd.Categorical(frame[fa], categories=levels_a),
        "b": pd.Categorical(frame[fb], categories=levels_b),
    })
    model = ols("y ~ C(a, Sum) * C(b, Sum)", data=model_frame).fit()
    if model.df_resid <= 0:
        raise InsufficientDataError(
            "Every cell has a single observation; no error term is left for the F tests",
            minimum=len(levels_a) * len(levels_b) + 1,
        )
    anova = anova_lm(model, typ=3)

    ss_error = float(anova.loc["Residual", "sum_sq"])
    df_error = float(anova.loc["Residual", "df"])
    ms_error = ss_error / df_error
    n = len(model_frame)
    ss_corrected_total = float(((model_frame["y"] - model_frame["y"].mean()) ** 2).sum())
    ss_model = ss_corrected_total - ss_error
    df_model = n - 1 - df_error

    def effect_row(source: str, ss: float, df: float) -> dict:
        f_stat = (ss / df) / ms_error if ms_error > 0 else None
        return {
            "Source": source,
            "Type III Sum of Squares": ss,
            "df": df,
            "Mean Square": ss / df,
            "F": f_stat,
            "Sig.": float(stats.f.sf(f_stat, df, df_error)) if f_stat is not None else None,
            "Partial Eta Squared": ss / (ss + ss_error) if ss + ss_error > 0 else None,
        }

    labels = {
        "Intercept": "Intercept",
        "C(a, Sum)": fa,
        "C(b, Sum)": fb,
        "C(a, Sum):C(b, Sum)": f"{fa} * {fb}",
    }
    rows = [effect_row("Corrected Model", ss_model, df_model)]
    effects: dict[str, dict] = {}
    for term, source in labels.items():
        row = effect_row(source, float(anova.loc[term, "sum_sq"]), float(anova.loc[term, "df"]))
        rows.append(row)
        effects[term] = row
    rows.append({"Source": "Error", "Type III Sum of Squares": ss_error, "df": df_error, "Mean Square": ms_error})
    rows.append({"Source": "Corrected Total", "Type III Sum of Squares": ss_corrected_total, "df": n - 1})

    cell_rows = []
    chart_points = []
    cells = []
    for a in levels_a:
        point = {"name": a}
        for b in levels_b:
            y = frame.loc[(frame[fa] == a) & (frame[fb] == b), dv].to_numpy()
            cells.append(y)
            cell_rows.append({
                fa: a, fb: b, "Mean": float(np.mean(y)),
                "Std. Deviation": float(np.std(y, ddof=1)) if len(y) > 1 else None,
                "N": len(y),
            })
            point[b] = float(np.mean(y))
        chart_points.append(point)

    tables = [
        make_table("Descriptive Statistics", [fa, fb, "Mean", "Std. Deviation", "N"], cell_rows),
        make_table(
            "Tests of Between-Subjects Effects",
            ["Source", "Type III Sum of Squares", "df", "Mean Square", "F", "Sig.", "Partial Eta Squared"],
            rows,
            [f"R Squared = {model.rsquared:.3f} (Adjusted R Squared = {model.rsquared_adj:.3f})"],
        ),
    ]
    if all(len(c) >= 2 for c in cells):
        lev_f, lev_p = levene_test(cells)
        tables.append(make_table(
            "Levene's Test of Equality of Error Variances",
            ["F", "df1", "df2", "Sig."],
            [{"F": lev_f, "df1": len(cells) - 1, "df2": n - len(cells), "Sig.": lev_p}],
        ))
    else:
        data.warn("Levene's test was skipped because some cells have a single observation.")

    inter = effects["C(a, Sum):C(b, Sum)"]
    main_a, main_b = effects["C(a, Sum)"], effects["C(b, Sum)"]

    def effect_text(name: str, row: dict) -> str:
        return (
            f"{name}: F({df_text(row['df'])}, {df_text(df_error)}) = {fmt(row['F'])}, "
            f"{p_text(row['Sig.'])}, partial η² = {fmt(row['Partial Eta Squared'], 3)}"
        )

    if inter["Sig."] is not None and inter["Sig."] < opts.alpha:
        summary = (
            f"The {fa} × {fb} interaction on '{dv}' was statistically significant "
            f"({effect_text('interaction', inter)}); the main effects should be interpreted "
            f"through simple-effects follow-up rather than on their own."
        )
    else:
        summary = (
            f"The {fa} × {fb} interaction on '{dv}' was not significant ({p_text(inter['Sig.'])}). "
            f"Main effect of {effect_text(fa, main_a)}; main effect of {effect_text(fb, main_b)}."
        )

    return build_result(
        request.test_type,
        tables,
        summary,
        data.warnings,
        charts=[make_chart(ChartType.LINE, f"Estimated Marginal Means of {dv}", chart_points)],
        n_observations=n,
    )


# ─────────────────────────────────────────────
# REPEATED-MEASURES ANOVA
# ─────────────────────────────────────────────

def orthonormal_contrasts(k: int) -> np.ndarray:
    """k × (k-1) orthonormal contrasts, each orthogonal to the unit vector."""
    basis = np.column_stack([np.ones(k), np.eye(k)[:, : k - 1]])
    q, _ = np.linalg.qr(basis)
    return q[:, 1:]


def sphericity(y: np.ndarray) -> dict[str, float | None]:
    """Mauchly's W with chi-square approximation and the GG / HF / lower-bound epsilons."""
    n, k = y.shape
    p = k - 1
    c = orthonormal_contrasts(k)
    m = c.T @ np.cov(y, rowvar=False) @ c
    trace = float(np.trace(m))

    gg = trace ** 2 / (p * float(np.trace(m @ m))) if trace > 0 else None
    hf = None
    if gg is not None:
        denom = p * (n - 1 - p * gg)
        hf = min(1.0, (n * p * gg - 2) / denom) if denom > 0 else 1.0

    w = chi_sq = dof = p_value = None
    if n > p and trace > 0:
        w = float(np.linalg.det(m) / (trace / p) ** p)
        if w > 0:
            factor = (n - 1) - (2 * p ** 2 + p + 2) / (6 * p)
            chi_sq = float(-factor * np.log(w))
            dof = p * (p + 1) / 2 - 1
            p_value = float(stats.chi2.sf(chi_sq, dof))

    return {
        "w": w, "chi_sq": chi_sq, "df": dof, "p": p_value,
        "gg": gg, "hf": hf, "lower": 1.0 / p,
    }


def run_repeated_measures_anova(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """One-factor within-subjects ANOVA over 3+ related measures."""
    names = request.dependent_variables
    opts = request.options

    frame = data.complete_cases(numeric=names, min_n=3)
    y = frame[names].to_numpy(dtype=float)
    n, k = y.shape

    grand = float(y.mean())
    ss_subjects = k * float(((y.mean(axis=1) - grand) ** 2).sum())
    ss_conditions = n * float(((y.mean(axis=0) - grand) ** 2).sum())
    ss_total = float(((y - grand) ** 2).sum())
    ss_error = ss_total - ss_subjects - ss_conditions
    df_cond, df_error = k - 1, (k - 1) * (n - 1)
    ms_error = ss_error / df_error
    if ms_error <= 1e-12 * max(ss_total, 1.0):
        raise InsufficientDataError("The measures leave no residual variance; F is undefined")

    f_stat = (ss_conditions / df_cond) / ms_error
    partial_eta = ss_conditions / (ss_conditions + ss_error)
    sph = sphericity(y)

    corrections = [("Sphericity Assumed", 1.0)]
    if sph["gg"] is not None:
        corrections.append(("Greenhouse-Geisser", sph["gg"]))
        corrections.append(("Huynh-Feldt", sph["hf"]))
    corrections.append(("Lower-bound", sph["lower"]))

    effect_rows, error_rows = [], []
    p_by_correction = {}
    for label, eps in corrections:
        d1, d2 = df_cond * eps, df_error * eps
        p = float(stats.f.sf(f_stat, d1, d2))
        p_by_correction[label] = (p, d1, d2)
        effect_rows.append({
            "Source": "Condition", "Correction": label, "Type III Sum of Squares": ss_conditions,
            "df": d1, "Mean Square": ss_conditions / d1, "F": f_stat, "Sig.": p,
            "Partial Eta Squared": partial_eta,
        })
        error_rows.append({
            "Source": "Error (Condition)", "Correction": label,
            "Type III Sum of Squares": ss_error, "df": d2, "Mean Square": ss_error / d2,
        })

    violated = sph["p"] is not None and sph["p"] < opts.alpha
    chosen = "Greenhouse-Geisser" if violated and sph["gg"] is not None else "Sphericity Assumed"
    p, d1, d2 = p_by_correction[chosen]

    desc_rows = [
        {"Measure": name, "Mean": float(y[:, j].mean()),
         "Std. Deviation": float(y[:, j].std(ddof=1)), "N": n}
        for j, name in enumerate(names)
    ]
    tables = [
        make_table("Descriptive Statistics", ["Measure", "Mean", "Std. Deviation", "N"], desc_rows),
        make_table(
            "Mauchly's Test of Sphericity",
            ["Mauchly's W", "Approx. Chi-Square", "df", "Sig.",
             "Greenhouse-Geisser ε", "Huynh-Feldt ε", "Lower-bound ε"],
            [{
                "Mauchly's W": sph["w"], "Approx. Chi-Square": sph["chi_sq"], "df": sph["df"],
                "Sig.": sph["p"], "Greenhouse-Geisser ε": sph["gg"],
                "Huynh-Feldt ε": sph["hf"], "Lower-bound ε": sph["lower"],
            }],
        ),
        make_table(
            "Tests of Within-Subjects Effects",
            ["Source", "Correction", "Type III Sum of Squares", "df", "Mean Square",
             "F", "Sig.", "Partial Eta Squared"],
            effect_rows + error_rows,
            [f"{chosen} row drives the interpretation."],
        ),
    ]

    summary = (
        f"A repeated-measures ANOVA found {significance_word(p, opts.alpha)} difference across "
        f"{k} measures ({', '.join(names)}), F({fmt(d1)}, {fmt(d2)}) = {fmt(f_stat)}, {p_text(p)}, "
        f"partial η² = {fmt(partial_eta, 3)} ({magnitude(partial_eta, ETA_SQUARED_CUTOFFS)} effect)."
    )
    if violated:
        summary += f" Mauchly's test indicated a sphericity violation ({p_text(sph['p'])}); the Greenhouse-Geisser correction was applied."

    chart = make_chart(
        ChartType.LINE,
        "Mean by Measure",
        [{"name": row["Measure"], "value": row["Mean"]} for row in desc_rows],
    )
    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=n)
