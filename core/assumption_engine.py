"""
FILE: core/assumption_engine.py
---------------------------------
Pure statistical functions for checking pre-test assumptions.
No LangChain or LLM dependencies.

Each check function returns a list of AssumptionResult (one per group,
variable or pair where that applies). check_assumptions() looks up the
checks for a test id in ASSUMPTION_REGISTRY and runs them over the same
Dataset coercion the statistics engine uses. A check that cannot run on
the data is reported as not passed, with the reason.
"""

import logging

import numpy as np
import pandas as pd
from scipy import stats

from Schemas.assumption_checker import AssumptionCheckerOutput, AssumptionResult
from Schemas.statistician import AnalysisRequest, MeasureLevel
from Utils.assumptions_requirements_registry import ASSUMPTION_REGISTRY
from Utils.test_requirements_registry import TEST_REQUIREMENTS
from constants.assumption_checker import (
    EXPECTED_COUNT_MAX_SHARE,
    EXPECTED_COUNT_MINIMUM,
    LINEARITY_GAP_THRESHOLD,
    MIN_SAMPLE_SIZE,
    VIF_THRESHOLD,
)
from constants.statistician import IQR_MULTIPLIER
from core.descriptive_engine import describe, detect_outliers, normality_statistic
from core.errors import AnalysisError
from core.group_comparison_engine import factor_names, levene_test, paired_columns, sphericity
from core.nonparametric_engine import contingency_table
from core.preprocessor_engine import Dataset, clean_scalar
from core.regression_engine import compute_vif, design_matrix, split_predictors
from core.reliability_engine import correlation_matrix_checked, kmo
from core.statistician_engine import used_variables, validate_request

logger = logging.getLogger(__name__)

GROUPED_TESTS = {"independent-t-test", "one-way-anova", "mann-whitney", "kruskal-wallis", "normality-test"}
REGRESSION_TESTS = {"simple-linear-regression", "multiple-regression", "logistic-regression"}


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

def _p_text(p: float) -> str:
    return f"p = {p:.3f}"


def _scale_variables(data: Dataset, request: AnalysisRequest) -> list[str]:
    names = [*request.independent_variables]
    if request.test_type != "logistic-regression":
        names = [*request.dependent_variables, *names]
    return [
        name for name in dict.fromkeys(names)
        if data.infer_measure(name) == MeasureLevel.SCALE
    ]


def _normality_result(label: str, values: np.ndarray, alpha: float) -> AssumptionResult:
    test_name, stat, p = normality_statistic(values)
    if p is None:
        return AssumptionResult(
            name=f"Normality ({label})",
            passed=False,
            value="-",
            threshold=f"p > {alpha}",
            interpretation="Normality could not be tested (fewer than 3 values or no variation).",
            recommendation="Collect more data or use a non-parametric test.",
            test_used=test_name,
        )
    d = describe(values)
    passed = p > alpha
    symbol = "W" if test_name == "Shapiro-Wilk" else "K²"
    return AssumptionResult(
        name=f"Normality ({label})",
        passed=passed,
        value=f"{symbol} = {stat:.3f}, {_p_text(p)}",
        threshold=f"p > {alpha}",
        interpretation=(
            f"Data in '{label}' appear normally distributed." if passed
            else f"Data in '{label}' may not be normally distributed."
        ),
        recommendation=(
            "Normality assumption met." if passed
            else f"Skewness = {d['skewness'] or 0:.2f}, Kurtosis = {d['kurtosis'] or 0:.2f}. "
                 f"Consider a transformation or a non-parametric test."
        ),
        test_used=test_name,
    )


def _fit_ols(data: Dataset, request: AnalysisRequest):
    """statsmodels OLS of the dependent variable on the (dummy-coded) predictors."""
    from statsmodels.regression.linear_model import OLS
    from statsmodels.tools import add_constant

    dv = request.dependent_variables[0]
    predictors = request.independent_variables
    scale, categorical = split_predictors(data, predictors)
    frame = data.complete_cases(numeric=[dv, *scale], categorical=categorical, min_n=3)
    X = design_matrix(frame, predictors, categorical)
    return OLS(frame[dv].astype(float), add_constant(X, has_constant="add")).fit(method="qr")


def _cell_residuals(data: Dataset, request: AnalysisRequest) -> np.ndarray:
    dv = request.dependent_variables[0]
    factors = factor_names(request)
    frame = data.complete_cases(numeric=[dv], categorical=factors, min_n=3)
    cell_means = frame.groupby(factors)[dv].transform("mean")
    return (frame[dv] - cell_means).to_numpy(dtype=float)


# ─────────────────────────────────────────────
# INDIVIDUAL CHECK FUNCTIONS
# ─────────────────────────────────────────────

def check_sample_size(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    """Complete rows on the test's variables against a per-family minimum."""
    test = request.test_type
    if "anova" in test:
        minimum = MIN_SAMPLE_SIZE["anova"]
    elif test in ("chi-square", "crosstabs"):
        minimum = MIN_SAMPLE_SIZE["chi-square"]
    elif "regression" in test:
        minimum = MIN_SAMPLE_SIZE["regression"]
    else:
        minimum = MIN_SAMPLE_SIZE["default"]

    used = used_variables(request, TEST_REQUIREMENTS[request.test_type])
    n = int(data.frame[used].map(clean_scalar).notna().all(axis=1).sum())
    passed = n >= minimum
    return [AssumptionResult(
        name="Sample Size Adequacy",
        passed=passed,
        value=n,
        threshold=f"≥ {minimum}",
        interpretation=(
            "Sample size is adequate for this analysis." if passed
            else "Sample size may be too small for reliable results."
        ),
        recommendation=(
            "Proceed with analysis." if passed
            else "Consider collecting more data or using non-parametric alternatives."
        ),
        test_used="Sample Size Heuristic",
    )]


def check_normality(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    """Per group when the test is grouped, else per analysed variable."""
    alpha = request.options.alpha
    grp = request.grouping_variable
    if grp and request.test_type in GROUPED_TESTS:
        dv = request.dependent_variables[0]
        frame = data.complete_cases(numeric=[dv], categorical=[grp], min_n=3)
        groups = data.split_groups(frame, dv, grp, min_size=3, min_groups=1)
        return [_normality_result(label, values, alpha) for label, values in groups.items()]

    names = [*request.dependent_variables]
    if request.test_type == "pearson":
        names += request.independent_variables
    return [
        _normality_result(name, data.numeric(name).dropna().to_numpy(dtype=float), alpha)
        for name in dict.fromkeys(names)
    ]


def check_normality_of_differences(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    a, b = paired_columns(request)
    frame = data.complete_cases(numeric=[a, b], min_n=3)
    diff = (frame[a] - frame[b]).to_numpy(dtype=float)
    return [_normality_result(f"{a} - {b}", diff, request.options.alpha)]


def check_normality_of_residuals(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    if request.test_type == "two-way-anova":
        residuals = _cell_residuals(data, request)
    else:
        residuals = _fit_ols(data, request).resid.to_numpy()
    return [_normality_result("residuals", residuals, request.options.alpha)]


def check_homogeneity_levene(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    """Mean-centred Levene test across groups (or factor cells for two-way ANOVA)."""
    alpha = request.options.alpha
    dv = request.dependent_variables[0]
    if request.test_type == "two-way-anova":
        factors = factor_names(request)
        frame = data.complete_cases(numeric=[dv], categorical=factors, min_n=3)
        samples = [g[dv].to_numpy(dtype=float) for _, g in frame.groupby(factors, sort=False)]
        samples = [s for s in samples if len(s) >= 2]
    else:
        grp = request.grouping_variable
        frame = data.complete_cases(numeric=[dv], categorical=[grp], min_n=3)
        samples = list(data.split_groups(frame, dv, grp).values())

    if len(samples) < 2:
        raise ValueError("fewer than two groups with at least two observations")
    stat, p = levene_test(samples)
    if p is None:
        raise ValueError("every group is constant")
    n = sum(len(s) for s in samples)
    passed = p > alpha
    return [AssumptionResult(
        name="Homogeneity of Variances",
        passed=passed,
        value=f"F({len(samples) - 1}, {n - len(samples)}) = {stat:.3f}, {_p_text(p)}",
        threshold=f"p > {alpha}",
        interpretation=(
            "Variances are approximately equal across groups." if passed
            else "Variances differ significantly across groups."
        ),
        recommendation=(
            "Use equal variances assumed." if passed
            else "Use Welch's correction or equal variances not assumed."
        ),
        test_used="Levene's Test",
    )]


def _linearity_gap(x: np.ndarray, y: np.ndarray) -> tuple[float, float, float] | None:
    if len(x) < 5 or np.ptp(x) == 0 or np.ptp(y) == 0:
        return None
    pearson_r = float(stats.pearsonr(x, y).statistic)
    spearman_r = float(stats.spearmanr(x, y).statistic)
    return pearson_r, spearman_r, abs(abs(spearman_r) - abs(pearson_r))


def check_linearity(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    """
    Pearson vs Spearman heuristic: a Spearman coefficient clearly larger than
    Pearson's points to a monotonic but non-linear relationship.
    """
    threshold = f"|rs| - |r| < {LINEARITY_GAP_THRESHOLD}"
    if request.test_type in REGRESSION_TESTS:
        dv = request.dependent_variables[0]
        results = []
        for x_name in _scale_variables(data, request):
            if x_name == dv:
                continue
            frame = data.complete_cases(numeric=[dv, x_name], min_n=3)
            gap = _linearity_gap(frame[x_name].to_numpy(), frame[dv].to_numpy())
            if gap is None:
                raise ValueError(f"too few varying observations to assess '{x_name}'")
            r, rs, diff = gap
            passed = diff < LINEARITY_GAP_THRESHOLD
            results.append(AssumptionResult(
                name=f"Linearity ({x_name})",
                passed=passed,
                value=f"r = {r:.3f}, rs = {rs:.3f}, gap = {diff:.3f}",
                threshold=threshold,
                interpretation=(
                    "Relationship appears approximately linear." if passed
                    else "Notable gap between Pearson and Spearman: possible non-linearity."
                ),
                recommendation=(
                    "No action needed." if passed
                    else f"Inspect a scatter plot of '{dv}' against '{x_name}'; consider a transformation."
                ),
                test_used="Pearson vs Spearman Heuristic",
            ))
        return results

    names = list(dict.fromkeys([*request.dependent_variables, *request.independent_variables]))
    columns = {name: data.numeric(name) for name in names}
    worst, flagged, checked = None, [], 0
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            both = pd.DataFrame({"x": columns[names[i]], "y": columns[names[j]]}).dropna()
            gap = _linearity_gap(both["x"].to_numpy(), both["y"].to_numpy())
            if gap is None:
                continue
            checked += 1
            if worst is None or gap[2] > worst[1]:
                worst = (f"{names[i]} / {names[j]}", gap[2])
            if gap[2] >= LINEARITY_GAP_THRESHOLD:
                flagged.append(f"{names[i]} / {names[j]}")
    if worst is None:
        raise ValueError("no variable pair has enough varying observations")

    passed = not flagged
    return [AssumptionResult(
        name="Linearity",
        passed=passed,
        value=f"largest gap = {worst[1]:.3f} ({worst[0]}), {checked} pair(s) checked",
        threshold=threshold,
        interpretation=(
            "All relationships appear approximately linear." if passed
            else f"Possible non-linearity for: {', '.join(flagged[:5])}{'...' if len(flagged) > 5 else ''}."
        ),
        recommendation="No action needed." if passed else "Consider Spearman's rho for the flagged pairs.",
        test_used="Pearson vs Spearman Heuristic",
    )]


def check_homoscedasticity_bp(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    """Breusch-Pagan test on the OLS residuals."""
    from statsmodels.stats.diagnostic import het_breuschpagan

    alpha = request.options.alpha
    model = _fit_ols(data, request)
    lm, p, _, _ = het_breuschpagan(model.resid, model.model.exog)
    passed = p > alpha
    return [AssumptionResult(
        name="Homoscedasticity",
        passed=passed,
        value=f"LM = {lm:.3f}, {_p_text(p)}",
        threshold=f"p > {alpha}",
        interpretation=(
            "Residual variance appears constant." if passed
            else "Residual variance changes with the fitted values (heteroscedasticity)."
        ),
        recommendation=(
            "No action needed." if passed
            else "Consider robust (HC3) standard errors or a transformation of the dependent variable."
        ),
        test_used="Breusch-Pagan",
    )]


def check_multicollinearity_vif(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    predictors = request.independent_variables
    scale, categorical = split_predictors(data, predictors)
    frame = data.complete_cases(numeric=scale, categorical=categorical, min_n=3)
    scores = compute_vif(design_matrix(frame, predictors, categorical))

    high = {k: v for k, v in scores.items() if v >= VIF_THRESHOLD}
    top = max(scores.values())
    passed = not high
    return [AssumptionResult(
        name="Multicollinearity",
        passed=passed,
        value=f"max VIF = {top:.2f}" if np.isfinite(top) else "max VIF = inf",
        threshold=f"VIF < {VIF_THRESHOLD:g}",
        interpretation=(
            "No multicollinearity detected." if passed
            else f"High VIF for: {', '.join(high)}."
        ),
        recommendation=(
            "No action needed." if passed
            else "Remove or combine strongly correlated predictors."
        ),
        test_used="VIF",
    )]


def check_outliers_iqr(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    results = []
    for name in _scale_variables(data, request):
        values = data.numeric(name).dropna().to_numpy(dtype=float)
        if len(values) < 4:
            continue
        outliers = detect_outliers(values)["iqr_outliers"]
        listed = ", ".join(f"{v:g}" for v in outliers[:5]) + ("..." if len(outliers) > 5 else "")
        passed = not outliers
        results.append(AssumptionResult(
            name=f"Outliers ({name})",
            passed=passed,
            value="No outliers detected" if passed else f"{len(outliers)} outlier(s): {listed}",
            threshold="No extreme values",
            interpretation=(
                "No outliers detected using the IQR method." if passed
                else f"{len(outliers)} potential outlier(s) beyond {IQR_MULTIPLIER} × IQR."
            ),
            recommendation=(
                "No action needed." if passed
                else "Review outliers for data entry errors. Consider robust methods or transformation."
            ),
            test_used="IQR Method",
        ))
    return results


def check_expected_frequencies(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    row_var, col_var = request.dependent_variables[0], request.independent_variables[0]
    frame = data.complete_cases(categorical=[row_var, col_var], min_n=2)
    observed = contingency_table(frame, row_var, col_var).to_numpy()
    expected = stats.contingency.expected_freq(observed)
    low = int((expected < EXPECTED_COUNT_MINIMUM).sum())
    share = low / expected.size
    passed = share <= EXPECTED_COUNT_MAX_SHARE and expected.min() >= 1
    return [AssumptionResult(
        name="Expected Cell Frequencies",
        passed=passed,
        value=f"{low} of {expected.size} cells < {EXPECTED_COUNT_MINIMUM} (min = {expected.min():.2f})",
        threshold=f"≤ {int(EXPECTED_COUNT_MAX_SHARE * 100)}% of cells < {EXPECTED_COUNT_MINIMUM}, none < 1",
        interpretation=(
            "Expected frequencies are adequate for the chi-square approximation." if passed
            else "Too many small expected frequencies for the chi-square approximation."
        ),
        recommendation=(
            "Proceed with the chi-square test." if passed
            else "Use Fisher's exact test or merge sparse categories."
        ),
        test_used="Expected Frequency Rule",
    )]


def check_sphericity(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    alpha = request.options.alpha
    names = request.dependent_variables
    frame = data.complete_cases(numeric=names, min_n=3)
    sph = sphericity(frame[names].to_numpy(dtype=float))
    if sph["p"] is None:
        raise ValueError("Mauchly's W is undefined for these data")
    passed = sph["p"] > alpha
    return [AssumptionResult(
        name="Sphericity",
        passed=passed,
        value=f"W = {sph['w']:.3f}, χ²({sph['df']:g}) = {sph['chi_sq']:.3f}, {_p_text(sph['p'])}",
        threshold=f"p > {alpha}",
        interpretation=(
            "Sphericity can be assumed." if passed
            else "Sphericity is violated."
        ),
        recommendation=(
            "Report the sphericity-assumed F." if passed
            else f"Use the Greenhouse-Geisser correction (ε = {sph['gg']:.3f})."
        ),
        test_used="Mauchly's Test",
    )]


def check_sampling_adequacy(data: Dataset, request: AnalysisRequest, assumption: dict) -> list[AssumptionResult]:
    names = request.dependent_variables
    frame = data.complete_cases(numeric=names, min_n=len(names) + 1)
    x = frame[names].to_numpy(dtype=float)
    correlation_matrix_checked(x, names)
    kmo_value, _ = kmo(x)
    passed = kmo_value >= 0.5
    return [AssumptionResult(
        name="Sampling Adequacy",
        passed=passed,
        value=f"KMO = {kmo_value:.3f}",
        threshold="KMO ≥ 0.50",
        interpretation=(
            "The items share enough common variance for factor analysis." if passed
            else "The correlation matrix is poorly suited to factor analysis."
        ),
        recommendation=(
            "Proceed with factor extraction." if passed
            else "Drop items with low MSA or collect more data."
        ),
        test_used="Kaiser-Meyer-Olkin",
    )]


CHECKS = {
    "check_sample_size":              check_sample_size,
    "check_normality":                check_normality,
    "check_normality_of_differences": check_normality_of_differences,
    "check_normality_of_residuals":   check_normality_of_residuals,
    "check_homogeneity_levene":       check_homogeneity_levene,
    "check_linearity":                check_linearity,
    "check_homoscedasticity_bp":      check_homoscedasticity_bp,
    "check_multicollinearity_vif":    check_multicollinearity_vif,
    "check_outliers_iqr":             check_outliers_iqr,
    "check_expected_frequencies":     check_expected_frequencies,
    "check_sphericity":               check_sphericity,
    "check_sampling_adequacy":        check_sampling_adequacy,
}


# ─────────────────────────────────────────────
# MAIN: RUN ALL ASSUMPTION CHECKS
# ─────────────────────────────────────────────

def check_assumptions(request: AnalysisRequest) -> AssumptionCheckerOutput:
    """
    Runs every check registered for the request's test.
    Request-level problems (unknown test, missing column) still raise.
    """
    requirement = validate_request(request)
    data = Dataset(request.data, {d.name: d.measure for d in request.variables})
    data.require(*used_variables(request, requirement))

    results: list[AssumptionResult] = []
    for assumption in ASSUMPTION_REGISTRY.get(request.test_type, []):
        check = CHECKS[assumption["test_fn"]]
        try:
            results.extend(check(data, request, assumption))
        except (AnalysisError, ValueError, np.linalg.LinAlgError) as e:
            reason = e.message if isinstance(e, AnalysisError) else str(e)
            logger.info("Assumption check %s could not run: %s", assumption["name"], reason)
            results.append(AssumptionResult(
                name=assumption["name"].replace("_", " ").title(),
                passed=False,
                value="-",
                threshold="-",
                interpretation=f"Check could not be completed: {reason}",
                recommendation=assumption["description"],
            ))

    passed_count = sum(1 for r in results if r.passed)
    total = len(results)
    return AssumptionCheckerOutput(
        test_type=request.test_type,
        assumptions=results,
        passed_count=passed_count,
        total_count=total,
        overall_pass=passed_count == total,
        summary=_build_summary_message(passed_count, total),
    )


def _build_summary_message(passed: int, total: int) -> str:
    if passed == total:
        return f"All {total} assumptions passed. The analysis can proceed with confidence."
    if passed >= total * 0.7:
        return f"{passed} of {total} assumptions passed. Results should be interpreted with some caution."
    return f"Only {passed} of {total} assumptions passed. Consider alternative analyses or data transformation."
