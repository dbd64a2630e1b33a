"""
FILE: core/regression_engine.py
---------------------------------
Linear (simple / multiple) and binary logistic regression.
No LangChain or LLM dependencies.

Linear models are fitted with statsmodels OLS using the QR decomposition.
Logistic models are fitted with statsmodels Logit (Newton-Raphson)
bounded by LOGISTIC_MAX_ITER.
Nominal / ordinal predictors are dummy-coded against their first category.
"""

import logging
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression
from sklearn.metrics import auc, roc_curve

from Schemas.statistician import AnalysisRequest, AnalysisResult, ChartType, MeasureLevel
from constants.statistician import (
    CLASSIFICATION_CUTOFF,
    LOGISTIC_MAX_ITER,
    LOGISTIC_TOLERANCE,
    PROBABILITY_FLOOR,
    SEPARATION_TOLERANCE,
    VIF_MODERATE,
    VIF_SEVERE,
)
from core.errors import (
    ConvergenceError,
    InsufficientDataError,
    InsufficientGroupsError,
    InvalidVariableError,
    SingularMatrixError,
)
from core.final_report_engine import (
    build_result,
    fmt,
    make_chart,
    make_table,
    p_text,
    significance_word,
)
from core.group_comparison_engine import ci_headers
from core.preprocessor_engine import Dataset, categories_in_order

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# DESIGN MATRIX
# ─────────────────────────────────────────────

def split_predictors(data: Dataset, predictors: list[str]) -> tuple[list[str], list[str]]:
    """(scale predictors, categorical predictors) from declared or inferred measures."""
    scale, categorical = [], []
    for name in predictors:
        if data.infer_measure(name) == MeasureLevel.SCALE:
            scale.append(name)
        else:
            categorical.append(name)
    return scale, categorical


def design_matrix(frame: pd.DataFrame, predictors: list[str], categorical: list[str]) -> pd.DataFrame:
    """Predictor columns in request order; categorical ones become k-1 dummies."""
    columns: dict[str, pd.Series] = {}
    for name in predictors:
        if name not in categorical:
            columns[name] = frame[name].astype(float)
            continue
        levels = categories_in_order(frame[name])
        if len(levels) < 2:
            raise InvalidVariableError(f"Predictor '{name}' has a single category and cannot be dummy-coded.")
        for level in levels[1:]:
            columns[f"{name}[{level}]"] = (frame[name] == level).astype(float)
    return pd.DataFrame(columns, index=frame.index)


def check_rank(x: np.ndarray, names: list[str]) -> None:
    rank = np.linalg.matrix_rank(x)
    if rank < x.shape[1]:
        raise SingularMatrixError(
            f"The predictors are perfectly collinear (design rank {rank} of {x.shape[1]}); "
            f"remove redundant predictors among: {', '.join(names)}."
        )


def compute_vif(X: pd.DataFrame) -> dict[str, float]:
    """VIF_j = 1 / (1 - R²_j) from regressing each predictor on the others."""
    if X.shape[1] == 1:
        return {X.columns[0]: 1.0}
    scores = {}
    for col in X.columns:
        others = [c for c in X.columns if c != col]
        r2 = LinearRegression().fit(X[others], X[col]).score(X[others], X[col])
        scores[col] = 1 / (1 - r2) if r2 < 1.0 else float("inf")
    return scores


def vif_warnings(scores: dict[str, float]) -> list[str]:
    messages = []
    severe = [name for name, v in scores.items() if v > VIF_SEVERE]
    moderate = [name for name, v in scores.items() if VIF_MODERATE <= v <= VIF_SEVERE]
    if severe:
        messages.append(f"Severe multicollinearity (VIF > {VIF_SEVERE:g}) for: {', '.join(severe)}.")
    if moderate:
        messages.append(
            f"Moderate multicollinearity (VIF {VIF_MODERATE:g}-{VIF_SEVERE:g}) for: {', '.join(moderate)}."
        )
    return messages


# ─────────────────────────────────────────────
# LINEAR REGRESSION
# ─────────────────────────────────────────────

def run_linear_regression(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """Simple and multiple OLS regression with standardized Betas and VIF."""
    from statsmodels.regression.linear_model import OLS
    from statsmodels.stats.stattools import durbin_watson
    from statsmodels.tools import add_constant

    dv = request.dependent_variables[0]
    predictors = request.independent_variables
    opts = request.options

    scale, categorical = split_predictors(data, predictors)
    frame = data.complete_cases(numeric=[dv, *scale], categorical=categorical, min_n=3)
    X = design_matrix(frame, predictors, categorical)
    y = frame[dv].astype(float)
    n, k = X.shape

    if n <= k + 1:
        raise InsufficientDataError(
            f"{n} observation(s) cannot support {k} predictor term(s)", minimum=k + 2
        )
    if y.std(ddof=1) == 0:
        raise InsufficientDataError(f"Dependent variable '{dv}' is constant")

    X_const = add_constant(X, has_constant="add")
    check_rank(X_const.to_numpy(), list(X.columns))
    model = OLS(y, X_const).fit(method="qr")
    logger.debug("OLS fit: n=%d, k=%d, R²=%.4f", n, k, model.rsquared)

    vif = compute_vif(X)
    for message in vif_warnings(vif):
        data.warn(message)

    ci = model.conf_int(alpha=1 - opts.confidence_level)
    lo_h, hi_h = ci_headers(opts.confidence_level)
    sd_y = float(y.std(ddof=1))
    coef_rows = []
    for term in X_const.columns:
        is_const = term == "const"
        sd_x = float(X[term].std(ddof=1)) if not is_const else None
        coef_rows.append({
            "Term":       "(Constant)" if is_const else term,
            "B":          model.params[term],
            "Std. Error": model.bse[term],
            "Beta":       None if is_const else model.params[term] * sd_x / sd_y,
            "t":          model.tvalues[term],
            "Sig.":       model.pvalues[term],
            lo_h:         ci.loc[term, 0],
            hi_h:         ci.loc[term, 1],
            "Tolerance":  None if is_const else 1 / vif[term],
            "VIF":        None if is_const else vif[term],
        })

    tables = [
        make_table(
            "Model Summary",
            ["R", "R Square", "Adjusted R Square", "Std. Error of the Estimate", "Durbin-Watson", "N"],
            [{
                "R": float(np.sqrt(max(model.rsquared, 0.0))),
                "R Square": model.rsquared,
                "Adjusted R Square": model.rsquared_adj,
                "Std. Error of the Estimate": float(np.sqrt(model.mse_resid)),
                "Durbin-Watson": float(durbin_watson(model.resid)),
                "N": n,
            }],
        ),
        make_table(
            "ANOVA",
            ["Source", "Sum of Squares", "df", "Mean Square", "F", "Sig."],
            [
                {"Source": "Regression", "Sum of Squares": model.ess, "df": model.df_model,
                 "Mean Square": model.mse_model, "F": model.fvalue, "Sig.": model.f_pvalue},
                {"Source": "Residual", "Sum of Squares": model.ssr, "df": model.df_resid,
                 "Mean Square": model.mse_resid},
                {"Source": "Total", "Sum of Squares": model.centered_tss, "df": n - 1},
            ],
        ),
        make_table(
            "Coefficients",
            ["Term", "B", "Std. Error", "Beta", "t", "Sig.", lo_h, hi_h, "Tolerance", "VIF"],
            coef_rows,
            [f"Dependent variable: {dv}"],
        ),
    ]

    fitted = model.fittedvalues.to_numpy()
    if k == 1 and not categorical:
        chart = make_chart(
            ChartType.SCATTER,
            f"{dv} vs {predictors[0]}",
            [{"x": float(a), "y": float(b), "predicted": float(c)}
             for a, b, c in zip(X.iloc[:, 0], y, fitted)],
        )
    else:
        chart = make_chart(
            ChartType.SCATTER,
            "Residuals vs Predicted",
            [{"x": float(a), "y": float(b)} for a, b in zip(fitted, model.resid)],
        )

    f_text = f"F({int(model.df_model)}, {int(model.df_resid)}) = {fmt(model.fvalue)}, {p_text(model.f_pvalue)}"
    if request.test_type == "simple-linear-regression" and k == 1:
        term = X.columns[0]
        summary = (
            f"A simple linear regression found that '{term}' {'significantly' if model.f_pvalue < opts.alpha else 'did not significantly'} "
            f"{'predicted' if model.f_pvalue < opts.alpha else 'predict'} '{dv}', {f_text}, "
            f"R² = {fmt(model.rsquared, 3)}; B = {fmt(model.params[term], 3)} "
            f"(each unit increase in '{term}' changes '{dv}' by {fmt(model.params[term], 3)})."
        )
    else:
        significant = [
            f"{term} (B = {fmt(model.params[term], 3)}, {p_text(model.pvalues[term])})"
            for term in X.columns
            if model.pvalues[term] < opts.alpha
        ]
        summary = (
            f"The regression model was {'statistically significant' if model.f_pvalue < opts.alpha else 'not statistically significant'}, "
            f"{f_text}, explaining {model.rsquared * 100:.1f}% of the variance in '{dv}' "
            f"(adjusted R² = {fmt(model.rsquared_adj, 3)}). "
            + (f"Significant predictors: {'; '.join(significant)}." if significant else "No predictor was individually significant.")
        )

    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=n)


# ─────────────────────────────────────────────
# LOGISTIC REGRESSION
# ─────────────────────────────────────────────

def log_likelihood(y: np.ndarray, p: np.ndarray) -> float:
    p = np.clip(p, PROBABILITY_FLOOR, 1 - PROBABILITY_FLOOR)
    return float(np.sum(y * np.log(p) + (1 - y) * np.log(1 - p)))


def fit_logistic(X: np.ndarray, y: np.ndarray, max_iter: int = LOGISTIC_MAX_ITER) -> dict:
    """
    Maximum-likelihood logit fitted by statsmodels' Newton-Raphson, bounded by
    max_iter. Separation is flagged when statsmodels reports perfect prediction
    or the fitted probabilities reproduce y. Always returns the last estimates.
    """
    from statsmodels.discrete.discrete_model import Logit
    from statsmodels.tools.sm_exceptions import PerfectSeparationError, PerfectSeparationWarning

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            res = Logit(y, X).fit(method="newton", maxiter=max_iter, tol=LOGISTIC_TOLERANCE, disp=0)
        except PerfectSeparationError as e:
            raise ConvergenceError(f"Complete separation detected: {e}", iterations=max_iter) from e
        except np.linalg.LinAlgError as e:
            raise SingularMatrixError(f"The information matrix is singular: {e}") from e
    for w in caught:
        logger.debug("Logit fit: %s", w.message)

    p = np.asarray(res.predict(), dtype=float)
    separated = bool(
        any(issubclass(w.category, PerfectSeparationWarning) for w in caught)
        or np.max(np.abs(y - p)) < SEPARATION_TOLERANCE
    )
    converged = bool(res.mle_retvals.get("converged", False))
    return {
        "beta": np.asarray(res.params, dtype=float),
        "se": np.asarray(res.bse, dtype=float),
        "p": p,
        "ll": log_likelihood(y, p),
        "iterations": int(res.mle_retvals.get("iterations", max_iter)),
        "converged": converged and not separated,
        "separated": separated,
    }


def event_coding(labels: pd.Series, event: str | None) -> tuple[str, str]:
    """(reference, event) categories of a binary outcome."""
    cats = categories_in_order(labels)
    if len(cats) < 2:
        raise InsufficientGroupsError(f"The outcome has {len(cats)} category; logistic regression needs 2.")
    if len(cats) > 2:
        raise InvalidVariableError(
            f"The outcome must be binary; found {len(cats)} categories ({', '.join(cats[:5])})."
        )
    if event is not None:
        if event not in cats:
            raise InvalidVariableError(f"Event category '{event}' not found among {', '.join(cats)}.")
        return next(c for c in cats if c != event), event

    numeric = pd.to_numeric(pd.Series(cats), errors="coerce")
    if numeric.notna().all():
        ordered = [c for _, c in sorted(zip(numeric, cats))]
        return ordered[0], ordered[1]
    return cats[0], cats[1]


def hanley_mcneil_se(area: float, n_pos: int, n_neg: int) -> float:
    q1 = area / (2 - area)
    q2 = 2 * area ** 2 / (1 + area)
    var = (area * (1 - area) + (n_pos - 1) * (q1 - area ** 2) + (n_neg - 1) * (q2 - area ** 2)) / (n_pos * n_neg)
    return float(np.sqrt(max(var, 0.0)))


def run_logistic_regression(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    dv = request.dependent_variables[0]
    predictors = request.independent_variables
    opts = request.options

    scale, categorical = split_predictors(data, predictors)
    frame = data.complete_cases(numeric=scale, categorical=[dv, *categorical], min_n=3)
    reference, event = event_coding(frame[dv], opts.event)
    y = (frame[dv] == event).to_numpy(dtype=float)

    X = design_matrix(frame, predictors, categorical)
    X_const = np.column_stack([X.to_numpy(dtype=float), np.ones(len(X))])
    terms = [*X.columns, "Constant"]
    n = len(y)
    if n <= X_const.shape[1]:
        raise InsufficientDataError(
            f"{n} observation(s) cannot support {X_const.shape[1]} parameters", minimum=X_const.shape[1] + 1
        )
    check_rank(X_const, list(X.columns))

    n_events = int(y.sum())
    n_ref = n - n_events
    if min(n_events, n_ref) / max(len(X.columns), 1) < 10:
        data.warn("Fewer than 10 cases of the rarer outcome per predictor; estimates may be unstable.")

    fit = fit_logistic(X_const, y, max_iter=opts.max_iter or LOGISTIC_MAX_ITER)
    if fit["separated"]:
        error = ConvergenceError(
            "Complete separation detected: the predictors perfectly classify the outcome, so the "
            "coefficients diverge and the reported estimates are not finite-sample reliable.",
            iterations=fit["iterations"],
        )
    elif not fit["converged"]:
        error = ConvergenceError(
            "The coefficient estimates did not stabilise; the last estimates are reported.",
            iterations=fit["iterations"],
        )
    else:
        error = None

    if error is not None:
        logger.warning("Logistic regression on '%s': %s", dv, error.message)
        if opts.strict_convergence:
            raise error
        data.warn(f"ConvergenceError: {error.message}")

    beta, se = fit["beta"], fit["se"]
    with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
        wald = (beta / se) ** 2
        z_crit = stats.norm.ppf(1 - (1 - opts.confidence_level) / 2)
        odds = np.exp(beta)
        odds_lo = np.exp(beta - z_crit * se)
        odds_hi = np.exp(beta + z_crit * se)
    lo_h, hi_h = ci_headers(opts.confidence_level)
    coef_rows = [
        {
            "Term": term, "B": beta[i], "S.E.": se[i], "Wald": wald[i], "df": 1,
            "Sig.": float(stats.chi2.sf(wald[i], 1)) if np.isfinite(wald[i]) else None,
            "Exp(B)": odds[i], f"Exp(B) {lo_h}": odds_lo[i], f"Exp(B) {hi_h}": odds_hi[i],
        }
        for i, term in enumerate(terms)
    ]

    p0 = n_events / n
    ll0 = n_events * np.log(p0) + n_ref * np.log(1 - p0)
    ll = fit["ll"]
    chi_sq = 2 * (ll - ll0)
    df_model = len(X.columns)
    chi_p = float(stats.chi2.sf(chi_sq, df_model))
    cox_snell = 1 - np.exp(2 * (ll0 - ll) / n)
    nagelkerke = cox_snell / (1 - np.exp(2 * ll0 / n))

    predicted = fit["p"] >= CLASSIFICATION_CUTOFF
    correct_ref = int(((y == 0) & ~predicted).sum())
    correct_evt = int(((y == 1) & predicted).sum())
    class_rows = [
        {"Observed": reference, f"Predicted {reference}": correct_ref, f"Predicted {event}": n_ref - correct_ref,
         "Percentage Correct": correct_ref / n_ref * 100},
        {"Observed": event, f"Predicted {reference}": n_events - correct_evt, f"Predicted {event}": correct_evt,
         "Percentage Correct": correct_evt / n_events * 100},
        {"Observed": "Overall Percentage", "Percentage Correct": (correct_ref + correct_evt) / n * 100},
    ]

    fpr, tpr, _ = roc_curve(y, fit["p"])
    area = float(auc(fpr, tpr))
    area_se = hanley_mcneil_se(area, n_events, n_ref)
    z_area = (area - 0.5) / area_se if area_se > 0 else None

    tables = [
        make_table(
            "Dependent Variable Encoding",
            ["Original Value", "Internal Value", "N"],
            [{"Original Value": reference, "Internal Value": 0, "N": n_ref},
             {"Original Value": event, "Internal Value": 1, "N": n_events}],
        ),
        make_table(
            "Omnibus Tests of Model Coefficients",
            ["Chi-square", "df", "Sig."],
            [{"Chi-square": chi_sq, "df": df_model, "Sig.": chi_p}],
        ),
        make_table(
            "Model Summary",
            ["-2 Log likelihood", "Cox & Snell R Square", "Nagelkerke R Square", "Iterations", "Converged"],
            [{"-2 Log likelihood": -2 * ll, "Cox & Snell R Square": cox_snell,
              "Nagelkerke R Square": nagelkerke, "Iterations": fit["iterations"],
              "Converged": fit["converged"]}],
        ),
        make_table(
            "Classification Table",
            ["Observed", f"Predicted {reference}", f"Predicted {event}", "Percentage Correct"],
            class_rows,
            [f"The cut value is {CLASSIFICATION_CUTOFF:g}"],
        ),
        make_table(
            "Variables in the Equation",
            ["Term", "B", "S.E.", "Wald", "df", "Sig.", "Exp(B)", f"Exp(B) {lo_h}", f"Exp(B) {hi_h}"],
            coef_rows,
        ),
        make_table(
            "Area Under the Curve",
            ["Area", "Std. Error", "Asymptotic Sig.", lo_h, hi_h],
            [{"Area": area, "Std. Error": area_se,
              "Asymptotic Sig.": two_sided(z_area),
              lo_h: max(0.0, area - z_crit * area_se), hi_h: min(1.0, area + z_crit * area_se)}],
        ),
    ]

    chart = make_chart(
        ChartType.LINE,
        "ROC Curve",
        [{"x": float(a), "y": float(b)} for a, b in zip(fpr, tpr)],
    )

    significant = [
        f"{row['Term']} (OR = {fmt(row['Exp(B)'])}, {p_text(row['Sig.'])})"
        for row in coef_rows[:-1]
        if row["Sig."] is not None and row["Sig."] < opts.alpha
    ]
    summary = (
        f"A binary logistic regression predicting '{dv}' = '{event}' found {significance_word(chi_p, opts.alpha)} "
        f"model, χ²({df_model}) = {fmt(chi_sq)}, {p_text(chi_p)}, Nagelkerke R² = {fmt(nagelkerke, 3)}, "
        f"correctly classifying {(correct_ref + correct_evt) / n * 100:.1f}% of cases (AUC = {fmt(area, 3)}). "
        + (f"Significant predictors: {'; '.join(significant)}." if significant else "No predictor was individually significant.")
    )
    if error is not None:
        summary += " The model did not converge cleanly; see the warnings."

    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=n)


def two_sided(z: float | None) -> float | None:
    return None if z is None else float(2 * stats.norm.sf(abs(z)))
