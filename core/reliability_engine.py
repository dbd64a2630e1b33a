"""
FILE: core/reliability_engine.py
----------------------------------
Scale reliability and exploratory factor analysis:
Cronbach's alpha, item-total statistics, KMO / Bartlett's test and
principal-component extraction with varimax rotation.
No LangChain or LLM dependencies.

KMO, Bartlett's test, principal-component extraction and varimax rotation
come from factor_analyzer. The number of factors is options.n_factors or
the Kaiser criterion (eigenvalue > 1). Rotation is bounded by
ROTATION_MAX_ITER; each factor's sign is chosen so its loadings sum positive.
"""

import logging

import numpy as np
from scipy import stats

from Schemas.statistician import AnalysisRequest, AnalysisResult, ChartType
from constants.statistician import (
    KAISER_EIGENVALUE,
    ROTATION_MAX_ITER,
    ROTATION_TOLERANCE,
)
from core.errors import (
    ConvergenceError,
    InsufficientDataError,
    InvalidVariableError,
    SingularMatrixError,
)
from core.final_report_engine import (
    build_result,
    fmt,
    make_chart,
    make_table,
    p_text,
)
from core.preprocessor_engine import Dataset

logger = logging.getLogger(__name__)

ITEM_TOTAL_FLOOR = 0.3


# ─────────────────────────────────────────────
# RELIABILITY
# ─────────────────────────────────────────────

def cronbach_alpha(items: np.ndarray) -> float:
    """α = k/(k-1) · (1 - Σσ²ᵢ / σ²ₜ) from the inter-item covariance matrix."""
    k = items.shape[1]
    if k < 2:
        raise InsufficientDataError("Cronbach's alpha is undefined for a single item", minimum=2)
    cov = np.cov(items, rowvar=False)
    total_var = float(cov.sum())
    if total_var <= 0:
        raise InsufficientDataError("The summed scale has zero variance; alpha is undefined")
    return float(k / (k - 1) * (1 - np.trace(cov) / total_var))


def standardized_alpha(items: np.ndarray) -> float | None:
    k = items.shape[1]
    if np.any(np.ptp(items, axis=0) == 0):
        return None
    corr = np.corrcoef(items, rowvar=False)
    mean_r = float((corr.sum() - k) / (k * (k - 1)))
    return k * mean_r / (1 + (k - 1) * mean_r)


def alpha_label(alpha: float) -> str:
    for cutoff, label in ((0.9, "excellent"), (0.8, "good"), (0.7, "acceptable"), (0.6, "questionable"), (0.5, "poor")):
        if alpha >= cutoff:
            return label
    return "unacceptable"


def squared_multiple_correlations(items: np.ndarray) -> np.ndarray | None:
    corr = np.corrcoef(items, rowvar=False)
    if np.linalg.matrix_rank(corr) < corr.shape[0]:
        return None
    return 1 - 1 / np.diag(np.linalg.inv(corr))


def item_total_rows(names: list[str], items: np.ndarray) -> list[dict]:
    """Scale statistics with each item removed in turn."""
    total = items.sum(axis=1)
    smc = squared_multiple_correlations(items) if items.shape[1] > 2 else None
    rows = []
    for j, name in enumerate(names):
        rest = total - items[:, j]
        if np.ptp(rest) > 0 and np.ptp(items[:, j]) > 0:
            corrected_r = float(stats.pearsonr(items[:, j], rest).statistic)
        else:
            corrected_r = None
        remaining = np.delete(items, j, axis=1)
        try:
            alpha_deleted = cronbach_alpha(remaining) if remaining.shape[1] >= 2 else None
        except InsufficientDataError:
            alpha_deleted = None
        rows.append({
            "Item":                              name,
            "Scale Mean if Item Deleted":        float(rest.mean()),
            "Scale Variance if Item Deleted":    float(rest.var(ddof=1)),
            "Corrected Item-Total Correlation":  corrected_r,
            "Squared Multiple Correlation":      float(smc[j]) if smc is not None else None,
            "Cronbach's Alpha if Item Deleted":  alpha_deleted,
        })
    return rows


ITEM_TOTAL_HEADERS = [
    "Item", "Scale Mean if Item Deleted", "Scale Variance if Item Deleted",
    "Corrected Item-Total Correlation", "Squared Multiple Correlation",
    "Cronbach's Alpha if Item Deleted",
]


def _reliability_tables(names: list[str], items: np.ndarray) -> tuple[float, list, list[dict]]:
    alpha = cronbach_alpha(items)
    std_alpha = standardized_alpha(items)
    item_rows = [
        {"Item": name, "Mean": float(items[:, j].mean()),
         "Std. Deviation": float(items[:, j].std(ddof=1)), "N": len(items)}
        for j, name in enumerate(names)
    ]
    total_rows = item_total_rows(names, items)
    tables = [
        make_table(
            "Reliability Statistics",
            ["Cronbach's Alpha", "Cronbach's Alpha Based on Standardized Items", "N of Items", "N of Cases"],
            [{"Cronbach's Alpha": alpha, "Cronbach's Alpha Based on Standardized Items": std_alpha,
              "N of Items": len(names), "N of Cases": len(items)}],
        ),
        make_table("Item Statistics", ["Item", "Mean", "Std. Deviation", "N"], item_rows),
        make_table("Item-Total Statistics", ITEM_TOTAL_HEADERS, total_rows),
    ]
    return alpha, tables, total_rows


def run_cronbach_alpha(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    names = request.dependent_variables
    if len(names) < 2:
        raise InsufficientDataError("Cronbach's alpha is undefined for a single item", minimum=2)
    frame = data.complete_cases(numeric=names, min_n=2)
    items = frame[names].to_numpy(dtype=float)

    alpha, tables, total_rows = _reliability_tables(names, items)
    if alpha < 0:
        data.warn("Alpha is negative: some items are likely reverse-scored or the items do not share variance.")

    summary = (
        f"Cronbach's alpha for the {len(names)}-item scale was α = {fmt(alpha, 3)} "
        f"({alpha_label(alpha)} internal consistency, N = {len(items)})."
    )
    improvers = [
        row["Item"] for row in total_rows
        if row["Cronbach's Alpha if Item Deleted"] is not None and row["Cronbach's Alpha if Item Deleted"] > alpha
    ]
    if improvers:
        summary += f" Removing {', '.join(improvers)} would raise alpha."

    chart = make_chart(
        ChartType.BAR,
        "Corrected Item-Total Correlation",
        [{"name": row["Item"], "value": row["Corrected Item-Total Correlation"]} for row in total_rows],
    )
    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=len(items))


def run_item_total(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """Item analysis: item-total statistics plus the inter-item correlation matrix."""
    names = request.dependent_variables
    frame = data.complete_cases(numeric=names, min_n=2)
    items = frame[names].to_numpy(dtype=float)

    alpha, tables, total_rows = _reliability_tables(names, items)
    if not np.any(np.ptp(items, axis=0) == 0):
        corr = np.corrcoef(items, rowvar=False)
        tables.append(make_table(
            "Inter-Item Correlation Matrix",
            ["Item", *names],
            [{"Item": name, **{other: float(corr[i, j]) for j, other in enumerate(names)}}
             for i, name in enumerate(names)],
        ))

    weak = [
        row["Item"] for row in total_rows
        if row["Corrected Item-Total Correlation"] is not None
        and row["Corrected Item-Total Correlation"] < ITEM_TOTAL_FLOOR
    ]
    improvers = [
        row["Item"] for row in total_rows
        if row["Cronbach's Alpha if Item Deleted"] is not None and row["Cronbach's Alpha if Item Deleted"] > alpha
    ]
    summary = f"Item analysis of {len(names)} items (α = {fmt(alpha, 3)}, {alpha_label(alpha)}). "
    if weak:
        summary += f"Items with corrected item-total correlation below {ITEM_TOTAL_FLOOR}: {', '.join(weak)}. "
    else:
        summary += f"Every item correlates at least {ITEM_TOTAL_FLOOR} with the rest of the scale. "
    if improvers:
        summary += f"Deleting {', '.join(improvers)} would increase alpha."
    else:
        summary += "No single deletion would increase alpha."

    chart = make_chart(
        ChartType.BAR,
        "Cronbach's Alpha if Item Deleted",
        [{"name": row["Item"], "value": row["Cronbach's Alpha if Item Deleted"]} for row in total_rows],
    )
    return build_result(
        request.test_type, tables, summary.strip(), data.warnings, charts=[chart], n_observations=len(items)
    )


# ─────────────────────────────────────────────
# SAMPLING ADEQUACY
# ─────────────────────────────────────────────

def correlation_matrix_checked(x: np.ndarray, names: list[str]) -> np.ndarray:
    constant = [names[j] for j in range(x.shape[1]) if np.ptp(x[:, j]) == 0]
    if constant:
        raise InvalidVariableError(f"Constant variable(s) cannot be factor analysed: {', '.join(constant)}.")
    corr = np.corrcoef(x, rowvar=False)
    sign, _ = np.linalg.slogdet(corr)
    if sign <= 0 or np.linalg.matrix_rank(corr) < corr.shape[0]:
        raise SingularMatrixError(
            "The correlation matrix is singular (perfectly collinear variables or fewer cases than variables)."
        )
    return corr


def kmo(x: np.ndarray) -> tuple[float, np.ndarray]:
    """Overall KMO and per-variable MSA of the raw observations."""
    from factor_analyzer.factor_analyzer import calculate_kmo

    per_variable, overall = calculate_kmo(x)
    return float(overall), np.asarray(per_variable, dtype=float)


def bartlett_sphericity(x: np.ndarray) -> tuple[float, int, float]:
    from factor_analyzer.factor_analyzer import calculate_bartlett_sphericity

    p = x.shape[1]
    chi_sq, p_value = calculate_bartlett_sphericity(x)
    return float(chi_sq), p * (p - 1) // 2, float(p_value)


def kmo_label(value: float) -> str:
    for cutoff, label in ((0.9, "marvelous"), (0.8, "meritorious"), (0.7, "middling"), (0.6, "mediocre"), (0.5, "miserable")):
        if value >= cutoff:
            return label
    return "unacceptable"


def _adequacy_table(kmo_value: float, chi_sq: float, df: int, p: float):
    return make_table(
        "KMO and Bartlett's Test",
        ["Measure", "Value"],
        [
            {"Measure": "Kaiser-Meyer-Olkin Measure of Sampling Adequacy", "Value": kmo_value},
            {"Measure": "Bartlett's Test Approx. Chi-Square", "Value": chi_sq},
            {"Measure": "Bartlett's Test df", "Value": df},
            {"Measure": "Bartlett's Test Sig.", "Value": p},
        ],
    )


def run_kmo_bartlett(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    names = request.dependent_variables
    opts = request.options
    frame = data.complete_cases(numeric=names, min_n=len(names) + 1)
    x = frame[names].to_numpy(dtype=float)

    correlation_matrix_checked(x, names)
    kmo_value, msa = kmo(x)
    chi_sq, df, p = bartlett_sphericity(x)

    tables = [
        _adequacy_table(kmo_value, chi_sq, df, p),
        make_table(
            "Measures of Sampling Adequacy",
            ["Variable", "MSA"],
            [{"Variable": name, "MSA": float(v)} for name, v in zip(names, msa)],
        ),
    ]
    suitable = kmo_value >= 0.5 and p < opts.alpha
    summary = (
        f"KMO = {fmt(kmo_value, 3)} ({kmo_label(kmo_value)}); Bartlett's test of sphericity "
        f"χ²({df}) = {fmt(chi_sq)}, {p_text(p)}. The data "
        f"{'are' if suitable else 'are not'} suitable for factor analysis."
    )
    low = [name for name, v in zip(names, msa) if v < 0.5]
    if low:
        summary += f" Variables with MSA below .50: {', '.join(low)}."
    return build_result(request.test_type, tables, summary, data.warnings, n_observations=len(x))


# ─────────────────────────────────────────────
# FACTOR EXTRACTION & ROTATION
# ─────────────────────────────────────────────

def varimax(
    loadings: np.ndarray,
    max_iter: int = ROTATION_MAX_ITER,
    tol: float = ROTATION_TOLERANCE,
) -> tuple[np.ndarray, bool, int]:
    """
    Kaiser-normalized varimax; returns (rotated loadings, converged, iterations).

    Rotator stops early once the criterion settles, so a converged rotation is
    unchanged when one more iteration is allowed.
    """
    from factor_analyzer.rotator import Rotator

    def rotate(limit: int) -> np.ndarray:
        rotator = Rotator(method="varimax", normalize=True, max_iter=limit, tol=tol)
        return np.asarray(rotator.fit_transform(np.array(loadings, dtype=float)))

    rotated = rotate(max_iter)
    converged = bool(np.array_equal(rotated, rotate(max_iter + 1)))
    return rotated, converged, max_iter


def orient(loadings: np.ndarray) -> np.ndarray:
    signs = np.where(loadings.sum(axis=0) < 0, -1.0, 1.0)
    return loadings * signs


def extract_components(x: np.ndarray, n_factors: int | None) -> tuple[np.ndarray, np.ndarray, int]:
    """(eigenvalues descending, unrotated loadings, number of factors)."""
    from factor_analyzer import FactorAnalyzer

    p = x.shape[1]
    if n_factors is not None and n_factors > p:
        raise InvalidVariableError(f"Cannot extract {n_factors} factors from {p} variables.")

    fa = FactorAnalyzer(n_factors=p, method="principal", rotation=None, svd_method="lapack")
    fa.fit(x)
    eigenvalues, _ = fa.get_eigenvalues()
    eigenvalues = np.asarray(eigenvalues, dtype=float)
    m = n_factors if n_factors is not None else max(1, int((eigenvalues > KAISER_EIGENVALUE).sum()))
    loadings = np.asarray(fa.loadings_, dtype=float)[:, :m]
    return eigenvalues, orient(loadings), m


def run_efa(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    names = request.dependent_variables
    opts = request.options
    frame = data.complete_cases(numeric=names, min_n=len(names) + 1)
    x = frame[names].to_numpy(dtype=float)
    n, p = x.shape

    correlation_matrix_checked(x, names)
    kmo_value, _ = kmo(x)
    chi_sq, df, bart_p = bartlett_sphericity(x)
    if kmo_value < 0.5:
        data.warn(f"KMO = {kmo_value:.3f} is below .50; the correlation matrix may not be factorable.")

    eigenvalues, unrotated, m = extract_components(x, opts.n_factors)
    if m >= 2:
        rotated, converged, iterations = varimax(unrotated, max_iter=opts.max_iter or ROTATION_MAX_ITER)
        rotated = orient(rotated)
        if not converged:
            error = ConvergenceError(
                f"Varimax rotation did not converge in {iterations} iterations; the last rotation is reported.",
                iterations=iterations,
            )
            logger.warning("EFA: %s", error.message)
            if opts.strict_convergence:
                raise error
            data.warn(f"ConvergenceError: {error.message}")
    else:
        rotated = unrotated
        data.warn("Only one factor was extracted; the solution cannot be rotated.")

    factor_labels = [f"Factor {i + 1}" for i in range(m)]
    ss_rotated = (rotated ** 2).sum(axis=0)
    variance_rows = []
    cumulative = cumulative_extracted = cumulative_rotated = 0.0
    for i, value in enumerate(eigenvalues):
        pct = value / p * 100
        cumulative += pct
        row = {"Component": i + 1, "Initial Eigenvalue": value, "% of Variance": pct, "Cumulative %": cumulative}
        if i < m:
            cumulative_extracted += pct
            cumulative_rotated += ss_rotated[i] / p * 100
            row.update({
                "Extraction SS Loadings": value,
                "Extraction Cumulative %": cumulative_extracted,
                "Rotation SS Loadings": ss_rotated[i],
                "Rotation Cumulative %": cumulative_rotated,
            })
        variance_rows.append(row)

    communalities = (unrotated ** 2).sum(axis=1)
    tables = [
        _adequacy_table(kmo_value, chi_sq, df, bart_p),
        make_table(
            "Total Variance Explained",
            ["Component", "Initial Eigenvalue", "% of Variance", "Cumulative %",
             "Extraction SS Loadings", "Extraction Cumulative %",
             "Rotation SS Loadings", "Rotation Cumulative %"],
            variance_rows,
        ),
        make_table(
            "Communalities",
            ["Variable", "Initial", "Extraction"],
            [{"Variable": name, "Initial": 1.0, "Extraction": float(h)} for name, h in zip(names, communalities)],
            ["Extraction Method: Principal Component Analysis."],
        ),
        make_table(
            "Component Matrix",
            ["Variable", *factor_labels],
            [{"Variable": name, **dict(zip(factor_labels, map(float, unrotated[j])))} for j, name in enumerate(names)],
        ),
        make_table(
            "Rotated Component Matrix",
            ["Variable", *factor_labels],
            [{"Variable": name, **dict(zip(factor_labels, map(float, rotated[j])))} for j, name in enumerate(names)],
            ["Rotation Method: Varimax with Kaiser Normalization."] if m >= 2 else ["Not rotated."],
        ),
    ]

    explained = cumulative_extracted
    primary = {label: [] for label in factor_labels}
    for j, name in enumerate(names):
        primary[factor_labels[int(np.argmax(np.abs(rotated[j])))]].append(name)
    structure = "; ".join(f"{label}: {', '.join(items) or 'none'}" for label, items in primary.items())
    summary = (
        f"Principal-component extraction retained {m} factor(s) "
        f"({'user specified' if opts.n_factors else 'eigenvalue > 1'}) explaining {explained:.1f}% of the "
        f"variance (KMO = {fmt(kmo_value, 3)}, Bartlett {p_text(bart_p)}). Primary loadings: {structure}."
    )

    chart = make_chart(
        ChartType.LINE,
        "Scree Plot",
        [{"name": i + 1, "value": float(v)} for i, v in enumerate(eigenvalues)],
    )
    return build_result(request.test_type, tables, summary, data.warnings, charts=[chart], n_observations=n)
