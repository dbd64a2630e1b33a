"""
FILE: core/correlation_engine.py
----------------------------------
Bivariate correlation: Pearson r, Spearman rho, Kendall tau-b and the
correlation matrix built from them.
No LangChain or LLM dependencies.

Missing values are handled pairwise by default (each pair uses every row
where both variables are present); options.missing = "listwise" restricts
every pair to the rows complete on all requested variables.
The matrix diagonal is fixed at 1 and the lower triangle mirrors the upper.
"""

import logging
import math

import numpy as np
import pandas as pd
from scipy import stats

from Schemas.statistician import AnalysisRequest, AnalysisResult, ChartType
from core.errors import InsufficientDataError, InvalidVariableError
from core.final_report_engine import (
    CORRELATION_CUTOFFS,
    build_result,
    fmt,
    magnitude,
    make_chart,
    make_table,
    p_text,
)
from core.group_comparison_engine import ci_headers
from core.preprocessor_engine import Dataset

logger = logging.getLogger(__name__)

MIN_PAIRS = 3

METHODS = {
    "pearson":  {"label": "Pearson Correlation", "symbol": "r"},
    "spearman": {"label": "Spearman's rho",      "symbol": "rs"},
    "kendall":  {"label": "Kendall's tau-b",     "symbol": "τb"},
}


# ─────────────────────────────────────────────
# COEFFICIENTS
# ─────────────────────────────────────────────

def correlation_p(r: float, n: int) -> float:
    """Two-tailed p from the t transform t = r·√((n-2)/(1-r²)); 0 for |r| = 1."""
    if abs(r) >= 1.0:
        return 0.0
    t = r * math.sqrt((n - 2) / (1 - r * r))
    return float(2 * stats.t.sf(abs(t), n - 2))


def fisher_interval(r: float, n: int, confidence_level: float) -> tuple[float | None, float | None]:
    """Fisher z interval; undefined for n <= 3, degenerate at |r| = 1."""
    if n <= 3:
        return None, None
    if abs(r) >= 1.0:
        return r, r
    z = math.atanh(r)
    half = stats.norm.ppf(1 - (1 - confidence_level) / 2) / math.sqrt(n - 3)
    return math.tanh(z - half), math.tanh(z + half)


def pearson_r(x: np.ndarray, y: np.ndarray) -> float | None:
    """Product-moment r, or None when either variable is constant."""
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return None
    r = float(stats.pearsonr(x, y).statistic)
    return max(-1.0, min(1.0, r))


def correlate(x: np.ndarray, y: np.ndarray, method: str, confidence_level: float) -> dict:
    n = len(x)
    if method == "kendall":
        if np.ptp(x) == 0 or np.ptp(y) == 0:
            r, p = None, None
        else:
            res = stats.kendalltau(x, y, variant="b")
            r, p = float(res.statistic), float(res.pvalue)
        return {"r": r, "p": p, "n": n, "ci": (None, None)}

    if method == "spearman":
        x, y = stats.rankdata(x), stats.rankdata(y)
    r = pearson_r(x, y)
    if r is None:
        return {"r": None, "p": None, "n": n, "ci": (None, None)}
    return {
        "r": r,
        "p": correlation_p(r, n),
        "n": n,
        "ci": fisher_interval(r, n, confidence_level),
    }


def strength(r: float | None) -> str:
    size = magnitude(r, CORRELATION_CUTOFFS)
    if r is None or size in ("undetermined", "negligible"):
        return size
    return f"{size} {'positive' if r > 0 else 'negative'}"


# ─────────────────────────────────────────────
# MATRIX
# ─────────────────────────────────────────────

def correlation_matrix(
    data: Dataset,
    names: list[str],
    method: str,
    missing: str,
    confidence_level: float,
) -> tuple[dict[tuple[int, int], dict], pd.DataFrame]:
    """
    Upper-triangle results keyed by (i, j), i < j, plus the numeric frame
    the pairs were drawn from.
    """
    if missing == "listwise":
        frame = data.complete_cases(numeric=names, min_n=MIN_PAIRS)
    else:
        frame = pd.DataFrame({name: data.numeric(name) for name in names})

    pairs: dict[tuple[int, int], dict] = {}
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            both = frame[[names[i], names[j]]].dropna()
            if len(both) < MIN_PAIRS:
                data.warn(
                    f"'{names[i]}' and '{names[j]}' share only {len(both)} complete pair(s); "
                    f"at least {MIN_PAIRS} are needed."
                )
                pairs[(i, j)] = {"r": None, "p": None, "n": len(both), "ci": (None, None)}
                continue
            res = correlate(both[names[i]].to_numpy(), both[names[j]].to_numpy(), method, confidence_level)
            if res["r"] is None:
                data.warn(f"Correlation of '{names[i]}' with '{names[j]}' is undefined: a variable is constant.")
            pairs[(i, j)] = res

    if all(res["r"] is None for res in pairs.values()):
        raise InsufficientDataError(
            "No pair of variables has enough complete, non-constant observations", minimum=MIN_PAIRS
        )
    return pairs, frame


def _matrix_rows(names: list[str], pairs: dict, frame: pd.DataFrame, label: str) -> list[dict]:
    rows = []
    for i, name in enumerate(names):
        coef = {"Variable": name, "Statistic": label}
        sig = {"Variable": name, "Statistic": "Sig. (2-tailed)"}
        count = {"Variable": name, "Statistic": "N"}
        for j, other in enumerate(names):
            if i == j:
                coef[other] = 1.0
                sig[other] = None
                count[other] = int(frame[name].notna().sum())
                continue
            res = pairs[(min(i, j), max(i, j))]
            coef[other] = res["r"]
            sig[other] = res["p"]
            count[other] = res["n"]
        rows.extend([coef, sig, count])
    return rows


# ─────────────────────────────────────────────
# HANDLER
# ─────────────────────────────────────────────

def method_for(request: AnalysisRequest) -> str:
    if request.test_type == "kendall-tau":
        return "kendall"
    if request.test_type in ("pearson", "spearman"):
        return request.test_type
    return request.options.method


def run_correlation(data: Dataset, request: AnalysisRequest) -> AnalysisResult:
    """Serves pearson, spearman, kendall-tau and correlation (options.method)."""
    opts = request.options
    method = method_for(request)
    meta = METHODS[method]
    names = list(dict.fromkeys([*request.dependent_variables, *request.independent_variables]))
    if len(names) < 2:
        raise InvalidVariableError(
            f"Correlation needs at least two distinct variables; got {', '.join(names) or 'none'}."
        )

    pairs, frame = correlation_matrix(data, names, method, opts.missing, opts.confidence_level)
    lo_h, hi_h = ci_headers(opts.confidence_level)

    pair_rows = []
    for (i, j), res in pairs.items():
        pair_rows.append({
            "Variable 1": names[i],
            "Variable 2": names[j],
            meta["label"]: res["r"],
            lo_h: res["ci"][0],
            hi_h: res["ci"][1],
            "Sig. (2-tailed)": res["p"],
            "N": res["n"],
            "Strength": strength(res["r"]),
        })

    tables = [
        make_table("Correlations", ["Variable", "Statistic", *names], _matrix_rows(names, pairs, frame, meta["label"]),
                   [f"Missing values excluded {opts.missing}."]),
        make_table(
            "Pairwise Correlations",
            ["Variable 1", "Variable 2", meta["label"], lo_h, hi_h, "Sig. (2-tailed)", "N", "Strength"],
            pair_rows,
        ),
    ]

    charts = []
    if len(names) == 2:
        both = frame[names].dropna()
        charts.append(make_chart(
            ChartType.SCATTER,
            f"{names[1]} vs {names[0]}",
            [{"x": float(a), "y": float(b)} for a, b in both.to_numpy()],
        ))
        res = pairs[(0, 1)]
        if res["r"] is None:
            summary = f"The {meta['label']} between '{names[0]}' and '{names[1]}' is undefined."
        else:
            sig = "statistically significant" if res["p"] is not None and res["p"] < opts.alpha else "not statistically significant"
            summary = (
                f"There was a {strength(res['r'])} relationship between '{names[0]}' and '{names[1]}' "
                f"that was {sig}, {meta['symbol']}({res['n'] - 2}) = {fmt(res['r'], 3)}, {p_text(res['p'])}, "
                f"N = {res['n']}."
            )
    else:
        defined = [(key, res) for key, res in pairs.items() if res["r"] is not None]
        (i, j), top = max(defined, key=lambda item: abs(item[1]["r"]))
        n_sig = sum(1 for _, res in defined if res["p"] is not None and res["p"] < opts.alpha)
        summary = (
            f"{meta['label']} matrix of {len(names)} variables: {n_sig} of {len(pairs)} pairs are "
            f"significant at α = {opts.alpha}. The strongest relationship is between '{names[i]}' and "
            f"'{names[j]}', {meta['symbol']} = {fmt(top['r'], 3)}, {p_text(top['p'])}."
        )

    return build_result(
        request.test_type,
        tables,
        summary,
        data.warnings,
        charts=charts,
        n_observations=int(frame.dropna(how="all").shape[0]),
    )
