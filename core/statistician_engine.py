"""
FILE: core/statistician_engine.py
-----------------------------------
Statistics engine entry point.
No LangChain or LLM dependencies.

Validates a request against Utils/test_requirements_registry.py, builds the
per-request Dataset and dispatches to the handler registered for the test id.
Every handler has the same shape:

    handler(data: Dataset, request: AnalysisRequest) -> AnalysisResult

so each statistical procedure can be unit tested on its own.
"""

import logging
from typing import Any, Callable

from Schemas.statistician import AnalysisOptions, AnalysisRequest, AnalysisResult
from Utils.test_requirements_registry import TEST_REQUIREMENTS
from core.correlation_engine import run_correlation
from core.descriptive_engine import (
    run_descriptives,
    run_frequencies,
    run_normality_test,
    run_outlier_detection,
)
from core.errors import (
    InvalidVariableError,
    RestrictedTestError,
    UnsupportedTestError,
)
from core.final_report_engine import exclusion_note
from core.group_comparison_engine import (
    run_independent_t_test,
    run_one_sample_t_test,
    run_one_way_anova,
    run_paired_t_test,
    run_repeated_measures_anova,
    run_two_way_anova,
)
from core.nonparametric_engine import (
    run_chi_square,
    run_friedman,
    run_kruskal_wallis,
    run_mann_whitney,
    run_wilcoxon,
)
from core.preprocessor_engine import Dataset
from core.regression_engine import run_linear_regression, run_logistic_regression
from core.reliability_engine import (
    run_cronbach_alpha,
    run_efa,
    run_item_total,
    run_kmo_bartlett,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Dataset, AnalysisRequest], AnalysisResult]


# ─────────────────────────────────────────────
# HANDLER REGISTRY
# ─────────────────────────────────────────────

HANDLERS: dict[str, Handler] = {
    # ── Descriptive ──
    "frequencies":              run_frequencies,
    "descriptives":             run_descriptives,
    "crosstabs":                run_chi_square,
    "normality-test":           run_normality_test,
    "outlier-detection":        run_outlier_detection,

    # ── Reliability ──
    "cronbach-alpha":           run_cronbach_alpha,
    "item-total":               run_item_total,

    # ── Mean comparisons ──
    "one-sample-t-test":        run_one_sample_t_test,
    "independent-t-test":       run_independent_t_test,
    "paired-t-test":            run_paired_t_test,
    "one-way-anova":            run_one_way_anova,
    "two-way-anova":            run_two_way_anova,
    "repeated-measures-anova":  run_repeated_measures_anova,

    # ── Nonparametric ──
    "mann-whitney":             run_mann_whitney,
    "wilcoxon":                 run_wilcoxon,
    "kruskal-wallis":           run_kruskal_wallis,
    "friedman":                 run_friedman,
    "chi-square":               run_chi_square,

    # ── Correlation ──
    "pearson":                  run_correlation,
    "spearman":                 run_correlation,
    "kendall-tau":              run_correlation,
    "correlation":              run_correlation,

    # ── Regression ──
    "simple-linear-regression": run_linear_regression,
    "multiple-regression":      run_linear_regression,
    "logistic-regression":      run_logistic_regression,

    # ── Factor analysis ──
    "kmo-bartlett":             run_kmo_bartlett,
    "efa":                      run_efa,
}


# ─────────────────────────────────────────────
# VALIDATION
# ─────────────────────────────────────────────

def _check_count(label: str, names: list[str], bounds: tuple[int, int], test_name: str) -> None:
    low, high = bounds
    if not low <= len(names) <= high:
        expected = str(low) if low == high else f"{low}-{high}"
        raise InvalidVariableError(
            f"{test_name} needs {expected} {label} variable(s); got {len(names)}."
        )


def validate_request(request: AnalysisRequest) -> dict:
    """Checks the test id, capability flag and variable roles. Returns the catalog entry."""
    requirement = TEST_REQUIREMENTS.get(request.test_type)
    if requirement is None or request.test_type not in HANDLERS:
        raise UnsupportedTestError(
            f"Unsupported test type '{request.test_type}'. "
            f"Supported: {', '.join(sorted(HANDLERS))}."
        )
    name = requirement["name"]

    if requirement["is_pro"] and not request.allow_pro:
        raise RestrictedTestError(f"{name} is not available with the caller's current capabilities.")

    _check_count("dependent", request.dependent_variables, requirement["dependent"], name)
    _check_count("independent", request.independent_variables, requirement["independent"], name)
    if requirement["pooled"] is not None:
        _check_count(
            "analysis",
            [*request.dependent_variables, *request.independent_variables],
            requirement["pooled"],
            name,
        )

    if requirement["grouping"] == "required" and not request.grouping_variable:
        raise InvalidVariableError(f"{name} needs a grouping variable.")
    if requirement["grouping"] is None and request.grouping_variable:
        logger.debug("Ignoring grouping variable '%s' for %s", request.grouping_variable, name)

    return requirement


def _check_measures(data: Dataset, request: AnalysisRequest, requirement: dict) -> None:
    measures = requirement["measures"]
    roles = {
        "dependent": request.dependent_variables,
        "independent": request.independent_variables,
        "grouping": [request.grouping_variable] if request.grouping_variable else [],
    }
    for role, names in roles.items():
        accepted = measures.get(role)
        if accepted is None:
            continue
        for name in names:
            data.check_measure(name, accepted)


# ─────────────────────────────────────────────
# PUBLIC ENTRY POINTS
# ─────────────────────────────────────────────

def used_variables(request: AnalysisRequest, requirement: dict) -> list[str]:
    """Columns the test reads; a grouping variable counts only when the test takes one."""
    used = [*request.dependent_variables, *request.independent_variables]
    if request.grouping_variable and requirement["grouping"] is not None:
        used.append(request.grouping_variable)
    return list(dict.fromkeys(used))


def run_analysis(request: AnalysisRequest) -> AnalysisResult:
    """Validates, coerces and dispatches a single request."""
    requirement = validate_request(request)
    logger.info(
        "Running %s (dv=%s, iv=%s, grouping=%s, rows=%d)",
        request.test_type,
        request.dependent_variables,
        request.independent_variables,
        request.grouping_variable,
        len(request.data),
    )

    declared = {d.name: d.measure for d in request.variables}
    data = Dataset(request.data, declared)
    data.require(*used_variables(request, requirement))
    _check_measures(data, request, requirement)

    result = HANDLERS[request.test_type](data, request)
    if data.excluded_groups:
        result = result.model_copy(update={"summary": f"{result.summary} {exclusion_note(data.excluded_groups)}"})
    logger.info("%s finished with %d table(s), %d warning(s)", request.test_type, len(result.tables), len(result.warnings))
    return result


def calculate_statistics(
    test_type: str,
    dependent_variables: list[str],
    independent_variables: list[str] | None = None,
    grouping_variable: str | None = None,
    data: list[dict[str, Any]] | None = None,
    options: AnalysisOptions | dict[str, Any] | None = None,
    allow_pro: bool = True,
) -> AnalysisResult:
    """
    Functional entry point mirroring the web client's call shape.
    Raises an AnalysisError subclass on failure.
    """
    if isinstance(options, dict):
        options = AnalysisOptions.model_validate(options)
    request = AnalysisRequest(
        test_type=test_type,
        dependent_variables=list(dependent_variables),
        independent_variables=list(independent_variables or []),
        grouping_variable=grouping_variable,
        data=data or [],
        options=options or AnalysisOptions(),
        allow_pro=allow_pro,
    )
    return run_analysis(request)
