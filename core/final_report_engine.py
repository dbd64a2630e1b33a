"""
FILE: core/final_report_engine.py
-----------------------------------
Result assembly: turns raw numeric output of the engines into the
Table / Chart / AnalysisResult structures the client renders.
No LangChain or LLM dependencies.

Responsibilities:
  1. Sanitises table cells: numpy scalars become Python numbers, absent,
     NaN and infinite values become the placeholder dash. Numbers keep
     full precision; rounding is a display concern only.
  2. Formats statistics for templated summaries (APA-style p-values)
  3. Renders a result as display rows / markdown with 3-decimal rounding
"""

import math
from typing import Any, Iterable

import numpy as np

from Schemas.statistician import (
    AnalysisResult,
    Chart,
    ChartType,
    Table,
    TestFamily,
)
from Utils.test_requirements_registry import TEST_REQUIREMENTS
from constants.statistician import DISPLAY_DECIMALS, MISSING_PLACEHOLDER


# ─────────────────────────────────────────────
# CELL SANITISING
# ─────────────────────────────────────────────

def cell(value: Any) -> Any:
    """JSON-safe cell value at full precision; missing values become a dash."""
    if value is None:
        return MISSING_PLACEHOLDER
    if isinstance(value, (bool, np.bool_)):
        return "Yes" if value else "No"
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        value = float(value)
        return value if math.isfinite(value) else MISSING_PLACEHOLDER
    return value


def make_table(
    title: str,
    headers: list[str],
    rows: Iterable[dict[str, Any]],
    notes: list[str] | None = None,
) -> Table:
    """Every row gets every header; unknown keys are dropped."""
    clean_rows = [{h: cell(row.get(h)) for h in headers} for row in rows]
    return Table(title=title, headers=headers, rows=clean_rows, notes=notes or [])


def make_chart(chart_type: ChartType, title: str, data: Iterable[dict[str, Any]]) -> Chart:
    points = [{k: cell(v) for k, v in point.items()} for point in data]
    return Chart(type=chart_type, title=title, data=points)


def build_result(
    test_type: str,
    tables: list[Table],
    summary: str,
    warnings: list[str],
    charts: list[Chart] | None = None,
    n_observations: int | None = None,
) -> AnalysisResult:
    requirement = TEST_REQUIREMENTS[test_type]
    return AnalysisResult(
        test_type=test_type,
        test_name=requirement["name"],
        family=TestFamily(requirement["family"]),
        tables=tables,
        charts=charts or [],
        summary=summary,
        n_observations=n_observations,
        warnings=list(warnings),
    )


# ─────────────────────────────────────────────
# SUMMARY FORMATTING
# ─────────────────────────────────────────────

def exclusion_note(excluded: list[str]) -> str:
    """Summary clause naming groups left out for having too few observations."""
    return f"Excluded for too few observations: group {', group '.join(excluded)}."


def fmt(value: float | None, decimals: int = 2) -> str:
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return MISSING_PLACEHOLDER
    return f"{value:.{decimals}f}"


def p_text(p: float | None) -> str:
    """APA style: 'p < .001' or 'p = .034'."""
    if p is None or not math.isfinite(p):
        return f"p = {MISSING_PLACEHOLDER}"
    if p < 0.001:
        return "p < .001"
    return "p = " + f"{p:.3f}".lstrip("0")


def significance_word(p: float | None, alpha: float) -> str:
    if p is not None and math.isfinite(p) and p < alpha:
        return "a statistically significant"
    return "no statistically significant"


def magnitude(value: float | None, cutoffs: tuple[float, float, float]) -> str:
    """negligible / small / medium / large against (small, medium, large) cutoffs."""
    if value is None or not math.isfinite(value):
        return "undetermined"
    size = abs(value)
    small, medium, large = cutoffs
    if size >= large:
        return "large"
    if size >= medium:
        return "medium"
    if size >= small:
        return "small"
    return "negligible"


COHEN_D_CUTOFFS = (0.2, 0.5, 0.8)
CORRELATION_CUTOFFS = (0.1, 0.3, 0.5)
ETA_SQUARED_CUTOFFS = (0.01, 0.06, 0.14)


# ─────────────────────────────────────────────
# DISPLAY RENDERING
# ─────────────────────────────────────────────

def display_value(value: Any, decimals: int = DISPLAY_DECIMALS) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:.{decimals}f}" if math.isfinite(value) else MISSING_PLACEHOLDER
    if value is None:
        return MISSING_PLACEHOLDER
    return str(value)


def render_table(table: Table, decimals: int = DISPLAY_DECIMALS) -> list[dict[str, str]]:
    return [
        {h: display_value(row.get(h), decimals) for h in table.headers}
        for row in table.rows
    ]


def render_markdown(result: AnalysisResult, decimals: int = DISPLAY_DECIMALS) -> str:
    lines = [f"## {result.test_name}", ""]

    for table in result.tables:
        lines.append(f"### {table.title}")
        lines.append("| " + " | ".join(table.headers) + " |")
        lines.append("| " + " | ".join("---" for _ in table.headers) + " |")
        for row in render_table(table, decimals):
            lines.append("| " + " | ".join(row[h] for h in table.headers) + " |")
        for note in table.notes:
            lines.append(f"*{note}*")
        lines.append("")

    lines.append(f"**Summary:** {result.summary}")
    if result.warnings:
        lines.append("")
        lines.append("**Warnings:**")
        for w in result.warnings:
            lines.append(f"- {w}")

    return "\n".join(lines)
