"""
FILE: Schemas/statistician.py
-------------------------------
Pydantic schemas for the statistics engine.

Request side:
  - VariableDescriptor : {name, measure} supplied by the caller
  - AnalysisOptions    : per-request knobs (alpha, method, post hoc, ...)
  - AnalysisRequest    : {testType, dependentVariables, independentVariables,
                          groupingVariable?, data, options}

Result side:
  - Table          : {title, headers, rows}
  - Chart          : {type, title, data}
  - AnalysisResult : {tables, charts, summary} plus warnings and metadata

Field aliases accept the camelCase names the web client sends;
snake_case names work too.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from constants.statistician import CONFIDENCE_LEVEL, DEFAULT_ALPHA


# ─────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────

class MeasureLevel(str, Enum):
    NOMINAL = "nominal"
    ORDINAL = "ordinal"
    SCALE   = "scale"


class TestFamily(str, Enum):
    DESCRIPTIVE     = "descriptive"
    RELIABILITY     = "reliability"
    COMPARE_MEANS   = "compare-means"
    NONPARAMETRIC   = "nonparametric"
    CORRELATION     = "correlation"
    REGRESSION      = "regression"
    FACTOR_ANALYSIS = "factor-analysis"


class ChartType(str, Enum):
    BAR     = "bar"
    LINE    = "line"
    SCATTER = "scatter"


# ─────────────────────────────────────────────
# REQUEST
# ─────────────────────────────────────────────

class VariableDescriptor(BaseModel):
    name:    str
    measure: MeasureLevel


class AnalysisOptions(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    alpha:            float = Field(default=DEFAULT_ALPHA, gt=0, lt=1)
    confidence_level: float = Field(default=CONFIDENCE_LEVEL, gt=0, lt=1, alias="confidenceLevel")

    # ── Correlation ──
    method:  Literal["pearson", "spearman"] = "pearson"
    missing: Literal["pairwise", "listwise"] = "pairwise"

    # ── Frequencies ──
    sort: Literal["appearance", "descending"] = "appearance"

    # ── Mean comparisons ──
    post_hoc:   Literal["tukey", "bonferroni"] = Field(default="tukey", alias="postHoc")
    test_value: float = Field(default=0.0, alias="testValue")
    groups:     list[str] | None = None          # explicit pair for a t-test

    # ── Models ──
    event:              str | None = None        # logistic "1" category
    strict_convergence: bool = Field(default=False, alias="strictConvergence")
    max_iter:           int | None = Field(default=None, ge=1, alias="maxIter")
    n_factors:          int | None = Field(default=None, ge=1, alias="nFactors")


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    test_type:             str = Field(alias="testType")
    dependent_variables:   list[str] = Field(default_factory=list, alias="dependentVariables")
    independent_variables: list[str] = Field(default_factory=list, alias="independentVariables")
    grouping_variable:     str | None = Field(default=None, alias="groupingVariable")
    data:                  list[dict[str, Any]] = Field(default_factory=list)
    options:               AnalysisOptions = Field(default_factory=AnalysisOptions)

    # ── Caller-supplied context ──
    variables: list[VariableDescriptor] = Field(default_factory=list)
    allow_pro: bool = Field(default=True, alias="allowPro")


# ─────────────────────────────────────────────
# RESULT
# ─────────────────────────────────────────────

class Table(BaseModel):
    title:   str
    headers: list[str]
    rows:    list[dict[str, Any]] = Field(default_factory=list)
    notes:   list[str] = Field(default_factory=list)


class Chart(BaseModel):
    type:  ChartType
    title: str
    data:  list[Any] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    test_type: str
    test_name: str
    family:    TestFamily

    tables:  list[Table] = Field(default_factory=list)
    charts:  list[Chart] = Field(default_factory=list)
    summary: str = ""

    # ── Metadata ──
    n_observations: int | None = None
    warnings: list[str] = Field(default_factory=list)

    def table(self, title: str) -> Table:
        """Looks up a table by title (exact match first, then prefix)."""
        for table in self.tables:
            if table.title == title:
                return table
        for table in self.tables:
            if table.title.startswith(title):
                return table
        raise KeyError(title)


class ErrorDetail(BaseModel):
    kind:    str
    message: str
