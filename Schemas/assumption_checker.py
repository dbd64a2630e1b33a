"""
FILE: Schemas/assumption_checker.py
-------------------------------------
Pydantic output schema for the assumption checker.
One AssumptionResult per assumption relevant to the requested test family
(normality, homogeneity of variance, linearity, multicollinearity, ...).
"""

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────
# SINGLE ASSUMPTION RESULT
# ─────────────────────────────────────────────

class AssumptionResult(BaseModel):
    name:           str                    # e.g. "Normality (group A)"
    passed:         bool
    value:          float | str            # statistic, or a short formatted summary
    threshold:      str                    # e.g. "p > 0.05"
    interpretation: str = ""
    recommendation: str = ""
    test_used:      str | None = None      # e.g. "Shapiro-Wilk", "Levene's Test"


# ─────────────────────────────────────────────
# MAIN OUTPUT SCHEMA
# ─────────────────────────────────────────────

class AssumptionCheckerOutput(BaseModel):
    test_type:    str
    assumptions:  list[AssumptionResult] = Field(default_factory=list)

    passed_count: int = 0
    total_count:  int = 0
    overall_pass: bool = False

    summary: str = ""
