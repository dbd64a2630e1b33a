"""
FILE: core/preprocessor_engine.py
-----------------------------------
Data coercion & validation for the statistics engine.
No LangChain or LLM dependencies.

Responsibilities:
  1. Build a DataFrame from the raw row records without losing the
     original scalars (dtype=object until a variable is coerced)
  2. Treat None, NaN, ±inf, blank strings and disguised null symbols
     ("n/a", "null", "?", ...) as missing
  3. Coerce a variable to numeric (scale / rankable roles) or to string
     labels (nominal / ordinal roles, categories in first-appearance order)
  4. Listwise deletion scoped to the variables of the current test only
  5. Split a numeric variable by a grouping variable, dropping groups that
     are too small and failing when fewer than two groups remain

NOT done here (test-specific, handled in the engines):
  - Ranking, standardisation, dummy coding
"""

import logging
from typing import Any

import numpy as np
import pandas as pd

from Schemas.statistician import MeasureLevel
from constants.preprocessor import DISGUISED_NULL_SYMBOLS, MISSING_WARNING_THRESHOLD
from constants.statistician import MIN_OBS_PER_GROUP
from core.errors import (
    InsufficientDataError,
    InsufficientGroupsError,
    InvalidVariableError,
)

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# HELPERS: SCALAR CLEANING
# ─────────────────────────────────────────────

def clean_scalar(value: Any) -> Any:
    """Returns None for anything that counts as missing, else the stripped value."""
    if value is None:
        return None
    if isinstance(value, (bool, np.bool_)):
        return int(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        return value if np.isfinite(value) else None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lower() in DISGUISED_NULL_SYMBOLS:
            return None
        return stripped
    return value


def format_label(value: Any) -> str | None:
    """String label for a categorical cell; integral floats lose their '.0'."""
    value = clean_scalar(value)
    if value is None:
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def _to_numeric(raw: pd.Series) -> pd.Series:
    cleaned = raw.map(clean_scalar)
    numeric = pd.to_numeric(cleaned, errors="coerce").astype(float)
    return numeric.replace([np.inf, -np.inf], np.nan)


def categories_in_order(labels: pd.Series) -> list[str]:
    """Distinct non-missing labels in order of first appearance."""
    return list(dict.fromkeys(v for v in labels if v is not None))


# ─────────────────────────────────────────────
# DATASET
# ─────────────────────────────────────────────

class Dataset:
    """
    Per-request view over the uploaded rows.

    Collects warnings (dropped rows, excluded groups, non-numeric cells)
    which the handlers copy onto the AnalysisResult.
    """

    def __init__(
        self,
        rows: list[dict[str, Any]],
        declared: dict[str, MeasureLevel] | None = None,
    ):
        if not rows:
            raise InsufficientDataError("The dataset contains no rows.", minimum=1)
        self.frame = pd.DataFrame(rows, dtype=object)
        self.declared = declared or {}
        self.warnings: list[str] = []
        self.excluded_groups: list[str] = []

    @property
    def n_rows(self) -> int:
        return len(self.frame)

    @property
    def columns(self) -> list[str]:
        return [str(c) for c in self.frame.columns]

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            logger.info("Analysis warning: %s", message)
            self.warnings.append(message)

    # ── Schema ──

    def require(self, *names: str) -> None:
        missing = [n for n in names if n not in self.frame.columns]
        if missing:
            raise InvalidVariableError(
                f"Variable(s) not found in dataset: {', '.join(repr(m) for m in missing)}. "
                f"Available columns: {', '.join(self.columns)}."
            )

    def infer_measure(self, name: str) -> MeasureLevel:
        """Declared measure if the caller supplied one, else scale when every value parses."""
        if name in self.declared:
            return self.declared[name]
        self.require(name)
        raw = self.frame[name].map(clean_scalar)
        present = raw.notna()
        if not present.any():
            return MeasureLevel.SCALE
        numeric = pd.to_numeric(raw[present], errors="coerce")
        return MeasureLevel.SCALE if numeric.notna().all() else MeasureLevel.NOMINAL

    def check_measure(self, name: str, accepted: tuple[MeasureLevel, ...]) -> None:
        declared = self.declared.get(name)
        if declared is not None and declared not in accepted:
            allowed = ", ".join(m.value for m in accepted)
            raise InvalidVariableError(
                f"Variable '{name}' is declared {declared.value}; this test needs {allowed}."
            )

    # ── Coercion ──

    def numeric(self, name: str) -> pd.Series:
        """Float series aligned to the row index; NaN marks a missing value."""
        self.require(name)
        raw = self.frame[name]
        numeric = _to_numeric(raw)

        present = raw.map(clean_scalar).notna()
        n_present = int(present.sum())
        n_numeric = int(numeric.notna().sum())
        if n_present and not n_numeric:
            raise InvalidVariableError(
                f"Variable '{name}' has no numeric values and cannot be analysed as a scale variable."
            )
        if n_numeric < n_present:
            self.warn(
                f"{n_present - n_numeric} non-numeric value(s) in '{name}' were treated as missing."
            )
        return numeric

    def labels(self, name: str) -> pd.Series:
        """Object series of string labels; None marks a missing value."""
        self.require(name)
        return self.frame[name].map(format_label).astype(object)

    # ── Listwise deletion ──

    def complete_cases(
        self,
        numeric: list[str] | tuple[str, ...] = (),
        categorical: list[str] | tuple[str, ...] = (),
        min_n: int = 1,
    ) -> pd.DataFrame:
        """
        Frame holding only the named variables, with every row that misses
        any of them removed. Numeric columns are float, categorical columns
        hold string labels.
        """
        columns: dict[str, pd.Series] = {}
        for name in numeric:
            columns[name] = self.numeric(name)
        for name in categorical:
            if name not in columns:
                columns[name] = self.labels(name)

        frame = pd.DataFrame(columns, index=self.frame.index)
        complete = frame.notna().all(axis=1)
        dropped = int((~complete).sum())
        frame = frame[complete]

        if dropped:
            names = ", ".join(columns)
            logger.debug("Listwise deletion dropped %d of %d rows (%s)", dropped, self.n_rows, names)
            self.warn(f"{dropped} row(s) excluded because of missing values in: {names}.")
            if dropped / self.n_rows > MISSING_WARNING_THRESHOLD:
                self.warn(
                    f"More than {int(MISSING_WARNING_THRESHOLD * 100)}% of rows were excluded; "
                    f"results may not represent the full sample."
                )

        if len(frame) < min_n:
            raise InsufficientDataError(
                f"Only {len(frame)} valid observation(s) remain after removing missing values",
                minimum=min_n,
            )
        return frame

    # ── Grouping ──

    def split_groups(
        self,
        frame: pd.DataFrame,
        value_col: str,
        group_col: str,
        min_size: int = MIN_OBS_PER_GROUP,
        min_groups: int = 2,
    ) -> dict[str, np.ndarray]:
        """
        {label: values} in first-appearance order. Groups with fewer than
        `min_size` observations are excluded with a warning.
        """
        groups: dict[str, np.ndarray] = {}
        for label in categories_in_order(frame[group_col]):
            values = frame.loc[frame[group_col] == label, value_col].to_numpy(dtype=float)
            if len(values) < min_size:
                self.warn(
                    f"Group '{label}' of '{group_col}' excluded: {len(values)} observation(s), "
                    f"at least {min_size} needed."
                )
                excluded = f"'{label}' of '{group_col}'"
                if excluded not in self.excluded_groups:
                    self.excluded_groups.append(excluded)
                continue
            groups[label] = values

        if len(groups) < min_groups:
            raise InsufficientGroupsError(
                f"'{group_col}' has {len(groups)} group(s) with enough data; "
                f"at least {min_groups} are needed."
            )
        return groups
