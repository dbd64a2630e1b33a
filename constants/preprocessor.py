# ─────────────────────────────────────────────
# CONSTANTS
# ─────────────────────────────────────────────

# Common symbols that represent missing values but aren't NaN
DISGUISED_NULL_SYMBOLS = {
    "-", "--", "---", "n/a", "na", "nan", "nil", "none", "null",
    "?", "*", "missing", "unknown", ".", "",
}

# Dropped-row share above which a warning is attached to the result
MISSING_WARNING_THRESHOLD = 0.20
