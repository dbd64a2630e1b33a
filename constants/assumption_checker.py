# ─────────────────────────────────────────────
# CONSTANTS
# ─────────────────────────────────────────────

VIF_THRESHOLD            = 10.0   # VIF above this → multicollinearity problem
LINEARITY_GAP_THRESHOLD  = 0.15   # |Spearman| - |Pearson| above this → possible non-linearity
EXPECTED_COUNT_MINIMUM   = 5      # chi-square expected cell frequency
EXPECTED_COUNT_MAX_SHARE = 0.20   # share of cells allowed below the minimum

# Minimum sample size per test family
MIN_SAMPLE_SIZE = {
    "anova":      20,
    "chi-square": 20,
    "regression": 50,
    "default":    10,
}
