# ─────────────────────────────────────────────
# CONSTANTS: STATISTICS ENGINE
# ─────────────────────────────────────────────

DEFAULT_ALPHA       = 0.05
CONFIDENCE_LEVEL    = 0.95

# Exact p-values for rank tests only up to this many observations (and no ties)
EXACT_TEST_MAX_N    = 20

# Shapiro-Wilk above this N is replaced by D'Agostino-Pearson
SHAPIRO_MAX_N       = 5000

# Minimum observations a group must keep to stay in a between-groups comparison
MIN_OBS_PER_GROUP   = 2

# Logistic regression (Newton-Raphson)
LOGISTIC_MAX_ITER     = 25
LOGISTIC_TOLERANCE    = 1e-8     # max |Newton step| in the coefficients
SEPARATION_TOLERANCE  = 1e-6     # max |y - p| below this → complete separation
PROBABILITY_FLOOR     = 1e-10
CLASSIFICATION_CUTOFF = 0.5

# Factor rotation (varimax)
ROTATION_MAX_ITER   = 100
ROTATION_TOLERANCE  = 1e-6
KAISER_EIGENVALUE   = 1.0

# Multicollinearity
VIF_MODERATE        = 5.0
VIF_SEVERE          = 10.0

# Outliers
IQR_MULTIPLIER      = 1.5
Z_SCORE_LIMIT       = 3.0
MAX_LISTED_OUTLIERS = 10

# Display
DISPLAY_DECIMALS    = 3
MISSING_PLACEHOLDER = "-"
