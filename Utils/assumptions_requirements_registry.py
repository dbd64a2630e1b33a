"""
FILE: Utils/assumptions_requirements_registry.py
--------------------------------------------------
Central registry mapping each supported test id to the assumptions the
checker evaluates before the test is run.

Each assumption entry has:
  name:        Short identifier used in code
  description: Plain English description shown to the user
  test_fn:     Name of the check in core/assumption_engine.CHECKS

A check may emit several AssumptionResults (e.g. one normality result
per group or per variable).
"""

# ─────────────────────────────────────────────
# REUSABLE ENTRIES
# ─────────────────────────────────────────────

SAMPLE_SIZE = {
    "name": "sample_size",
    "description": "The sample should be large enough for the analysis to be reliable.",
    "test_fn": "check_sample_size",
}
NORMALITY = {
    "name": "normality",
    "description": "The dependent variable should be approximately normal (within each group when grouped).",
    "test_fn": "check_normality",
}
NORMALITY_OF_DIFFERENCES = {
    "name": "normality_of_differences",
    "description": "The paired differences should be approximately normal.",
    "test_fn": "check_normality_of_differences",
}
NORMALITY_OF_RESIDUALS = {
    "name": "normality_of_residuals",
    "description": "Regression residuals should be approximately normal.",
    "test_fn": "check_normality_of_residuals",
}
HOMOGENEITY = {
    "name": "homogeneity_of_variances",
    "description": "Group variances should be approximately equal (Levene's test).",
    "test_fn": "check_homogeneity_levene",
}
LINEARITY = {
    "name": "linearity",
    "description": "Relationships between the variables should be approximately linear.",
    "test_fn": "check_linearity",
}
HOMOSCEDASTICITY = {
    "name": "homoscedasticity",
    "description": "Residual variance should be constant across fitted values (Breusch-Pagan).",
    "test_fn": "check_homoscedasticity_bp",
}
MULTICOLLINEARITY = {
    "name": "no_multicollinearity",
    "description": "Predictors should not be highly correlated with each other (VIF).",
    "test_fn": "check_multicollinearity_vif",
}
OUTLIERS = {
    "name": "no_significant_outliers",
    "description": "No extreme values should unduly influence the results (IQR method).",
    "test_fn": "check_outliers_iqr",
}
EXPECTED_FREQUENCIES = {
    "name": "expected_frequencies",
    "description": "Expected cell frequencies should be at least 5 in 80% of the cells.",
    "test_fn": "check_expected_frequencies",
}
SPHERICITY = {
    "name": "sphericity",
    "description": "Variances of the differences between all pairs of measures should be equal (Mauchly).",
    "test_fn": "check_sphericity",
}
SAMPLING_ADEQUACY = {
    "name": "sampling_adequacy",
    "description": "Items should share enough common variance to be factored (KMO >= .50).",
    "test_fn": "check_sampling_adequacy",
}


ASSUMPTION_REGISTRY: dict[str, list[dict]] = {

    # ─────────────────────────────────────────────
    # DESCRIPTIVE & PRELIMINARY
    # ─────────────────────────────────────────────
    "frequencies":       [SAMPLE_SIZE],
    "descriptives":      [SAMPLE_SIZE, OUTLIERS],
    "crosstabs":         [SAMPLE_SIZE, EXPECTED_FREQUENCIES],
    "normality-test":    [SAMPLE_SIZE, OUTLIERS],
    "outlier-detection": [SAMPLE_SIZE],

    # ─────────────────────────────────────────────
    # RELIABILITY
    # ─────────────────────────────────────────────
    "cronbach-alpha": [SAMPLE_SIZE, OUTLIERS],
    "item-total":     [SAMPLE_SIZE, OUTLIERS],

    # ─────────────────────────────────────────────
    # MEAN COMPARISONS
    # ─────────────────────────────────────────────
    "one-sample-t-test":       [SAMPLE_SIZE, NORMALITY, OUTLIERS],
    "independent-t-test":      [SAMPLE_SIZE, NORMALITY, HOMOGENEITY, OUTLIERS],
    "paired-t-test":           [SAMPLE_SIZE, NORMALITY_OF_DIFFERENCES, OUTLIERS],
    "one-way-anova":           [SAMPLE_SIZE, NORMALITY, HOMOGENEITY, OUTLIERS],
    "two-way-anova":           [SAMPLE_SIZE, NORMALITY_OF_RESIDUALS, HOMOGENEITY, OUTLIERS],
    "repeated-measures-anova": [SAMPLE_SIZE, NORMALITY, SPHERICITY, OUTLIERS],

    # ─────────────────────────────────────────────
    # NONPARAMETRIC
    # ─────────────────────────────────────────────
    "mann-whitney":   [SAMPLE_SIZE, OUTLIERS],
    "wilcoxon":       [SAMPLE_SIZE, OUTLIERS],
    "kruskal-wallis": [SAMPLE_SIZE, OUTLIERS],
    "friedman":       [SAMPLE_SIZE],
    "chi-square":     [SAMPLE_SIZE, EXPECTED_FREQUENCIES],

    # ─────────────────────────────────────────────
    # CORRELATION
    # ─────────────────────────────────────────────
    "pearson":     [SAMPLE_SIZE, NORMALITY, LINEARITY, OUTLIERS],
    "spearman":    [SAMPLE_SIZE, OUTLIERS],
    "kendall-tau": [SAMPLE_SIZE],
    "correlation": [SAMPLE_SIZE, LINEARITY, OUTLIERS],

    # ─────────────────────────────────────────────
    # REGRESSION
    # ─────────────────────────────────────────────
    "simple-linear-regression": [SAMPLE_SIZE, LINEARITY, NORMALITY_OF_RESIDUALS, HOMOSCEDASTICITY, OUTLIERS],
    "multiple-regression":      [SAMPLE_SIZE, LINEARITY, NORMALITY_OF_RESIDUALS, HOMOSCEDASTICITY,
                                 MULTICOLLINEARITY, OUTLIERS],
    "logistic-regression":      [SAMPLE_SIZE, MULTICOLLINEARITY, OUTLIERS],

    # ─────────────────────────────────────────────
    # FACTOR ANALYSIS
    # ─────────────────────────────────────────────
    "kmo-bartlett": [SAMPLE_SIZE, OUTLIERS],
    "efa":          [SAMPLE_SIZE, SAMPLING_ADEQUACY, LINEARITY, OUTLIERS],
}
