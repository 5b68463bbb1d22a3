"""
Family Size Regression Comparison
=================================

Compares Poisson, Gamma and Weibull regressions of family size on literacy
and time since marriage.

Modules:
    - data_loader: CSV ingestion and validation
    - preprocessing: Coercion and family_size derivation (Phase 1)
    - eda: Exploratory Data Analysis (Phase 2)
    - model: Poisson, Gamma and Weibull fitting (Phase 3)
    - prediction: Response-scale predictions (Phase 4)
    - evaluation: Information criteria, RMSE and residual diagnostics (Phase 5)
    - exceptions: Pipeline error kinds
"""

__version__ = "1.0.0"
__author__ = "Family Size Analysis Team"
