"""
Regression Engine Module
========================

Responsibility:
- Grid-searched ridge / lasso / k-nearest-neighbour regressors.
- Cross-validated and holdout RMSE per model.
- Feature importances (coefficients or permutation importance).
"""

from .regression_engine import RegressionEngine

__all__ = ['RegressionEngine']
