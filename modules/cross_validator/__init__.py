"""
Cross Validator Module
======================

Responsibility:
- Random, balanced fold assignment with an explicit seed.
- Train/evaluate loop over k folds for compile/fit/evaluate learners.
- Per-fold loss/metric table plus the last fold's history and model.
"""

from .cross_validator import (
    CrossValidator,
    CVResult,
    assign_folds,
    resolve_target_range,
    split_predictors_targets,
    validate_target_range,
)

__all__ = [
    'CrossValidator',
    'CVResult',
    'assign_folds',
    'resolve_target_range',
    'split_predictors_targets',
    'validate_target_range',
]
