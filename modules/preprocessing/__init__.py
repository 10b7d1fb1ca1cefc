"""
Preprocessing Module
====================

Responsibility:
- One-hot encoding of categorical candidate attributes.
- Near-zero-variance predictor removal.
- SMOTE oversampling of the classification target.
- Layout of predictors and a contiguous target block.
"""

from .feature_preprocessor import (
    FeaturePreprocessor,
    PreparedData,
    near_zero_variance,
    one_hot_encode,
    oversample,
)

__all__ = ['FeaturePreprocessor', 'PreparedData', 'near_zero_variance', 'one_hot_encode', 'oversample']
