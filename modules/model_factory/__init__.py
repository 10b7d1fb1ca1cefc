"""
Model Factory Module
====================

Responsibility:
- Name-based construction of regressors and classifiers.
- Keras-style compile/fit/evaluate neural network learner.
- Optimizer lookup table for the neural network grid search.
"""

from .model_factory import ModelFactory
from .neural_network import NeuralNetworkClassifier, History
from .optimizers import OptimizerKind, OptimizerSpec, OPTIMIZER_TABLE, resolve_optimizer

__all__ = [
    'ModelFactory',
    'NeuralNetworkClassifier',
    'History',
    'OptimizerKind',
    'OptimizerSpec',
    'OPTIMIZER_TABLE',
    'resolve_optimizer',
]
