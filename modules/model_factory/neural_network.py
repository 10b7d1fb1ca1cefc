"""
Feed-forward neural network classifier with a compile / fit / evaluate contract.

The grid search and the cross-validation loop only rely on three calls:

- ``compile(loss, optimizer, metrics)``
- ``fit(x, y, epochs, batch_size, validation_split) -> History``
- ``evaluate(x, y, batch_size) -> {"loss": ..., <metric>: ...}``

``NeuralNetworkClassifier`` implements them on top of scikit-learn's
``MLPClassifier``, one ``partial_fit`` pass per epoch. Any learner exposing the
same three calls can be substituted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.metrics import accuracy_score, balanced_accuracy_score, log_loss
from sklearn.neural_network import MLPClassifier

from modules.model_factory.optimizers import OptimizerSpec, resolve_optimizer
from utils.exceptions import ConfigurationError

CROSSENTROPY_LOSSES = ('binary_crossentropy', 'categorical_crossentropy', 'sparse_categorical_crossentropy')
LOSS_FUNCTIONS = CROSSENTROPY_LOSSES + ('mean_squared_error',)

METRIC_FUNCTIONS = {
    'accuracy': accuracy_score,
    'balanced_accuracy': balanced_accuracy_score,
}


@dataclass
class History:
    """Per-epoch training record, keyed like Keras' ``History.history``."""
    params: Dict[str, Any] = field(default_factory=dict)
    epoch: List[int] = field(default_factory=list)
    history: Dict[str, List[float]] = field(default_factory=dict)

    def record(self, epoch: int, logs: Dict[str, float]) -> None:
        self.epoch.append(epoch)
        for key, value in logs.items():
            self.history.setdefault(key, []).append(float(value))

    def last(self, key: str) -> Optional[float]:
        values = self.history.get(key)
        return values[-1] if values else None

    def to_dict(self) -> Dict[str, Any]:
        return {'params': self.params, 'epoch': list(self.epoch), 'history': self.history}


class NeuralNetworkClassifier(ClassifierMixin, BaseEstimator):
    """
    Small multilayer perceptron for candidate outcome classification.

    Targets may be a one-hot block (several columns, decoded with argmax) or a
    single label column. Pass ``classes`` when a single-column target may miss
    some labels in a training fold.

    Parameters:
        hidden_layer_sizes: Units per hidden layer.
        activation: Hidden layer activation ('relu', 'tanh', 'logistic', 'identity').
        alpha: L2 penalty.
        classes: Full label set, if known up front.
        random_state: Seed for weight initialisation and minibatch shuffling.
    """

    def __init__(self, hidden_layer_sizes: Sequence[int] = (32, 16), activation: str = 'relu',
                 alpha: float = 1e-4, classes: Optional[Sequence] = None,
                 random_state: Optional[int] = None):
        self.hidden_layer_sizes = hidden_layer_sizes
        self.activation = activation
        self.alpha = alpha
        self.classes = classes
        self.random_state = random_state

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    def compile(self, loss: str = 'categorical_crossentropy', optimizer: Any = 'adam',
                metrics: Optional[Sequence[str]] = None) -> "NeuralNetworkClassifier":
        """Attach loss, optimizer and metrics and build a fresh, untrained network."""
        if loss not in LOSS_FUNCTIONS:
            raise ConfigurationError(f"Unknown loss function: {loss!r}. Available: {list(LOSS_FUNCTIONS)}")
        metrics = list(metrics) if metrics else ['accuracy']
        unknown = [m for m in metrics if m not in METRIC_FUNCTIONS]
        if unknown:
            raise ConfigurationError(f"Unknown metrics: {unknown}. Available: {list(METRIC_FUNCTIONS)}")

        self.loss_ = loss
        self.optimizer_: OptimizerSpec = resolve_optimizer(optimizer)
        self.metrics_ = metrics
        self.network_ = MLPClassifier(
            hidden_layer_sizes=tuple(self.hidden_layer_sizes),
            activation=self.activation,
            alpha=self.alpha,
            random_state=self.random_state,
            shuffle=True,
            **self.optimizer_.to_solver_params()
        )
        self.classes_ = None if self.classes is None else np.asarray(self.classes)
        self.history_: Optional[History] = None
        return self

    def fit(self, x, y, epochs: int = 1, batch_size: int = 32,
            validation_split: float = 0.0) -> History:
        """
        Train for ``epochs`` passes, continuing from the current weights.

        The trailing ``validation_split`` fraction of the rows is held out and
        scored after every epoch (``val_loss``, ``val_<metric>``).
        """
        self._check_compiled()
        if epochs < 1:
            raise ValueError(f"epochs must be >= 1, got {epochs}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if not 0.0 <= validation_split < 1.0:
            raise ValueError(f"validation_split must be in [0, 1), got {validation_split}")

        x = np.asarray(x, dtype=float)
        labels = self._prepare_labels(y, learn_classes=True)

        n_val = int(len(x) * validation_split)
        n_train = len(x) - n_val
        if n_train < 1:
            raise ValueError("validation_split leaves no rows to train on")
        x_train, y_train = x[:n_train], labels[:n_train]
        x_val, y_val = x[n_train:], labels[n_train:]

        self.network_.set_params(batch_size=min(batch_size, n_train))
        history = History(params={
            'epochs': epochs,
            'batch_size': batch_size,
            'validation_split': validation_split,
            'samples': n_train,
        })

        for epoch in range(epochs):
            self.network_.partial_fit(x_train, y_train, classes=self.classes_)
            logs = self._score(x_train, y_train)
            if n_val:
                logs.update({f"val_{k}": v for k, v in self._score(x_val, y_val).items()})
            history.record(epoch, logs)

        self.history_ = history
        return history

    def evaluate(self, x, y, batch_size: Optional[int] = None) -> Dict[str, float]:
        """
        Score the network: ``{"loss": ..., <metric>: ...}`` for every compiled metric.

        Probabilities are computed in one pass; ``batch_size`` is accepted for
        interface compatibility.
        """
        self._check_trained()
        x = np.asarray(x, dtype=float)
        labels = self._prepare_labels(y, learn_classes=False)
        return self._score(x, labels)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------
    def predict(self, x) -> np.ndarray:
        self._check_trained()
        return self.network_.predict(np.asarray(x, dtype=float))

    def predict_proba(self, x) -> np.ndarray:
        self._check_trained()
        return self.network_.predict_proba(np.asarray(x, dtype=float))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _check_compiled(self):
        if not hasattr(self, 'network_'):
            raise RuntimeError("Model must be compiled before fit/evaluate. Call compile() first.")

    def _check_trained(self):
        self._check_compiled()
        if not hasattr(self.network_, 'coefs_'):
            raise RuntimeError("Model has not been trained yet. Call fit() first.")

    def _prepare_labels(self, y, learn_classes: bool) -> np.ndarray:
        y = np.asarray(y)
        one_hot = y.ndim == 2 and y.shape[1] > 1
        labels = y.argmax(axis=1) if one_hot else y.ravel()

        if self.classes_ is None:
            if not learn_classes:
                raise RuntimeError("Model has not been trained yet. Call fit() first.")
            self.classes_ = np.arange(y.shape[1]) if one_hot else np.unique(labels)

        unseen = np.setdiff1d(np.unique(labels), self.classes_)
        if unseen.size:
            raise ValueError(f"Target contains labels outside the known classes {self.classes_.tolist()}: {unseen.tolist()}")
        return labels

    def _score(self, x: np.ndarray, labels: np.ndarray) -> Dict[str, float]:
        proba = self.network_.predict_proba(x)
        classes = self.network_.classes_

        if self.loss_ == 'mean_squared_error':
            one_hot = (labels[:, None] == classes[None, :]).astype(float)
            loss = float(np.mean((one_hot - proba) ** 2))
        else:
            loss = float(log_loss(labels, proba, labels=classes))

        predicted = classes[proba.argmax(axis=1)]
        scores = {'loss': loss}
        for metric in self.metrics_:
            scores[metric] = float(METRIC_FUNCTIONS[metric](labels, predicted))
        return scores
