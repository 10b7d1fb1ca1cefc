"""
Manual k-fold cross-validation for compile/fit/evaluate learners.

Every row of the dataset gets one fold id in ``[1, k]``; for each fold the
model is trained on the other folds and evaluated on the held-out one.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.base import clone

from utils.cancellation import CancellationToken
from utils.exceptions import ConfigurationError, ElectionMLException, TrainingFailure

RandomState = Union[None, int, np.random.Generator]


@dataclass
class CVResult:
    """Per-fold scores of one model / hyperparameter combination."""
    folds: pd.DataFrame
    metric_name: str
    history: Any = None
    model: Any = None
    fold_assignment: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=int))

    @property
    def n_folds(self) -> int:
        return len(self.folds)

    @property
    def mean_loss(self) -> float:
        return float(self.folds['loss'].mean())

    @property
    def mean_metric(self) -> float:
        return float(self.folds[self.metric_name].mean())


def assign_folds(n_rows: int, k: int, random_state: RandomState = None) -> np.ndarray:
    """
    Assign each row a fold id in ``[1, k]``.

    Ids are a random permutation of ``1..k`` repeated, so fold sizes differ by
    at most one. No stratification is applied.
    """
    if k < 2:
        raise ConfigurationError(f"k must be >= 2, got {k}")
    if k > n_rows:
        raise ConfigurationError(f"k ({k}) exceeds the number of rows ({n_rows}); folds would be empty.")
    rng = np.random.default_rng(random_state)
    return rng.permutation(np.arange(n_rows) % k + 1)


def validate_target_range(dataset: pd.DataFrame, target_column_range: Union[range, slice, Sequence[int]]) -> range:
    """Normalise the target column positions to a contiguous ``range`` and check its bounds."""
    n_cols = dataset.shape[1]
    if isinstance(target_column_range, slice):
        target_range = range(*target_column_range.indices(n_cols))
    elif isinstance(target_column_range, range):
        target_range = target_column_range
    else:
        positions = sorted(int(p) for p in target_column_range)
        if not positions:
            raise ConfigurationError("Target column range is empty.")
        if positions != list(range(positions[0], positions[-1] + 1)):
            raise ConfigurationError(f"Target columns must be contiguous, got positions {positions}")
        target_range = range(positions[0], positions[-1] + 1)

    if len(target_range) == 0:
        raise ConfigurationError("Target column range is empty.")
    if target_range.step != 1:
        raise ConfigurationError("Target column range must be contiguous (step 1).")
    if target_range.start < 0 or target_range.stop > n_cols:
        raise ConfigurationError(
            f"Target column range {target_range.start}:{target_range.stop} is outside the {n_cols} dataset columns."
        )
    if len(target_range) >= n_cols:
        raise ConfigurationError("Target column range covers every column; no predictor columns remain.")
    return target_range


def resolve_target_range(dataset: pd.DataFrame, target_columns: Sequence[str]) -> range:
    """Translate target column names into their contiguous positional range."""
    missing = [c for c in target_columns if c not in dataset.columns]
    if missing:
        raise ConfigurationError(f"Target columns not found in dataset: {missing}")
    positions = [dataset.columns.get_loc(c) for c in target_columns]
    return validate_target_range(dataset, positions)


def split_predictors_targets(frame: pd.DataFrame, target_range: range) -> Tuple[np.ndarray, np.ndarray]:
    """Split a frame into its predictor matrix and target matrix."""
    predictor_positions = [i for i in range(frame.shape[1]) if i not in target_range]
    x = frame.iloc[:, predictor_positions].to_numpy(dtype=float)
    y = frame.iloc[:, target_range.start:target_range.stop].to_numpy()
    return x, y


class CrossValidator:
    """
    Runs the train-on-k-1 / evaluate-on-1 loop for a single model configuration.

    By default one compiled model is retrained across all folds, continuing from
    the previous fold's weights. With ``isolate_folds=True`` each fold trains a
    freshly cloned and compiled copy instead.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, isolate_folds: bool = False):
        self.logger = logger or logging.getLogger(__name__)
        self.isolate_folds = isolate_folds

    def cross_validate(self, dataset: pd.DataFrame, target_column_range, model: Any, k: int,
                       loss_fn: str, optimizer: Any, metric_name: str = 'accuracy',
                       epochs: int = 1, batch_size: int = 32, validation_split: float = 0.0,
                       random_state: RandomState = None,
                       cancel_token: Optional[CancellationToken] = None) -> CVResult:
        """
        Cross-validate ``model`` on ``dataset``.

        Returns:
            CVResult with one row per fold, the last fold's history and the
            trained model.

        Raises:
            ConfigurationError: Empty dataset, ``k < 2``, ``k`` above the row
                count or an invalid target range.
            TrainingFailure: compile, fit or evaluate raised.
            SearchCancelled: ``cancel_token`` fired between folds.
        """
        if dataset is None or dataset.empty:
            raise ConfigurationError("Dataset is empty.")
        target_range = validate_target_range(dataset, target_column_range)
        fold_ids = assign_folds(len(dataset), k, random_state)

        template = model
        if not self.isolate_folds:
            self._compile(model, loss_fn, optimizer, metric_name)

        rows = []
        history = None
        for fold in np.unique(fold_ids):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(f"before fold {fold}")

            valid_mask = fold_ids == fold
            train_df = dataset.iloc[~valid_mask]
            valid_df = dataset.iloc[valid_mask]
            x_train, y_train = split_predictors_targets(train_df, target_range)
            x_valid, y_valid = split_predictors_targets(valid_df, target_range)

            if self.isolate_folds:
                model = clone(template, safe=False)
                self._compile(model, loss_fn, optimizer, metric_name)

            try:
                history = model.fit(x_train, y_train, epochs=epochs, batch_size=batch_size,
                                    validation_split=validation_split)
                scores = model.evaluate(x_valid, y_valid, batch_size=batch_size)
            except ElectionMLException:
                raise
            except Exception as e:
                raise TrainingFailure(f"Fold {fold}/{k} failed: {e}") from e

            loss, metric = self._unpack_scores(scores, metric_name)
            rows.append({
                'fold': int(fold),
                'n_train': len(train_df),
                'n_valid': len(valid_df),
                'loss': loss,
                metric_name: metric,
            })
            self.logger.debug(f"Fold {fold}/{k}: loss={loss:.4f} {metric_name}={metric:.4f}")

        return CVResult(
            folds=pd.DataFrame(rows, columns=['fold', 'n_train', 'n_valid', 'loss', metric_name]),
            metric_name=metric_name,
            history=history,
            model=model,
            fold_assignment=fold_ids,
        )

    @staticmethod
    def _compile(model: Any, loss_fn: str, optimizer: Any, metric_name: str) -> None:
        try:
            model.compile(loss=loss_fn, optimizer=optimizer, metrics=[metric_name])
        except ElectionMLException:
            raise
        except Exception as e:
            raise TrainingFailure(f"Model compilation failed: {e}") from e

    @staticmethod
    def _unpack_scores(scores: Any, metric_name: str) -> Tuple[float, float]:
        """Accept either a ``{"loss", metric}`` mapping or a ``[loss, metric]`` sequence."""
        try:
            if isinstance(scores, dict):
                return float(scores['loss']), float(scores[metric_name])
            return float(scores[0]), float(scores[1])
        except (KeyError, IndexError, TypeError) as e:
            raise TrainingFailure(f"evaluate() did not return loss and {metric_name!r}: {scores!r}") from e
