import gc
import json
import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

import joblib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.base import clone
from sklearn.model_selection import ParameterGrid

from modules.base.base_engine import BaseEngine
from modules.cross_validator import CrossValidator, CVResult, split_predictors_targets, validate_target_range
from modules.model_factory import ModelFactory, resolve_optimizer
from utils import constants
from utils.cancellation import CancellationToken
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationError, ElectionMLException, TrainingFailure
from utils.model_loader import safe_load_model
from utils.serialization import NumpyEncoder

GRID_KEYS = ('optimizer', 'loss', 'batch_size', 'epochs', 'validation_split')


@dataclass
class HyperparameterGridRow:
    """
    One combination of compile-time hyperparameters.

    The hyperparameter fields are fixed once the grid is expanded; the search
    fills in ``mean_accuracy``, ``mean_loss``, ``status`` and ``error``.
    """
    row_id: int
    optimizer: str
    loss: str
    batch_size: int
    epochs: int
    validation_split: float
    metric: str = constants.DEFAULT_METRIC
    mean_accuracy: Optional[float] = None
    mean_loss: Optional[float] = None
    status: str = 'pending'
    error: Optional[str] = None
    duration_sec: Optional[float] = None

    def hyperparameters(self) -> Dict[str, Any]:
        return {key: getattr(self, key) for key in GRID_KEYS}

    def annotate(self, mean_accuracy: float, mean_loss: float, duration_sec: Optional[float] = None) -> None:
        self.mean_accuracy = mean_accuracy
        self.mean_loss = mean_loss
        self.duration_sec = duration_sec
        self.status = 'success'

    def mark_failed(self, error: str) -> None:
        self.status = 'failed'
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResult:
    """Terminal artifact of a grid search: the winning configuration and the annotated grid."""
    best_model: Any
    best_history: Any
    best_row: HyperparameterGridRow
    grid: List[HyperparameterGridRow]
    cv_results: Dict[int, CVResult] = field(default_factory=dict)
    fold_seed: Optional[int] = None
    k: Optional[int] = None

    def grid_frame(self) -> pd.DataFrame:
        return pd.DataFrame([row.to_dict() for row in self.grid])

    def fold_frame(self) -> pd.DataFrame:
        frames = [cv.folds.assign(row_id=row_id) for row_id, cv in self.cv_results.items()]
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)


def expand_grid(param_grid: Dict[str, List[Any]], metric: str = constants.DEFAULT_METRIC) -> List[HyperparameterGridRow]:
    """
    Expand candidate values into the full cross product of grid rows.

    Every key in ``GRID_KEYS`` must map to a non-empty list.
    """
    missing = [key for key in GRID_KEYS if key not in param_grid]
    if missing:
        raise ConfigurationError(f"Hyperparameter grid is missing keys: {missing}")
    for key in GRID_KEYS:
        values = param_grid[key]
        if not isinstance(values, (list, tuple)) or len(values) == 0:
            raise ConfigurationError(f"Hyperparameter grid '{key}' must be a non-empty list, got {values!r}")

    combinations = ParameterGrid({key: list(param_grid[key]) for key in GRID_KEYS})
    return [
        HyperparameterGridRow(row_id=i, metric=metric, **params)
        for i, params in enumerate(combinations, start=1)
    ]


class HPOSearchEngine(BaseEngine):
    """
    Grid search over neural network compile-time hyperparameters.

    Each grid row trains a fresh clone of the model template through
    ``CrossValidator``; rows are independent and may run in a bounded
    joblib thread pool. The winner is the row with the strictly highest mean
    accuracy, ties keeping the earliest row in grid order.
    """

    def __init__(self, config: dict, logger: logging.Logger,
                 cancel_token: Optional[CancellationToken] = None):
        super().__init__(config, logger)
        self.hpo_config = config.get('hyperparameters', {})
        self.cv_config = config.get('cross_validation', {})
        execution = config.get('execution', {})

        self.k = self.cv_config.get('k', constants.DEFAULT_CV_FOLDS)
        self.fold_seed = config.get('_internal_seeds', {}).get('folds', self.cv_config.get('seed'))
        self.on_failure = self.hpo_config.get('on_failure', 'raise')
        self.n_jobs = execution.get('n_jobs', 1)
        self.max_configs = config.get('resources', {}).get('max_hpo_configs', constants.DEFAULT_MAX_HPO_CONFIGS)

        if cancel_token is None:
            max_hours = execution.get('max_hours')
            cancel_token = CancellationToken.with_timeout(max_hours * 3600 if max_hours else None)
        self.cancel_token = cancel_token

        self.cross_validator = CrossValidator(logger, isolate_folds=self.cv_config.get('isolate_folds', False))

    def _get_engine_directory_name(self) -> str:
        return constants.HPO_DIR

    # ------------------------------------------------------------------
    # Config-driven entry point
    # ------------------------------------------------------------------
    @handle_engine_errors("Hyperparameter Search")
    def execute(self, dataset: pd.DataFrame, target_column_range, run_id: str) -> Optional[SearchResult]:
        """
        Build the network template and grid from config, search, and save artifacts.

        Args:
            dataset: Prepared (encoded, filtered) candidate table.
            target_column_range: Positions of the contiguous target block.
            run_id: Unique identifier for this execution.

        Returns:
            SearchResult, or None when the search is disabled.
        """
        if not self.hpo_config.get('enabled', True):
            self.logger.info("Neural network grid search disabled in config.")
            return None

        self.logger.info("Starting neural network grid search...")
        target_range = validate_target_range(dataset, target_column_range)
        grid = expand_grid(self.hpo_config.get('grid', {}),
                           metric=self.hpo_config.get('metric', constants.DEFAULT_METRIC))
        template = self.build_model_template(dataset, target_range)

        result = self.search(template, dataset, grid, target_range, self.k)
        self._save_results(result, run_id)
        return result

    @handle_engine_errors("Saved Model Evaluation")
    def evaluate_saved_model(self, dataset: pd.DataFrame, target_column_range, model_path, run_id: str) -> Dict[str, float]:
        """
        Score a persisted best model on a prepared table without searching again.

        The table must have the predictor columns the model was trained on.
        Scores are written to ``saved_model_scores.json``.
        """
        target_range = validate_target_range(dataset, target_column_range)
        model = safe_load_model(model_path)
        x, y = split_predictors_targets(dataset, target_range)
        try:
            scores = model.evaluate(x, y)
        except ElectionMLException:
            raise
        except Exception as e:
            raise TrainingFailure(f"Saved model {model_path} could not score the dataset: {e}") from e

        with open(self.output_dir / constants.SAVED_MODEL_SCORES_FILE, 'w') as f:
            json.dump({'run_id': run_id, 'model_path': str(model_path), 'n_rows': len(dataset),
                       'scores': scores}, f, indent=2, cls=NumpyEncoder)
        self.logger.info(f"Saved model {model_path} on {len(dataset)} rows: {scores}")
        return scores

    def build_model_template(self, dataset: pd.DataFrame, target_range: range):
        """Unfitted network with the configured architecture; only compile-time settings vary per row."""
        params = dict(self.config.get('network', {}))
        params.setdefault('random_state', self.config.get('_internal_seeds', {}).get('model'))
        if len(target_range) == 1 and 'classes' not in params:
            # Single label column: fix the label set so no fold can miss a class
            target = dataset.iloc[:, target_range.start]
            params['classes'] = sorted(target.unique().tolist())
        return ModelFactory.create('NeuralNetworkClassifier', params)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    def search(self, model_template: Any, dataset: pd.DataFrame, grid: List[HyperparameterGridRow],
               target_column_range, k: Optional[int] = None) -> SearchResult:
        """
        Cross-validate every grid row and keep the best one.

        Raises:
            ConfigurationError: Empty grid, grid above the resource limit, bad k or target range.
            UnknownOptimizerError: A row names an optimizer outside sgd/rmsprop/adam.
            TrainingFailure: A row failed (``on_failure='raise'``) or every row failed.
            SearchCancelled: The cancellation token fired.
        """
        if not grid:
            raise ConfigurationError("Hyperparameter grid is empty.")
        if len(grid) > self.max_configs:
            raise ConfigurationError(
                f"Grid size ({len(grid)}) exceeds the configured limit ({self.max_configs})."
            )
        k = self.k if k is None else k
        if k < 2:
            raise ConfigurationError(f"k must be >= 2, got {k}.")
        if dataset is None or dataset.empty:
            raise ConfigurationError("Dataset is empty.")
        if k > len(dataset):
            raise ConfigurationError(f"k ({k}) exceeds the number of rows ({len(dataset)}).")
        target_range = validate_target_range(dataset, target_column_range)
        # Optimizer names are checked up front so a typo never costs a partial search
        for row in grid:
            resolve_optimizer(row.optimizer)

        fold_seed = self.fold_seed
        if fold_seed is None:
            fold_seed = int(np.random.default_rng().integers(0, 2**32 - 1))
            self.logger.info(f"No fold seed configured; drew {fold_seed} for this search.")

        self.logger.info(f"Evaluating {len(grid)} grid rows with {k}-fold CV (n_jobs={self.n_jobs}).")
        outcomes = Parallel(n_jobs=self.n_jobs, prefer='threads')(
            delayed(self._run_row)(model_template, dataset, row, target_range, k, fold_seed, len(grid))
            for row in grid
        )

        best_row: Optional[HyperparameterGridRow] = None
        best_cv: Optional[CVResult] = None
        cv_results: Dict[int, CVResult] = {}
        for row, cv in zip(grid, outcomes):
            if cv is None:
                continue
            cv_results[row.row_id] = cv
            if best_row is None or row.mean_accuracy > best_row.mean_accuracy:
                best_row, best_cv = row, cv

        if best_row is None:
            raise TrainingFailure("Every hyperparameter grid row failed; no configuration to select.")

        # Only the winner keeps its trained model
        for cv in cv_results.values():
            if cv is not best_cv:
                cv.model = None
        gc.collect()

        self.logger.info(
            f"Best row {best_row.row_id}: {best_row.hyperparameters()} "
            f"({best_row.metric}={best_row.mean_accuracy:.4f}, loss={best_row.mean_loss:.4f})"
        )
        return SearchResult(
            best_model=best_cv.model,
            best_history=best_cv.history,
            best_row=best_row,
            grid=grid,
            cv_results=cv_results,
            fold_seed=fold_seed,
            k=k,
        )

    def _run_row(self, model_template: Any, dataset: pd.DataFrame, row: HyperparameterGridRow,
                 target_range: range, k: int, fold_seed: int, n_rows: int) -> Optional[CVResult]:
        self.cancel_token.raise_if_cancelled(f"before grid row {row.row_id}")
        optimizer = resolve_optimizer(row.optimizer)
        model = clone(model_template, safe=False)

        start_time = time.time()
        try:
            cv = self.cross_validator.cross_validate(
                dataset, target_range, model, k,
                loss_fn=row.loss,
                optimizer=optimizer,
                metric_name=row.metric,
                epochs=row.epochs,
                batch_size=row.batch_size,
                validation_split=row.validation_split,
                random_state=fold_seed,
                cancel_token=self.cancel_token,
            )
        except TrainingFailure as e:
            if self.on_failure != 'skip':
                raise
            row.mark_failed(str(e))
            self.logger.error(f"Grid row {row.row_id}/{n_rows} failed and was skipped: {e}")
            return None

        row.annotate(cv.mean_metric, cv.mean_loss, time.time() - start_time)
        self.logger.info(
            f"Grid row {row.row_id}/{n_rows} {row.hyperparameters()}: "
            f"{row.metric}={row.mean_accuracy:.4f} loss={row.mean_loss:.4f}"
        )
        return cv

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _save_results(self, result: SearchResult, run_id: str) -> None:
        self.save_table(result.grid_frame(), constants.GRID_RESULTS_FILE)
        self.save_table(result.fold_frame(), constants.FOLD_RESULTS_FILE)

        best = {
            'run_id': run_id,
            'k': result.k,
            'fold_seed': result.fold_seed,
            'row': result.best_row.to_dict(),
            'optimizer': resolve_optimizer(result.best_row.optimizer).to_dict(),
            'network': result.best_model.get_params() if hasattr(result.best_model, 'get_params') else {},
        }
        with open(self.output_dir / constants.BEST_CONFIG_FILE, 'w') as f:
            json.dump(best, f, indent=2, cls=NumpyEncoder)

        history = result.best_history
        if history is not None:
            history_dict = history.to_dict() if hasattr(history, 'to_dict') else {'history': getattr(history, 'history', {})}
            with open(self.output_dir / constants.BEST_HISTORY_FILE, 'w') as f:
                json.dump(history_dict, f, indent=2, cls=NumpyEncoder)
            self._plot_learning_curve(history_dict.get('history', {}), result.best_row.metric)

        if self.save_models:
            try:
                model_path = self.output_dir / constants.BEST_MODEL_FILE
                joblib.dump(result.best_model, model_path)
                self.logger.info(f"Best model saved to {model_path}")
            except Exception as e:
                self.logger.warning(f"Failed to save best model. Error: {e}")

        self.logger.info(f"Grid search artifacts saved to {self.output_dir}")

    def _plot_learning_curve(self, history: Dict[str, List[float]], metric: str) -> None:
        """Loss and metric per epoch for the winning configuration's last fold."""
        if not history:
            return
        plt.switch_backend('Agg')
        fig, axes = plt.subplots(1, 2, figsize=(12, 5))
        for ax, key in zip(axes, ('loss', metric)):
            for series in (key, f"val_{key}"):
                if series in history:
                    ax.plot(range(1, len(history[series]) + 1), history[series], marker='o', label=series)
            ax.set_xlabel('Epoch')
            ax.set_title(key)
            ax.legend()
        fig.tight_layout()
        fig.savefig(self.output_dir / constants.LEARNING_CURVE_FILE)
        plt.close(fig)
