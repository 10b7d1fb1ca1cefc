import json
import logging
from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest

from modules.hpo_search_engine import HPOSearchEngine, HyperparameterGridRow, SearchResult, expand_grid
from utils import constants
from utils.cancellation import CancellationToken
from utils.exceptions import ConfigurationError, UnknownOptimizerError, TrainingFailure, SearchCancelled
from utils.model_loader import safe_load_model


class ScriptedLearner:
    """Learner whose validation accuracy is fixed per optimizer name."""

    def __init__(self, accuracy_by_optimizer=None, failing_optimizer=None):
        self.accuracy_by_optimizer = accuracy_by_optimizer or {}
        self.failing_optimizer = failing_optimizer
        self.optimizer = None
        self.fit_calls = 0

    def compile(self, loss, optimizer, metrics):
        self.optimizer = optimizer.name
        self.metric = metrics[0]

    def fit(self, x, y, epochs, batch_size, validation_split):
        if self.optimizer == self.failing_optimizer:
            raise FloatingPointError("gradients exploded")
        self.fit_calls += 1
        return {'optimizer': self.optimizer, 'fold': self.fit_calls}

    def evaluate(self, x, y, batch_size):
        accuracy = self.accuracy_by_optimizer.get(self.optimizer, 0.5)
        return {'loss': 1.0 - accuracy, self.metric: accuracy}


def _row(row_id, optimizer, **overrides):
    params = dict(loss='categorical_crossentropy', batch_size=8, epochs=1, validation_split=0.0)
    params.update(overrides)
    return HyperparameterGridRow(row_id=row_id, optimizer=optimizer, **params)


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def base_config(tmp_path):
    return {
        'cross_validation': {'k': 5},
        'hyperparameters': {'on_failure': 'raise'},
        '_internal_seeds': {'folds': 1042, 'model': 2042},
        'outputs': {'base_results_dir': str(tmp_path)},
    }


@pytest.fixture
def dataset():
    rng = np.random.default_rng(5)
    x1 = rng.normal(size=60)
    x2 = rng.normal(size=60)
    labels = (x1 - x2 > 0).astype(int)
    return pd.DataFrame({
        'idade': x1,
        'despesa': x2,
        'situacao_eleito': (labels == 1).astype(int),
        'situacao_nao_eleito': (labels == 0).astype(int),
    })


TARGETS = range(2, 4)


class TestExpandGrid:
    def test_cross_product_size(self):
        grid = expand_grid({
            'optimizer': ['sgd', 'rmsprop', 'adam'],
            'loss': ['categorical_crossentropy'],
            'batch_size': [32],
            'epochs': [20],
            'validation_split': [0.2, 0.3, 0.4],
        })
        assert len(grid) == 9
        assert [row.row_id for row in grid] == list(range(1, 10))
        combos = {(row.optimizer, row.validation_split) for row in grid}
        assert len(combos) == 9
        assert all(row.status == 'pending' and row.mean_accuracy is None for row in grid)

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="missing keys"):
            expand_grid({'optimizer': ['adam']})

    def test_empty_values(self):
        grid = {key: [1] for key in ('loss', 'batch_size', 'epochs', 'validation_split')}
        grid['optimizer'] = []
        with pytest.raises(ConfigurationError, match="non-empty list"):
            expand_grid(grid)


class TestSearch:
    def test_best_row_and_its_trained_model(self, base_config, mock_logger, dataset):
        engine = HPOSearchEngine(base_config, mock_logger)
        template = ScriptedLearner({'adam': 0.91, 'sgd': 0.88})
        grid = [_row(1, 'adam'), _row(2, 'sgd')]

        result = engine.search(template, dataset, grid, TARGETS)

        assert isinstance(result, SearchResult)
        assert result.best_row.row_id == 1
        assert result.best_row.mean_accuracy == pytest.approx(0.91)
        assert grid[1].mean_accuracy == pytest.approx(0.88)
        # The returned model is the one trained through row 1's last fold
        assert result.best_model.optimizer == 'adam'
        assert result.best_model.fit_calls == 5
        assert result.best_history == {'optimizer': 'adam', 'fold': 5}
        assert template.fit_calls == 0
        assert result.cv_results[2].model is None
        assert result.fold_seed == 1042
        assert result.k == 5

    def test_ties_keep_earliest_row(self, base_config, mock_logger, dataset):
        engine = HPOSearchEngine(base_config, mock_logger)
        template = ScriptedLearner({'sgd': 0.9, 'rmsprop': 0.9, 'adam': 0.9})
        grid = [_row(1, 'rmsprop'), _row(2, 'adam'), _row(3, 'sgd')]

        result = engine.search(template, dataset, grid, TARGETS)
        assert result.best_row.row_id == 1

    def test_later_strictly_better_row_wins(self, base_config, mock_logger, dataset):
        engine = HPOSearchEngine(base_config, mock_logger)
        template = ScriptedLearner({'sgd': 0.6, 'rmsprop': 0.7, 'adam': 0.71})
        grid = [_row(1, 'sgd'), _row(2, 'rmsprop'), _row(3, 'adam')]
        assert engine.search(template, dataset, grid, TARGETS).best_row.row_id == 3

    def test_every_row_annotated(self, base_config, mock_logger, dataset):
        engine = HPOSearchEngine(base_config, mock_logger)
        grid = [_row(1, 'sgd'), _row(2, 'adam')]
        result = engine.search(ScriptedLearner({'sgd': 0.7, 'adam': 0.8}), dataset, grid, TARGETS)

        frame = result.grid_frame()
        assert frame['status'].tolist() == ['success', 'success']
        assert frame['mean_loss'].tolist() == pytest.approx([0.3, 0.2])
        folds = result.fold_frame()
        assert len(folds) == 10
        assert sorted(folds['row_id'].unique()) == [1, 2]

    def test_unknown_optimizer_before_training(self, base_config, mock_logger, dataset):
        engine = HPOSearchEngine(base_config, mock_logger)
        template = ScriptedLearner()
        grid = [_row(1, 'adam'), _row(2, 'nadam')]
        with pytest.raises(UnknownOptimizerError):
            engine.search(template, dataset, grid, TARGETS)
        assert grid[0].status == 'pending'

    def test_failure_raises_by_default(self, base_config, mock_logger, dataset):
        engine = HPOSearchEngine(base_config, mock_logger)
        template = ScriptedLearner({'adam': 0.8}, failing_optimizer='sgd')
        with pytest.raises(TrainingFailure, match="gradients exploded"):
            engine.search(template, dataset, [_row(1, 'adam'), _row(2, 'sgd')], TARGETS)

    def test_skip_policy_marks_row_failed(self, base_config, mock_logger, dataset):
        base_config['hyperparameters']['on_failure'] = 'skip'
        engine = HPOSearchEngine(base_config, mock_logger)
        template = ScriptedLearner({'adam': 0.8}, failing_optimizer='sgd')
        grid = [_row(1, 'sgd'), _row(2, 'adam')]

        result = engine.search(template, dataset, grid, TARGETS)

        assert result.best_row.row_id == 2
        assert grid[0].status == 'failed'
        assert "gradients exploded" in grid[0].error
        assert 1 not in result.cv_results

    def test_skip_policy_with_every_row_failing(self, base_config, mock_logger, dataset):
        base_config['hyperparameters']['on_failure'] = 'skip'
        engine = HPOSearchEngine(base_config, mock_logger)
        template = ScriptedLearner(failing_optimizer='sgd')
        with pytest.raises(TrainingFailure, match="Every hyperparameter grid row failed"):
            engine.search(template, dataset, [_row(1, 'sgd')], TARGETS)

    def test_cancelled_search(self, base_config, mock_logger, dataset):
        token = CancellationToken()
        token.cancel("operator stop")
        engine = HPOSearchEngine(base_config, mock_logger, cancel_token=token)
        with pytest.raises(SearchCancelled, match="operator stop"):
            engine.search(ScriptedLearner(), dataset, [_row(1, 'adam')], TARGETS)

    def test_parallel_matches_sequential(self, base_config, mock_logger, dataset):
        accuracies = {'sgd': 0.62, 'rmsprop': 0.75, 'adam': 0.75}
        rows = lambda: [_row(1, 'sgd'), _row(2, 'rmsprop'), _row(3, 'adam')]

        sequential = HPOSearchEngine(base_config, mock_logger).search(
            ScriptedLearner(accuracies), dataset, rows(), TARGETS)
        base_config['execution'] = {'n_jobs': 3}
        parallel = HPOSearchEngine(base_config, mock_logger).search(
            ScriptedLearner(accuracies), dataset, rows(), TARGETS)

        assert parallel.best_row.row_id == sequential.best_row.row_id == 2
        assert parallel.grid_frame()['mean_accuracy'].tolist() == sequential.grid_frame()['mean_accuracy'].tolist()

    @pytest.mark.parametrize("grid, k, match", [
        ([], 5, "empty"),
        ([_row(1, 'adam')], 100, "exceeds the number of rows"),
        ([_row(1, 'adam')], 0, "k must be >= 2"),
        ([_row(1, 'adam')], 1, "k must be >= 2"),
    ])
    def test_invalid_inputs(self, base_config, mock_logger, dataset, grid, k, match):
        engine = HPOSearchEngine(base_config, mock_logger)
        with pytest.raises(ConfigurationError, match=match):
            engine.search(ScriptedLearner(), dataset, grid, TARGETS, k=k)

    def test_grid_above_resource_limit(self, base_config, mock_logger, dataset):
        base_config['resources'] = {'max_hpo_configs': 1}
        engine = HPOSearchEngine(base_config, mock_logger)
        with pytest.raises(ConfigurationError, match="exceeds the configured limit"):
            engine.search(ScriptedLearner(), dataset, [_row(1, 'adam'), _row(2, 'sgd')], TARGETS)

    def test_missing_fold_seed_is_drawn(self, base_config, mock_logger, dataset):
        del base_config['_internal_seeds']
        engine = HPOSearchEngine(base_config, mock_logger)
        result = engine.search(ScriptedLearner(), dataset, [_row(1, 'adam')], TARGETS)
        assert isinstance(result.fold_seed, int)


class TestExecute:
    def test_saves_artifacts(self, base_config, mock_logger, dataset):
        base_config['cross_validation'] = {'k': 3}
        base_config['network'] = {'hidden_layer_sizes': [4]}
        base_config['hyperparameters'] = {
            'metric': 'accuracy',
            'grid': {
                'optimizer': ['sgd', 'adam'],
                'loss': ['categorical_crossentropy'],
                'batch_size': [10],
                'epochs': [2],
                'validation_split': [0.2],
            },
        }
        engine = HPOSearchEngine(base_config, mock_logger)
        result = engine.execute(dataset, TARGETS, run_id='test_run')

        out = engine.output_dir
        assert out.name == constants.HPO_DIR
        grid = pd.read_parquet(out / constants.GRID_RESULTS_FILE)
        assert len(grid) == 2
        assert (grid['status'] == 'success').all()
        assert len(pd.read_parquet(out / constants.FOLD_RESULTS_FILE)) == 6

        best = json.loads((out / constants.BEST_CONFIG_FILE).read_text())
        assert best['run_id'] == 'test_run'
        assert best['k'] == 3
        assert best['row']['row_id'] == result.best_row.row_id
        assert best['optimizer']['name'] == result.best_row.optimizer

        history = json.loads((out / constants.BEST_HISTORY_FILE).read_text())
        assert len(history['history']['val_loss']) == 2
        assert (out / constants.LEARNING_CURVE_FILE).exists()

        model = safe_load_model(out / constants.BEST_MODEL_FILE)
        assert model.predict(dataset.iloc[:, :2].to_numpy()).shape == (60,)

    def test_saved_model_rescored(self, base_config, mock_logger, dataset):
        base_config['cross_validation'] = {'k': 2}
        base_config['network'] = {'hidden_layer_sizes': [4]}
        base_config['hyperparameters'] = {'grid': {
            'optimizer': ['adam'], 'loss': ['categorical_crossentropy'],
            'batch_size': [10], 'epochs': [1], 'validation_split': [0.0],
        }}
        engine = HPOSearchEngine(base_config, mock_logger)
        engine.execute(dataset, TARGETS, run_id='search_run')

        scores = engine.evaluate_saved_model(dataset, TARGETS, engine.output_dir / constants.BEST_MODEL_FILE,
                                             run_id='rescore_run')
        assert scores['loss'] >= 0.0
        assert 0.0 <= scores['accuracy'] <= 1.0
        saved = json.loads((engine.output_dir / constants.SAVED_MODEL_SCORES_FILE).read_text())
        assert saved['run_id'] == 'rescore_run'
        assert saved['n_rows'] == 60

    def test_saved_model_missing_file(self, base_config, mock_logger, dataset, tmp_path):
        engine = HPOSearchEngine(base_config, mock_logger)
        with pytest.raises(TrainingFailure, match="Failed to load model"):
            engine.evaluate_saved_model(dataset, TARGETS, tmp_path / "absent.pkl", run_id='r')

    def test_disabled_search_returns_none(self, base_config, mock_logger, dataset):
        base_config['hyperparameters'] = {'enabled': False}
        assert HPOSearchEngine(base_config, mock_logger).execute(dataset, TARGETS, 'r') is None

    def test_single_label_column_fixes_classes(self, base_config, mock_logger, dataset):
        frame = dataset.iloc[:, :3]
        engine = HPOSearchEngine(base_config, mock_logger)
        template = engine.build_model_template(frame, range(2, 3))
        assert template.classes == [0, 1]
        assert template.random_state == 2042
