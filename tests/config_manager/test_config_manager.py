import copy
import json
from pathlib import Path

import pytest

from modules.config_manager import ConfigurationManager
from utils import constants
from utils.exceptions import ConfigurationError, UnknownOptimizerError

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "config" / "schema.json"

VALID_CONFIG = {
    'data': {'file_path': 'candidatos.csv', 'target_column': 'situacao', 'regression_target': 'votos'},
    'cross_validation': {'k': 5},
    'hyperparameters': {
        'grid': {
            'optimizer': ['sgd', 'rmsprop', 'adam'],
            'loss': ['categorical_crossentropy'],
            'batch_size': [32],
            'epochs': [20],
            'validation_split': [0.2, 0.3, 0.4],
        }
    },
    'regression': {'enabled': True, 'grids': {'Ridge': {'alpha': [0.1, 1.0]}}},
    'reproducibility': {'seed': 7},
    'outputs': {'base_results_dir': 'results'},
}


@pytest.fixture
def valid_config():
    return copy.deepcopy(VALID_CONFIG)


def _manager(tmp_path, config):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(config), encoding='utf-8')
    return ConfigurationManager(str(config_path), str(SCHEMA_PATH))


def test_valid_config_propagates_seeds(tmp_path, valid_config):
    config = _manager(tmp_path, valid_config).load_and_validate()
    assert config['_internal_seeds'] == {'folds': 1007, 'model': 2007, 'oversampling': 3007, 'regression': 4007}
    assert config['resources']['max_memory_mb'] > 0

def test_explicit_fold_seed_wins(tmp_path, valid_config):
    valid_config['cross_validation']['seed'] = 123
    config = _manager(tmp_path, valid_config).load_and_validate()
    assert config['_internal_seeds']['folds'] == 123

def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationError, match="File not found"):
        ConfigurationManager(str(tmp_path / "nope.json"), str(SCHEMA_PATH)).load_and_validate()

def test_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding='utf-8')
    with pytest.raises(ConfigurationError, match="Invalid JSON"):
        ConfigurationManager(str(path), str(SCHEMA_PATH)).load_and_validate()

def test_schema_violation(tmp_path, valid_config):
    del valid_config['data']
    with pytest.raises(ConfigurationError, match="Schema validation failed"):
        _manager(tmp_path, valid_config).load_and_validate()

def test_k_below_two(tmp_path, valid_config):
    valid_config['cross_validation']['k'] = 1
    with pytest.raises(ConfigurationError, match="cross_validation.k"):
        _manager(tmp_path, valid_config).load_and_validate()

def test_unknown_optimizer_rejected(tmp_path, valid_config):
    valid_config['hyperparameters']['grid']['optimizer'].append('nadam')
    with pytest.raises(UnknownOptimizerError):
        _manager(tmp_path, valid_config).load_and_validate()

@pytest.mark.parametrize("key, value, match", [
    ('loss', ['hinge'], "Unknown loss"),
    ('validation_split', [1.0], "validation_split"),
    ('epochs', [0], "epochs"),
])
def test_invalid_grid_values(tmp_path, valid_config, key, value, match):
    valid_config['hyperparameters']['grid'][key] = value
    with pytest.raises(ConfigurationError, match=match):
        _manager(tmp_path, valid_config).load_and_validate()

def test_grid_explosion(tmp_path, valid_config):
    valid_config['resources'] = {'max_hpo_configs': 4}
    with pytest.raises(ConfigurationError, match="Grid Explosion"):
        _manager(tmp_path, valid_config).load_and_validate()

def test_regression_requires_target(tmp_path, valid_config):
    del valid_config['data']['regression_target']
    with pytest.raises(ConfigurationError, match="regression_target is required"):
        _manager(tmp_path, valid_config).load_and_validate()

def test_unknown_regressor(tmp_path, valid_config):
    valid_config['regression']['grids'] = {'XGBRegressor': {}}
    with pytest.raises(ConfigurationError, match="Unknown regression models"):
        _manager(tmp_path, valid_config).load_and_validate()

def test_same_targets_rejected(tmp_path, valid_config):
    valid_config['data']['regression_target'] = 'situacao'
    with pytest.raises(ConfigurationError, match="must differ"):
        _manager(tmp_path, valid_config).load_and_validate()

@pytest.mark.parametrize("execution", [{'n_jobs': 0}, {'n_jobs': -2}, {'max_hours': 0}])
def test_invalid_execution(tmp_path, valid_config, execution):
    valid_config['execution'] = execution
    with pytest.raises(ConfigurationError, match="execution"):
        _manager(tmp_path, valid_config).load_and_validate()

def test_save_artifacts(tmp_path, valid_config):
    manager = _manager(tmp_path, valid_config)
    manager.load_and_validate()
    manager.run_id = "run_42"
    manager.save_artifacts(str(tmp_path / "out"))

    config_dir = tmp_path / "out" / constants.CONFIG_DIR
    saved = json.loads((config_dir / constants.CONFIG_USED_FILE).read_text())
    assert saved['_internal_seeds']['model'] == 2007
    assert len((config_dir / constants.CONFIG_HASH_FILE).read_text()) == 64
    metadata = json.loads((config_dir / constants.RUN_METADATA_FILE).read_text())
    assert metadata['run_id'] == "run_42"

def test_generate_run_id_is_stable(tmp_path, valid_config):
    manager = _manager(tmp_path, valid_config)
    assert manager.generate_run_id() == manager.generate_run_id()
