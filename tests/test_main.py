import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

import main
from utils import constants

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "config" / "schema.json"


@pytest.fixture(autouse=True)
def reset_root_logger():
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture
def pipeline_config(tmp_path):
    rng = np.random.default_rng(8)
    n = 60
    despesa = rng.normal(100, 30, size=n)
    frame = pd.DataFrame({
        'nome': [f"Candidato {i}" for i in range(n)],
        'uf': rng.choice(['SP', 'RJ'], size=n),
        'idade': rng.integers(25, 70, size=n),
        'despesa': despesa,
        'votos': (despesa * 50 + rng.normal(0, 100, size=n)).round(),
        'situacao': np.where(despesa > 100, 'eleito', 'nao_eleito'),
    })
    data_path = tmp_path / "candidatos.csv"
    frame.to_csv(data_path, index=False)

    config = {
        'data': {
            'file_path': str(data_path),
            'target_column': 'situacao',
            'regression_target': 'votos',
            'categorical_columns': ['uf'],
            'drop_columns': ['nome'],
        },
        'preprocessing': {'near_zero_variance': {'enabled': True}, 'oversampling': {'enabled': False}},
        'cross_validation': {'k': 3},
        'network': {'hidden_layer_sizes': [4]},
        'hyperparameters': {
            'grid': {
                'optimizer': ['adam'],
                'loss': ['categorical_crossentropy'],
                'batch_size': [16],
                'epochs': [2],
                'validation_split': [0.0],
            }
        },
        'regression': {'enabled': True, 'cv_folds': 3, 'grids': {'Ridge': {'alpha': [1.0]}}},
        'logging': {'log_dir': str(tmp_path / "logs"), 'log_to_console': False},
        'outputs': {'base_results_dir': str(tmp_path / "results")},
    }
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(config), encoding='utf-8')
    return config_path


def test_full_pipeline(pipeline_config, tmp_path):
    code = main.main(['--config', str(pipeline_config), '--schema', str(SCHEMA_PATH), '--run-id', 'e2e'])
    assert code == 0

    run_dir = tmp_path / "results" / "e2e"
    assert (run_dir / constants.CONFIG_DIR / constants.CONFIG_USED_FILE).exists()
    assert (run_dir / constants.DATA_QUALITY_DIR / constants.VALIDATED_DATA_FILE).exists()
    assert (run_dir / constants.PREPROCESSING_DIR / constants.PREPARED_DATA_FILE).exists()
    assert (run_dir / constants.HPO_DIR / constants.BEST_CONFIG_FILE).exists()
    assert (run_dir / constants.REGRESSION_DIR / constants.REGRESSION_RESULTS_FILE).exists()
    assert (tmp_path / "logs" / "pipeline.log").exists()

def test_dry_run_stops_after_setup(pipeline_config, tmp_path):
    code = main.main(['--config', str(pipeline_config), '--schema', str(SCHEMA_PATH),
                      '--run-id', 'dry', '--dry-run'])
    assert code == 0
    run_dir = tmp_path / "results" / "dry"
    assert (run_dir / constants.CONFIG_DIR).exists()
    assert not (run_dir / constants.DATA_QUALITY_DIR).exists()

def test_skip_flags(pipeline_config, tmp_path):
    code = main.main(['--config', str(pipeline_config), '--schema', str(SCHEMA_PATH),
                      '--run-id', 'skip', '--skip-hpo', '--skip-regression'])
    assert code == 0
    run_dir = tmp_path / "results" / "skip"
    assert not (run_dir / constants.HPO_DIR).exists()
    assert not (run_dir / constants.REGRESSION_DIR).exists()

def test_bad_config_returns_error_code(tmp_path):
    assert main.main(['--config', str(tmp_path / "missing.json"), '--schema', str(SCHEMA_PATH)]) == 1

def test_parse_arguments_defaults():
    args = main.parse_arguments([])
    assert args.config == "config/config.json"
    assert args.run_id is None
    assert not args.dry_run

def test_saved_model_is_rescored(pipeline_config, tmp_path):
    args = ['--config', str(pipeline_config), '--schema', str(SCHEMA_PATH), '--skip-regression']
    assert main.main(args + ['--run-id', 'search']) == 0
    model_path = tmp_path / "results" / "search" / constants.HPO_DIR / constants.BEST_MODEL_FILE

    assert main.main(args + ['--run-id', 'rescore', '--model', str(model_path)]) == 0
    hpo_dir = tmp_path / "results" / "rescore" / constants.HPO_DIR
    scores = json.loads((hpo_dir / constants.SAVED_MODEL_SCORES_FILE).read_text())
    assert set(scores['scores']) == {'loss', 'accuracy'}
    assert not (hpo_dir / constants.GRID_RESULTS_FILE).exists()
