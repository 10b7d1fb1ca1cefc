import json
import os
import hashlib
import sys
import logging
import jsonschema
import psutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from sklearn.model_selection import ParameterGrid

from modules.model_factory import ModelFactory, resolve_optimizer
from modules.model_factory.neural_network import LOSS_FUNCTIONS, METRIC_FUNCTIONS
from utils.exceptions import ConfigurationError
from utils import constants

class ConfigurationManager:
    """
    Manages system configuration loading, validation, and access.
    Acts as the single source of truth and safety guard for the pipeline.

    Validation runs in four passes: JSON schema, logical rules, resource
    guardrails (grid size, memory), then seed propagation.
    """

    DEFAULT_MAX_HPO_CONFIGS = constants.DEFAULT_MAX_HPO_CONFIGS

    def __init__(self, config_path: str = "config/config.json",
                 schema_path: str = "config/schema.json"):
        """
        Initialize the ConfigurationManager.

        Args:
            config_path (str): Path to the user configuration JSON.
            schema_path (str): Path to the JSON schema definition.
        """
        self.config_path = config_path
        self.schema_path = schema_path
        self.config: Dict[str, Any] = {}
        self.schema: Dict[str, Any] = {}
        self.run_id: Optional[str] = None
        self.logger = logging.getLogger("config_manager")

    def load_and_validate(self) -> Dict[str, Any]:
        """
        Main entry point. Loads config, validates schema/logic/resources,
        and propagates seeds.

        Returns:
            Dict[str, Any]: The fully validated configuration.

        Raises:
            ConfigurationError: If any validation step fails.
        """
        self.config = self._load_json(self.config_path)
        self.schema = self._load_json(self.schema_path)
        return self.validate(self.config)

    def validate(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Validate an in-memory config (schema must already be loaded)."""
        self.config = config
        self._validate_schema()
        self._validate_logic()
        self._validate_resources()
        self._propagate_seeds()
        return self.config

    def generate_run_id(self) -> str:
        """
        Generate or retrieve a unique run identifier based on timestamp.
        """
        if not self.run_id:
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.run_id

    def save_artifacts(self, output_dir: str) -> None:
        """
        Save configuration artifacts to the run directory for full reproducibility.

        Saves:
        1. config_used.json: The exact config object in memory.
        2. config_hash.txt: SHA256 hash for versioning.
        3. run_metadata.json: Environment details (Python version, Platform, etc.).
        """
        config_dir = Path(output_dir) / constants.CONFIG_DIR
        config_dir.mkdir(parents=True, exist_ok=True)

        with open(config_dir / constants.CONFIG_USED_FILE, 'w') as f:
            json.dump(self.config, f, indent=2)

        config_str = json.dumps(self.config, sort_keys=True)
        config_hash = hashlib.sha256(config_str.encode()).hexdigest()

        with open(config_dir / constants.CONFIG_HASH_FILE, 'w') as f:
            f.write(config_hash)

        metadata = {
            'run_id': self.run_id,
            'start_time': datetime.now().isoformat(),
            'python_version': sys.version,
            'platform': sys.platform,
            'config_hash': config_hash,
            'working_directory': os.getcwd()
        }

        with open(config_dir / constants.RUN_METADATA_FILE, 'w') as f:
            json.dump(metadata, f, indent=2)

    def _load_json(self, path: str) -> Dict[str, Any]:
        """Safely load a JSON file."""
        if not os.path.exists(path):
            raise ConfigurationError(f"File not found: {path}")
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}")

    def _validate_schema(self) -> None:
        """Validate config structure against JSON schema."""
        try:
            jsonschema.validate(instance=self.config, schema=self.schema)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(f"Schema validation failed: {e.message}")

    def _validate_logic(self) -> None:
        """Comprehensive logical validation."""
        # --- Data Section ---
        data = self.config.get('data', {})
        for key in ['file_path', 'target_column']:
            if not data.get(key):
                raise ConfigurationError(f"Data '{key}' must be specified and non-empty.")
        if data.get('regression_target') == data['target_column']:
            raise ConfigurationError("data.regression_target must differ from data.target_column.")

        # --- Cross-Validation Section ---
        cv = self.config.get('cross_validation', {})
        k = cv.get('k', constants.DEFAULT_CV_FOLDS)
        if k < 2:
            raise ConfigurationError(f"cross_validation.k must be >= 2, got {k}.")

        # --- Preprocessing Section ---
        nzv = self.config.get('preprocessing', {}).get('near_zero_variance', {})
        if nzv.get('freq_cut', constants.DEFAULT_NZV_FREQ_CUT) <= 1:
            raise ConfigurationError("near_zero_variance.freq_cut must be > 1.")
        unique_cut = nzv.get('unique_cut', constants.DEFAULT_NZV_UNIQUE_CUT)
        if not (0 < unique_cut <= 100):
            raise ConfigurationError(f"near_zero_variance.unique_cut must be in (0, 100], got {unique_cut}.")

        # --- HPO Section ---
        hpo = self.config.get('hyperparameters', {})
        if hpo.get('enabled', True):
            self._validate_grid(hpo)

        # --- Regression Section ---
        reg = self.config.get('regression', {})
        if reg.get('enabled', False):
            if not data.get('regression_target'):
                raise ConfigurationError("data.regression_target is required when regression is enabled.")
            if not reg.get('grids'):
                raise ConfigurationError("regression.grids cannot be empty when regression is enabled.")
            unknown = [m for m in reg['grids'] if m not in ModelFactory.REGRESSORS]
            if unknown:
                raise ConfigurationError(f"Unknown regression models: {unknown}. Available: {list(ModelFactory.REGRESSORS)}")
            test_size = reg.get('test_size', 0.2)
            if not (0.0 < test_size < 1.0):
                raise ConfigurationError(f"regression.test_size must be between 0 and 1 (exclusive), got {test_size}")
            if reg.get('cv_folds', constants.DEFAULT_CV_FOLDS) < 2:
                raise ConfigurationError("regression.cv_folds must be >= 2.")

        # --- Execution Section ---
        execution = self.config.get('execution', {})
        if execution.get('max_hours') is not None and execution['max_hours'] <= 0:
            raise ConfigurationError(f"execution.max_hours must be > 0, got {execution['max_hours']}")
        if 'n_jobs' in execution:
            n_jobs = execution['n_jobs']
            if n_jobs == 0 or n_jobs < -1:
                raise ConfigurationError(f"execution.n_jobs must be -1 (all cores) or a positive integer, got {n_jobs}")

    def _validate_grid(self, hpo: Dict[str, Any]) -> None:
        grid = hpo.get('grid')
        if not grid:
            raise ConfigurationError("Hyperparameter grid cannot be empty when the search is enabled.")

        for name in grid.get('optimizer', []):
            resolve_optimizer(name)
        for loss in grid.get('loss', []):
            if loss not in LOSS_FUNCTIONS:
                raise ConfigurationError(f"Unknown loss function in grid: {loss!r}. Available: {list(LOSS_FUNCTIONS)}")
        for split in grid.get('validation_split', []):
            if not (0.0 <= split < 1.0):
                raise ConfigurationError(f"validation_split values must be in [0, 1), got {split}")
        for key in ('batch_size', 'epochs'):
            for value in grid.get(key, []):
                if value < 1:
                    raise ConfigurationError(f"{key} values must be >= 1, got {value}")

        metric = hpo.get('metric', constants.DEFAULT_METRIC)
        if metric not in METRIC_FUNCTIONS:
            raise ConfigurationError(f"Unknown metric: {metric!r}. Available: {list(METRIC_FUNCTIONS)}")
        on_failure = hpo.get('on_failure', 'raise')
        if on_failure not in constants.FAILURE_POLICIES:
            raise ConfigurationError(f"hyperparameters.on_failure must be one of {constants.FAILURE_POLICIES}, got {on_failure!r}")

    def _validate_resources(self) -> None:
        """
        Validate against system resources.
        Calculates total grid size and ensures it fits within safe limits.
        """
        resources = self.config.get('resources', {})

        if self.config.get('hyperparameters', {}).get('enabled', True):
            grid = self.config['hyperparameters'].get('grid', {})
            try:
                total_configs = len(ParameterGrid(grid))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid hyperparameter grid: {str(e)}")

            max_configs = resources.get('max_hpo_configs', self.DEFAULT_MAX_HPO_CONFIGS)
            if total_configs > max_configs:
                raise ConfigurationError(
                    f"HPO Grid Explosion Detected! Total configurations ({total_configs}) exceeds "
                    f"safety limit ({max_configs}). Reduce grid search space or increase 'resources.max_hpo_configs'."
                )
            self.logger.info(f"HPO Grid Size validated: {total_configs} combinations (Limit: {max_configs})")

        system_ram_mb = int(psutil.virtual_memory().total / (1024 * 1024))
        safe_ram_limit = int(system_ram_mb * 0.8)
        config_max_ram = resources.get('max_memory_mb', safe_ram_limit)

        if config_max_ram > system_ram_mb:
            self.logger.warning(
                f"Configured max_memory_mb ({config_max_ram}MB) exceeds physical system RAM ({system_ram_mb}MB). "
                "This may lead to instability."
            )

        self.config.setdefault('resources', {})['max_memory_mb'] = config_max_ram

    def _propagate_seeds(self) -> None:
        """
        Propagate master seed to internal components for full pipeline reproducibility.
        Uses large, non-overlapping offsets to avoid correlation between components.
        """
        master_seed = self.config.get('reproducibility', {}).get('seed', 42)

        self.config['_internal_seeds'] = {
            'folds': self.config.get('cross_validation', {}).get('seed', master_seed + 1000),
            'model': master_seed + 2000,
            'oversampling': master_seed + 3000,
            'regression': master_seed + 4000,
        }
        self.logger.debug(f"Seeds propagated from master ({master_seed}): {self.config['_internal_seeds']}")
