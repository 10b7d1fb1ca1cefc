import abc
import logging
from pathlib import Path
from typing import Dict, Any

import pandas as pd

from utils.file_io import save_dataframe

class BaseEngine(abc.ABC):
    """
    Abstract base class for the pipeline stages (preprocessing, grid search, regression).

    Each engine owns one numbered directory under ``outputs.base_results_dir``
    and writes its tables there through ``save_table``.
    """

    def __init__(self, config: Dict[str, Any], logger: logging.Logger):
        self.config = config
        self.logger = logger
        self.outputs_config = self.config.get('outputs', {})
        self.base_dir = Path(self.outputs_config.get('base_results_dir', 'results'))
        self.output_dir = self.base_dir / self._get_engine_directory_name()

        self._setup_directories()

    @abc.abstractmethod
    def _get_engine_directory_name(self) -> str:
        """Numbered result directory name, e.g. '04_NeuralNetwork_GridSearch'."""
        raise NotImplementedError("Subclasses must implement _get_engine_directory_name.")

    def _setup_directories(self):
        if self.outputs_config.get('skip_dir_creation', False):
            # Compute-only use (tests, notebooks)
            return

        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Output directory for {self.__class__.__name__}: {self.output_dir}")

    @property
    def save_models(self) -> bool:
        return self.outputs_config.get('save_models', True)

    def save_table(self, df: pd.DataFrame, filename: str) -> Path:
        """Write ``df`` as Parquet in the engine directory, plus an Excel copy if ``outputs.save_excel_copy``."""
        return save_dataframe(df, self.output_dir / filename,
                              excel_copy=self.outputs_config.get('save_excel_copy', False))

    @abc.abstractmethod
    def execute(self, *args, **kwargs) -> Any:
        """Run the stage; every engine decorates this with ``handle_engine_errors``."""
        pass
