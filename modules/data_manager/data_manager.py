import pandas as pd
import numpy as np
import logging
from pathlib import Path
from typing import List, Optional

from utils.exceptions import DataValidationError
from utils.file_io import read_dataframe, save_dataframe
from utils.error_handling import handle_engine_errors
from utils import constants

class DataManager:
    """
    Loads and validates the raw candidate table.

    The candidate export is a delimited file with one row per candidate; the
    classification target (e.g. election outcome) and the optional regression
    target (e.g. vote count) must be present. Rows without a classification
    target are dropped; other gaps are reported and left to preprocessing.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        self.config = config
        self.logger = logger
        self.data_config = config.get('data', {})
        self.data: Optional[pd.DataFrame] = None
        self.base_dir = Path(self.config.get('outputs', {}).get('base_results_dir', 'results'))

    @handle_engine_errors("Data Management")
    def execute(self, run_id: str) -> pd.DataFrame:
        """
        Execute complete data loading and validation workflow.

        Args:
            run_id: Unique identifier for the run.

        Returns:
            pd.DataFrame: The validated dataset.
        """
        self.logger.info("Starting Data Manager execution...")

        output_dir = self.base_dir / constants.DATA_QUALITY_DIR
        output_dir.mkdir(parents=True, exist_ok=True)

        self.load_data()
        self.validate_columns()
        stats_df = self.validate_nan_inf()
        self.drop_unused_columns()
        self.drop_missing_targets()

        excel_copy = self.config.get("outputs", {}).get("save_excel_copy", False)
        save_path = output_dir / constants.VALIDATED_DATA_FILE
        save_dataframe(self.data, save_path, excel_copy=excel_copy, index=False)
        save_dataframe(stats_df, output_dir / constants.COLUMN_STATS_FILE, excel_copy=excel_copy, index=False)
        self.logger.info(f"Saved validated data to {save_path}")

        return self.data

    def load_data(self) -> pd.DataFrame:
        """
        Load data from the file path specified in config.
        """
        file_path = Path(self.data_config.get('file_path', '')).expanduser()
        if not file_path.is_file():
            raise DataValidationError(f"Data file not found: {file_path}")

        self.logger.info(f"Loading data from {file_path.resolve()}")
        try:
            self.data = read_dataframe(
                file_path,
                sep=self.data_config.get('separator', ','),
                encoding=self.data_config.get('encoding', 'utf-8'),
            )
        except (ValueError, UnicodeDecodeError, pd.errors.ParserError) as e:
            raise DataValidationError(f"Failed to load data: {str(e)}")

        if self.data.empty:
            raise DataValidationError("Loaded dataframe is empty.")

        # Downcast numeric predictors to the configured precision; targets keep full precision
        precision = self.data_config.get('precision', 'float32')
        targets = [self.data_config.get('target_column'), self.data_config.get('regression_target')]
        numeric_cols = [c for c in self.data.select_dtypes(include=[np.number]).columns if c not in targets]
        if numeric_cols:
            self.data[numeric_cols] = self.data[numeric_cols].astype(precision)

        self.logger.info(f"Data loaded successfully. Shape: {self.data.shape}")
        return self.data

    def required_columns(self) -> List[str]:
        required = [self.data_config.get('target_column')]
        required.append(self.data_config.get('regression_target'))
        required.extend(self.data_config.get('categorical_columns', []))
        return [c for c in required if c]

    def validate_columns(self) -> None:
        """Ensure all required columns from config exist."""
        if self.data is None or self.data.empty:
            raise DataValidationError("Dataframe is empty or None.")

        missing = [col for col in self.required_columns() if col not in self.data.columns]
        if missing:
            raise DataValidationError(f"Missing required columns in dataset: {missing}")

    def validate_nan_inf(self) -> pd.DataFrame:
        """Check for NaN and Inf values and return per-column statistics."""
        stats = []
        for col in self.data.columns:
            series = self.data[col]
            nan_count = int(series.isna().sum())
            row = {
                'column': col,
                'dtype': str(series.dtype),
                'nan_count': nan_count,
                'inf_count': 0,
                'n_unique': int(series.nunique(dropna=True)),
            }
            if pd.api.types.is_numeric_dtype(series):
                row['inf_count'] = int(np.isinf(series).sum())
                if row['inf_count'] > 0:
                    self.logger.warning(f"Column '{col}' contains {row['inf_count']} infinite values.")
            if nan_count > 0:
                self.logger.warning(f"Column '{col}' contains {nan_count} NaNs.")
            stats.append(row)

        return pd.DataFrame(stats)

    def drop_unused_columns(self) -> None:
        drop_cols = [c for c in self.data_config.get('drop_columns', []) if c in self.data.columns]
        if drop_cols:
            self.data = self.data.drop(columns=drop_cols)
            self.logger.info(f"Dropped {len(drop_cols)} configured columns: {drop_cols}")

    def drop_missing_targets(self) -> None:
        """Drop rows whose classification target is missing; infinities become NaN."""
        numeric_cols = self.data.select_dtypes(include=[np.number]).columns
        self.data[numeric_cols] = self.data[numeric_cols].replace([np.inf, -np.inf], np.nan)

        target = self.data_config.get('target_column')
        if not target:
            return
        missing = self.data[target].isna()
        if missing.any():
            self.logger.warning(f"Dropping {int(missing.sum())} rows with no '{target}' value.")
            self.data = self.data.loc[~missing].reset_index(drop=True)
        if self.data.empty:
            raise DataValidationError(f"No rows left after dropping missing '{target}' values.")
