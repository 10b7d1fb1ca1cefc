"""
Feature preparation for the candidate table.

Turns the validated table into a numeric predictor matrix followed by a
contiguous target block:

1. one-hot encoding of categorical predictors (median imputation of numeric gaps);
2. removal of near-zero-variance predictors (caret's ``nearZeroVar`` rule);
3. optional SMOTE balancing of the classification target (imbalanced-learn);
4. target encoding: a one-hot block, or the raw label column.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from imblearn.over_sampling import SMOTE
from sklearn.utils import shuffle

from modules.base.base_engine import BaseEngine
from utils import constants
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationError, DataValidationError


@dataclass
class PreparedData:
    """Model-ready candidate data."""
    frame: pd.DataFrame                          # predictors followed by the target block
    target_range: range                          # positions of the target block in ``frame``
    features: pd.DataFrame                       # predictors before oversampling
    regression_target: Optional[pd.Series] = None
    nzv_report: Optional[pd.DataFrame] = None

    @property
    def feature_names(self) -> List[str]:
        return list(self.frame.columns[:self.target_range.start])


def one_hot_encode(frame: pd.DataFrame, categorical_columns: List[str], drop_first: bool = False) -> pd.DataFrame:
    """Dummy-encode categoricals, impute numeric gaps with the median, and drop leftover text columns."""
    cats = [c for c in categorical_columns if c in frame.columns]
    encoded = pd.get_dummies(frame, columns=cats, drop_first=drop_first, dtype=float, dummy_na=False)

    non_numeric = encoded.select_dtypes(exclude=[np.number, 'bool']).columns.tolist()
    if non_numeric:
        encoded = encoded.drop(columns=non_numeric)

    encoded = encoded.astype(float)
    medians = encoded.median().fillna(0.0)
    return encoded.fillna(medians)


def near_zero_variance(frame: pd.DataFrame, freq_cut: float = constants.DEFAULT_NZV_FREQ_CUT,
                       unique_cut: float = constants.DEFAULT_NZV_UNIQUE_CUT) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Drop predictors with zero or near-zero variance.

    A column is flagged when it holds a single distinct value, or when the ratio
    of its most common to second most common value exceeds ``freq_cut`` while
    its distinct values are at most ``unique_cut`` percent of the rows.

    Returns:
        (kept_frame, report) where report has one row per input column.
    """
    n_rows = len(frame)
    rows = []
    for col in frame.columns:
        counts = frame[col].value_counts(dropna=True)
        zero_var = len(counts) <= 1
        freq_ratio = np.inf if zero_var else float(counts.iloc[0] / counts.iloc[1])
        percent_unique = 100.0 * len(counts) / n_rows if n_rows else 0.0
        nzv = zero_var or (freq_ratio > freq_cut and percent_unique <= unique_cut)
        rows.append({
            'column': col,
            'freq_ratio': freq_ratio,
            'percent_unique': percent_unique,
            'zero_var': zero_var,
            'nzv': nzv,
        })

    report = pd.DataFrame(rows, columns=['column', 'freq_ratio', 'percent_unique', 'zero_var', 'nzv'])
    dropped = report.loc[report['nzv'], 'column'].tolist()
    return frame.drop(columns=dropped), report


def oversample(features: pd.DataFrame, labels: pd.Series, k_neighbors: int = 5,
               random_state: Optional[int] = None) -> Tuple[pd.DataFrame, pd.Series]:
    """
    Balance classes with SMOTE; ``k_neighbors`` is capped by the smallest class size.

    SMOTE appends the synthetic rows after the originals, so the result is
    shuffled: trailing-fraction validation splits must see both classes.
    """
    minority = int(labels.value_counts().min())
    if minority < 2:
        raise DataValidationError(
            f"SMOTE needs at least 2 samples in every class; smallest class has {minority}."
        )
    sampler = SMOTE(k_neighbors=min(k_neighbors, minority - 1), random_state=random_state)
    x_res, y_res = sampler.fit_resample(features, labels)
    x_res, y_res = shuffle(
        pd.DataFrame(x_res, columns=features.columns),
        pd.Series(y_res, name=labels.name),
        random_state=random_state,
    )
    return x_res.reset_index(drop=True), y_res.reset_index(drop=True)


class FeaturePreprocessor(BaseEngine):
    """Applies encoding, variance filtering and balancing as configured in ``preprocessing``."""

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.data_config = config.get('data', {})
        self.prep_config = config.get('preprocessing', {})

    def _get_engine_directory_name(self) -> str:
        return constants.PREPROCESSING_DIR

    @handle_engine_errors("Feature Preprocessing")
    def execute(self, df: pd.DataFrame, run_id: str) -> PreparedData:
        self.logger.info("Starting feature preprocessing...")
        target = self.data_config.get('target_column')
        if not target or target not in df.columns:
            raise ConfigurationError(f"Classification target column {target!r} not found.")
        reg_target = self.data_config.get('regression_target')

        labels = df[target]
        regression_target = df[reg_target].reset_index(drop=True) if reg_target else None
        predictors = df.drop(columns=[c for c in (target, reg_target) if c])

        # 1. Encoding
        if self.prep_config.get('one_hot_encode', True):
            features = one_hot_encode(
                predictors,
                self.data_config.get('categorical_columns', []),
                drop_first=self.prep_config.get('drop_first', False),
            )
        else:
            features = predictors.select_dtypes(include=[np.number]).astype(float)
            features = features.fillna(features.median().fillna(0.0))
        self.logger.info(f"Encoded predictors: {predictors.shape[1]} -> {features.shape[1]} columns.")

        # 2. Near-zero-variance filtering
        nzv_report = None
        nzv_config = self.prep_config.get('near_zero_variance', {})
        if nzv_config.get('enabled', True):
            before = features.shape[1]
            features, nzv_report = near_zero_variance(
                features,
                freq_cut=nzv_config.get('freq_cut', constants.DEFAULT_NZV_FREQ_CUT),
                unique_cut=nzv_config.get('unique_cut', constants.DEFAULT_NZV_UNIQUE_CUT),
            )
            self.logger.info(f"Near-zero-variance filter removed {before - features.shape[1]} of {before} predictors.")
        if features.shape[1] == 0:
            raise DataValidationError("No predictors left after preprocessing.")

        features = features.reset_index(drop=True)
        labels = labels.reset_index(drop=True)
        model_features, model_labels = features, labels

        # 3. Oversampling
        over_config = self.prep_config.get('oversampling', {})
        if over_config.get('enabled', False):
            self.logger.info(f"Class counts before SMOTE: {labels.value_counts().to_dict()}")
            model_features, model_labels = oversample(
                features, labels,
                k_neighbors=over_config.get('k_neighbors', 5),
                random_state=self.config.get('_internal_seeds', {}).get('oversampling'),
            )
            self.logger.info(f"Class counts after SMOTE: {model_labels.value_counts().to_dict()}")

        # 4. Target block at the end
        if self.prep_config.get('one_hot_target', True):
            target_block = pd.get_dummies(model_labels, prefix=target, dtype=float)
        else:
            target_block = model_labels.to_frame(name=target)
        frame = pd.concat([model_features.reset_index(drop=True), target_block.reset_index(drop=True)], axis=1)
        target_range = range(model_features.shape[1], frame.shape[1])

        self.save_table(frame, constants.PREPARED_DATA_FILE)
        if nzv_report is not None:
            self.save_table(nzv_report, constants.NZV_REPORT_FILE)

        self.logger.info(
            f"Prepared data: {len(frame)} rows, {model_features.shape[1]} predictors, "
            f"target block at columns {target_range.start}:{target_range.stop}."
        )
        return PreparedData(
            frame=frame,
            target_range=target_range,
            features=features,
            regression_target=regression_target,
            nzv_report=nzv_report,
        )
