import gc
import logging
import time
from typing import Any, Dict, List

import joblib
import numpy as np
import pandas as pd
from sklearn.inspection import permutation_importance
from sklearn.metrics import mean_squared_error
from sklearn.model_selection import GridSearchCV, KFold, train_test_split

from modules.base.base_engine import BaseEngine
from modules.model_factory import ModelFactory
from utils import constants
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationError, DataValidationError


class RegressionEngine(BaseEngine):
    """
    Benchmarks grid-searched regressors on a numeric candidate outcome (e.g. votes).

    For every model in ``regression.grids``:
    - GridSearchCV with seeded K-Fold, scored by RMSE.
    - Refit on the training split and RMSE on the holdout split.
    - Feature importances: absolute coefficients for linear models,
      permutation importance on the holdout split otherwise.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.reg_config = config.get('regression', {})
        self.seed = config.get('_internal_seeds', {}).get('regression', self.reg_config.get('seed', 42))
        self.n_jobs = config.get('execution', {}).get('n_jobs', 1)

    def _get_engine_directory_name(self) -> str:
        return constants.REGRESSION_DIR

    @handle_engine_errors("Regression Benchmark")
    def execute(self, features: pd.DataFrame, target: pd.Series, run_id: str) -> Dict[str, Any]:
        """
        Run the benchmark.

        Args:
            features: Numeric predictor matrix (encoded, variance-filtered).
            target: Numeric regression target aligned with ``features``.
            run_id: Run identifier.

        Returns:
            Dict with 'results' (one row per model), 'importances' and 'models'.
        """
        if not self.reg_config.get('enabled', True):
            self.logger.info("Regression benchmark disabled in config.")
            return {}

        grids = self.reg_config.get('grids', {})
        if not grids:
            raise ConfigurationError("regression.grids must name at least one model.")
        if target is None:
            raise ConfigurationError("Regression benchmark requires data.regression_target.")

        mask = target.notna().to_numpy()
        if not mask.all():
            self.logger.warning(f"Dropping {int((~mask).sum())} rows with a missing regression target.")
        X = features.loc[mask].reset_index(drop=True)
        y = target.loc[mask].astype(float).reset_index(drop=True)
        if len(X) < 4:
            raise DataValidationError(f"Too few rows ({len(X)}) for the regression benchmark.")

        if self.reg_config.get('log_target', False):
            y = np.log1p(y)

        X_train, X_test, y_train, y_test = train_test_split(
            X, y, test_size=self.reg_config.get('test_size', 0.2), random_state=self.seed, shuffle=True
        )
        self.logger.info(f"Regression benchmark on {len(X_train)} train / {len(X_test)} holdout rows.")

        results: List[Dict[str, Any]] = []
        importances: List[pd.DataFrame] = []
        models: Dict[str, Any] = {}
        for model_name, param_grid in grids.items():
            row, importance, model = self._benchmark_model(model_name, param_grid, X_train, y_train, X_test, y_test)
            results.append(row)
            importances.append(importance)
            models[model_name] = model
            gc.collect()

        results_df = pd.DataFrame(results).sort_values('holdout_rmse').reset_index(drop=True)
        importance_df = pd.concat(importances, ignore_index=True)

        self.save_table(results_df.astype({'best_params': str}), constants.REGRESSION_RESULTS_FILE)
        self.save_table(importance_df, constants.FEATURE_IMPORTANCE_FILE)

        if self.save_models:
            for model_name, model in models.items():
                try:
                    joblib.dump(model, self.output_dir / f"{model_name}.pkl")
                except Exception as e:
                    self.logger.warning(f"Failed to save {model_name}. Error: {e}")

        best = results_df.iloc[0]
        self.logger.info(f"Best regressor: {best['model']} (holdout RMSE {best['holdout_rmse']:.4f})")
        return {'results': results_df, 'importances': importance_df, 'models': models}

    def _benchmark_model(self, model_name: str, param_grid: Dict[str, List[Any]],
                         X_train: pd.DataFrame, y_train: pd.Series,
                         X_test: pd.DataFrame, y_test: pd.Series):
        n_splits = min(self.reg_config.get('cv_folds', constants.DEFAULT_CV_FOLDS), len(X_train))
        cv = KFold(n_splits=n_splits, shuffle=True, random_state=self.seed)
        search = GridSearchCV(
            ModelFactory.create(model_name, {}),
            param_grid=param_grid,
            scoring='neg_root_mean_squared_error',
            cv=cv,
            n_jobs=self.n_jobs,
            refit=True,
        )

        start_time = time.time()
        search.fit(X_train, y_train)
        duration = time.time() - start_time

        model = search.best_estimator_
        holdout_rmse = float(np.sqrt(mean_squared_error(y_test, model.predict(X_test))))
        cv_rmse = float(-search.best_score_)
        self.logger.info(
            f"{model_name}: best {search.best_params_} CV RMSE={cv_rmse:.4f} holdout RMSE={holdout_rmse:.4f} "
            f"({duration:.2f}s)"
        )

        importance = self._feature_importance(model_name, model, X_test, y_test)
        row = {
            'model': model_name,
            'best_params': search.best_params_,
            'cv_rmse': cv_rmse,
            'cv_rmse_std': float(search.cv_results_['std_test_score'][search.best_index_]),
            'holdout_rmse': holdout_rmse,
            'n_candidates': len(search.cv_results_['params']),
            'fit_time_sec': duration,
        }
        return row, importance, model

    def _feature_importance(self, model_name: str, model: Any, X_test: pd.DataFrame, y_test: pd.Series) -> pd.DataFrame:
        if ModelFactory.is_linear(model_name):
            scores = np.abs(np.ravel(model.coef_))
            method = 'abs_coefficient'
        else:
            perm = permutation_importance(
                model, X_test, y_test,
                scoring='neg_root_mean_squared_error',
                n_repeats=self.reg_config.get('permutation_repeats', 5),
                random_state=self.seed,
                n_jobs=self.n_jobs,
            )
            scores = perm.importances_mean
            method = 'permutation'

        importance = pd.DataFrame({
            'model': model_name,
            'feature': X_test.columns,
            'importance': scores,
            'method': method,
        })
        importance = importance.sort_values('importance', ascending=False).reset_index(drop=True)
        importance['rank'] = np.arange(1, len(importance) + 1)
        return importance
