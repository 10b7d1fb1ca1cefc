# utils/constants.py

# --- Top-Level Result Directories ---
# Sequentially numbered for proper sorting

CONFIG_DIR = "01_RunConfiguration"              # Run config, metadata, seeds
DATA_QUALITY_DIR = "02_DataQualityChecks"       # Loading, NaN/Inf statistics
PREPROCESSING_DIR = "03_FeaturePreprocessing"   # Encoding, NZV filtering, oversampling
HPO_DIR = "04_NeuralNetwork_GridSearch"         # Cross-validated grid search
REGRESSION_DIR = "05_Regression_Benchmark"      # Ridge / Lasso / KNN results

# --- File Names ---
CONFIG_USED_FILE = "config_used.json"
CONFIG_HASH_FILE = "config_hash.txt"
RUN_METADATA_FILE = "run_metadata.json"

VALIDATED_DATA_FILE = "validated_data.parquet"
COLUMN_STATS_FILE = "column_stats.parquet"
PREPARED_DATA_FILE = "prepared_data.parquet"
NZV_REPORT_FILE = "near_zero_variance.parquet"

GRID_RESULTS_FILE = "grid_results.parquet"
FOLD_RESULTS_FILE = "fold_results.parquet"
BEST_CONFIG_FILE = "best_configuration.json"
BEST_HISTORY_FILE = "best_history.json"
BEST_MODEL_FILE = "best_model.pkl"
LEARNING_CURVE_FILE = "learning_curve.png"
SAVED_MODEL_SCORES_FILE = "saved_model_scores.json"

REGRESSION_RESULTS_FILE = "regression_results.parquet"
FEATURE_IMPORTANCE_FILE = "feature_importances.parquet"

# --- Modelling Defaults ---
DEFAULT_CV_FOLDS = 5
DEFAULT_METRIC = "accuracy"
DEFAULT_MAX_HPO_CONFIGS = 1000

# Caret defaults for near-zero-variance detection
DEFAULT_NZV_FREQ_CUT = 95 / 5
DEFAULT_NZV_UNIQUE_CUT = 10.0

FAILURE_POLICIES = ("raise", "skip")
