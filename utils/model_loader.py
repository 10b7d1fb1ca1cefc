import joblib
from pathlib import Path
from sklearn.base import BaseEstimator
from utils.exceptions import TrainingFailure

def safe_load_model(path: Path) -> BaseEstimator:
    """Load a persisted estimator and check it is one."""
    try:
        model = joblib.load(path)
        if not isinstance(model, BaseEstimator):
            raise ValueError(f"Invalid model type: {type(model).__name__}")
        return model
    except Exception as e:
        raise TrainingFailure(f"Failed to load model from {path}: {e}")
