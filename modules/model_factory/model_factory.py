import inspect
from typing import Dict, Any, List
from sklearn.linear_model import LinearRegression, Ridge, Lasso, ElasticNet
from sklearn.neighbors import KNeighborsRegressor

from modules.model_factory.neural_network import NeuralNetworkClassifier

class ModelFactory:
    """
    Factory for creating the pipeline's models by name.

    Regressors feed the vote-share benchmark; classifiers feed the
    cross-validated neural network grid search.
    """

    REGRESSORS = {
        'LinearRegression': LinearRegression,
        'Ridge': Ridge,
        'Lasso': Lasso,
        'ElasticNet': ElasticNet,
        'KNeighborsRegressor': KNeighborsRegressor,
    }

    CLASSIFIERS = {
        'NeuralNetworkClassifier': NeuralNetworkClassifier,
    }

    # Linear models expose coef_ for feature importances
    LINEAR_MODELS = {'LinearRegression', 'Ridge', 'Lasso', 'ElasticNet'}

    @classmethod
    def create(cls, model_name: str, params: Dict[str, Any] = None) -> Any:
        """
        Create and return an instantiated, unfitted model.
        """
        if params is None:
            params = {}

        if model_name in cls.REGRESSORS:
            model_class = cls.REGRESSORS[model_name]
        elif model_name in cls.CLASSIFIERS:
            model_class = cls.CLASSIFIERS[model_name]
        else:
            raise ValueError(f"Unknown model name: {model_name}. Available: {cls.get_available_models()}")

        valid_params = cls._filter_params(model_class, params)
        return model_class(**valid_params)

    @classmethod
    def get_available_models(cls) -> List[str]:
        """Return list of all supported model names."""
        return list(cls.REGRESSORS.keys()) + list(cls.CLASSIFIERS.keys())

    @classmethod
    def is_linear(cls, model_name: str) -> bool:
        return model_name in cls.LINEAR_MODELS

    @staticmethod
    def _filter_params(model_class, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove parameters from `params` that are not accepted by `model_class` constructor.
        """
        sig = inspect.signature(model_class.__init__)

        valid_keys = [
            p.name for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        ]

        if any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values()):
            return params

        return {k: v for k, v in params.items() if k in valid_keys}
