"""
Optimizer selection for the neural network grid search.

Optimizer choices are a tagged variant (``OptimizerKind`` + fixed
hyperparameters) resolved once through ``OPTIMIZER_TABLE``. Names outside the
table fail closed with ``UnknownOptimizerError``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Union

from utils.exceptions import UnknownOptimizerError


class OptimizerKind(str, Enum):
    SGD = "sgd"
    RMSPROP = "rmsprop"
    ADAM = "adam"


@dataclass(frozen=True)
class OptimizerSpec:
    """A resolved optimizer: its kind, learning rate and kind-specific parameters."""
    kind: OptimizerKind
    learning_rate: float
    params: Dict[str, float] = field(default_factory=dict, hash=False)

    @property
    def name(self) -> str:
        return self.kind.value

    def to_solver_params(self) -> Dict[str, Any]:
        """
        Translate into ``MLPClassifier`` keyword arguments.

        RMSprop is Adam without the first-moment average: ``beta_1 = 0`` and
        ``beta_2`` set to the RMSprop decay.
        """
        if self.kind is OptimizerKind.SGD:
            return {
                'solver': 'sgd',
                'learning_rate_init': self.learning_rate,
                'learning_rate': 'constant',
                'momentum': self.params.get('momentum', 0.0),
                'nesterovs_momentum': False,
            }
        if self.kind is OptimizerKind.RMSPROP:
            return {
                'solver': 'adam',
                'learning_rate_init': self.learning_rate,
                'beta_1': 0.0,
                'beta_2': self.params['decay'],
            }
        return {
            'solver': 'adam',
            'learning_rate_init': self.learning_rate,
            'beta_1': self.params['beta_1'],
            'beta_2': self.params['beta_2'],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'learning_rate': self.learning_rate, **self.params}


OPTIMIZER_TABLE: Dict[OptimizerKind, OptimizerSpec] = {
    OptimizerKind.SGD: OptimizerSpec(OptimizerKind.SGD, learning_rate=0.01),
    OptimizerKind.RMSPROP: OptimizerSpec(OptimizerKind.RMSPROP, learning_rate=0.001,
                                         params={'decay': 0.9}),
    OptimizerKind.ADAM: OptimizerSpec(OptimizerKind.ADAM, learning_rate=0.001,
                                      params={'beta_1': 0.9, 'beta_2': 0.999}),
}


def available_optimizers():
    return [kind.value for kind in OPTIMIZER_TABLE]


def resolve_optimizer(optimizer: Union[str, OptimizerKind, OptimizerSpec]) -> OptimizerSpec:
    """
    Resolve an optimizer identifier to its fixed ``OptimizerSpec``.

    Raises:
        UnknownOptimizerError: If the identifier is not one of sgd, rmsprop, adam.
    """
    if isinstance(optimizer, OptimizerSpec):
        return optimizer
    if isinstance(optimizer, OptimizerKind):
        return OPTIMIZER_TABLE[optimizer]
    if isinstance(optimizer, str):
        try:
            kind = OptimizerKind(optimizer.strip().lower())
        except ValueError:
            pass
        else:
            return OPTIMIZER_TABLE[kind]
    raise UnknownOptimizerError(
        f"Unknown optimizer: {optimizer!r}. Available: {available_optimizers()}"
    )
