"""
optimizers.py
~~~~~~~~~~~~~

Weight update strategies.

An optimizer is a small immutable record tagged with its kind; the actual
update math lives on the Layer and update_layer() picks the right one.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence

from bpnn.exceptions import InvalidConfiguration
from bpnn.layer import Layer


class OptimizerType(IntEnum):
    """Optimizer tags; the integer values are part of the model file format."""
    SGD = 0
    ADAM = 1


@dataclass(frozen=True)
class Optimizer:
    """
    Optimizer selection plus its hyperparameters.

    beta1, beta2 and epsilon are only read for Adam. They are fixed when
    the optimizer is created and shared by every layer it updates.
    """
    kind: OptimizerType = OptimizerType.SGD
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-8

    @classmethod
    def sgd(cls) -> 'Optimizer':
        return cls(OptimizerType.SGD)

    @classmethod
    def adam(cls, beta1: float = 0.9, beta2: float = 0.999,
             epsilon: float = 1e-8) -> 'Optimizer':
        return cls(OptimizerType.ADAM, beta1, beta2, epsilon)

    @classmethod
    def from_type(cls, kind) -> 'Optimizer':
        """
        Build an optimizer with default hyperparameters from its tag.

        Raises:
            InvalidConfiguration: If the tag is not a known optimizer
        """
        try:
            kind = OptimizerType(kind)
        except ValueError:
            raise InvalidConfiguration(
                f"Unknown optimizer type: {kind!r}"
            ) from None
        if kind == OptimizerType.ADAM:
            return cls.adam()
        return cls.sgd()


def update_layer(
    optimizer: Optimizer,
    layer: Layer,
    layer_input: Sequence[float],
    learning_rate: float
) -> None:
    """
    Apply one update step to a layer using its cached error terms.

    Args:
        optimizer: Active optimizer
        layer: Layer whose backward() has just run
        layer_input: The input the layer saw during the forward pass
        learning_rate: Step size
    """
    if optimizer.kind == OptimizerType.ADAM:
        layer.update_weights_adam(
            layer_input,
            learning_rate,
            optimizer.beta1,
            optimizer.beta2,
            optimizer.epsilon
        )
    elif optimizer.kind == OptimizerType.SGD:
        layer.update_weights_sgd(layer_input, learning_rate)
    else:
        raise InvalidConfiguration(f"Unknown optimizer: {optimizer.kind!r}")
