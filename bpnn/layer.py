"""
layer.py
~~~~~~~~

Fully-connected layer: affine transform, activation, gradient and update
math, and the per-layer Adam accumulators.
"""

from typing import Optional, Sequence

import numpy as np

from bpnn.activations import (
    ActivationType,
    activate,
    activation_derivative,
)
from bpnn.exceptions import DimensionError, InvalidConfiguration


def _as_vector(values: Sequence[float]) -> np.ndarray:
    """Convert a numeric sequence into a 1-D float64 array."""
    vector = np.asarray(values, dtype=np.float64)
    if vector.ndim != 1:
        raise DimensionError(
            f"Expected a 1-D vector, got shape {vector.shape}"
        )
    return vector


class Layer:
    """
    One fully-connected layer with its own activation.

    Weights have shape (output_size, input_size): one row per output unit.
    The cached weighted sums and activations written by forward() are read
    by the backward() call that follows it, and the error terms written by
    backward() are read by the weight update.
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        activation: ActivationType = ActivationType.SIGMOID,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Allocate and initialise the layer.

        Args:
            input_size: Number of values fed into the layer
            output_size: Number of units in the layer
            activation: Activation applied to the weighted sums
            rng: Random generator used for weight initialisation

        Raises:
            InvalidConfiguration: If either size is not positive
        """
        if input_size <= 0 or output_size <= 0:
            raise InvalidConfiguration(
                f"Layer sizes must be positive, got {input_size}->{output_size}"
            )
        try:
            self.activation = ActivationType(activation)
        except ValueError:
            raise InvalidConfiguration(
                f"Unknown activation: {activation!r}"
            ) from None

        self.rng = rng if rng is not None else np.random.default_rng()

        self.weights = np.zeros((output_size, input_size))
        self.biases = np.zeros(output_size)
        self.weighted_sums = np.zeros(output_size)
        self.neurons = np.zeros(output_size)
        self.errors = np.zeros(output_size)

        # Adam state
        self.m_weights = np.zeros((output_size, input_size))
        self.v_weights = np.zeros((output_size, input_size))
        self.m_biases = np.zeros(output_size)
        self.v_biases = np.zeros(output_size)
        self.timestep = 0

        self.initialize_weights()

    @property
    def input_size(self) -> int:
        return self.weights.shape[1]

    @property
    def output_size(self) -> int:
        return self.weights.shape[0]

    def initialize_weights(self) -> None:
        """He-normal weights for ReLU, Xavier-uniform otherwise; zero biases."""
        shape = self.weights.shape
        if self.activation == ActivationType.RELU:
            std = np.sqrt(2.0 / self.input_size)
            self.weights = self.rng.normal(0.0, std, size=shape)
        else:
            bound = np.sqrt(6.0 / (self.input_size + self.output_size))
            self.weights = self.rng.uniform(-bound, bound, size=shape)
        self.biases = np.zeros(self.output_size)

    def forward(self, layer_input: Sequence[float]) -> np.ndarray:
        """
        Compute the layer's activations for one input vector.

        Args:
            layer_input: Vector of length input_size

        Returns:
            np.ndarray: Activations, length output_size

        Raises:
            DimensionError: If the input width does not match
        """
        x = _as_vector(layer_input)
        if x.size != self.input_size:
            raise DimensionError(
                f"Input size mismatch. Expected: {self.input_size}, "
                f"Got: {x.size}"
            )

        self.weighted_sums = self.biases + self.weights @ x
        self.neurons = activate(self.activation, self.weighted_sums)
        return self.neurons.copy()

    def backward(self, gradient: Sequence[float]) -> np.ndarray:
        """
        Turn the gradient w.r.t. this layer's output into error terms and
        return the gradient w.r.t. this layer's input.

        For a Softmax layer the incoming gradient is taken to already be the
        error term (predicted - target), which is only correct when the
        network is trained with cross-entropy loss.

        Raises:
            DimensionError: If the gradient width does not match
        """
        g = _as_vector(gradient)
        if g.size != self.output_size:
            raise DimensionError(
                f"Gradient size mismatch. Expected: {self.output_size}, "
                f"Got: {g.size}"
            )

        if self.activation == ActivationType.SOFTMAX:
            self.errors = g.copy()
        else:
            self.errors = g * activation_derivative(
                self.activation, self.weighted_sums
            )

        return self.weights.T @ self.errors

    def _check_update_input(self, layer_input: Sequence[float]) -> np.ndarray:
        x = _as_vector(layer_input)
        if x.size != self.input_size:
            raise DimensionError(
                f"Input size mismatch for weight update. "
                f"Expected: {self.input_size}, Got: {x.size}"
            )
        return x

    def update_weights_sgd(self, layer_input: Sequence[float],
                           learning_rate: float) -> None:
        """Plain gradient descent step using the cached error terms."""
        x = self._check_update_input(layer_input)
        self.weights -= learning_rate * np.outer(self.errors, x)
        self.biases -= learning_rate * self.errors

    def update_weights_adam(
        self,
        layer_input: Sequence[float],
        learning_rate: float,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8
    ) -> None:
        """
        Adam step using the cached error terms.

        The timestep is shared by every weight and bias of the layer and
        advances once per call.
        """
        x = self._check_update_input(layer_input)
        self.timestep += 1

        weight_grad = np.outer(self.errors, x)
        bias_grad = self.errors

        self.m_weights = beta1 * self.m_weights + (1 - beta1) * weight_grad
        self.v_weights = (beta2 * self.v_weights
                          + (1 - beta2) * weight_grad * weight_grad)
        self.m_biases = beta1 * self.m_biases + (1 - beta1) * bias_grad
        self.v_biases = (beta2 * self.v_biases
                         + (1 - beta2) * bias_grad * bias_grad)

        first_correction = 1 - beta1 ** self.timestep
        second_correction = 1 - beta2 ** self.timestep

        m_hat = self.m_weights / first_correction
        v_hat = self.v_weights / second_correction
        self.weights -= learning_rate * m_hat / (np.sqrt(v_hat) + epsilon)

        m_bias_hat = self.m_biases / first_correction
        v_bias_hat = self.v_biases / second_correction
        self.biases -= (learning_rate * m_bias_hat
                        / (np.sqrt(v_bias_hat) + epsilon))

    def set_weights(self, weights) -> None:
        weights = np.array(weights, dtype=np.float64)
        if weights.shape != self.weights.shape:
            raise DimensionError(
                f"Weight shape mismatch. Expected: {self.weights.shape}, "
                f"Got: {weights.shape}"
            )
        self.weights = weights

    def set_biases(self, biases) -> None:
        biases = np.array(biases, dtype=np.float64)
        if biases.shape != self.biases.shape:
            raise DimensionError(
                f"Bias shape mismatch. Expected: {self.biases.shape}, "
                f"Got: {biases.shape}"
            )
        self.biases = biases

    def __repr__(self) -> str:
        return (f"Layer({self.input_size} -> {self.output_size}, "
                f"{self.activation.name})")
