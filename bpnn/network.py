"""
network.py
~~~~~~~~~~

Feedforward network: an ordered list of fully-connected layers trained one
sample at a time with backpropagation and SGD or Adam.

The first layer is created before the input width is known, with a
placeholder width of 1. The first forward pass with a wider input rebuilds
that layer (as a ReLU layer with fresh weights) and fixes the width from
then on; width-1 inputs run through the placeholder unchanged.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from bpnn import model_persistence
from bpnn.activations import ActivationType
from bpnn.exceptions import InvalidConfiguration
from bpnn.layer import Layer
from bpnn.losses import (
    LossType,
    calculate_loss,
    cross_entropy,
    output_gradient,
)
from bpnn.optimizers import Optimizer, update_layer

logger = logging.getLogger(__name__)

PLACEHOLDER_INPUT_SIZE = 1


class Network:
    """
    Ordered sequence of layers plus the optimizer, learning rate and loss
    type used to train them.

    The network is not thread-safe: callers must not train, predict, save
    or load concurrently on the same instance.
    """

    def __init__(
        self,
        learning_rate: float = 0.01,
        loss_type: LossType = LossType.MEAN_SQUARED_ERROR,
        seed: Optional[int] = None
    ):
        """
        Create an empty network using SGD.

        Args:
            learning_rate: Step size shared by all layers
            loss_type: Loss used for reporting and for the output gradient
            seed: Seed for weight initialisation; None for a random seed
        """
        self.learning_rate = learning_rate
        self.loss_type = LossType(loss_type)
        self.optimizer = Optimizer.sgd()
        self.rng = np.random.default_rng(seed)
        self.layers: List[Layer] = []
        self.input_size_fixed = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_layer(
        self,
        units: int,
        activation: ActivationType = ActivationType.SIGMOID
    ) -> None:
        """
        Append a layer of the given width.

        Raises:
            InvalidConfiguration: If units is not positive
        """
        if units <= 0:
            raise InvalidConfiguration(
                f"Number of neurons must be positive, got {units}"
            )

        if self.layers:
            input_size = self.layers[-1].output_size
        else:
            input_size = PLACEHOLDER_INPUT_SIZE
            self.input_size_fixed = False

        self.layers.append(Layer(input_size, units, activation, rng=self.rng))

    def set_optimizer(self, optimizer, learning_rate: Optional[float] = None
                      ) -> None:
        """
        Switch optimizer; takes effect on the next update.

        Per-layer Adam state is kept, so switching back to Adam resumes
        from the accumulated moments.

        Args:
            optimizer: An Optimizer or an OptimizerType tag
            learning_rate: New learning rate, unchanged if None
        """
        if not isinstance(optimizer, Optimizer):
            optimizer = Optimizer.from_type(optimizer)
        self.optimizer = optimizer
        if learning_rate is not None:
            self.learning_rate = learning_rate

    def set_loss_type(self, loss_type: LossType) -> None:
        self.loss_type = LossType(loss_type)

    def _fix_input_size(self, input_size: int) -> None:
        """
        Rebuild the placeholder first layer once the input width is known.

        Width-1 inputs leave the placeholder in place without fixing it.
        """
        if self.input_size_fixed or not self.layers:
            return

        first = self.layers[0]
        if first.input_size != PLACEHOLDER_INPUT_SIZE:
            self.input_size_fixed = True
        elif input_size != PLACEHOLDER_INPUT_SIZE:
            logger.info(
                f"Rebuilding first layer for input width {input_size} "
                f"({input_size}->{first.output_size}, RELU)"
            )
            self.layers[0] = Layer(
                input_size, first.output_size, ActivationType.RELU,
                rng=self.rng
            )
            self.input_size_fixed = True

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def forward(self, network_input: Sequence[float]) -> np.ndarray:
        """
        Run the input through every layer.

        Returns:
            np.ndarray: Output of the last layer, or the input itself when
            the network has no layers

        Raises:
            DimensionError: If the input width does not match the first layer
        """
        current = np.asarray(network_input, dtype=np.float64)
        if not self.layers:
            return current

        self._fix_input_size(current.size)
        for layer in self.layers:
            current = layer.forward(current)
        return current

    def predict(self, network_input: Sequence[float]) -> np.ndarray:
        """Forward pass without any training side effects."""
        return self.forward(network_input)

    def get_hidden_layer_output(self, network_input: Sequence[float]
                                ) -> np.ndarray:
        """Activations of the first layer only."""
        if not self.layers:
            return np.zeros(0)

        x = np.asarray(network_input, dtype=np.float64)
        self._fix_input_size(x.size)
        return self.layers[0].forward(x)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def backward(self, target: Sequence[float]) -> None:
        """Backpropagate the mean squared error gradient."""
        if not self.layers:
            return
        gradient = output_gradient(self.layers[-1].neurons, target)
        self.perform_backward_pass(gradient)

    def backward_cross_entropy(self, target: Sequence[float]) -> None:
        """
        Backpropagate the cross-entropy gradient.

        predicted - target is the gradient w.r.t. the weighted sums of a
        Softmax output layer, which passes it through unchanged.
        """
        if not self.layers:
            return
        gradient = output_gradient(self.layers[-1].neurons, target)
        self.perform_backward_pass(gradient)

    def perform_backward_pass(self, gradient: Sequence[float]) -> None:
        """
        Propagate a gradient from the output layer to the first layer,
        updating every layer except the first on the way.

        The first layer is updated by train(), which still holds the raw
        input that layer saw.
        """
        layer_inputs = [None] + [
            self.layers[i - 1].neurons.copy()
            for i in range(1, len(self.layers))
        ]

        for i in range(len(self.layers) - 1, -1, -1):
            gradient = self.layers[i].backward(gradient)
            if i > 0:
                update_layer(
                    self.optimizer, self.layers[i], layer_inputs[i],
                    self.learning_rate
                )

    def train(self, network_input: Sequence[float],
              target: Sequence[float]) -> float:
        """
        One forward/backward/update cycle on a single sample.

        Returns:
            float: Loss of the output produced before the update
        """
        x = np.asarray(network_input, dtype=np.float64)
        output = self.forward(x)

        if self.loss_type == LossType.CROSS_ENTROPY:
            self.backward_cross_entropy(target)
        else:
            self.backward(target)

        if self.layers:
            update_layer(self.optimizer, self.layers[0], x, self.learning_rate)

        return self.calculate_loss(output, target)

    def train_batch(self, inputs: Sequence[Sequence[float]],
                    targets: Sequence[Sequence[float]]) -> float:
        """
        Train on each sample in turn and return the mean loss.

        Raises:
            InvalidConfiguration: If inputs and targets differ in length
        """
        if len(inputs) != len(targets):
            raise InvalidConfiguration(
                f"Input and target batch sizes don't match: "
                f"{len(inputs)} vs {len(targets)}"
            )
        if len(inputs) == 0:
            return 0.0

        total_loss = 0.0
        for network_input, target in zip(inputs, targets):
            total_loss += self.train(network_input, target)
        return total_loss / len(inputs)

    def calculate_loss(self, predicted: Sequence[float],
                       target: Sequence[float]) -> float:
        return calculate_loss(self.loss_type, predicted, target)

    def calculate_cross_entropy_loss(self, predicted: Sequence[float],
                                     target: Sequence[float]) -> float:
        return cross_entropy(predicted, target)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_model(self, filename: str) -> bool:
        """Write the network to a binary model file; False on failure."""
        return model_persistence.save_model(self, filename)

    def load_model(self, filename: str) -> bool:
        """
        Replace this network's layers and settings with a saved model.

        The optimizer is rebuilt from the stored tag, so Adam state starts
        from zero. On failure the network is left unchanged.
        """
        state = model_persistence.load_model(filename, rng=self.rng)
        if state is None:
            return False

        self.learning_rate = state.learning_rate
        self.loss_type = state.loss_type
        self.set_optimizer(state.optimizer_type)
        self.layers = state.layers
        self.input_size_fixed = bool(self.layers)
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def network_info(self) -> Dict[str, Any]:
        """Summary of the configuration and layer shapes."""
        return {
            'num_layers': len(self.layers),
            'learning_rate': self.learning_rate,
            'loss_type': self.loss_type.name,
            'optimizer': self.optimizer.kind.name,
            'layers': [
                {
                    'input_size': layer.input_size,
                    'output_size': layer.output_size,
                    'activation': layer.activation.name
                }
                for layer in self.layers
            ]
        }

    def log_network_info(self) -> None:
        info = self.network_info()
        logger.info(
            f"Network: {info['num_layers']} layer(s), "
            f"learning_rate={info['learning_rate']}, "
            f"loss={info['loss_type']}, optimizer={info['optimizer']}"
        )
        for i, layer in enumerate(info['layers']):
            logger.info(
                f"Layer {i}: {layer['input_size']} -> "
                f"{layer['output_size']} neurons ({layer['activation']})"
            )

    @property
    def sizes(self) -> List[int]:
        """Layer widths starting with the input width."""
        if not self.layers:
            return []
        return [self.layers[0].input_size] + [
            layer.output_size for layer in self.layers
        ]

    def __repr__(self) -> str:
        return (f"Network(sizes={self.sizes}, "
                f"optimizer={self.optimizer.kind.name}, "
                f"loss={self.loss_type.name})")
