"""
classifier.py
~~~~~~~~~~~~~

Ready-made networks built on top of the engine:

- MNISTClassifier: 784 -> 128 -> 64 -> 10 digit classifier trained with
  Adam and cross-entropy
- PointClassifier: small two-class classifier for 2-D points
"""

import time
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from bpnn.activations import ActivationType
from bpnn.losses import LossType
from bpnn.mnist_loader import MNISTData, labels_to_one_hot
from bpnn.network import Network
from bpnn.optimizers import OptimizerType

logger = logging.getLogger(__name__)

# Points of class A (target 0) and class B (target 1)
TRAINING_POINTS_A = [
    (1.24, 1.27), (1.36, 1.74), (1.38, 1.64), (1.38, 1.82), (1.38, 1.90),
    (1.40, 1.70), (1.48, 1.82), (1.54, 1.82), (1.56, 2.08)
]
TRAINING_POINTS_B = [
    (1.14, 1.82), (1.18, 1.96), (1.20, 1.86),
    (1.26, 2.00), (1.28, 2.00), (1.30, 1.96)
]

ACCURACY_SAMPLE_SIZE = 1000


class MNISTClassifier:
    """Handwritten digit classifier over normalised 28x28 images."""

    def __init__(self, learning_rate: float = 0.001,
                 seed: Optional[int] = None):
        self.input_size = 784
        self.output_size = 10
        self.network = Network(learning_rate, LossType.CROSS_ENTROPY, seed)
        self.rng = np.random.default_rng(seed)

    def build_network(self) -> None:
        """784 -> 128 ReLU -> 64 ReLU -> 10 Softmax, optimised with Adam."""
        self.network.add_layer(128, ActivationType.RELU)
        self.network.add_layer(64, ActivationType.RELU)
        self.network.add_layer(self.output_size, ActivationType.SOFTMAX)
        self.network.set_optimizer(
            OptimizerType.ADAM, self.network.learning_rate
        )
        self.network.log_network_info()

    def train(
        self,
        train_data: MNISTData,
        epochs: int = 10,
        batch_size: int = 32,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> List[Dict[str, Any]]:
        """
        Train for a number of epochs over shuffled mini-batches.

        Training accuracy is sampled on up to 1000 images every fifth
        epoch and on the last one; other epochs report None.

        Args:
            train_data: Normalised training set
            epochs: Number of passes over the data
            batch_size: Samples per train_batch call
            callback: Called after each epoch with that epoch's stats
            yield_func: Called after each batch (lets a server stay
                responsive during long training runs)

        Returns:
            list: Per-epoch stats dictionaries
        """
        num_images = train_data.num_images
        one_hot = labels_to_one_hot(train_data.labels, self.output_size)
        indices = np.arange(num_images)
        num_batches = (num_images + batch_size - 1) // batch_size

        logger.info(
            f"Starting training: {num_images} samples, {epochs} epochs, "
            f"batch size {batch_size}"
        )

        history = []
        for epoch in range(epochs):
            start_time = time.time()
            self.rng.shuffle(indices)

            total_loss = 0.0
            for start in range(0, num_images, batch_size):
                batch = indices[start:start + batch_size]
                total_loss += self.network.train_batch(
                    train_data.images[batch], one_hot[batch]
                )
                if yield_func:
                    yield_func()

            avg_loss = total_loss / num_batches if num_batches else 0.0

            accuracy = None
            if epoch % 5 == 0 or epoch == epochs - 1:
                sample = min(ACCURACY_SAMPLE_SIZE, num_images)
                correct = sum(
                    1 for i in range(sample)
                    if self.predict(train_data.images[i])
                    == train_data.labels[i]
                )
                accuracy = correct / sample if sample else 0.0

            stats = {
                'epoch': epoch + 1,
                'total_epochs': epochs,
                'loss': avg_loss,
                'accuracy': accuracy,
                'elapsed_time': time.time() - start_time
            }
            history.append(stats)

            accuracy_text = (f", accuracy {accuracy:.2%}"
                             if accuracy is not None else "")
            logger.info(
                f"Epoch {epoch + 1}/{epochs} - loss {avg_loss:.6f}"
                f"{accuracy_text} [{stats['elapsed_time']:.2f}s]"
            )

            if callback:
                callback(stats)

        logger.info("Training completed")
        return history

    def test(self, test_data: MNISTData) -> float:
        """Fraction of test images classified correctly."""
        total = test_data.num_images
        if total == 0:
            return 0.0

        correct = sum(
            1 for image, label in zip(test_data.images, test_data.labels)
            if self.predict(image) == label
        )
        accuracy = correct / total
        logger.info(f"Test results: {correct}/{total} correct ({accuracy:.2%})")
        return accuracy

    def predict(self, image: Sequence[float]) -> int:
        """Most probable digit for a normalised image."""
        return int(np.argmax(self.network.predict(image)))

    def get_prediction_probabilities(self, image: Sequence[float]
                                     ) -> np.ndarray:
        return self.network.predict(image)

    def save_model(self, filename: str) -> bool:
        return self.network.save_model(filename)

    def load_model(self, filename: str) -> bool:
        return self.network.load_model(filename)


class PointClassifier:
    """
    Two-class classifier for 2-D points (class A -> 0, class B -> 1).

    The network is declared 2 -> 3 Sigmoid -> 1 Sigmoid; the first forward
    pass turns the hidden layer into a ReLU layer of input width 2.
    """

    def __init__(
        self,
        learning_rate: float = 0.01,
        epochs: int = 6000,
        seed: Optional[int] = None,
        points_a: Sequence[Sequence[float]] = TRAINING_POINTS_A,
        points_b: Sequence[Sequence[float]] = TRAINING_POINTS_B
    ):
        self.learning_rate = learning_rate
        self.epochs = epochs
        self.seed = seed
        self.points_a = [tuple(p) for p in points_a]
        self.points_b = [tuple(p) for p in points_b]
        self.network: Optional[Network] = None
        self.current_epoch = 0

    @property
    def initialized(self) -> bool:
        return self.network is not None

    def training_set(self):
        """Inputs and targets built from both point classes."""
        inputs = [list(p) for p in self.points_a + self.points_b]
        targets = ([[0.0]] * len(self.points_a)
                   + [[1.0]] * len(self.points_b))
        return inputs, targets

    def initialize_network(self) -> None:
        self.network = Network(self.learning_rate, seed=self.seed)
        self.network.add_layer(3, ActivationType.SIGMOID)
        self.network.add_layer(1, ActivationType.SIGMOID)
        self.current_epoch = 0

    def train(
        self,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        report_every: int = 50
    ) -> float:
        """
        Build a fresh network and train it for the configured epochs.

        Args:
            callback: Called every report_every epochs and after the last
                one with {'epoch', 'total_epochs', 'loss'}
            report_every: Epoch interval between callbacks

        Returns:
            float: Mean loss of the final epoch
        """
        self.initialize_network()
        inputs, targets = self.training_set()

        logger.info(
            f"Starting training with {len(inputs)} samples "
            f"for {self.epochs} epochs"
        )

        loss = 0.0
        for epoch in range(1, self.epochs + 1):
            loss = self.network.train_batch(inputs, targets)
            self.current_epoch = epoch

            if epoch % 200 == 0:
                logger.debug(f"Epoch {epoch} loss: {loss:.6f}")

            if callback and (epoch % report_every == 0
                             or epoch == self.epochs):
                callback({
                    'epoch': epoch,
                    'total_epochs': self.epochs,
                    'loss': loss
                })

        logger.info(
            f"Training completed after {self.current_epoch} epochs, "
            f"final loss {loss:.6f}"
        )
        return loss

    @staticmethod
    def confidence(raw_output: float) -> float:
        """Distance from the 0.5 decision boundary mapped onto [0.5, 1.0]."""
        distance = abs(raw_output - 0.5) / 0.5
        return min(max(0.5 + distance * 0.5, 0.5), 1.0)

    def predict(self, x: float, y: float) -> Dict[str, Any]:
        """
        Classify a point.

        Returns:
            dict: input, hidden-layer values, raw output, predicted class
            ('A' or 'B') and confidence

        Raises:
            RuntimeError: If the network has not been trained yet
        """
        if self.network is None:
            raise RuntimeError("Network has not been initialised")

        point = [x, y]
        hidden = self.network.get_hidden_layer_output(point)
        output = float(self.network.predict(point)[0])
        predicted = 'B' if output >= 0.5 else 'A'

        return {
            'input': point,
            'hidden_values': [float(v) for v in hidden],
            'output': output,
            'predicted_class': predicted,
            'confidence': self.confidence(output)
        }
