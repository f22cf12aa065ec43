"""
losses.py
~~~~~~~~~

Loss functions and the output-layer gradient.

Both losses share the gradient predicted - target. For mean squared error
that is the derivative w.r.t. the output activations; for cross-entropy it
is the simplified derivative w.r.t. the weighted sums of a Softmax output
layer, so cross-entropy must be paired with a Softmax output.
"""

from enum import IntEnum
from typing import Sequence

import numpy as np

from bpnn.exceptions import DimensionError, InvalidConfiguration

# Probabilities are clamped to [EPSILON, 1 - EPSILON] before taking logs
EPSILON = 1e-15


class LossType(IntEnum):
    """Loss tags; the integer values are part of the model file format."""
    MEAN_SQUARED_ERROR = 0
    CROSS_ENTROPY = 1


def _paired_vectors(predicted: Sequence[float], target: Sequence[float]):
    p = np.asarray(predicted, dtype=np.float64)
    t = np.asarray(target, dtype=np.float64)
    if p.shape != t.shape:
        raise DimensionError(
            f"Target size mismatch. Predicted: {p.shape}, Target: {t.shape}"
        )
    return p, t


def mean_squared_error(predicted: Sequence[float],
                       target: Sequence[float]) -> float:
    """Sum of squared differences divided by 2N."""
    p, t = _paired_vectors(predicted, target)
    if p.size == 0:
        return 0.0
    diff = p - t
    return float(np.sum(diff * diff) / (2.0 * p.size))


def cross_entropy(predicted: Sequence[float],
                  target: Sequence[float]) -> float:
    """-sum(t * ln(p)) with p clamped away from 0 and 1."""
    p, t = _paired_vectors(predicted, target)
    clipped = np.clip(p, EPSILON, 1.0 - EPSILON)
    return float(-np.sum(t * np.log(clipped)))


def calculate_loss(loss_type: LossType, predicted: Sequence[float],
                   target: Sequence[float]) -> float:
    """Dispatch to the loss selected by loss_type."""
    if loss_type == LossType.CROSS_ENTROPY:
        return cross_entropy(predicted, target)
    if loss_type == LossType.MEAN_SQUARED_ERROR:
        return mean_squared_error(predicted, target)
    raise InvalidConfiguration(f"Unknown loss type: {loss_type!r}")


def output_gradient(predicted: Sequence[float],
                    target: Sequence[float]) -> np.ndarray:
    """Gradient fed into the output layer: predicted - target."""
    p, t = _paired_vectors(predicted, target)
    return p - t
