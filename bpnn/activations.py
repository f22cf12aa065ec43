"""
activations.py
~~~~~~~~~~~~~~

Activation functions and their derivatives.

Scalar functions accept either a float (and return a float) or a numpy
array (and apply element-wise). Softmax is the only vector-valued
activation and is always applied to a whole vector at once.
"""

from enum import IntEnum
from typing import Union

import numpy as np

from bpnn.exceptions import InvalidConfiguration

Numeric = Union[float, np.ndarray]

# Beyond this magnitude exp() is not evaluated
EXP_LIMIT = 500.0


class ActivationType(IntEnum):
    """Activation tags; the integer values are part of the model file format."""
    SIGMOID = 0
    RELU = 1
    SOFTMAX = 2


def _to_output(values: np.ndarray) -> Numeric:
    """Return a plain float for 0-d results, the array otherwise."""
    if values.ndim == 0:
        return float(values)
    return values


def sigmoid(x: Numeric) -> Numeric:
    """
    Logistic function 1 / (1 + e^-x).

    Saturates to exactly 1.0 above 500 and exactly 0.0 below -500.
    """
    x = np.asarray(x, dtype=np.float64)
    result = 1.0 / (1.0 + np.exp(-np.clip(x, -EXP_LIMIT, EXP_LIMIT)))
    result = np.where(x > EXP_LIMIT, 1.0, np.where(x < -EXP_LIMIT, 0.0, result))
    return _to_output(result)


def sigmoid_derivative(x: Numeric) -> Numeric:
    """Derivative of the sigmoid evaluated at the weighted sum x."""
    s = np.asarray(sigmoid(x), dtype=np.float64)
    return _to_output(s * (1.0 - s))


def relu(x: Numeric) -> Numeric:
    """Rectified linear unit max(0, x)."""
    x = np.asarray(x, dtype=np.float64)
    return _to_output(np.maximum(0.0, x))


def relu_derivative(x: Numeric) -> Numeric:
    """
    1 for x > 0, else 0.

    The derivative at exactly 0 is taken to be 0.
    """
    x = np.asarray(x, dtype=np.float64)
    return _to_output(np.where(x > 0.0, 1.0, 0.0))


def softmax(values) -> np.ndarray:
    """
    Numerically stable softmax over a whole vector.

    The maximum is subtracted before exponentiating and the exponent is
    capped at 500. If the normalising sum is not a positive finite number
    (e.g. every entry is -inf) a uniform distribution is returned instead.

    Args:
        values: 1-D sequence of weighted sums

    Returns:
        np.ndarray: probabilities, empty for empty input
    """
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return np.zeros(0)

    with np.errstate(invalid='ignore'):
        shifted = np.minimum(values - np.max(values), EXP_LIMIT)
        exps = np.exp(shifted)
        total = np.sum(exps)

    if not np.isfinite(total) or total <= 0.0:
        return np.full(values.size, 1.0 / values.size)

    return exps / total


def softmax_derivative(values, index: int) -> np.ndarray:
    """
    Row `index` of the softmax Jacobian: d softmax_i / d values_j.

    Args:
        values: 1-D sequence of weighted sums
        index: output unit i

    Returns:
        np.ndarray: s_i * (delta_ij - s_j) for every j
    """
    s = softmax(values)
    derivative = -s[index] * s
    derivative[index] = s[index] * (1.0 - s[index])
    return derivative


def softmax_jacobian(values) -> np.ndarray:
    """Full softmax Jacobian diag(s) - s s^T."""
    s = softmax(values)
    return np.diag(s) - np.outer(s, s)


def activate(kind: ActivationType, weighted_sums: np.ndarray) -> np.ndarray:
    """Apply an activation to a vector of weighted sums."""
    if kind == ActivationType.SOFTMAX:
        return softmax(weighted_sums)
    if kind == ActivationType.RELU:
        return np.asarray(relu(weighted_sums), dtype=np.float64)
    if kind == ActivationType.SIGMOID:
        return np.asarray(sigmoid(weighted_sums), dtype=np.float64)
    raise InvalidConfiguration(f"Unknown activation: {kind!r}")


def activation_derivative(kind: ActivationType,
                          weighted_sums: np.ndarray) -> np.ndarray:
    """
    Element-wise derivative of a scalar activation.

    Softmax has no element-wise derivative; use softmax_jacobian instead.
    """
    if kind == ActivationType.RELU:
        return np.asarray(relu_derivative(weighted_sums), dtype=np.float64)
    if kind == ActivationType.SIGMOID:
        return np.asarray(sigmoid_derivative(weighted_sums), dtype=np.float64)
    raise InvalidConfiguration(
        f"Activation {kind!r} has no element-wise derivative"
    )
