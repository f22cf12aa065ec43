"""
test_activations.py
~~~~~~~~~~~~~~~~~~~

Unit tests for the activation function library.
"""

import os
import sys

import numpy as np
import pytest

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bpnn.activations import (
    ActivationType,
    activate,
    activation_derivative,
    relu,
    relu_derivative,
    sigmoid,
    sigmoid_derivative,
    softmax,
    softmax_derivative,
    softmax_jacobian,
)
from bpnn.exceptions import InvalidConfiguration


@pytest.mark.unit
class TestSigmoid:
    """Test the logistic function and its derivative."""

    def test_sigmoid_at_zero(self):
        assert sigmoid(0) == 0.5

    def test_sigmoid_saturates(self):
        """Test that large inputs clamp to exactly 0 and 1."""
        assert sigmoid(1000) == 1.0
        assert sigmoid(-1000) == 0.0

    def test_sigmoid_returns_float_for_scalar(self):
        assert isinstance(sigmoid(0.3), float)

    def test_sigmoid_elementwise_on_arrays(self):
        values = np.array([-1000.0, 0.0, 2.0, 1000.0])
        result = sigmoid(values)
        assert result.shape == (4,)
        assert result[0] == 0.0
        assert result[1] == 0.5
        assert result[2] == pytest.approx(1.0 / (1.0 + np.exp(-2.0)))
        assert result[3] == 1.0

    def test_sigmoid_derivative(self):
        assert sigmoid_derivative(0) == 0.25
        s = 1.0 / (1.0 + np.exp(-1.5))
        assert sigmoid_derivative(1.5) == pytest.approx(s * (1 - s))


@pytest.mark.unit
class TestRelu:
    """Test ReLU and its derivative."""

    def test_relu_values(self):
        assert relu(-5) == 0
        assert relu(5) == 5

    def test_relu_derivative_values(self):
        assert relu_derivative(3.0) == 1.0
        assert relu_derivative(-3.0) == 0.0

    def test_relu_derivative_at_zero_is_zero(self):
        assert relu_derivative(0) == 0

    def test_relu_elementwise_on_arrays(self):
        result = relu(np.array([-2.0, 0.0, 3.5]))
        assert np.array_equal(result, np.array([0.0, 0.0, 3.5]))


@pytest.mark.unit
class TestSoftmax:
    """Test the vector-valued softmax."""

    def test_softmax_sums_to_one(self):
        result = softmax([1.0, 2.0, 3.0, -4.0])
        assert np.sum(result) == pytest.approx(1.0, abs=1e-9)
        assert np.all(result >= 0.0) and np.all(result <= 1.0)

    def test_softmax_preserves_order(self):
        result = softmax([1.0, 3.0, 2.0])
        assert np.argmax(result) == 1
        assert result[0] < result[2] < result[1]

    def test_softmax_is_stable_for_large_inputs(self):
        result = softmax([1000.0, 1000.0])
        assert np.allclose(result, [0.5, 0.5])

    def test_softmax_empty_input(self):
        assert softmax([]).size == 0

    def test_softmax_degenerate_input_falls_back_to_uniform(self):
        """Test that all -inf inputs yield a uniform distribution."""
        result = softmax([-np.inf, -np.inf, -np.inf, -np.inf])
        assert np.allclose(result, 0.25)

    def test_softmax_derivative_row(self):
        values = [0.5, -1.0, 2.0]
        s = softmax(values)
        row = softmax_derivative(values, 2)
        assert row[2] == pytest.approx(s[2] * (1 - s[2]))
        assert row[0] == pytest.approx(-s[0] * s[2])

    def test_softmax_jacobian_matches_rows(self):
        values = [0.2, 0.4, -0.3]
        jacobian = softmax_jacobian(values)
        for i in range(3):
            assert np.allclose(jacobian[i], softmax_derivative(values, i))
        # Each row of the Jacobian sums to zero
        assert np.allclose(jacobian.sum(axis=1), 0.0)


@pytest.mark.unit
class TestDispatch:
    """Test activation lookup by type."""

    def test_activate_softmax_is_joint(self):
        result = activate(ActivationType.SOFTMAX, np.array([1.0, 1.0]))
        assert np.allclose(result, [0.5, 0.5])

    def test_activate_relu(self):
        result = activate(ActivationType.RELU, np.array([-1.0, 2.0]))
        assert np.array_equal(result, [0.0, 2.0])

    def test_derivative_not_defined_for_softmax(self):
        with pytest.raises(InvalidConfiguration):
            activation_derivative(ActivationType.SOFTMAX, np.zeros(3))
