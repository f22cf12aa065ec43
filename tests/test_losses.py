"""
test_losses.py
~~~~~~~~~~~~~~

Unit tests for the loss functions.
"""

import os
import sys

import numpy as np
import pytest

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bpnn.exceptions import DimensionError, InvalidConfiguration
from bpnn.losses import (
    EPSILON,
    LossType,
    calculate_loss,
    cross_entropy,
    mean_squared_error,
    output_gradient,
)


@pytest.mark.unit
class TestMeanSquaredError:
    """Test the halved mean squared error."""

    def test_known_value(self):
        # ((0.5)^2 + (1.0)^2) / (2 * 2)
        assert mean_squared_error([0.5, 1.0], [0.0, 0.0]) == pytest.approx(0.3125)

    def test_zero_for_exact_match(self):
        assert mean_squared_error([0.2, 0.7], [0.2, 0.7]) == 0.0

    def test_empty_vectors(self):
        assert mean_squared_error([], []) == 0.0

    def test_length_mismatch(self):
        with pytest.raises(DimensionError):
            mean_squared_error([0.1, 0.2], [0.1])


@pytest.mark.unit
class TestCrossEntropy:
    """Test cross-entropy on probability vectors."""

    def test_known_value(self):
        loss = cross_entropy([0.7, 0.2, 0.1], [1.0, 0.0, 0.0])
        assert loss == pytest.approx(-np.log(0.7))

    def test_perfect_prediction_is_near_zero(self):
        assert cross_entropy([1.0, 0.0], [1.0, 0.0]) == pytest.approx(0.0, abs=1e-12)

    def test_zero_probability_is_clamped(self):
        loss = cross_entropy([0.0, 1.0], [1.0, 0.0])
        assert np.isfinite(loss)
        assert loss == pytest.approx(-np.log(EPSILON))

    def test_length_mismatch(self):
        with pytest.raises(DimensionError):
            cross_entropy([0.5, 0.5], [1.0, 0.0, 0.0])


@pytest.mark.unit
class TestDispatch:
    """Test loss selection and the shared output gradient."""

    def test_tag_values(self):
        assert int(LossType.MEAN_SQUARED_ERROR) == 0
        assert int(LossType.CROSS_ENTROPY) == 1

    def test_calculate_loss_selects_function(self):
        p, t = [0.6, 0.4], [1.0, 0.0]
        assert calculate_loss(LossType.MEAN_SQUARED_ERROR, p, t) == \
            mean_squared_error(p, t)
        assert calculate_loss(LossType.CROSS_ENTROPY, p, t) == \
            cross_entropy(p, t)

    def test_calculate_loss_unknown_type(self):
        with pytest.raises(InvalidConfiguration):
            calculate_loss(9, [0.5], [1.0])

    def test_output_gradient(self):
        gradient = output_gradient([0.6, 0.4], [1.0, 0.0])
        assert np.allclose(gradient, [-0.4, 0.4])

    def test_output_gradient_length_mismatch(self):
        with pytest.raises(DimensionError):
            output_gradient([0.6, 0.4], [1.0])
