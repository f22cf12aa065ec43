"""
test_optimizers.py
~~~~~~~~~~~~~~~~~~

Unit tests for optimizer selection and dispatch.
"""

import os
import sys

import numpy as np
import pytest

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bpnn.activations import ActivationType
from bpnn.exceptions import InvalidConfiguration
from bpnn.layer import Layer
from bpnn.optimizers import Optimizer, OptimizerType, update_layer


@pytest.fixture
def prepared_layer():
    """Layer that has run forward and backward on a fixed sample."""
    layer = Layer(2, 2, ActivationType.SIGMOID,
                  rng=np.random.default_rng(3))
    x = np.array([0.5, -1.5])
    layer.forward(x)
    layer.backward([0.4, -0.2])
    return layer, x


@pytest.mark.unit
class TestOptimizer:
    """Test optimizer construction."""

    def test_tag_values(self):
        assert int(OptimizerType.SGD) == 0
        assert int(OptimizerType.ADAM) == 1

    def test_default_is_sgd(self):
        assert Optimizer().kind == OptimizerType.SGD
        assert Optimizer.sgd().kind == OptimizerType.SGD

    def test_adam_hyperparameters(self):
        optimizer = Optimizer.adam(beta1=0.8, beta2=0.99, epsilon=1e-6)
        assert optimizer.kind == OptimizerType.ADAM
        assert optimizer.beta1 == 0.8
        assert optimizer.beta2 == 0.99
        assert optimizer.epsilon == 1e-6

    def test_from_type(self):
        assert Optimizer.from_type(1) == Optimizer.adam()
        assert Optimizer.from_type(OptimizerType.SGD) == Optimizer.sgd()

    def test_from_unknown_type(self):
        with pytest.raises(InvalidConfiguration):
            Optimizer.from_type(5)

    def test_optimizer_is_immutable(self):
        optimizer = Optimizer.adam()
        with pytest.raises(AttributeError):
            optimizer.beta1 = 0.5


@pytest.mark.unit
class TestUpdateLayer:
    """Test that update_layer applies the selected update rule."""

    def test_sgd_dispatch(self, prepared_layer):
        layer, x = prepared_layer
        expected = layer.weights - 0.1 * np.outer(layer.errors, x)

        update_layer(Optimizer.sgd(), layer, x, 0.1)

        assert np.allclose(layer.weights, expected)
        assert layer.timestep == 0

    def test_adam_dispatch(self, prepared_layer):
        layer, x = prepared_layer
        before = layer.weights.copy()

        update_layer(Optimizer.adam(), layer, x, 0.01)

        assert layer.timestep == 1
        assert np.allclose(np.abs(layer.weights - before), 0.01, atol=1e-6)
