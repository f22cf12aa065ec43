"""
exceptions.py
~~~~~~~~~~~~~

Errors raised by the network engine.
"""


class NeuralNetworkError(Exception):
    """Base class for all engine errors."""


class DimensionError(NeuralNetworkError, ValueError):
    """A vector does not have the width the receiving layer expects."""


class InvalidConfiguration(NeuralNetworkError, ValueError):
    """A layer, batch or enum tag cannot be used to build or train a network."""
