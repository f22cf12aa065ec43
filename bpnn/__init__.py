"""
bpnn package
~~~~~~~~~~~~

Feedforward neural network engine built from scratch on numpy.
Contains the layer and activation library, SGD/Adam optimizers, loss
functions, the network container with its binary model format, the MNIST
data reader, ready-made classifiers and the API server.
"""

__version__ = "1.0.0"
