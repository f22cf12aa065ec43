"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Binary persistence for neural network models.

File layout (little-endian, no magic number or version field):

    float64   learning rate
    int32     loss type tag
    int32     optimizer type tag
    uint64    layer count
    per layer:
        int32     activation tag
        uint64    rows (output width)
        uint64    cols (input width)
        float64   rows * cols weights, row-major
        float64   rows biases

Adam moments and timesteps are not stored; a loaded model starts its
optimizer state from zero.
"""

import io
import struct
import logging
from typing import BinaryIO, List, NamedTuple, Optional

import numpy as np

from bpnn.exceptions import InvalidConfiguration
from bpnn.layer import Layer
from bpnn.losses import LossType
from bpnn.optimizers import OptimizerType

# Configure module logger
logger = logging.getLogger(__name__)

HEADER = struct.Struct('<diiQ')
LAYER_HEADER = struct.Struct('<iQQ')
FLOAT_DTYPE = np.dtype('<f8')


class ModelState(NamedTuple):
    """Everything a model file restores into a network."""
    learning_rate: float
    loss_type: LossType
    optimizer_type: OptimizerType
    layers: List[Layer]


def _bytes_left(stream: BinaryIO) -> Optional[int]:
    """Bytes between the current position and the end, None if unknown."""
    if not stream.seekable():
        return None
    position = stream.tell()
    end = stream.seek(0, io.SEEK_END)
    stream.seek(position)
    return end - position


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly size bytes or raise EOFError."""
    available = _bytes_left(stream)
    if available is not None and available < size:
        raise EOFError(
            f"Unexpected end of model data: wanted {size} bytes, "
            f"{available} left"
        )
    data = stream.read(size)
    if len(data) != size:
        raise EOFError(
            f"Unexpected end of model data: wanted {size} bytes, "
            f"got {len(data)}"
        )
    return data


def _read_floats(stream: BinaryIO, count: int) -> np.ndarray:
    data = _read_exact(stream, count * FLOAT_DTYPE.itemsize)
    return np.frombuffer(data, dtype=FLOAT_DTYPE).astype(np.float64)


def write_model(network, stream: BinaryIO) -> None:
    """
    Serialize a network's configuration and parameters to a stream.

    Args:
        network: Network exposing learning_rate, loss_type, optimizer, layers
        stream: Writable binary stream
    """
    stream.write(HEADER.pack(
        float(network.learning_rate),
        int(network.loss_type),
        int(network.optimizer.kind),
        len(network.layers)
    ))

    for index, layer in enumerate(network.layers):
        rows, cols = layer.weights.shape
        stream.write(LAYER_HEADER.pack(int(layer.activation), rows, cols))
        stream.write(np.ascontiguousarray(layer.weights, dtype=FLOAT_DTYPE)
                     .tobytes())
        stream.write(np.ascontiguousarray(layer.biases, dtype=FLOAT_DTYPE)
                     .tobytes())
        logger.debug(
            f"Wrote layer {index}: {cols}->{rows} "
            f"(activation: {layer.activation.name})"
        )


def read_model(
    stream: BinaryIO,
    rng: Optional[np.random.Generator] = None
) -> ModelState:
    """
    Deserialize a model written by write_model().

    Args:
        stream: Readable binary stream
        rng: Generator handed to the rebuilt layers

    Returns:
        ModelState: The restored configuration and layers

    Raises:
        EOFError: If the data ends early
        InvalidConfiguration: If a tag or layer shape is not valid
    """
    learning_rate, loss_tag, optimizer_tag, layer_count = HEADER.unpack(
        _read_exact(stream, HEADER.size)
    )

    try:
        loss_type = LossType(loss_tag)
        optimizer_type = OptimizerType(optimizer_tag)
    except ValueError as e:
        raise InvalidConfiguration(f"Unknown tag in model header: {e}")

    layers = []
    for index in range(layer_count):
        activation_tag, rows, cols = LAYER_HEADER.unpack(
            _read_exact(stream, LAYER_HEADER.size)
        )
        weights = _read_floats(stream, rows * cols)
        biases = _read_floats(stream, rows)

        layer = Layer(cols, rows, activation_tag, rng=rng)
        layer.set_weights(weights.reshape(rows, cols))
        layer.set_biases(biases)
        layers.append(layer)
        logger.debug(
            f"Read layer {index}: {cols}->{rows} "
            f"(activation: {layer.activation.name})"
        )

    return ModelState(learning_rate, loss_type, optimizer_type, layers)


def save_model(network, filename: str) -> bool:
    """
    Save a network to a binary model file.

    Args:
        network: The network to save
        filename: Destination path

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network(learning_rate=0.01)
        >>> net.add_layer(3, ActivationType.RELU)
        >>> save_model(net, "models/demo.bin")
        True
    """
    if not filename or not isinstance(filename, str):
        logger.error("Invalid filename: must be a non-empty string")
        return False

    try:
        with open(filename, 'wb') as f:
            write_model(network, f)

        logger.info(
            f"Saved model to '{filename}' with {len(network.layers)} layer(s), "
            f"learning_rate={network.learning_rate}, "
            f"loss={network.loss_type.name}, "
            f"optimizer={network.optimizer.kind.name}"
        )
        return True

    except OSError as e:
        logger.error(f"Cannot open file for saving '{filename}': {e}")
        return False
    except (struct.error, AttributeError) as e:
        logger.error(f"Serialization error saving model '{filename}': {e}")
        return False
    except Exception as e:
        logger.exception(f"Unexpected error saving model '{filename}': {e}")
        return False


def load_model(
    filename: str,
    rng: Optional[np.random.Generator] = None
) -> Optional[ModelState]:
    """
    Load a model file.

    Args:
        filename: Path of a file written by save_model()
        rng: Generator handed to the rebuilt layers

    Returns:
        ModelState or None if the file cannot be opened or parsed

    Example:
        >>> state = load_model("models/demo.bin")
        >>> if state:
        ...     print(f"Loaded {len(state.layers)} layers")
    """
    if not filename or not isinstance(filename, str):
        logger.error("Invalid filename: must be a non-empty string")
        return None

    try:
        with open(filename, 'rb') as f:
            state = read_model(f, rng=rng)

        logger.info(
            f"Loaded model from '{filename}': {len(state.layers)} layer(s), "
            f"learning_rate={state.learning_rate}, "
            f"loss={state.loss_type.name}, "
            f"optimizer={state.optimizer_type.name}"
        )
        return state

    except OSError as e:
        logger.error(f"Cannot open file for loading '{filename}': {e}")
        return None
    except (EOFError, struct.error) as e:
        logger.error(f"Truncated model file '{filename}': {e}")
        return None
    except InvalidConfiguration as e:
        logger.error(f"Invalid model file '{filename}': {e}")
        return None
    except Exception as e:
        logger.exception(f"Unexpected error loading model '{filename}': {e}")
        return None
