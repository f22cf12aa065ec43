"""
mnist_loader.py
~~~~~~~~~~~~~~~

Reader for the MNIST IDX files (uncompressed) plus the preprocessing the
classifiers need: pixel normalisation and one-hot label encoding.

Image files start with the big-endian header
(magic=2051, count, rows, cols) followed by one unsigned byte per pixel;
label files with (magic=2049, count) followed by one byte per label.
"""

import struct
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

IMAGE_MAGIC = 2051
LABEL_MAGIC = 2049
IMAGE_ROWS = 28
IMAGE_COLS = 28
MAX_ITEMS = 100000
NUM_CLASSES = 10

GZIP_SIGNATURE = b'\x1f\x8b'


@dataclass
class MNISTData:
    """Images as a (num_images, rows*cols) float array plus their labels."""
    images: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    labels: np.ndarray = field(
        default_factory=lambda: np.zeros(0, dtype=np.int64)
    )
    image_rows: int = 0
    image_cols: int = 0

    @property
    def num_images(self) -> int:
        return len(self.images)

    def __len__(self) -> int:
        return self.num_images


def is_gzip_file(filename: str) -> bool:
    """Check whether a file starts with the gzip signature."""
    try:
        with open(filename, 'rb') as f:
            return f.read(2) == GZIP_SIGNATURE
    except OSError:
        return False


def validate_mnist_format(filename: str, is_images: bool) -> bool:
    """
    Check that a file is an uncompressed IDX file of the expected kind.

    Args:
        filename: Path to the IDX file
        is_images: True for an image file, False for a label file

    Returns:
        bool: True if the magic number matches
    """
    if is_gzip_file(filename):
        logger.error(
            f"File {filename} appears to be a GZIP compressed file. "
            f"Extract it first with: gunzip {filename}"
        )
        return False

    expected = IMAGE_MAGIC if is_images else LABEL_MAGIC
    try:
        with open(filename, 'rb') as f:
            header = f.read(4)
    except OSError as e:
        logger.error(f"Cannot open file {filename}: {e}")
        return False

    if len(header) < 4:
        logger.error(f"File {filename} is too short to be an IDX file")
        return False

    magic = struct.unpack('>i', header)[0]
    if magic != expected:
        logger.error(
            f"Invalid magic number in {filename}. "
            f"Expected: {expected}, Got: {magic}"
        )
        return False

    return True


def read_images(filename: str) -> Optional[Tuple[np.ndarray, int, int]]:
    """
    Read an IDX image file.

    Args:
        filename: Path to e.g. train-images-idx3-ubyte

    Returns:
        (images, rows, cols) with images shaped (count, rows*cols) and raw
        pixel values 0-255 as floats, or None if the file is invalid
    """
    if not validate_mnist_format(filename, is_images=True):
        return None

    try:
        with open(filename, 'rb') as f:
            _, count, rows, cols = struct.unpack('>iiii', f.read(16))

            logger.info(
                f"Image file info: count={count}, rows={rows}, cols={cols}"
            )

            if count < 0 or count > MAX_ITEMS:
                logger.error(f"Invalid number of images: {count}")
                return None
            if rows != IMAGE_ROWS or cols != IMAGE_COLS:
                logger.error(
                    f"Invalid image dimensions: {rows}x{cols}, "
                    f"expected {IMAGE_ROWS}x{IMAGE_COLS}"
                )
                return None

            expected = count * rows * cols
            pixels = f.read(expected)
    except (OSError, struct.error) as e:
        logger.error(f"Error reading image file {filename}: {e}")
        return None

    if len(pixels) != expected:
        logger.error(
            f"Unexpected end of file in {filename}: "
            f"expected {expected} pixel bytes, got {len(pixels)}"
        )
        return None

    images = (np.frombuffer(pixels, dtype=np.uint8)
              .reshape(count, rows * cols)
              .astype(np.float64))
    logger.info(f"Successfully loaded {count} images")
    return images, rows, cols


def read_labels(filename: str) -> Optional[np.ndarray]:
    """
    Read an IDX label file.

    Returns:
        Integer label array, or None if the file is invalid or contains a
        label outside 0-9
    """
    if not validate_mnist_format(filename, is_images=False):
        return None

    try:
        with open(filename, 'rb') as f:
            _, count = struct.unpack('>ii', f.read(8))
            logger.info(f"Label file info: count={count}")

            if count < 0 or count > MAX_ITEMS:
                logger.error(f"Invalid number of labels: {count}")
                return None

            raw = f.read(count)
    except (OSError, struct.error) as e:
        logger.error(f"Error reading label file {filename}: {e}")
        return None

    if len(raw) != count:
        logger.error(
            f"Unexpected end of file in {filename}: "
            f"expected {count} labels, got {len(raw)}"
        )
        return None

    labels = np.frombuffer(raw, dtype=np.uint8).astype(np.int64)
    if labels.size and labels.max() >= NUM_CLASSES:
        logger.error(f"Invalid label value: {int(labels.max())}")
        return None

    logger.info(f"Successfully loaded {count} labels")
    return labels


def load_mnist(images_file: str, labels_file: str) -> Optional[MNISTData]:
    """
    Load an image file and its label file.

    Returns:
        MNISTData or None if either file is invalid or the counts differ
    """
    logger.info(f"Loading MNIST dataset: {images_file}, {labels_file}")

    image_result = read_images(images_file)
    if image_result is None:
        logger.error("Failed to read images")
        return None

    labels = read_labels(labels_file)
    if labels is None:
        logger.error("Failed to read labels")
        return None

    images, rows, cols = image_result
    if len(images) != len(labels):
        logger.error(
            f"Number of images ({len(images)}) and labels "
            f"({len(labels)}) don't match"
        )
        return None

    return MNISTData(images=images, labels=labels,
                     image_rows=rows, image_cols=cols)


def normalize_images(data: MNISTData) -> None:
    """Scale pixel values from 0-255 into [0, 1] in place."""
    data.images = data.images / 255.0


def labels_to_one_hot(labels: Sequence[int],
                      num_classes: int = NUM_CLASSES) -> np.ndarray:
    """
    One-hot encode integer labels.

    Labels outside [0, num_classes) produce an all-zero row.

    Returns:
        np.ndarray: Shape (len(labels), num_classes)
    """
    labels = np.asarray(labels, dtype=np.int64).reshape(-1)
    one_hot = np.zeros((labels.size, num_classes))
    valid = (labels >= 0) & (labels < num_classes)
    one_hot[np.nonzero(valid)[0], labels[valid]] = 1.0
    return one_hot


def display_image(image: Sequence[float], rows: int = IMAGE_ROWS,
                  cols: int = IMAGE_COLS) -> str:
    """
    Render a normalised image as ASCII art.

    '##' marks pixels above 0.5, '..' pixels above 0.25.
    """
    pixels = np.asarray(image, dtype=np.float64).reshape(rows, cols)
    lines = []
    for row in pixels:
        lines.append(''.join(
            '##' if p > 0.5 else '..' if p > 0.25 else '  ' for p in row
        ))
    return '\n'.join(lines)
