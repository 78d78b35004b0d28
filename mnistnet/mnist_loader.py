"""
mnist_loader.py
~~~~~~~~~~~~~~~

Load the MNIST image data from the original IDX files.

An image file starts with four big-endian u32 fields (magic ``0x803``,
image count, rows, cols) followed by ``count * rows * cols`` pixel bytes.
A label file starts with two (magic ``0x801``, label count) followed by
one byte per label.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .arena import MatrixArena
from .errors import InvalidFormat, UnexpectedEndOfData
from .matrix import DEFAULT_TYPECODE, Matrix

# Configure module logger
logger = logging.getLogger(__name__)

IMAGES_MAGIC = 0x00000803
LABELS_MAGIC = 0x00000801
IMAGE_SIDE = 28
IMAGE_PIXELS = IMAGE_SIDE * IMAGE_SIDE
NUM_CLASSES = 10

TRAINING_FILES = ('train-images-idx3-ubyte', 'train-labels-idx1-ubyte')
TEST_FILES = ('t10k-images-idx3-ubyte', 't10k-labels-idx1-ubyte')


@dataclass(frozen=True)
class MnistImage:
    """
    One handwritten digit.

    Attributes:
        label: The digit shown (0-9)
        pixels: 784 grey values, row by row, 0 is background
    """

    label: int
    pixels: bytes

    def to_input(self, arena: Optional[MatrixArena] = None) -> Matrix:
        """Pixels scaled to [0, 1] as a 784x1 column vector."""
        return Matrix.column(
            (p / 255 for p in self.pixels), DEFAULT_TYPECODE, arena
        )

    def to_target(self, arena: Optional[MatrixArena] = None) -> Matrix:
        """One-hot 10x1 column vector with a 1 at ``label``."""
        target = Matrix.zeros(NUM_CLASSES, 1, DEFAULT_TYPECODE, arena)
        target.data[self.label] = 1.0
        return target

    def cost(self, output: Matrix) -> float:
        """Sum of squared differences between ``output`` and the target."""
        return sum(
            (o - (1.0 if i == self.label else 0.0)) ** 2
            for i, o in enumerate(output.data)
        )


def _read_idx_header(raw: bytes, path: str, magic: int, n_fields: int) -> np.ndarray:
    """Decode the big-endian u32 header of an IDX file."""
    header_size = 4 * (1 + n_fields)
    if len(raw) < header_size:
        raise UnexpectedEndOfData(
            f"{path}: file is {len(raw)} bytes, header needs {header_size}"
        )

    header = np.frombuffer(raw, dtype='>u4', count=1 + n_fields)
    if int(header[0]) != magic:
        raise InvalidFormat(
            f"{path}: bad magic number 0x{int(header[0]):08x}, "
            f"expected 0x{magic:08x}"
        )
    return header[1:]


def _read_file(path: str) -> bytes:
    with open(path, 'rb') as f:
        return f.read()


def load_samples(images_path: str, labels_path: str) -> List[MnistImage]:
    """
    Parse an IDX image/label file pair.

    Args:
        images_path: Path to the ``*-images-idx3-ubyte`` file
        labels_path: Path to the ``*-labels-idx1-ubyte`` file

    Returns:
        list: One ``MnistImage`` per image, in file order

    Raises:
        OSError: If a file cannot be read
        InvalidFormat: On a bad magic number, image size, count or label
        UnexpectedEndOfData: If a file is truncated
    """
    raw_images = _read_file(images_path)
    raw_labels = _read_file(labels_path)

    count, rows, cols = (int(x) for x in _read_idx_header(raw_images, images_path, IMAGES_MAGIC, 3))
    (label_count,) = (int(x) for x in _read_idx_header(raw_labels, labels_path, LABELS_MAGIC, 1))

    if (rows, cols) != (IMAGE_SIDE, IMAGE_SIDE):
        raise InvalidFormat(
            f"{images_path}: images are {rows}x{cols}, "
            f"expected {IMAGE_SIDE}x{IMAGE_SIDE}"
        )
    if label_count != count:
        raise InvalidFormat(
            f"{labels_path}: {label_count} labels for {count} images"
        )

    pixels = np.frombuffer(raw_images, dtype=np.uint8, offset=16)
    labels = np.frombuffer(raw_labels, dtype=np.uint8, offset=8)
    if pixels.size < count * IMAGE_PIXELS:
        raise UnexpectedEndOfData(
            f"{images_path}: {pixels.size} pixel bytes for {count} images"
        )
    if labels.size < count:
        raise UnexpectedEndOfData(
            f"{labels_path}: {labels.size} label bytes for {count} labels"
        )

    pixels = pixels[:count * IMAGE_PIXELS].reshape(count, IMAGE_PIXELS)
    labels = labels[:count]
    if count and labels.max() >= NUM_CLASSES:
        raise InvalidFormat(
            f"{labels_path}: label {int(labels.max())} is not a digit"
        )

    samples = [
        MnistImage(label=int(label), pixels=image.tobytes())
        for image, label in zip(pixels, labels)
    ]
    logger.info(f"Loaded {len(samples)} images from '{images_path}'")
    return samples


def check_network_fits(sizes: Sequence[int], source: str) -> None:
    """
    Make sure a network with layer ``sizes`` can classify MNIST images.

    Args:
        sizes: Layer sizes of the network
        source: Where the network came from, used in the error message

    Raises:
        InvalidFormat: If the input layer is not 784 wide or there are
            fewer than 10 outputs
    """
    if sizes[0] != IMAGE_PIXELS or sizes[-1] < NUM_CLASSES:
        raise InvalidFormat(
            f"{source}: network {list(sizes)} does not fit MNIST, it needs "
            f"{IMAGE_PIXELS} inputs and at least {NUM_CLASSES} outputs"
        )


def load_data_wrapper(data_dir: str = 'data') -> Tuple[List[MnistImage], List[MnistImage]]:
    """
    Load the standard MNIST training and test sets from ``data_dir``.

    Returns:
        tuple: (training_data, test_data)
    """
    training_data = load_samples(*(os.path.join(data_dir, name) for name in TRAINING_FILES))
    test_data = load_samples(*(os.path.join(data_dir, name) for name in TEST_FILES))
    return training_data, test_data


def load_test_data(data_dir: str = 'data') -> List[MnistImage]:
    """Load only the standard MNIST test set from ``data_dir``."""
    return load_samples(*(os.path.join(data_dir, name) for name in TEST_FILES))


def render_ascii(image: MnistImage) -> str:
    """
    Draw a digit with block characters.

    Pixels up to 100 are blank, up to 200 are light shade, brighter ones
    are full blocks. Every pixel is two characters wide and rows without
    ink are left out.
    """
    lines = [f"This is a {image.label}:"]
    for r in range(IMAGE_SIDE):
        row = image.pixels[r * IMAGE_SIDE:(r + 1) * IMAGE_SIDE]
        if all(p <= 100 for p in row):
            continue
        lines.append(''.join(
            2 * (' ' if p <= 100 else '▒' if p <= 200 else '█') for p in row
        ))
    return '\n'.join(lines) + '\n'
