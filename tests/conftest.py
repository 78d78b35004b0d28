"""
conftest.py
~~~~~~~~~~~

Shared fixtures for the mnistnet test suite.
"""

import random

import numpy as np
import pytest

from mnistnet.matrix import Matrix
from mnistnet.network import Network


class VectorSample:
    """Minimal sample built from plain lists."""

    def __init__(self, inputs, label, n_classes=2, typecode='d'):
        self.inputs = list(inputs)
        self.label = label
        self.target = [1.0 if i == label else 0.0 for i in range(n_classes)]
        self.typecode = typecode

    def to_input(self, arena=None):
        return Matrix.column(self.inputs, self.typecode, arena)

    def to_target(self, arena=None):
        return Matrix.column(self.target, self.typecode, arena)

    def cost(self, output):
        return sum((o - t) ** 2 for o, t in zip(output.data, self.target))


@pytest.fixture
def rng():
    """Seeded random source."""
    return random.Random(1234)


@pytest.fixture
def simple_network(rng):
    """Create a simple 3-layer network for testing."""
    return Network.initialize([3, 4, 2], rng)


@pytest.fixture
def toy_samples():
    """Two well separated classes of 3-dimensional inputs."""
    noise = random.Random(99)
    samples = []
    for i in range(24):
        label = i % 2
        base = [0.9, 0.1, 0.2] if label == 0 else [0.1, 0.9, 0.8]
        samples.append(VectorSample(
            [x + noise.uniform(-0.05, 0.05) for x in base], label
        ))
    return samples


@pytest.fixture
def idx_writer(tmp_path):
    """
    Return a function that writes an MNIST IDX image/label file pair.

    The function takes ``images`` (n x 28 x 28 uint8) and ``labels`` plus
    optional header overrides and returns the two paths.
    """
    def write(images, labels, prefix='train', image_magic=0x803,
              label_magic=0x801, rows=28, cols=28, label_count=None,
              directory=None):
        directory = directory or tmp_path
        images = np.asarray(images, dtype=np.uint8)
        labels = np.asarray(labels, dtype=np.uint8)
        if label_count is None:
            label_count = len(labels)

        images_path = directory / f'{prefix}-images-idx3-ubyte'
        labels_path = directory / f'{prefix}-labels-idx1-ubyte'

        header = np.array([image_magic, len(images), rows, cols], dtype='>u4')
        images_path.write_bytes(header.tobytes() + images.tobytes())

        header = np.array([label_magic, label_count], dtype='>u4')
        labels_path.write_bytes(header.tobytes() + labels.tobytes())

        return str(images_path), str(labels_path)

    return write


def random_images(n, seed=0):
    """``n`` random 28x28 images."""
    return np.random.default_rng(seed).integers(0, 256, size=(n, 28, 28), dtype=np.uint8)


@pytest.fixture
def make_images():
    """Factory for random 28x28 uint8 images."""
    return random_images
