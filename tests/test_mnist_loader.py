"""
test_mnist_loader.py
~~~~~~~~~~~~~~~~~~~~

Unit tests for the IDX file loader and the MNIST sample type.
"""

import os

import numpy as np
import pytest

from mnistnet.errors import InvalidFormat, UnexpectedEndOfData
from mnistnet.matrix import Matrix
from mnistnet.mnist_loader import (
    IMAGE_PIXELS,
    MnistImage,
    check_network_fits,
    load_data_wrapper,
    load_samples,
    load_test_data,
    render_ascii
)
from mnistnet.sample import Sample


def blank_image(label=0):
    return MnistImage(label=label, pixels=bytes(IMAGE_PIXELS))


@pytest.mark.unit
class TestMnistImage:
    """Test conversion of an image into network vectors."""

    def test_is_a_sample(self):
        assert isinstance(blank_image(), Sample)

    def test_to_input_scales_pixels(self):
        pixels = bytearray(IMAGE_PIXELS)
        pixels[0] = 255
        pixels[1] = 51
        image = MnistImage(label=3, pixels=bytes(pixels))

        vector = image.to_input()
        assert vector.shape == (784, 1)
        assert vector.data[0] == 1.0
        assert vector.data[1] == pytest.approx(0.2)
        assert vector.data[2] == 0.0

    def test_to_target_is_one_hot(self):
        target = blank_image(label=7).to_target()
        assert target.shape == (10, 1)
        assert list(target.data) == [0, 0, 0, 0, 0, 0, 0, 1, 0, 0]

    def test_cost(self):
        output = Matrix.column([0.5] + [0.0] * 8 + [1.0], 'd')
        assert blank_image(label=0).cost(output) == pytest.approx(0.25 + 1.0)


@pytest.mark.unit
class TestLoadSamples:
    """Test parsing of IDX file pairs."""

    def test_load(self, idx_writer, make_images):
        images = make_images(3)
        paths = idx_writer(images, [5, 0, 9])

        samples = load_samples(*paths)

        assert [s.label for s in samples] == [5, 0, 9]
        assert samples[1].pixels == images[1].tobytes()
        assert len(samples[2].pixels) == IMAGE_PIXELS

    def test_empty_set(self, idx_writer):
        paths = idx_writer(np.zeros((0, 28, 28)), [])
        assert load_samples(*paths) == []

    def test_bad_image_magic(self, idx_writer, make_images):
        paths = idx_writer(make_images(2), [1, 2], image_magic=0x801)
        with pytest.raises(InvalidFormat):
            load_samples(*paths)

    def test_bad_label_magic(self, idx_writer, make_images):
        paths = idx_writer(make_images(2), [1, 2], label_magic=0x803)
        with pytest.raises(InvalidFormat):
            load_samples(*paths)

    def test_wrong_image_size(self, idx_writer, make_images):
        paths = idx_writer(make_images(2), [1, 2], rows=27)
        with pytest.raises(InvalidFormat):
            load_samples(*paths)

    def test_count_mismatch(self, idx_writer, make_images):
        paths = idx_writer(make_images(2), [1, 2], label_count=3)
        with pytest.raises(InvalidFormat):
            load_samples(*paths)

    def test_label_out_of_range(self, idx_writer, make_images):
        paths = idx_writer(make_images(2), [1, 10])
        with pytest.raises(InvalidFormat):
            load_samples(*paths)

    def test_truncated_pixels(self, idx_writer, make_images):
        images_path, labels_path = idx_writer(make_images(2), [1, 2])
        with open(images_path, 'rb') as f:
            raw = f.read()
        with open(images_path, 'wb') as f:
            f.write(raw[:-1])

        with pytest.raises(UnexpectedEndOfData):
            load_samples(images_path, labels_path)

    def test_truncated_header(self, idx_writer, make_images):
        images_path, labels_path = idx_writer(make_images(1), [1])
        with open(labels_path, 'wb') as f:
            f.write(b'\x00\x00\x08')

        with pytest.raises(UnexpectedEndOfData):
            load_samples(images_path, labels_path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_samples(str(tmp_path / 'a'), str(tmp_path / 'b'))

    def test_standard_file_names(self, idx_writer, make_images, tmp_path):
        idx_writer(make_images(4), [0, 1, 2, 3], prefix='train')
        idx_writer(make_images(2, seed=1), [8, 9], prefix='t10k')

        training_data, test_data = load_data_wrapper(str(tmp_path))

        assert [s.label for s in training_data] == [0, 1, 2, 3]
        assert [s.label for s in test_data] == [8, 9]
        assert load_test_data(str(tmp_path)) == test_data

    def test_missing_directory(self, tmp_path):
        with pytest.raises(OSError):
            load_test_data(os.path.join(str(tmp_path), 'nowhere'))


@pytest.mark.unit
class TestNetworkFits:
    """Test the check that a network can classify MNIST images."""

    @pytest.mark.parametrize('sizes', [[784, 10], [784, 16, 16, 10], [784, 12]])
    def test_accepted(self, sizes):
        check_network_fits(sizes, 'net')

    @pytest.mark.parametrize('sizes', [[4, 3, 10], [783, 10], [784, 16, 9]])
    def test_rejected(self, sizes):
        with pytest.raises(InvalidFormat) as exc_info:
            check_network_fits(sizes, 'weights/net')
        assert 'weights/net' in str(exc_info.value)


@pytest.mark.unit
class TestRenderAscii:
    """Test the console drawing of a digit."""

    def test_blank_image_only_has_header(self):
        assert render_ascii(blank_image(label=4)) == "This is a 4:\n"

    def test_shades(self):
        pixels = bytearray(IMAGE_PIXELS)
        # row 5: columns 0-3 hold the boundary values
        pixels[5 * 28:5 * 28 + 4] = bytes([100, 101, 200, 201])
        image = MnistImage(label=1, pixels=bytes(pixels))

        lines = render_ascii(image).splitlines()

        assert lines[0] == "This is a 1:"
        assert len(lines) == 2
        assert lines[1] == '  ▒▒▒▒██' + ' ' * 48
