"""
test_train_cli.py
~~~~~~~~~~~~~~~~~

Tests for the training command line entry point.
"""

import os
import random

import pytest

from mnistnet.model_persistence import load_network, save_network
from mnistnet.network import Network
from mnistnet.train import LAYER_SIZES, format_epoch, main, progress_bar


@pytest.fixture
def data_dir(tmp_path, idx_writer, make_images):
    """A directory with tiny training and test sets under the MNIST names."""
    directory = tmp_path / 'data'
    directory.mkdir()
    idx_writer(make_images(12), [i % 10 for i in range(12)],
               prefix='train', directory=directory)
    idx_writer(make_images(3, seed=1), [4, 2, 7],
               prefix='t10k', directory=directory)
    return str(directory)


@pytest.fixture
def weights_file(tmp_path):
    network = Network.initialize(LAYER_SIZES, random.Random(0))
    return save_network(network, str(tmp_path / 'weights'))


@pytest.mark.unit
class TestConsoleOutput:
    """Test the epoch progress line."""

    @pytest.mark.parametrize('percent,filled', [
        (0, 0), (1, 1), (4, 1), (5, 2), (90, 23), (99, 25), (100, 25)
    ])
    def test_progress_bar(self, percent, filled):
        bar = progress_bar(percent)
        assert len(bar) == 25
        assert bar.count('█') == filled

    def test_format_epoch(self):
        line = format_epoch({'epoch': 1, 'correct': 9012, 'total': 10000})
        assert line == (
            'Epoch 1: 9012/10000' + ' ' * 6 + '█' * 23 + '░' * 2 + ' [90%]'
        )

    def test_format_epoch_without_evaluation_samples(self):
        line = format_epoch({'epoch': 3, 'correct': 0, 'total': 0})
        assert line.endswith('░' * 25 + ' [0%]')


@pytest.mark.unit
class TestArguments:
    """Test argument validation."""

    def test_zero_batch_size_is_a_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            main(['--batch-size', '0'])
        assert exc_info.value.code == 2

    def test_negative_eta_is_a_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            main(['--eta', '-1'])
        assert exc_info.value.code == 2


@pytest.mark.integration
class TestMain:
    """Test complete runs of the command."""

    def test_validate_saved_weights(self, weights_file, data_dir, capsys):
        status = main([weights_file, '--data-dir', data_dir])

        assert status == 0
        out = capsys.readouterr().out
        assert out.startswith('Result: ')
        assert out.strip().endswith(' / 3')

    def test_missing_weight_file(self, tmp_path, data_dir):
        assert main([str(tmp_path / 'missing'), '--data-dir', data_dir]) == 1

    def test_corrupt_weight_file(self, tmp_path, data_dir):
        path = tmp_path / 'corrupt'
        path.write_bytes(b'\x31\x13\xfa\xfa\x01\x00')
        assert main([str(path), '--data-dir', data_dir]) == 1

    def test_weight_file_for_other_input_width(self, tmp_path, data_dir, caplog):
        """Test that a network that cannot read 28x28 images is rejected."""
        path = save_network(
            Network.initialize([4, 3, 10], random.Random(0)),
            str(tmp_path / 'small')
        )

        assert main([path, '--data-dir', data_dir]) == 1
        assert path in caplog.text

    def test_result_printed_once(self, weights_file, data_dir, capsys, caplog):
        """Test that the final result goes to stdout and not also to the log."""
        caplog.set_level('INFO')
        assert main([weights_file, '--data-dir', data_dir]) == 0

        assert capsys.readouterr().out.count('Result: ') == 1
        assert 'Result: ' not in caplog.text

    def test_missing_dataset(self, tmp_path):
        assert main(['--data-dir', str(tmp_path / 'nowhere'), '--epochs', '1']) == 1

    def test_train_save_and_validate(self, tmp_path, data_dir, capsys):
        output_dir = tmp_path / 'out'

        status = main([
            '--data-dir', data_dir,
            '--output-dir', str(output_dir),
            '--epochs', '1',
            '--batch-size', '2',
            '--seed', '0'
        ])

        assert status == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0].startswith('Epoch 1: ')
        assert out[0].endswith('%]')
        assert '/2 ' in out[0]
        assert out[-1].startswith('Result: ')

        files = os.listdir(output_dir)
        assert len(files) == 1
        assert files[0].startswith('nn-e1-b2-h3_0-784-16-16-10-T')
        assert load_network(str(output_dir / files[0])).sizes == LAYER_SIZES
