"""
train.py
~~~~~~~~

Command line entry point for training and validating a network on MNIST.

Usage:
    mnistnet-train                  # train a new network, save it, validate it
    mnistnet-train WEIGHT_FILE      # load a saved network and validate it

The dataset files are read from ``--data-dir`` (default ``$MNIST_DATA_DIR``
or ``data``) and must use the standard MNIST file names.
"""

import argparse
import logging
import os
import random
import sys
from typing import Any, Dict, List, Optional

from .errors import MnistNetError
from .log_setup import configure_logging
from .mnist_loader import TRAINING_FILES, check_network_fits, load_samples, load_test_data
from .model_persistence import load_network, make_filename, save_network
from .network import Network

logger = logging.getLogger(__name__)

# Hyperparameters of a fresh training run
LAYER_SIZES = [784, 16, 16, 10]
EPOCHS = 20
BATCH_SIZE = 10
ETA = 3.0

BAR_CELLS = 25


def progress_bar(percent: int) -> str:
    """25-cell bar, one filled cell per started 4%."""
    filled = min(BAR_CELLS, (percent + 3) // 4)
    return '█' * filled + '░' * (BAR_CELLS - filled)


def format_epoch(result: Dict[str, Any]) -> str:
    """Console line for one finished epoch, e.g. ``Epoch 1: 9012/10000 ██░░ [90%]``."""
    percent = 100 * result['correct'] // result['total'] if result['total'] else 0
    head = f"Epoch {result['epoch']}: {result['correct']}/{result['total']} "
    return f"{head.ljust(BAR_CELLS)}{progress_bar(percent)} [{percent}%]"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mnistnet-train',
        description='Train a sigmoid network on MNIST, or validate a saved one.'
    )
    parser.add_argument(
        'weights', nargs='?',
        help='previously saved weight file; skips training when given'
    )
    parser.add_argument(
        '--data-dir', default=os.getenv('MNIST_DATA_DIR', 'data'),
        help='directory holding the MNIST IDX files'
    )
    parser.add_argument(
        '--output-dir', default='.',
        help='where to write the trained weight file'
    )
    parser.add_argument('--epochs', type=int, default=EPOCHS)
    parser.add_argument('--batch-size', type=int, default=BATCH_SIZE)
    parser.add_argument('--eta', type=float, default=ETA, help='learning rate')
    parser.add_argument(
        '--seed', type=int, default=None,
        help='seed for initialization and shuffling (random if omitted)'
    )
    parser.add_argument('--log-level', default=None)
    return parser


def train_new_network(args: argparse.Namespace, rng: random.Random) -> Network:
    """Train a fresh network and write it to the output directory."""
    training_data = load_samples(
        *(os.path.join(args.data_dir, name) for name in TRAINING_FILES)
    )

    network = Network.initialize(LAYER_SIZES, rng)
    network.sgd(
        training_data,
        args.epochs,
        args.batch_size,
        args.eta,
        rng,
        callback=lambda result: print(format_epoch(result), flush=True)
    )

    filename = make_filename(network, args.epochs, args.batch_size, args.eta)
    save_network(network, os.path.join(args.output_dir, filename))
    return network


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the command.

    Returns:
        int: Process exit status
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.epochs < 0:
        parser.error('--epochs must be non-negative')
    if args.batch_size < 1:
        parser.error('--batch-size must be positive')
    if args.eta <= 0:
        parser.error('--eta must be positive')

    configure_logging(args.log_level)

    rng = random.Random(args.seed)

    try:
        if args.weights:
            network = load_network(args.weights)
            check_network_fits(network.sizes, args.weights)
        else:
            network = train_new_network(args, rng)
        test_data = load_test_data(args.data_dir)
        result = network.validate(test_data)
    except OSError as e:
        logger.error(f"Could not find or open file '{e.filename}': {e.strerror}")
        return 1
    except MnistNetError as e:
        logger.error(f"Invalid file: {e}")
        return 1

    print(f"Result: {result.correct} / {result.total}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
