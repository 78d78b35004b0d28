#!/usr/bin/env python3
"""
Print MNIST digits as block-character drawings.

Handy for checking that the IDX files in the data directory are intact
and that labels line up with images.

Usage:
    python scripts/show_digits.py [COUNT] [--test] [--data-dir DIR]

The script will:
1. Load the training (or, with --test, the test) image/label files
2. Print the first COUNT digits (default 5) with their labels
3. Print how many images of each digit the file contains
"""

import argparse
import os
import sys
from collections import Counter

from mnistnet.errors import MnistNetError
from mnistnet.mnist_loader import TEST_FILES, TRAINING_FILES, load_samples, render_ascii


def build_parser():
    parser = argparse.ArgumentParser(description='Print MNIST digits as block art.')
    parser.add_argument(
        'count', nargs='?', type=int, default=5,
        help='number of digits to draw (default 5)'
    )
    parser.add_argument(
        '--test', action='store_true',
        help='read the t10k test files instead of the training files'
    )
    parser.add_argument(
        '--data-dir', default=os.getenv('MNIST_DATA_DIR', 'data'),
        help='directory holding the MNIST IDX files'
    )
    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)
    count = args.count
    files = TEST_FILES if args.test else TRAINING_FILES

    data_dir = args.data_dir
    images_path, labels_path = (os.path.join(data_dir, name) for name in files)

    print(f"📂 Loading MNIST data from: {data_dir}")
    try:
        samples = load_samples(images_path, labels_path)
    except OSError as e:
        print(f"❌ Error: could not read {e.filename}: {e.strerror}")
        sys.exit(1)
    except MnistNetError as e:
        print(f"❌ Error: {e}")
        sys.exit(1)

    print(f"✅ Loaded {len(samples)} images\n")

    for sample in samples[:count]:
        print(render_ascii(sample))

    print("📊 Label counts:")
    counts = Counter(sample.label for sample in samples)
    for digit in range(10):
        print(f"   {digit}: {counts.get(digit, 0)}")


if __name__ == '__main__':
    main()
