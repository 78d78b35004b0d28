"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API for inspecting and running trained networks.

This module provides endpoints for:
- Listing, inspecting and deleting saved weight files
- Classifying a digit with a saved network
- Validating a saved network against the MNIST test set
- Showing test digits a network gets right or wrong

Networks are trained with the ``mnistnet-train`` command; this server
never trains. Every weight file in the weights directory is a network,
its file name being the network id.
"""

import base64
import logging
import os
import random
import sys
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from flask import Flask, jsonify, request
from flask_cors import CORS

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from .arena import MatrixArena
from .errors import InvalidFormat, MnistNetError
from .log_setup import configure_logging
from .matrix import Matrix
from .mnist_loader import IMAGE_SIDE, MnistImage, check_network_fits, load_test_data
from .model_persistence import (
    delete_network,
    get_network_metadata,
    list_saved_networks,
    load_network_by_id
)
from .network import Network, guess_index

logger = logging.getLogger(__name__)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def create_digit_image(pixels: bytes, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        pixels: 784 grey values representing the 28x28 digit image
        predicted: The digit the network predicted (0-9)
        actual: The correct digit (0-9)

    Returns:
        Base64-encoded PNG image string
    """
    image = np.frombuffer(pixels, dtype=np.uint8).reshape(IMAGE_SIDE, IMAGE_SIDE)

    plt.figure(figsize=(3, 3))
    plt.imshow(image, cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def _parse_pixels(data: Any, expected: int) -> Optional[List[float]]:
    """Return the pixel list from a predict request body, or None if invalid."""
    if not isinstance(data, dict):
        return None
    pixels = data.get('pixels')
    if not isinstance(pixels, list) or len(pixels) != expected:
        return None
    for p in pixels:
        if isinstance(p, bool) or not isinstance(p, (int, float)) or not 0 <= p <= 255:
            return None
    return pixels


# ============================================================================
# FLASK APP SETUP
# ============================================================================

def create_app(
    weights_dir: Optional[str] = None,
    test_data: Optional[List[MnistImage]] = None,
    seed: Optional[int] = None
) -> Flask:
    """
    Build the Flask application.

    Args:
        weights_dir: Directory of weight files (default ``$WEIGHTS_DIR`` or
            ``models``)
        test_data: Labeled samples for validation and example endpoints
        seed: Seed for picking random examples

    Returns:
        Flask: The configured app
    """
    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

    weights_dir = weights_dir or os.getenv('WEIGHTS_DIR', 'models')
    rng = random.Random(seed)

    # Networks loaded so far: {network_id: (file mtime, Network)}
    active_networks: Dict[str, Tuple[float, Network]] = {}

    def get_network(network_id: str):
        """
        Return (network, None) or (None, error response).

        A cached network is reloaded when its weight file has been
        replaced or removed since it was loaded.
        """
        path = os.path.join(weights_dir, network_id)
        cached = active_networks.pop(network_id, None)
        if cached is not None:
            mtime, net = cached
            if os.path.isfile(path) and os.path.getmtime(path) == mtime:
                active_networks[network_id] = cached
                return net, None
            logger.info(f"Weight file of network '{network_id}' changed, reloading")

        try:
            net = load_network_by_id(weights_dir, network_id)
        except MnistNetError as e:
            logger.warning(f"Network '{network_id}' is not a valid weight file: {e}")
            return None, (jsonify({'error': f'Invalid weight file: {e}'}), 422)

        if net is None:
            return None, (jsonify({'error': 'Network not found'}), 404)

        active_networks[network_id] = (os.path.getmtime(path), net)
        return net, None

    def get_test_network(network_id: str):
        """Like ``get_network``, but also require test data the network can read."""
        net, error = get_network(network_id)
        if error:
            return None, error
        if not test_data:
            logger.error("Test data not loaded")
            return None, (jsonify({'error': 'Test data not available'}), 503)

        try:
            check_network_fits(net.sizes, network_id)
        except InvalidFormat as e:
            logger.warning(str(e))
            return None, (jsonify({'error': str(e)}), 422)
        return net, None

    # ========================================================================
    # API ENDPOINTS
    # ========================================================================

    @app.route('/api/status', methods=['GET'])
    def get_status():
        """Return server status and statistics."""
        return jsonify({
            'status': 'online',
            'networks': len(list_saved_networks(weights_dir)),
            'loaded_networks': len(active_networks),
            'test_samples': len(test_data) if test_data is not None else 0
        }), 200

    @app.route('/api/networks', methods=['GET'])
    def list_networks():
        """List all saved networks with their metadata."""
        networks = list_saved_networks(weights_dir)
        for net in networks:
            net['loaded'] = net['network_id'] in active_networks
        return jsonify({'networks': networks}), 200

    @app.route('/api/networks/<network_id>', methods=['GET'])
    def get_network_info(network_id: str):
        """Return the metadata of one saved network."""
        try:
            metadata = get_network_metadata(weights_dir, network_id)
        except MnistNetError as e:
            logger.warning(f"Network '{network_id}' is not a valid weight file: {e}")
            return jsonify({'error': f'Invalid weight file: {e}'}), 422

        if metadata is None:
            return jsonify({'error': 'Network not found'}), 404
        return jsonify(metadata), 200

    @app.route('/api/networks/<network_id>', methods=['DELETE'])
    def delete_network_endpoint(network_id: str):
        """Delete a network from both memory and disk."""
        deleted_from_memory = active_networks.pop(network_id, None) is not None
        deleted_from_disk = delete_network(weights_dir, network_id)

        if not deleted_from_disk:
            logger.warning(f"Delete attempted for non-existent network: {network_id}")
            return jsonify({'error': 'Network not found'}), 404

        logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}")
        return jsonify({
            'network_id': network_id,
            'deleted_from_memory': deleted_from_memory,
            'deleted_from_disk': deleted_from_disk
        }), 200

    @app.route('/api/networks/<network_id>/predict', methods=['POST'])
    def predict(network_id: str):
        """
        Classify one image.

        Request body:
            {'pixels': [...]}  # one grey value 0-255 per input neuron

        Returns:
            JSON with predicted_digit and network_output
        """
        net, error = get_network(network_id)
        if error:
            return error

        pixels = _parse_pixels(request.get_json(silent=True), net.sizes[0])
        if pixels is None:
            return jsonify({
                'error': f"Body must be {{'pixels': [...]}} with {net.sizes[0]} "
                         f"values between 0 and 255"
            }), 400

        with MatrixArena('predict') as arena:
            inputs = Matrix.column((p / 255 for p in pixels), arena=arena)
            output = net.feedforward(inputs, arena).clone()

        return jsonify({
            'network_id': network_id,
            'predicted_digit': guess_index(output),
            'network_output': output.data.tolist()
        }), 200

    @app.route('/api/networks/<network_id>/validate', methods=['POST'])
    def validate_network(network_id: str):
        """Score a network on the whole test set."""
        net, error = get_test_network(network_id)
        if error:
            return error

        result = net.validate(test_data)
        return jsonify({
            'network_id': network_id,
            'correct': result.correct,
            'total': result.total,
            'accuracy': result.accuracy
        }), 200

    def find_example(network_id: str, successful: bool, max_attempts: int):
        """Return a random test example the network gets right or wrong."""
        kind = 'successful' if successful else 'unsuccessful'
        net, error = get_test_network(network_id)
        if error:
            return error

        for attempt in range(max_attempts):
            index = rng.randrange(len(test_data))
            sample = test_data[index]

            output = net.feed(sample)
            predicted_digit = guess_index(output)

            if (predicted_digit == sample.label) == successful:
                logger.debug(f"Found {kind} example on attempt {attempt + 1}")
                return jsonify({
                    'network_id': network_id,
                    'example_index': index,
                    'predicted_digit': predicted_digit,
                    'actual_digit': sample.label,
                    'image_data': create_digit_image(
                        sample.pixels, predicted_digit, sample.label
                    ),
                    'output_weights': net.weights[-1].to_rows(),
                    'network_output': output.data.tolist()
                }), 200

        logger.warning(f"No {kind} example found after {max_attempts} attempts")
        return jsonify({
            'error': f'No {kind} example found after {max_attempts} attempts'
        }), 404

    @app.route('/api/networks/<network_id>/successful_example', methods=['GET'])
    def get_successful_example(network_id: str):
        """Find and return a random example the network predicted correctly."""
        return find_example(network_id, successful=True, max_attempts=100)

    @app.route('/api/networks/<network_id>/unsuccessful_example', methods=['GET'])
    def get_unsuccessful_example(network_id: str):
        """Find and return a random example the network predicted incorrectly."""
        return find_example(network_id, successful=False, max_attempts=200)

    return app


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    """Load the test set and serve the API."""
    configure_logging()

    data_dir = os.getenv('MNIST_DATA_DIR', 'data')
    logger.info("Loading MNIST test data...")
    try:
        test_data = load_test_data(data_dir)
    except Exception as e:
        logger.exception(f"Error loading MNIST data: {e}")
        raise

    app = create_app(test_data=test_data)

    is_production = os.getenv('FLASK_ENV') == 'production'
    port = int(os.environ.get('PORT', 8000))
    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        app.run(host='0.0.0.0', port=port, debug=not is_production, use_reloader=False)
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise


if __name__ == '__main__':
    main()
