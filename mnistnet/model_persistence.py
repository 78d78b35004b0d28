"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Binary weight-file persistence for neural network models.

File layout (all integers little-endian u32, floats raw IEEE-754
binary32 bit patterns)::

    magic, layer_count, layer_sizes[layer_count]
    for every layer transition: rows, cols, weights[rows * cols]
    for every layer transition: rows, cols, biases[rows * cols]

A directory of such files is the model store used by the API server:
the file name is the network id.
"""

import io
import logging
import os
import struct
import sys
import time
from array import array
from typing import Any, BinaryIO, Dict, List, Optional

from .errors import InvalidFormat, MnistNetError, UnexpectedEndOfData
from .matrix import Matrix
from .network import Network

# Configure module logger
logger = logging.getLogger(__name__)

MAGIC = 0xFAFA1331

_U32 = struct.Struct('<I')
_FLOAT_TYPECODE = 'f'
_READ_CHUNK = 1 << 20


# ============================================================================
# ENCODING
# ============================================================================

def _write_u32(stream: BinaryIO, value: int) -> None:
    stream.write(_U32.pack(value))


def _write_matrix(stream: BinaryIO, matrix: Matrix) -> None:
    _write_u32(stream, matrix.rows)
    _write_u32(stream, matrix.cols)

    values = array(_FLOAT_TYPECODE, matrix.data)
    if sys.byteorder == 'big':
        values.byteswap()
    stream.write(values.tobytes())


def serialize_network(network: Network, stream: BinaryIO) -> None:
    """
    Write ``network`` to a binary stream.

    Parameters are stored as 32-bit floats regardless of the network's
    element type.

    Args:
        network: Network to write
        stream: Writable binary stream
    """
    _write_u32(stream, MAGIC)
    _write_u32(stream, len(network.sizes))
    for size in network.sizes:
        _write_u32(stream, size)
    for w in network.weights:
        _write_matrix(stream, w)
    for b in network.biases:
        _write_matrix(stream, b)


def network_to_bytes(network: Network) -> bytes:
    """Serialize ``network`` into a bytes blob."""
    buffer = io.BytesIO()
    serialize_network(network, buffer)
    return buffer.getvalue()


# ============================================================================
# DECODING
# ============================================================================

def _read_exact(stream: BinaryIO, n_bytes: int, what: str) -> bytes:
    """Read exactly ``n_bytes`` or raise ``UnexpectedEndOfData``."""
    chunks = bytearray()
    while len(chunks) < n_bytes:
        chunk = stream.read(min(_READ_CHUNK, n_bytes - len(chunks)))
        if not chunk:
            raise UnexpectedEndOfData(
                f"Data ended while reading {what}: got {len(chunks)} of "
                f"{n_bytes} bytes"
            )
        chunks.extend(chunk)
    return bytes(chunks)


def _read_u32(stream: BinaryIO, what: str) -> int:
    return _U32.unpack(_read_exact(stream, _U32.size, what))[0]


def _read_header(stream: BinaryIO) -> List[int]:
    magic = _read_u32(stream, 'magic number')
    if magic != MAGIC:
        raise InvalidFormat(
            f"Bad magic number 0x{magic:08x}, expected 0x{MAGIC:08x}"
        )

    layer_count = _read_u32(stream, 'layer count')
    if layer_count < 2:
        raise InvalidFormat(f"A network needs at least 2 layers, got {layer_count}")

    sizes = [_read_u32(stream, f'size of layer {i}') for i in range(layer_count)]
    if any(size == 0 for size in sizes):
        raise InvalidFormat(f"Layer sizes must be positive, got {sizes}")
    return sizes


def _read_matrix(stream: BinaryIO, rows: int, cols: int, what: str) -> Matrix:
    """Read one matrix record, checking it has the expected shape."""
    found_rows = _read_u32(stream, f'{what} rows')
    found_cols = _read_u32(stream, f'{what} cols')
    if (found_rows, found_cols) != (rows, cols):
        raise InvalidFormat(
            f"{what} is {found_rows}x{found_cols}, expected {rows}x{cols}"
        )

    values = array(_FLOAT_TYPECODE)
    values.frombytes(_read_exact(stream, rows * cols * values.itemsize, what))
    if sys.byteorder == 'big':
        values.byteswap()
    return Matrix.from_buffer(rows, cols, values)


def deserialize_network(stream: BinaryIO) -> Network:
    """
    Read a network written by ``serialize_network``.

    The network is only built once the whole record has been read and
    checked.

    Raises:
        InvalidFormat: If the magic number or any shape is wrong
        UnexpectedEndOfData: If the stream ends early
    """
    sizes = _read_header(stream)
    shapes = list(zip(sizes[1:], sizes[:-1]))

    weights = [
        _read_matrix(stream, rows, cols, f'weights[{i}]')
        for i, (rows, cols) in enumerate(shapes)
    ]
    biases = [
        _read_matrix(stream, rows, 1, f'biases[{i}]')
        for i, (rows, _) in enumerate(shapes)
    ]
    return Network(sizes, weights, biases)


def network_from_bytes(blob: bytes) -> Network:
    """Deserialize a network from a bytes blob."""
    return deserialize_network(io.BytesIO(blob))


# ============================================================================
# FILES
# ============================================================================

def make_filename(
    network: Network,
    epochs: int,
    batch_size: int,
    eta: float,
    timestamp: Optional[int] = None
) -> str:
    """
    Build a weight-file name that records how the network was trained.

    Example:
        >>> net.sizes
        [784, 16, 10]
        >>> make_filename(net, 20, 10, 3.0, timestamp=1700000000)
        'nn-e20-b10-h3_0-784-16-10-T1700000000'
    """
    if timestamp is None:
        timestamp = int(time.time())
    tenths = int(10 * eta)
    layers = ''.join(f"{size}-" for size in network.sizes)
    return (
        f"nn-e{epochs}-b{batch_size}-h{tenths // 10}_{tenths % 10}-"
        f"{layers}T{timestamp}"
    )


def save_network(network: Network, path: str) -> str:
    """
    Write ``network`` to ``path``, creating the parent directory if needed.

    Returns:
        str: The path written
    """
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)

    with open(path, 'wb') as f:
        serialize_network(network, f)

    logger.info(f"Saved network with architecture {network.sizes} to '{path}'")
    return path


def load_network(path: str) -> Network:
    """
    Load a network from a weight file.

    Raises:
        OSError: If the file cannot be opened
        InvalidFormat, UnexpectedEndOfData: If the file is not a valid
            weight file; the message names the path
    """
    with open(path, 'rb') as f:
        try:
            network = deserialize_network(f)
        except MnistNetError as e:
            raise type(e)(f"{path}: {e}") from e

    logger.info(f"Loaded network with architecture {network.sizes} from '{path}'")
    return network


def read_header(path: str) -> List[int]:
    """Return the layer sizes stored in a weight file without loading it."""
    with open(path, 'rb') as f:
        try:
            return _read_header(f)
        except MnistNetError as e:
            raise type(e)(f"{path}: {e}") from e


def _metadata(directory: str, network_id: str) -> Dict[str, Any]:
    path = os.path.join(directory, network_id)
    architecture = read_header(path)
    stat = os.stat(path)
    return {
        'network_id': network_id,
        'architecture': architecture,
        'weights_shape': [
            [architecture[i + 1], architecture[i]]
            for i in range(len(architecture) - 1)
        ],
        'biases_shape': [
            [architecture[i + 1], 1]
            for i in range(len(architecture) - 1)
        ],
        'size_bytes': stat.st_size,
        'modified_at': stat.st_mtime
    }


def list_saved_networks(directory: str) -> List[Dict[str, Any]]:
    """
    List every weight file in ``directory`` with its metadata.

    Files that are not weight files are skipped with a warning.

    Returns:
        list: Metadata dicts, most recently modified first
    """
    if not os.path.isdir(directory):
        return []

    networks = []
    for name in sorted(os.listdir(directory)):
        if not os.path.isfile(os.path.join(directory, name)):
            continue
        try:
            networks.append(_metadata(directory, name))
        except MnistNetError as e:
            logger.warning(f"Skipping '{name}': {e}")

    networks.sort(key=lambda net: net['modified_at'], reverse=True)
    logger.debug(f"Listed {len(networks)} networks in '{directory}'")
    return networks


def _resolve(directory: str, network_id: str) -> Optional[str]:
    """Path of ``network_id`` inside ``directory``, or None if invalid."""
    if not network_id or os.path.basename(network_id) != network_id:
        return None
    if network_id in (os.curdir, os.pardir):
        return None
    path = os.path.join(directory, network_id)
    return path if os.path.isfile(path) else None


def get_network_metadata(
    directory: str,
    network_id: str
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for one weight file without loading its parameters.

    Returns:
        dict: Metadata, or None if there is no such file

    Raises:
        InvalidFormat, UnexpectedEndOfData: If the file is not a weight file
    """
    if _resolve(directory, network_id) is None:
        logger.warning(f"Metadata for network '{network_id}' not found")
        return None
    return _metadata(directory, network_id)


def load_network_by_id(directory: str, network_id: str) -> Optional[Network]:
    """Load ``network_id`` from ``directory``; None if there is no such file."""
    path = _resolve(directory, network_id)
    if path is None:
        logger.warning(f"Network '{network_id}' not found")
        return None
    return load_network(path)


def delete_network(directory: str, network_id: str) -> bool:
    """
    Delete a weight file.

    Returns:
        bool: True if deleted, False if not found
    """
    path = _resolve(directory, network_id)
    if path is None:
        logger.warning(f"Could not delete network '{network_id}': not found")
        return False

    os.remove(path)
    logger.info(f"Deleted network '{network_id}'")
    return True
