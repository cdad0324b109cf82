"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

File persistence for neural network models.

A network is stored as a numpy ``.npz`` archive with an explicit, versioned
schema, so a saved file can be read back without this package's classes:

    format_version   int64 scalar, currently 1
    topology         int64 [num_inputs, num_classes, num_layers, nodes_in_hl]
    metadata         JSON string (architecture, trained, accuracy, saved_at)
    weights_<i>      float64 array for layer i + 1, i = 0 .. num_layers - 1
    biases_<i>       float64 column for layer i + 1

Archives are read with ``allow_pickle=False``. Any mismatch with the schema
raises ``PersistenceError`` and no network is returned.
"""

import os
import json
import logging
import tempfile
import zipfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np

from mnist_mlp.config import TrainingConfig
from mnist_mlp.errors import PersistenceError, ShapeMismatch
from mnist_mlp.matrix import Matrix
from mnist_mlp.network import Network, NetworkParameters

# Configure module logger
logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
FILE_EXTENSION = '.npz'


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy values."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        return super().default(obj)


def save_network(
    network: Network,
    path: str,
    accuracy: Optional[float] = None
) -> str:
    """
    Save a neural network to a file.

    The archive is written to a temporary file in the same directory and
    then renamed, so an existing file is never left half-written.

    Args:
        network: The neural network to save
        path: Destination file
        accuracy: Accuracy to record in the metadata (0.0 to 1.0)

    Returns:
        str: The path that was written

    Raises:
        ValueError: If accuracy is out of valid range
        PersistenceError: If the file cannot be written

    Example:
        >>> net = Network(784, 10, 2, 30)
        >>> save_network(net, "models/my_network.npz")
        'models/my_network.npz'
    """
    if accuracy is not None and not 0.0 <= accuracy <= 1.0:
        raise ValueError(
            f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
        )

    params = network.parameters
    metadata = {
        'architecture': params.sizes,
        'trained': network.trained,
        'accuracy': accuracy,
        'saved_at': datetime.now(timezone.utc).isoformat()
    }

    arrays = {
        'format_version': np.array(FORMAT_VERSION, dtype=np.int64),
        'topology': np.array(
            [params.num_inputs, params.num_classes,
             params.num_layers, params.nodes_in_hl],
            dtype=np.int64
        ),
        'metadata': np.array(json.dumps(metadata, cls=NetworkEncoder))
    }
    for i, (w, b) in enumerate(zip(params.weights, params.biases)):
        arrays[f'weights_{i}'] = w.to_array()
        arrays[f'biases_{i}'] = b.to_array()

    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as f:
                np.savez(f, **arrays)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
    except OSError as e:
        raise PersistenceError(f"Could not save network to '{path}': {e}") from e

    logger.info(
        f"Saved network to '{path}' with architecture "
        f"{params.sizes}, trained={network.trained}, accuracy={accuracy}"
    )
    return path


def _open_archive(path: str):
    try:
        archive = np.load(path, allow_pickle=False)
    except FileNotFoundError as e:
        raise PersistenceError(f"Network file '{path}' not found") from e
    except (OSError, ValueError, EOFError, zipfile.BadZipFile) as e:
        raise PersistenceError(f"Could not read network file '{path}': {e}") from e

    if not hasattr(archive, 'files'):
        raise PersistenceError(f"'{path}' is not a network archive")
    return archive


def _read_header(archive, path: str) -> Dict[str, Any]:
    """Check the version and topology entries and decode the metadata."""
    for key in ('format_version', 'topology', 'metadata'):
        if key not in archive.files:
            raise PersistenceError(f"'{path}' is missing '{key}'")

    version = archive['format_version']
    if version.shape != () or int(version) != FORMAT_VERSION:
        raise PersistenceError(
            f"'{path}' has unsupported format version {version.tolist()}, "
            f"expected {FORMAT_VERSION}"
        )

    topology = archive['topology']
    if topology.shape != (4,) or not np.issubdtype(topology.dtype, np.integer):
        raise PersistenceError(
            f"'{path}' has a malformed topology entry {topology.tolist()}"
        )

    try:
        metadata = json.loads(str(archive['metadata']))
    except json.JSONDecodeError as e:
        raise PersistenceError(f"'{path}' has unreadable metadata: {e}") from e
    if not isinstance(metadata, dict):
        raise PersistenceError(f"'{path}' metadata is not a JSON object")

    num_inputs, num_classes, num_layers, nodes_in_hl = (int(v) for v in topology)
    metadata.update({
        'num_inputs': num_inputs,
        'num_classes': num_classes,
        'num_layers': num_layers,
        'nodes_in_hl': nodes_in_hl
    })
    return metadata


def load_network(path: str, config: Optional[TrainingConfig] = None) -> Network:
    """
    Load a neural network from a file.

    Args:
        path: File written by ``save_network``
        config: Training settings for the loaded network; its seed also
            seeds the generator used if the network is trained further

    Returns:
        Network: A trained network holding the saved parameters

    Raises:
        PersistenceError: If the file is missing, unreadable or does not
            match the schema

    Example:
        >>> net = load_network("models/my_network.npz")
        >>> print(f"Loaded network with {len(net.sizes)} layers")
    """
    archive = _open_archive(path)
    with archive:
        try:
            header, weights, biases = _read_layers(archive, path)
        except PersistenceError:
            raise
        except (ValueError, KeyError, OSError, zipfile.BadZipFile) as e:
            raise PersistenceError(f"Could not read network file '{path}': {e}") from e

    try:
        parameters = NetworkParameters(
            header['num_inputs'],
            header['num_classes'],
            header['num_layers'],
            header['nodes_in_hl'],
            weights,
            biases
        )
    except (ShapeMismatch, ValueError) as e:
        raise PersistenceError(f"'{path}' does not match its topology: {e}") from e

    logger.info(f"Loaded network from '{path}' with architecture {parameters.sizes}")
    return Network.from_parameters(parameters, config=config)


def _read_layers(archive, path: str):
    """Read the header and every weight/bias array from an open archive."""
    header = _read_header(archive, path)
    num_layers = header['num_layers']
    if num_layers < 1:
        raise PersistenceError(f"'{path}' declares {num_layers} layers")

    expected = {'format_version', 'topology', 'metadata'}
    weights = []
    biases = []
    for i in range(num_layers):
        for key in (f'weights_{i}', f'biases_{i}'):
            if key not in archive.files:
                raise PersistenceError(f"'{path}' is missing '{key}'")
            expected.add(key)

        w = archive[f'weights_{i}']
        b = archive[f'biases_{i}']
        if w.ndim != 2 or b.ndim != 2 or w.size == 0 or b.size == 0:
            raise PersistenceError(f"'{path}' layer {i} is not a pair of 2-D arrays")
        if not (np.issubdtype(w.dtype, np.floating) and np.issubdtype(b.dtype, np.floating)):
            raise PersistenceError(f"'{path}' layer {i} is not floating point")
        weights.append(Matrix.from_array(w))
        biases.append(Matrix.from_array(b))

    extra = set(archive.files) - expected
    if extra:
        raise PersistenceError(f"'{path}' has unexpected entries {sorted(extra)}")

    return header, weights, biases


def get_network_metadata(path: str) -> Dict[str, Any]:
    """
    Get network metadata without loading the weights.

    Returns:
        dict with architecture, trained, accuracy, saved_at and the
        topology scalars

    Raises:
        PersistenceError: If the file is unreadable or not a network archive
    """
    archive = _open_archive(path)
    with archive:
        try:
            return _read_header(archive, path)
        except PersistenceError:
            raise
        except (ValueError, KeyError, OSError, zipfile.BadZipFile) as e:
            raise PersistenceError(f"Could not read network file '{path}': {e}") from e


def list_saved_networks(model_dir: str = 'models') -> List[Dict[str, Any]]:
    """
    List every saved network in a directory with its metadata.

    Files that cannot be read are logged and left out.

    Args:
        model_dir: Directory to scan for ``.npz`` files

    Returns:
        list: Metadata dictionaries with a ``name`` and ``path`` key, sorted
        by name

    Example:
        >>> for net in list_saved_networks():
        ...     print(f"{net['name']}: {net['architecture']}")
    """
    if not os.path.isdir(model_dir):
        return []

    networks = []
    for filename in sorted(os.listdir(model_dir)):
        if not filename.endswith(FILE_EXTENSION):
            continue
        path = os.path.join(model_dir, filename)
        try:
            metadata = get_network_metadata(path)
        except PersistenceError as e:
            logger.warning(f"Skipping unreadable network file: {e}")
            continue
        metadata['name'] = filename[:-len(FILE_EXTENSION)]
        metadata['path'] = path
        networks.append(metadata)

    logger.debug(f"Listed {len(networks)} networks in '{model_dir}'")
    return networks
