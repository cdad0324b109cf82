"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for file-based model persistence.
"""

import os
import json

import pytest
import numpy as np

from mnist_mlp.config import TrainingConfig
from mnist_mlp.errors import PersistenceError
from mnist_mlp.matrix import Matrix
from mnist_mlp.model_persistence import (
    FORMAT_VERSION,
    get_network_metadata,
    list_saved_networks,
    load_network,
    save_network,
)
from mnist_mlp.network import Network, NetworkState


def write_archive(path, **overrides):
    """Write a 2-2 single-layer archive, replacing or removing entries."""
    arrays = {
        'format_version': np.array(FORMAT_VERSION, dtype=np.int64),
        'topology': np.array([2, 2, 1, 0], dtype=np.int64),
        'metadata': np.array(json.dumps({'architecture': [2, 2]})),
        'weights_0': np.zeros((2, 2)),
        'biases_0': np.zeros((2, 1)),
    }
    for key, value in overrides.items():
        if value is None:
            arrays.pop(key)
        else:
            arrays[key] = value
    with open(path, 'wb') as f:
        np.savez(f, **arrays)
    return str(path)


@pytest.mark.unit
class TestModelPersistence:
    """Test basic model persistence operations."""

    def test_save_network_creates_file(self, simple_network, temp_model_dir):
        """Test that saving a network creates the file."""
        path = os.path.join(temp_model_dir, "test_network_1.npz")

        result = save_network(simple_network, path)

        assert result == path
        assert os.path.exists(path)
        assert not [f for f in os.listdir(temp_model_dir) if f.endswith('.tmp')]

    def test_save_creates_missing_directory(self, simple_network, tmp_path):
        path = str(tmp_path / "nested" / "dir" / "net.npz")
        save_network(simple_network, path)
        assert os.path.exists(path)

    def test_save_network_with_metadata(self, trained_network, temp_model_dir):
        """Test that network metadata is saved correctly."""
        path = os.path.join(temp_model_dir, "trained_network_1.npz")
        save_network(trained_network, path, accuracy=0.85)

        metadata = get_network_metadata(path)
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85
        assert metadata['architecture'] == [3, 4, 2]
        assert metadata['num_inputs'] == 3
        assert metadata['num_classes'] == 2
        assert metadata['num_layers'] == 2
        assert metadata['nodes_in_hl'] == 4
        assert 'saved_at' in metadata

    def test_save_rejects_invalid_accuracy(self, simple_network, temp_model_dir):
        with pytest.raises(ValueError) as exc_info:
            save_network(simple_network, os.path.join(temp_model_dir, "n.npz"), accuracy=1.5)
        assert "between 0.0 and 1.0" in str(exc_info.value)

    def test_load_network_returns_network(self, simple_network, temp_model_dir):
        """Test that loading a network returns a valid Network object."""
        path = os.path.join(temp_model_dir, "test_network_2.npz")

        save_network(simple_network, path)
        loaded_network = load_network(path)

        assert isinstance(loaded_network, Network)
        assert loaded_network.sizes == simple_network.sizes
        assert loaded_network.nodes_in_hl == simple_network.nodes_in_hl
        assert loaded_network.state is NetworkState.TRAINED

    def test_load_nonexistent_network(self, temp_model_dir):
        """Test that loading a non-existent network raises PersistenceError."""
        with pytest.raises(PersistenceError) as exc_info:
            load_network(os.path.join(temp_model_dir, "nonexistent.npz"))
        assert "not found" in str(exc_info.value)

    def test_load_preserves_weights(self, trained_network, temp_model_dir):
        """Test that saved weights are preserved exactly after loading."""
        path = os.path.join(temp_model_dir, "test_network_3.npz")

        save_network(trained_network, path)
        loaded_network = load_network(path)

        assert loaded_network.weights == trained_network.weights
        assert loaded_network.biases == trained_network.biases

    def test_round_trip_prediction_identical(self, trained_network, temp_model_dir):
        path = os.path.join(temp_model_dir, "probe.npz")
        probe = Matrix.from_array(np.array([0.25, 0.5, 0.75]))

        save_network(trained_network, path)
        loaded_network = load_network(path)

        assert np.array_equal(
            loaded_network.predict(probe).to_array(),
            trained_network.predict(probe).to_array()
        )

    def test_single_layer_round_trip(self, temp_model_dir):
        net = Network(2, 2, 1, 0)
        path = os.path.join(temp_model_dir, "single.npz")
        save_network(net, path)
        assert load_network(path).weights == net.weights

    def test_single_layer_without_hidden_size(self, temp_model_dir):
        net = Network(2, 2, 1, None)
        path = os.path.join(temp_model_dir, "no_hidden.npz")

        save_network(net, path)
        loaded = load_network(path)

        assert loaded.sizes == [2, 2]
        assert loaded.nodes_in_hl == 0
        assert get_network_metadata(path)['nodes_in_hl'] == 0
        assert loaded.describe()['nodes_in_hl'] is None

    def test_load_uses_given_config(self, simple_network, temp_model_dir):
        path = os.path.join(temp_model_dir, "configured.npz")
        save_network(simple_network, path)
        config = TrainingConfig(learning_rate=0.5, seed=42)

        loaded = load_network(path, config=config)

        assert loaded.config is config
        assert loaded.rng.random() == np.random.default_rng(42).random()

    def test_update_network(self, simple_network, trained_network, temp_model_dir):
        """Test that saving to the same path replaces the file."""
        path = os.path.join(temp_model_dir, "update_test.npz")

        save_network(Network(3, 2, 3, 5), path)
        save_network(trained_network, path, accuracy=0.88)

        assert load_network(path).sizes == [3, 4, 2]
        assert get_network_metadata(path)['accuracy'] == 0.88
        assert len(list_saved_networks(temp_model_dir)) == 1

    def test_list_saved_networks_empty(self, temp_model_dir):
        """Test listing networks when the directory is empty."""
        assert list_saved_networks(temp_model_dir) == []

    def test_list_saved_networks_missing_directory(self, tmp_path):
        assert list_saved_networks(str(tmp_path / "nowhere")) == []

    def test_list_saved_networks(self, simple_network, temp_model_dir):
        """Test that listing networks returns correct metadata."""
        save_network(simple_network, os.path.join(temp_model_dir, "net1.npz"), accuracy=0.9)
        save_network(simple_network, os.path.join(temp_model_dir, "net2.npz"))
        with open(os.path.join(temp_model_dir, "notes.txt"), 'w') as f:
            f.write("not a network")

        networks = list_saved_networks(temp_model_dir)

        assert [net['name'] for net in networks] == ["net1", "net2"]
        assert networks[0]['accuracy'] == 0.9
        assert networks[0]['architecture'] == [3, 4, 2]
        assert networks[1]['path'] == os.path.join(temp_model_dir, "net2.npz")

    def test_list_skips_unreadable_files(self, simple_network, temp_model_dir):
        save_network(simple_network, os.path.join(temp_model_dir, "good.npz"))
        with open(os.path.join(temp_model_dir, "broken.npz"), 'wb') as f:
            f.write(b"garbage")

        networks = list_saved_networks(temp_model_dir)
        assert [net['name'] for net in networks] == ["good"]


@pytest.mark.unit
class TestSchemaValidation:
    """Files that do not match the schema never produce a network."""

    def test_valid_archive_loads(self, tmp_path):
        net = load_network(write_archive(tmp_path / "ok.npz"))
        assert net.sizes == [2, 2]

    def test_garbage_file(self, tmp_path):
        path = tmp_path / "garbage.npz"
        path.write_bytes(b"this is not a network")
        with pytest.raises(PersistenceError):
            load_network(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.npz"
        path.write_bytes(b"")
        with pytest.raises(PersistenceError):
            load_network(str(path))

    def test_plain_npy_file(self, tmp_path):
        path = tmp_path / "array.npy"
        np.save(str(path), np.zeros(3))
        with pytest.raises(PersistenceError):
            load_network(str(path))

    @pytest.mark.parametrize("key", ['format_version', 'topology', 'metadata', 'weights_0', 'biases_0'])
    def test_missing_entry(self, tmp_path, key):
        path = write_archive(tmp_path / "missing.npz", **{key: None})
        with pytest.raises(PersistenceError) as exc_info:
            load_network(path)
        assert key in str(exc_info.value)

    def test_wrong_version(self, tmp_path):
        path = write_archive(tmp_path / "v2.npz", format_version=np.array(2, dtype=np.int64))
        with pytest.raises(PersistenceError) as exc_info:
            load_network(path)
        assert "version" in str(exc_info.value)

    def test_wrong_weight_shape(self, tmp_path):
        path = write_archive(tmp_path / "shape.npz", weights_0=np.zeros((3, 2)))
        with pytest.raises(PersistenceError) as exc_info:
            load_network(path)
        assert "topology" in str(exc_info.value)

    def test_topology_declares_more_layers(self, tmp_path):
        path = write_archive(
            tmp_path / "layers.npz", topology=np.array([2, 2, 2, 3], dtype=np.int64)
        )
        with pytest.raises(PersistenceError):
            load_network(path)

    def test_unexpected_entry(self, tmp_path):
        path = write_archive(tmp_path / "extra.npz", weights_1=np.zeros((2, 2)))
        with pytest.raises(PersistenceError):
            load_network(path)

    def test_integer_weights_rejected(self, tmp_path):
        path = write_archive(tmp_path / "ints.npz", weights_0=np.zeros((2, 2), dtype=np.int64))
        with pytest.raises(PersistenceError):
            load_network(path)

    def test_bad_metadata(self, tmp_path):
        path = write_archive(tmp_path / "meta.npz", metadata=np.array("{not json"))
        with pytest.raises(PersistenceError):
            get_network_metadata(path)

    def test_persistence_error_is_an_os_error(self, tmp_path):
        with pytest.raises(OSError):
            load_network(str(tmp_path / "missing.npz"))


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for model persistence."""

    def test_save_load_train_cycle(self, simple_network, training_samples, temp_model_dir):
        """Test complete cycle: save, load, train, save again."""
        path = os.path.join(temp_model_dir, "cycle_test.npz")

        save_network(simple_network, path)
        loaded_network = load_network(path)

        loaded_network.SGD(training_samples, epochs=1, mini_batch_size=5, eta=0.1)
        save_network(loaded_network, path, accuracy=0.85)

        final_network = load_network(path)
        metadata = get_network_metadata(path)

        assert final_network.weights == loaded_network.weights
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85

    def test_multiple_networks_coexist(self, temp_model_dir):
        """Test that multiple networks can coexist in one directory."""
        networks_to_create = [
            ((784, 10, 2, 30), "mnist_network"),
            ((3, 2, 2, 4), "simple_network"),
            ((10, 10, 3, 20), "deep_network")
        ]

        for topology, name in networks_to_create:
            save_network(Network(*topology), os.path.join(temp_model_dir, f"{name}.npz"))

        assert len(list_saved_networks(temp_model_dir)) == len(networks_to_create)

        for topology, name in networks_to_create:
            loaded = load_network(os.path.join(temp_model_dir, f"{name}.npz"))
            assert (loaded.num_inputs, loaded.num_classes,
                    loaded.num_layers, loaded.nodes_in_hl) == topology
