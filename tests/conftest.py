"""
conftest.py
~~~~~~~~~~~

Shared fixtures: small networks, synthetic samples and MNIST-shaped CSV files.
"""

import pytest
import numpy as np

from mnist_mlp.config import AppConfig, TrainingConfig
from mnist_mlp.matrix import Matrix
from mnist_mlp.mnist_loader import one_hot
from mnist_mlp.network import Network, Sample
from mnist_mlp.session import Session

SIDE = 28


def digit_pixels(label: int) -> list:
    """
    Fake 28x28 digit: two bright rows whose position depends on the label.
    """
    pixels = [0] * (SIDE * SIDE)
    for row in (label * 2 + 2, label * 2 + 3):
        for col in range(6, 22):
            pixels[row * SIDE + col] = 255
    return pixels


def write_mnist_csv(path, labels) -> str:
    with open(path, 'w') as f:
        for label in labels:
            f.write(','.join(str(v) for v in [label] + digit_pixels(label)) + '\n')
    return str(path)


def mnist_sample(label: int) -> Sample:
    x = Matrix.from_array(np.array(digit_pixels(label), dtype=np.float64) / 255)
    return Sample(x, one_hot(label))


@pytest.fixture
def temp_model_dir(tmp_path):
    """Create a temporary directory for saved networks."""
    model_dir = tmp_path / "test_models"
    model_dir.mkdir()
    return str(model_dir)


@pytest.fixture
def simple_network():
    """Create a simple 3-layer network for testing."""
    return Network(3, 2, 2, 4)


@pytest.fixture
def training_samples():
    """Ten random 3-input samples with alternating labels."""
    rng = np.random.default_rng(7)
    samples = []
    for i in range(10):
        x = Matrix.from_array(rng.random((3, 1)))
        samples.append(Sample(x, one_hot(i % 2, 2)))
    return samples


@pytest.fixture
def trained_network(simple_network, training_samples):
    """Create a simple network with some training applied."""
    simple_network.SGD(training_samples, epochs=1, mini_batch_size=5, eta=0.1)
    return simple_network


@pytest.fixture
def mnist_csv_files(tmp_path):
    """Training and testing CSV files in the MNIST layout."""
    train = write_mnist_csv(tmp_path / "mnist_train.csv", [i % 10 for i in range(30)])
    test = write_mnist_csv(tmp_path / "mnist_test.csv", [i % 10 for i in range(10)])
    return train, test


@pytest.fixture
def app_config(mnist_csv_files, temp_model_dir):
    train, test = mnist_csv_files
    return AppConfig(
        training=TrainingConfig(learning_rate=3.0, batch_size=5, epochs=2),
        train_csv=train,
        test_csv=test,
        model_dir=temp_model_dir
    )


@pytest.fixture
def session(app_config):
    """A session with both synthetic datasets loaded and no network."""
    return Session.from_config(app_config)
