"""
session.py
~~~~~~~~~~

The state a command surface works on: configuration, the loaded datasets
and the current network. Both the interactive menu and the API server
receive a ``Session`` explicitly instead of sharing module globals.
"""

import logging
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional

from mnist_mlp import matrix_algebra as ma
from mnist_mlp import mnist_loader
from mnist_mlp.config import AppConfig
from mnist_mlp.errors import NoNetworkError
from mnist_mlp.model_persistence import load_network, save_network
from mnist_mlp.network import AccuracyReport, Network, Sample

logger = logging.getLogger(__name__)

DATASETS = ('training', 'testing')


class SampleView(NamedTuple):
    """One dataset sample with the network's verdict on it."""

    index: int
    sample: Sample
    actual: int
    predicted: int

    @property
    def correct(self) -> bool:
        return self.actual == self.predicted


class Session:
    """
    Current network plus the training and testing sets.

    Example:
        >>> session = Session.from_config(AppConfig.from_env())
        >>> session.create_network(num_layers=2, nodes_in_hl=30)
        >>> session.accuracy('testing').accuracy
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        training_data: Optional[List[Sample]] = None,
        testing_data: Optional[List[Sample]] = None
    ):
        self.config = config if config is not None else AppConfig()
        self.training_data: List[Sample] = training_data if training_data is not None else []
        self.testing_data: List[Sample] = testing_data if testing_data is not None else []
        self.network: Optional[Network] = None

    @classmethod
    def from_config(cls, config: AppConfig, skip_malformed: bool = False) -> 'Session':
        """Create a session and load both datasets from the configured CSV files."""
        training_data = mnist_loader.load_csv(
            config.train_csv, config.num_inputs, config.num_classes,
            skip_malformed=skip_malformed
        )
        testing_data = mnist_loader.load_csv(
            config.test_csv, config.num_inputs, config.num_classes,
            skip_malformed=skip_malformed
        )
        logger.info(
            f"Data loaded: {len(training_data)} training, {len(testing_data)} testing"
        )
        return cls(config, training_data, testing_data)

    @property
    def has_network(self) -> bool:
        return self.network is not None

    @property
    def trained(self) -> bool:
        return self.network is not None and self.network.trained

    def require_network(self) -> Network:
        if self.network is None:
            raise NoNetworkError("No network has been created or loaded yet")
        return self.network

    def dataset(self, name: str) -> List[Sample]:
        """Look up ``'training'`` or ``'testing'``."""
        if name == 'training':
            return self.training_data
        if name == 'testing':
            return self.testing_data
        raise ValueError(f"Unknown dataset {name!r}, expected one of {DATASETS}")

    def new_network(self, num_layers: int, nodes_in_hl: int) -> Network:
        """Build a random network sized for the configured data (not trained)."""
        return Network(
            self.config.num_inputs,
            self.config.num_classes,
            num_layers,
            nodes_in_hl,
            config=self.config.training
        )

    def create_network(
        self,
        num_layers: int,
        nodes_in_hl: int,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None
    ) -> Network:
        """
        Create a new network and train it on the training set.

        The network becomes the current one once it exists, so an
        interrupted run still leaves the partially trained network in place.
        """
        net = self.new_network(num_layers, nodes_in_hl)
        self.network = net
        logger.info(f"Created network with architecture {net.sizes}")
        net.train(self.training_data, self.testing_data, callback=callback)
        return net

    def load(self, path: str) -> Network:
        """Replace the current network with one read from ``path``."""
        net = load_network(path, config=self.config.training)
        self.network = net
        return net

    def save(self, path: str, accuracy: Optional[float] = None) -> str:
        return save_network(self.require_network(), path, accuracy=accuracy)

    def accuracy(self, dataset_name: str) -> AccuracyReport:
        return self.require_network().evaluate(self.dataset(dataset_name))

    def describe(self) -> Dict[str, Any]:
        return self.require_network().describe()

    def inspect(self, dataset_name: str, index: int) -> SampleView:
        """Classify the sample at ``index`` of a dataset."""
        net = self.require_network()
        data = self.dataset(dataset_name)
        if not 0 <= index < len(data):
            raise IndexError(
                f"Sample index {index} outside {dataset_name} set of {len(data)}"
            )
        sample = data[index]
        return SampleView(
            index, sample, ma.argmax_flat_index(sample.y), net.classify(sample.x)
        )

    def samples(
        self,
        dataset_name: str,
        only_missed: bool = False,
        start: int = 0
    ) -> Iterator[SampleView]:
        """
        Walk through a dataset in order, optionally only misclassified samples.
        """
        self.require_network()
        data = self.dataset(dataset_name)
        for index in range(start, len(data)):
            view = self.inspect(dataset_name, index)
            if only_missed and view.correct:
                continue
            yield view
