"""
network.py
~~~~~~~~~~

A multi-layer feed-forward neural network using the sigmoid activation
function, trained with mini-batch stochastic gradient descent.

Gradients are computed with backpropagation. The error in the output layer
is the quadratic cost derivative composed with the sigmoid derivative:

    delta_L = (a_L - y) * a_L * (1 - a_L)

All arithmetic goes through ``matrix_algebra``, so a malformed topology or
a malformed sample surfaces as ``ShapeMismatch`` instead of a silent
broadcast.
"""

import time
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from mnist_mlp import matrix_algebra as ma
from mnist_mlp.config import TrainingConfig
from mnist_mlp.errors import ShapeMismatch, TrainingCancelled
from mnist_mlp.matrix import Matrix

logger = logging.getLogger(__name__)


class Sample(NamedTuple):
    """An input column ``x`` and its one-hot label column ``y``."""

    x: Matrix
    y: Matrix


class NetworkState(Enum):
    UNTRAINED = 'untrained'
    TRAINING = 'training'
    TRAINED = 'trained'


def sigmoid(z: Matrix) -> Matrix:
    """Apply 1 / (1 + e^-z) to every element of ``z``."""
    with np.errstate(over='ignore'):
        return Matrix._wrap(1.0 / (1.0 + np.exp(-z._data)))


def sigmoid_prime(activation: Matrix) -> Matrix:
    """Sigmoid derivative written in terms of the activation: a * (1 - a)."""
    return ma.pairwise_multiply(
        activation,
        ma.subtract(ma.ones(activation.height, activation.width), activation)
    )


def layer_sizes(
    num_inputs: int,
    num_classes: int,
    num_layers: int,
    nodes_in_hl: int
) -> List[int]:
    """
    Size of every layer, input layer included.

    Args:
        num_inputs: Number of input neurons
        num_classes: Number of output neurons
        num_layers: Number of layers, NOT including the input layer
        nodes_in_hl: Size of each hidden layer (unused when num_layers is 1)

    Raises:
        ValueError: If the topology cannot describe a network
    """
    if num_inputs < 1 or num_classes < 1:
        raise ValueError(
            f"num_inputs and num_classes must be positive, "
            f"got {num_inputs} and {num_classes}"
        )
    if num_layers < 1:
        raise ValueError(f"num_layers must be at least 1, got {num_layers}")
    if num_layers > 1 and (nodes_in_hl is None or nodes_in_hl < 1):
        raise ValueError(
            f"nodes_in_hl must be positive when there are hidden layers, "
            f"got {nodes_in_hl}"
        )
    return [num_inputs] + [nodes_in_hl] * (num_layers - 1) + [num_classes]


def mini_batches(data: Sequence[Sample], batch_size: int) -> List[Sequence[Sample]]:
    """
    Split data into consecutive mini-batches of ``batch_size``.

    The last batch is smaller when ``len(data)`` is not a multiple of
    ``batch_size``.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
    return [data[k:k + batch_size] for k in range(0, len(data), batch_size)]


class NetworkParameters:
    """
    Weights and biases of every non-input layer.

    ``weights[i]`` connects layer ``i`` to layer ``i + 1`` and has shape
    (size of layer i+1, size of layer i); ``biases[i]`` is a column of the
    size of layer ``i + 1``.
    """

    def __init__(
        self,
        num_inputs: int,
        num_classes: int,
        num_layers: int,
        nodes_in_hl: int,
        weights: List[Matrix],
        biases: List[Matrix]
    ):
        self.num_inputs = num_inputs
        self.num_classes = num_classes
        self.num_layers = num_layers
        # Without hidden layers the hidden size is unused and stored as 0
        self.nodes_in_hl = nodes_in_hl if num_layers > 1 else 0
        self.weights = weights
        self.biases = biases
        self.validate()

    @classmethod
    def random(
        cls,
        num_inputs: int,
        num_classes: int,
        num_layers: int,
        nodes_in_hl: int,
        rng: np.random.Generator
    ) -> 'NetworkParameters':
        """Build parameters with every value uniformly random in [-1, 1]."""
        sizes = layer_sizes(num_inputs, num_classes, num_layers, nodes_in_hl)

        weights = []
        biases = []
        for size_from, size_to in zip(sizes[:-1], sizes[1:]):
            w = Matrix(size_to, size_from)
            w.populate_random(rng)
            weights.append(w)

            b = Matrix(size_to, 1)
            b.populate_random(rng)
            biases.append(b)

        return cls(num_inputs, num_classes, num_layers, nodes_in_hl, weights, biases)

    @property
    def sizes(self) -> List[int]:
        return layer_sizes(
            self.num_inputs, self.num_classes, self.num_layers, self.nodes_in_hl
        )

    def validate(self) -> None:
        """
        Check every matrix against the topology.

        Raises:
            ValueError: If the topology scalars are invalid
            ShapeMismatch: If a weight or bias has the wrong shape
        """
        sizes = self.sizes
        if len(self.weights) != self.num_layers or len(self.biases) != self.num_layers:
            raise ValueError(
                f"Expected {self.num_layers} weight and bias matrices, got "
                f"{len(self.weights)} weights and {len(self.biases)} biases"
            )

        for i, (w, b) in enumerate(zip(self.weights, self.biases)):
            if w.shape != (sizes[i + 1], sizes[i]):
                raise ShapeMismatch(f'weights[{i}]', w.shape, (sizes[i + 1], sizes[i]))
            if b.shape != (sizes[i + 1], 1):
                raise ShapeMismatch(f'biases[{i}]', b.shape, (sizes[i + 1], 1))


class AccuracyReport:
    """Per-class and overall classification counts for one dataset."""

    def __init__(self, num_classes: int):
        self.num_classes = num_classes
        self.correct = [0] * num_classes
        self.totals = [0] * num_classes

    def record(self, actual: int, predicted: int) -> None:
        if actual == predicted:
            self.correct[actual] += 1
        self.totals[actual] += 1

    @property
    def total_correct(self) -> int:
        return sum(self.correct)

    @property
    def total(self) -> int:
        return sum(self.totals)

    @property
    def accuracy(self) -> float:
        """Overall accuracy, ``nan`` for an empty dataset."""
        if self.total == 0:
            return float('nan')
        return self.total_correct / self.total

    def class_accuracy(self, label: int) -> float:
        """Accuracy for one class, ``nan`` when the class has no samples."""
        if self.totals[label] == 0:
            return float('nan')
        return self.correct[label] / self.totals[label]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view; classes without samples get ``None``."""
        return {
            'correct': self.total_correct,
            'total': self.total,
            'accuracy': None if self.total == 0 else self.accuracy,
            'classes': [
                {
                    'label': label,
                    'correct': self.correct[label],
                    'total': self.totals[label],
                    'accuracy': (
                        None if self.totals[label] == 0
                        else self.class_accuracy(label)
                    )
                }
                for label in range(self.num_classes)
            ]
        }


class Network:
    """
    A sigmoid multi-layer perceptron and its training loop.

    Example:
        >>> net = Network(784, 10, 2, 30)
        >>> net.sizes
        [784, 30, 10]
        >>> net.train(training_data, testing_data)
    """

    def __init__(
        self,
        num_inputs: int,
        num_classes: int,
        num_layers: int,
        nodes_in_hl: int,
        config: Optional[TrainingConfig] = None,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Construct a random, untrained network.

        Args:
            num_inputs: Number of input neurons, the number of traits of the data
            num_classes: Number of output neurons, the number of classifications
            num_layers: Number of layers, NOT including the input layer
            nodes_in_hl: Size of each hidden layer
            config: Training hyperparameters (defaults to ``TrainingConfig()``)
            rng: Generator for initialization and shuffling; one seeded with
                ``config.seed`` is created when omitted
        """
        self.config = config if config is not None else TrainingConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.parameters = NetworkParameters.random(
            num_inputs, num_classes, num_layers, nodes_in_hl, self.rng
        )
        self.state = NetworkState.UNTRAINED

    @classmethod
    def from_parameters(
        cls,
        parameters: NetworkParameters,
        config: Optional[TrainingConfig] = None,
        rng: Optional[np.random.Generator] = None
    ) -> 'Network':
        """Wrap existing (e.g. loaded) parameters in a trained network."""
        parameters.validate()
        net = cls.__new__(cls)
        net.config = config if config is not None else TrainingConfig()
        net.rng = rng if rng is not None else np.random.default_rng(net.config.seed)
        net.parameters = parameters
        net.state = NetworkState.TRAINED
        return net

    @property
    def num_inputs(self) -> int:
        return self.parameters.num_inputs

    @property
    def num_classes(self) -> int:
        return self.parameters.num_classes

    @property
    def num_layers(self) -> int:
        return self.parameters.num_layers

    @property
    def nodes_in_hl(self) -> int:
        return self.parameters.nodes_in_hl

    @property
    def sizes(self) -> List[int]:
        return self.parameters.sizes

    @property
    def weights(self) -> List[Matrix]:
        return self.parameters.weights

    @property
    def biases(self) -> List[Matrix]:
        return self.parameters.biases

    @property
    def trained(self) -> bool:
        return self.state is NetworkState.TRAINED

    def feedforward(self, x: Matrix) -> List[Matrix]:
        """
        Feed an input through the network.

        Args:
            x: Input column of ``num_inputs`` values

        Returns:
            The activations of every layer, input layer first (``a[0] is x``)
        """
        activations = [x]
        for w, b in zip(self.weights, self.biases):
            # a_(l+1) = sigmoid(w_l * a_l + b_l)
            activations.append(sigmoid(ma.add(b, ma.multiply(w, activations[-1]))))
        return activations

    def backprop(
        self,
        activations: Sequence[Matrix],
        y: Matrix
    ) -> Tuple[List[Matrix], List[Matrix]]:
        """
        Weight and bias gradients for one sample.

        Args:
            activations: Output of ``feedforward`` for the sample
            y: One-hot encoded correct classification

        Returns:
            ``(nabla_w, nabla_b)``, one matrix per layer in layer order
        """
        if len(activations) != self.num_layers + 1:
            raise ValueError(
                f"Expected {self.num_layers + 1} activations, got {len(activations)}"
            )

        nabla_w: List[Optional[Matrix]] = [None] * self.num_layers
        nabla_b: List[Optional[Matrix]] = [None] * self.num_layers

        # Output layer error
        output = activations[-1]
        delta = ma.pairwise_multiply(ma.subtract(output, y), sigmoid_prime(output))
        nabla_b[-1] = delta
        nabla_w[-1] = ma.multiply(delta, ma.transpose(activations[-2]))

        # Every other layer, from the back
        for layer in range(self.num_layers - 2, -1, -1):
            product = ma.multiply(ma.transpose(self.weights[layer + 1]), delta)
            delta = ma.pairwise_multiply(product, sigmoid_prime(activations[layer + 1]))
            nabla_b[layer] = delta
            nabla_w[layer] = ma.multiply(delta, ma.transpose(activations[layer]))

        return nabla_w, nabla_b

    def update_mini_batch(self, batch: Sequence[Sample], eta: float) -> None:
        """
        Apply one gradient descent step using the summed gradients of a batch.

        w <- w + (-eta / len(batch)) * sum(nabla_w), likewise for the biases.
        """
        if len(batch) == 0:
            raise ValueError("Cannot update from an empty mini-batch")

        nabla_w = None
        nabla_b = None
        for x, y in batch:
            delta_nabla_w, delta_nabla_b = self.backprop(self.feedforward(x), y)
            if nabla_w is None:
                nabla_w, nabla_b = delta_nabla_w, delta_nabla_b
            else:
                nabla_w = [ma.add(nw, dnw) for nw, dnw in zip(nabla_w, delta_nabla_w)]
                nabla_b = [ma.add(nb, dnb) for nb, dnb in zip(nabla_b, delta_nabla_b)]

        step = -eta / len(batch)
        self.parameters.weights = [
            ma.add(w, ma.scalar_multiply(step, nw))
            for w, nw in zip(self.weights, nabla_w)
        ]
        self.parameters.biases = [
            ma.add(b, ma.scalar_multiply(step, nb))
            for b, nb in zip(self.biases, nabla_b)
        ]

    def SGD(
        self,
        training_data: List[Sample],
        epochs: int,
        mini_batch_size: int,
        eta: float,
        test_data: Optional[Sequence[Sample]] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None
    ) -> None:
        """
        Train with mini-batch stochastic gradient descent.

        ``training_data`` is shuffled in place at the start of every epoch.
        After each epoch the accuracy on the training data is reported, and
        after the last one the accuracy on ``test_data`` (if given).

        Args:
            training_data: Samples to learn from
            epochs: Number of passes over the training data
            mini_batch_size: Samples per gradient step
            eta: Learning rate
            test_data: Samples to evaluate once training is done
            callback: Called with a progress dict after every epoch
                (``phase='epoch'``) and after the final test evaluation
                (``phase='test'``)
            yield_func: Called after every mini-batch, lets a server stay
                responsive during training
            should_stop: Checked before every mini-batch; returning True
                stops training with ``TrainingCancelled``

        Raises:
            RuntimeError: If this network is already training
            TrainingCancelled: If ``should_stop`` requested a stop
        """
        if self.state is NetworkState.TRAINING:
            raise RuntimeError("Network is already training")
        if len(training_data) == 0:
            raise ValueError("training_data must contain at least one sample")
        if epochs < 1:
            raise ValueError(f"epochs must be a positive integer, got {epochs}")
        if mini_batch_size < 1:
            raise ValueError(
                f"mini_batch_size must be a positive integer, got {mini_batch_size}"
            )

        previous_state = self.state
        self.state = NetworkState.TRAINING
        start_time = time.time()

        logger.info(
            f"Training {self.sizes} on {len(training_data)} samples: "
            f"epochs={epochs}, batch_size={mini_batch_size}, eta={eta}"
        )

        try:
            for epoch in range(1, epochs + 1):
                self.rng.shuffle(training_data)

                for batch in mini_batches(training_data, mini_batch_size):
                    if should_stop is not None and should_stop():
                        raise TrainingCancelled(
                            f"Training stopped during epoch {epoch} of {epochs}"
                        )
                    self.update_mini_batch(batch, eta)
                    if yield_func is not None:
                        yield_func()

                report = self.evaluate(training_data)
                elapsed_time = time.time() - start_time
                logger.info(
                    f"Epoch {epoch}/{epochs} complete: training accuracy "
                    f"{report.total_correct} / {report.total} "
                    f"({report.accuracy:.2%}) after {elapsed_time:.1f}s"
                )

                if callback is not None:
                    callback({
                        'phase': 'epoch',
                        'epoch': epoch,
                        'total_epochs': epochs,
                        'accuracy': report.accuracy,
                        'correct': report.total_correct,
                        'total': report.total,
                        'elapsed_time': elapsed_time,
                        'report': report
                    })
        except BaseException:
            self.state = previous_state
            raise

        self.state = NetworkState.TRAINED

        if test_data:
            report = self.evaluate(test_data)
            logger.info(
                f"Testing accuracy: {report.total_correct} / {report.total} "
                f"({report.accuracy:.2%})"
            )
            if callback is not None:
                callback({
                    'phase': 'test',
                    'epoch': epochs,
                    'total_epochs': epochs,
                    'accuracy': report.accuracy,
                    'correct': report.total_correct,
                    'total': report.total,
                    'elapsed_time': time.time() - start_time,
                    'report': report
                })

    def train(
        self,
        training_data: List[Sample],
        testing_data: Optional[Sequence[Sample]] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None
    ) -> None:
        """Run ``SGD`` with the hyperparameters from ``self.config``."""
        self.SGD(
            training_data,
            self.config.epochs,
            self.config.batch_size,
            self.config.learning_rate,
            test_data=testing_data,
            callback=callback,
            yield_func=yield_func,
            should_stop=should_stop
        )

    def predict(self, x: Matrix) -> Matrix:
        """Return the activations of just the output layer for input ``x``."""
        return self.feedforward(x)[-1]

    def classify(self, x: Matrix) -> int:
        """Index of the strongest output neuron for input ``x``."""
        return ma.argmax_flat_index(self.predict(x))

    def cost(self, x: Matrix, y: Matrix) -> float:
        """Quadratic cost 0.5 * ||a - y||^2 of one sample."""
        diff = ma.subtract(self.predict(x), y)
        return 0.5 * sum(value * value for value in diff.values())

    def evaluate(self, dataset: Sequence[Sample]) -> AccuracyReport:
        """
        Classify every sample and count correct predictions per class.

        Raises:
            ShapeMismatch: If a label column does not have ``num_classes`` rows
        """
        report = AccuracyReport(self.num_classes)
        for x, y in dataset:
            if y.shape != (self.num_classes, 1):
                raise ShapeMismatch('evaluate', y.shape, (self.num_classes, 1))
            report.record(ma.argmax_flat_index(y), self.classify(x))
        return report

    def describe(self) -> Dict[str, Any]:
        """Facts about the network, for display."""
        return {
            'num_layers': self.num_layers + 1,
            'nodes_in_hl': self.nodes_in_hl if self.num_layers > 1 else None,
            'sizes': self.sizes,
            'state': self.state.value
        }
