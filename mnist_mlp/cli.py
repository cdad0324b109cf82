"""
cli.py
~~~~~~

Interactive command-line menu.

Every handler receives the ``Session`` it works on and a ``ConsoleIO`` for
prompts and output. Errors raised by a command are reported and the menu
is shown again.

Usage:
    mnist-mlp --train-csv data/mnist_train.csv --test-csv data/mnist_test.csv
"""

import sys
import logging
import argparse
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from mnist_mlp.config import AppConfig, configure_logging
from mnist_mlp.errors import MnistMlpError
from mnist_mlp.reporting import format_network_info, format_report, render_ascii_digit
from mnist_mlp.session import Session

logger = logging.getLogger(__name__)


class ConsoleIO:
    """Gathers user input and displays text; swap the functions to script it."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print
    ):
        self._input = input_func
        self._output = output_func

    def display(self, text: str) -> None:
        self._output(text)

    def get_input(self, prompt: str = '') -> str:
        return self._input(prompt).strip()

    def get_int(self, prompt: str) -> int:
        raw = self.get_input(prompt)
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"Expected a whole number, got {raw!r}") from None


def create_new_net(session: Session, io: ConsoleIO) -> None:
    """Create a network with user-chosen layers and hidden size, then train it."""
    num_layers = io.get_int("Input the number of layers (not including input layer): ")
    nodes_in_hl = 0
    if num_layers > 1:
        nodes_in_hl = io.get_int("Input the size of the hidden layers: ")

    def on_progress(data: Dict[str, Any]) -> None:
        if data['phase'] == 'epoch':
            io.display(f"\nEpoch {data['epoch']} of {data['total_epochs']} over\n")
            io.display(format_report(data['report'], 'Training'))
        else:
            io.display(format_report(data['report'], 'Testing'))

    io.display("Training...")
    session.create_network(num_layers, nodes_in_hl, callback=on_progress)


def load_net(session: Session, io: ConsoleIO) -> None:
    path = io.get_input("Filename: ")
    net = session.load(path)
    io.display(f"Loaded network {net.sizes} from {path}")


def save_net(session: Session, io: ConsoleIO) -> None:
    session.require_network()
    path = io.get_input("Filename: ")
    session.save(path)
    io.display(f"Saved network to {path}")


def display_training_acc(session: Session, io: ConsoleIO) -> None:
    io.display(format_report(session.accuracy('training'), 'Training'))


def display_testing_acc(session: Session, io: ConsoleIO) -> None:
    io.display(format_report(session.accuracy('testing'), 'Testing'))


def display_net_info(session: Session, io: ConsoleIO) -> None:
    io.display(format_network_info(session.describe()))


def walk_through_samples(session: Session, io: ConsoleIO) -> None:
    """Show digits one at a time with the correct label and the prediction."""
    session.require_network()
    only_missed = io.get_input("Only walk through missed samples (y/n)?: ").lower() == 'y'
    choice = io.get_input(
        "To walk through training set, press 1. To walk through test set, press 2: "
    )
    dataset_name = 'training' if choice == '1' else 'testing'

    for view in session.samples(dataset_name, only_missed=only_missed):
        io.display(f"Correct Class: {view.actual}\tNet Prediction: {view.predicted}")
        io.display(render_ascii_digit(view.sample.x))
        if io.get_input("Press 1 to continue, 2 to return to main menu: ") == '2':
            return
    io.display(f"End of {dataset_name} set")


MENU = [
    ('1', "To train a new network, press 1.", create_new_net, False),
    ('2', "To load an existing network, press 2.", load_net, False),
    ('3', "To display network accuracy on training data, press 3.", display_training_acc, True),
    ('4', "To display network accuracy on testing data, press 4.", display_testing_acc, True),
    ('5', "To save the current network state, press 5.", save_net, True),
    ('6', "To learn about this network, press 6.", display_net_info, True),
    ('7', "To walk through samples, press 7.", walk_through_samples, True),
]


def run_menu(session: Session, io: ConsoleIO) -> None:
    """Show the menu and dispatch choices until the user quits."""
    handlers = {key: handler for key, _, handler, _ in MENU}

    while True:
        io.display("")
        for key, text, _, needs_network in MENU:
            # Only offer these once there is a network to work on
            if not needs_network or session.has_network:
                io.display(text)
        io.display("To quit, press 0\n")

        try:
            choice = io.get_input()
        except EOFError:
            return

        if choice == '0':
            return

        handler = handlers.get(choice)
        if handler is None:
            io.display("Invalid Option")
            continue

        try:
            handler(session, io)
        except EOFError:
            return
        except KeyboardInterrupt:
            io.display("\nInterrupted, returning to main menu")
        except (MnistMlpError, ValueError, OSError, IndexError) as e:
            logger.debug(f"Command {choice} failed", exc_info=True)
            io.display(f"Error: {e}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Train and inspect a sigmoid neural network on MNIST digits."
    )
    parser.add_argument("--train-csv", help="Training set CSV (default: $MNIST_TRAIN_CSV).")
    parser.add_argument("--test-csv", help="Testing set CSV (default: $MNIST_TEST_CSV).")
    parser.add_argument("--epochs", type=int, help="Number of training epochs.")
    parser.add_argument("--batch-size", type=int, help="Mini-batch size.")
    parser.add_argument("--learning-rate", type=float, help="Learning rate.")
    parser.add_argument(
        "--skip-malformed", action="store_true",
        help="Skip bad CSV records instead of refusing to start."
    )
    parser.add_argument("--log-level", help="Logging level (default: $LOG_LEVEL or INFO).")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> AppConfig:
    """Environment configuration with command-line overrides applied."""
    config = AppConfig.from_env()

    training_overrides = {
        name: value for name, value in (
            ('epochs', args.epochs),
            ('batch_size', args.batch_size),
            ('learning_rate', args.learning_rate)
        ) if value is not None
    }
    if training_overrides:
        config.training = replace(config.training, **training_overrides)
    if args.train_csv:
        config.train_csv = args.train_csv
    if args.test_csv:
        config.test_csv = args.test_csv
    return config


def main(argv: Optional[List[str]] = None, io: Optional[ConsoleIO] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    io = io if io is not None else ConsoleIO()

    try:
        config = build_config(args)
        session = Session.from_config(config, skip_malformed=args.skip_malformed)
    except (MnistMlpError, ValueError, OSError) as e:
        logger.error(f"Could not start: {e}")
        io.display(f"Error: {e}")
        return 1

    run_menu(session, io)
    return 0


if __name__ == '__main__':
    sys.exit(main())
