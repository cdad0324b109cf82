"""
config.py
~~~~~~~~~

Environment-driven configuration and logging setup.

Settings are read from environment variables (see ``AppConfig.from_env``)
so the same values apply to the interactive menu and the API server.
"""

import os
import math
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

# Seed for the network's random generator, for control over randomness
RANDOM_SEED = 1111

# 28 x 28 grayscale images, digits 0-9
NUM_INPUTS = 28 * 28
NUM_CLASSES = 10


@dataclass
class TrainingConfig:
    """Hyperparameters used by ``Network.train``."""

    learning_rate: float = 3.0
    batch_size: int = 10
    epochs: int = 30
    seed: int = RANDOM_SEED

    def __post_init__(self) -> None:
        if not math.isfinite(self.learning_rate) or self.learning_rate <= 0:
            raise ValueError(
                f"learning_rate must be a positive number, got {self.learning_rate}"
            )
        if self.batch_size < 1:
            raise ValueError(
                f"batch_size must be a positive integer, got {self.batch_size}"
            )
        if self.epochs < 1:
            raise ValueError(
                f"epochs must be a positive integer, got {self.epochs}"
            )


@dataclass
class AppConfig:
    """Everything the command surfaces need to build a session."""

    training: TrainingConfig = field(default_factory=TrainingConfig)
    train_csv: str = 'data/mnist_train.csv'
    test_csv: str = 'data/mnist_test.csv'
    model_dir: str = 'models'
    num_inputs: int = NUM_INPUTS
    num_classes: int = NUM_CLASSES

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """
        Build the configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            AppConfig with defaults for every unset variable

        Raises:
            ValueError: If a numeric variable cannot be parsed or is out of range
        """
        env = os.environ if environ is None else environ

        defaults = TrainingConfig()
        training = TrainingConfig(
            learning_rate=_env_number(env, 'MNIST_LEARNING_RATE', float, defaults.learning_rate),
            batch_size=_env_number(env, 'MNIST_BATCH_SIZE', int, defaults.batch_size),
            epochs=_env_number(env, 'MNIST_EPOCHS', int, defaults.epochs),
            seed=_env_number(env, 'MNIST_SEED', int, defaults.seed)
        )

        return cls(
            training=training,
            train_csv=env.get('MNIST_TRAIN_CSV', cls.train_csv),
            test_csv=env.get('MNIST_TEST_CSV', cls.test_csv),
            model_dir=env.get('MNIST_MODEL_DIR', cls.model_dir)
        )


def _env_number(env: Mapping[str, str], name: str, kind, default):
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(
            f"Environment variable {name} must be {kind.__name__}, got {raw!r}"
        ) from None


def configure_logging(level: Optional[str] = None) -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging

    Args:
        level: Level name overriding ``LOG_LEVEL`` (e.g. ``'DEBUG'``)
    """
    log_level_str = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug', 'matplotlib']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('mnist_mlp').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
        logging.getLogger('matplotlib').setLevel(logging.WARNING)
