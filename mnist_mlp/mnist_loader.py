"""
mnist_loader.py
~~~~~~~~~~~~~~~

Load the MNIST dataset from CSV files.

Each line holds one digit: the class label followed by 28 * 28 pixel
intensities from 0-255. Every line becomes a ``Sample`` whose ``x`` is a
784 x 1 column scaled into [0, 1] and whose ``y`` is a one-hot 10 x 1
column.
"""

import csv
import logging
from typing import List, Sequence, Tuple

import numpy as np

from mnist_mlp.config import NUM_CLASSES, NUM_INPUTS
from mnist_mlp.errors import MalformedRecord
from mnist_mlp.matrix import Matrix
from mnist_mlp.network import Sample

logger = logging.getLogger(__name__)

MAX_PIXEL_VALUE = 255


def one_hot(label: int, num_classes: int = NUM_CLASSES) -> Matrix:
    """Column with a 1.0 at ``label`` and 0.0 everywhere else."""
    if not 0 <= label < num_classes:
        raise MalformedRecord(f"Label {label} outside [0, {num_classes})")
    y = Matrix(num_classes, 1)
    y.set(label, 0, 1.0)
    return y


def parse_record(
    fields: Sequence[str],
    num_inputs: int = NUM_INPUTS,
    num_classes: int = NUM_CLASSES
) -> Sample:
    """
    Turn one CSV record into a sample.

    Args:
        fields: The label followed by ``num_inputs`` pixel values
        num_inputs: Expected number of pixels
        num_classes: Number of classes for the one-hot label

    Returns:
        Sample with pixels divided by 255

    Raises:
        MalformedRecord: Wrong field count, a non-numeric value, a label
            outside [0, num_classes) or a pixel outside [0, 255]
    """
    if len(fields) != num_inputs + 1:
        raise MalformedRecord(
            f"Expected {num_inputs + 1} fields, got {len(fields)}"
        )

    try:
        label_value = float(fields[0])
    except ValueError:
        raise MalformedRecord(f"Label {fields[0]!r} is not a number") from None
    if not label_value.is_integer():
        raise MalformedRecord(f"Label {fields[0]!r} is not an integer")

    try:
        pixels = np.array([float(value) for value in fields[1:]], dtype=np.float64)
    except ValueError as e:
        raise MalformedRecord(f"Non-numeric pixel value: {e}") from None

    if not np.all((pixels >= 0) & (pixels <= MAX_PIXEL_VALUE)):
        bad = int(np.argmax(~((pixels >= 0) & (pixels <= MAX_PIXEL_VALUE))))
        raise MalformedRecord(
            f"Pixel {bad} has value {fields[bad + 1]!r}, "
            f"outside [0, {MAX_PIXEL_VALUE}]"
        )

    return Sample(
        Matrix.from_array(pixels / MAX_PIXEL_VALUE),
        one_hot(int(label_value), num_classes)
    )


def load_csv(
    path: str,
    num_inputs: int = NUM_INPUTS,
    num_classes: int = NUM_CLASSES,
    skip_malformed: bool = False,
    skip_header: bool = False
) -> List[Sample]:
    """
    Parse a CSV file of digits.

    Args:
        path: CSV file with one digit per line
        num_inputs: Pixels per digit
        num_classes: Number of classes
        skip_malformed: Log and skip bad records instead of failing
        skip_header: Ignore the first line

    Returns:
        list of samples in file order

    Raises:
        MalformedRecord: On the first bad record, unless ``skip_malformed``
        OSError: If the file cannot be read
    """
    dataset = []
    skipped = 0

    # Undecodable bytes become surrogates and fail number parsing on their own line
    with open(path, newline='', encoding='utf-8', errors='surrogateescape') as f:
        reader = csv.reader(f)
        for line_number, fields in enumerate(reader, start=1):
            if skip_header and line_number == 1:
                continue
            if not fields:
                continue
            try:
                dataset.append(parse_record(fields, num_inputs, num_classes))
            except MalformedRecord as e:
                if not skip_malformed:
                    raise MalformedRecord(str(e), line_number) from None
                skipped += 1
                logger.warning(f"Skipping record on line {line_number} of {path}: {e}")

    logger.info(f"Loaded {len(dataset)} samples from {path}")
    if skipped:
        logger.warning(f"Skipped {skipped} malformed record(s) in {path}")
    return dataset


def load_data_wrapper(
    train_path: str,
    test_path: str,
    skip_malformed: bool = False
) -> Tuple[List[Sample], List[Sample]]:
    """
    Load the training and testing sets.

    Returns:
        ``(training_data, testing_data)``
    """
    training_data = load_csv(train_path, skip_malformed=skip_malformed)
    testing_data = load_csv(test_path, skip_malformed=skip_malformed)
    return training_data, testing_data
