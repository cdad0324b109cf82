"""
reporting.py
~~~~~~~~~~~~

Human-readable output: accuracy tables, network facts, and digit images
(ASCII art for the terminal, PNG for the API).
"""

import base64
import math
from io import BytesIO
from typing import Any, Dict, List

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from mnist_mlp.matrix import Matrix
from mnist_mlp.network import AccuracyReport

IMAGE_SIDE = 28


def _ratio(correct: int, total: int) -> str:
    value = correct / total if total else math.nan
    return f"{correct} / {total} = {value}"


def format_report(report: AccuracyReport, title: str) -> str:
    """
    Class accuracy lines followed by the overall accuracy.

    Example:
        Class Accuracy:
        0: 970 / 980 = 0.9897959183673469
        ...
        Testing Accuracy: 9512 / 10000 = 0.9512
    """
    lines = ["Class Accuracy:"]
    for label in range(report.num_classes):
        lines.append(f"{label}: {_ratio(report.correct[label], report.totals[label])}")
    lines.append(f"{title} Accuracy: {_ratio(report.total_correct, report.total)}")
    return '\n'.join(lines)


def format_network_info(info: Dict[str, Any]) -> str:
    """Number of layers (including input) and the hidden layer size."""
    hidden = info['nodes_in_hl'] if info['nodes_in_hl'] is not None else 'none'
    return (
        f"Number of layers (including input layer): {info['num_layers']}\n"
        f"Size of hidden layers: {hidden}\n"
        f"Layer sizes: {info['sizes']}"
    )


def render_ascii_digit(x: Matrix, threshold: float = 0.5, side: int = IMAGE_SIDE) -> str:
    """Draw a pixel as '$' when its intensity exceeds ``threshold``, else ' '."""
    rows: List[str] = []
    row = []
    for i, value in enumerate(x.values()):
        row.append('$' if value > threshold else ' ')
        if (i + 1) % side == 0:
            rows.append(''.join(row))
            row = []
    if row:
        rows.append(''.join(row))
    return '\n'.join(rows)


def create_digit_image(x: Matrix, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        x: 784-element column representing the 28x28 digit image
        predicted: The digit the network predicted (0-9)
        actual: The correct digit (0-9)

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(x.to_array().reshape(IMAGE_SIDE, IMAGE_SIDE), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64
