"""
errors.py
~~~~~~~~~

Exception types raised by the matrix layer, the training engine and the
collaborators around it (dataset loading, persistence, command surface).
"""

from typing import Optional, Tuple


class MnistMlpError(Exception):
    """Base class for every error raised by this package."""


class ShapeMismatch(MnistMlpError, ValueError):
    """Operand dimensions violate the rule of a matrix operation."""

    def __init__(
        self,
        operation: str,
        left: Tuple[int, int],
        right: Optional[Tuple[int, int]] = None
    ):
        self.operation = operation
        self.left = left
        self.right = right
        if right is None:
            message = f"Invalid matrix size for {operation}: {list(left)}"
        else:
            message = (
                f"Invalid matrix sizes for {operation}: "
                f"{list(left)}, {list(right)}"
            )
        super().__init__(message)


class OutOfBounds(MnistMlpError, IndexError):
    """Element access outside the dimensions of a matrix."""


class MalformedRecord(MnistMlpError, ValueError):
    """A dataset record could not be turned into a sample."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class PersistenceError(MnistMlpError, OSError):
    """A network file could not be written, read, or did not match the schema."""


class NoNetworkError(MnistMlpError):
    """A command needs a network but none has been created or loaded."""


class TrainingCancelled(MnistMlpError):
    """Training stopped at a mini-batch boundary because a stop was requested."""
