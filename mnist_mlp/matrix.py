"""
matrix.py
~~~~~~~~~

A basic container for two-dimensional matrices of doubles.

The values live in a float64 numpy array; the shape is fixed when the
matrix is created. Algebra over matrices is in ``matrix_algebra``.
"""

from typing import Iterable, Sequence, Tuple

import numpy as np

from mnist_mlp.errors import OutOfBounds, ShapeMismatch


class Matrix:
    """
    A dense ``height`` x ``width`` matrix of doubles.

    Example:
        >>> m = Matrix(2, 3)
        >>> m.set(0, 1, 4.5)
        >>> m.get(0, 1)
        4.5
    """

    __slots__ = ('_data',)

    def __init__(self, height: int, width: int):
        """
        Create a zero-filled matrix.

        Args:
            height: Number of rows (must be positive)
            width: Number of columns (must be positive)
        """
        if height < 1 or width < 1:
            raise ShapeMismatch('construction', (height, width))
        self._data = np.zeros((height, width), dtype=np.float64)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> 'Matrix':
        """
        Create a matrix holding a copy of a rectangular grid of values.

        Raises:
            ShapeMismatch: If the grid is empty or its rows differ in length
        """
        if len(rows) == 0 or len(rows[0]) == 0:
            raise ShapeMismatch('construction', (len(rows), 0))

        width = len(rows[0])
        for row in rows:
            if len(row) != width:
                raise ShapeMismatch(
                    'construction', (len(rows), width), (1, len(row))
                )

        return cls._wrap(np.array(rows, dtype=np.float64))

    @classmethod
    def from_array(cls, array: np.ndarray) -> 'Matrix':
        """Copy a 1-D (taken as a column) or 2-D array into a new matrix."""
        data = np.array(array, dtype=np.float64)
        if data.ndim == 1:
            data = data.reshape(-1, 1)
        if data.ndim != 2 or data.size == 0:
            raise ShapeMismatch('construction', tuple(data.shape[:2]) or (0, 0))
        return cls._wrap(data)

    @classmethod
    def _wrap(cls, data: np.ndarray) -> 'Matrix':
        # Takes ownership of data without copying.
        matrix = cls.__new__(cls)
        matrix._data = data
        return matrix

    @property
    def height(self) -> int:
        return self._data.shape[0]

    @property
    def width(self) -> int:
        return self._data.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    def _check_index(self, row: int, col: int) -> None:
        if not (0 <= row < self.height and 0 <= col < self.width):
            raise OutOfBounds(
                f"Index ({row}, {col}) outside matrix of size "
                f"[{self.height}, {self.width}]"
            )

    def get(self, row: int, col: int) -> float:
        """Get the element at ``row``, ``col``."""
        self._check_index(row, col)
        return float(self._data[row, col])

    def set(self, row: int, col: int, value: float) -> None:
        """Set the element at ``row``, ``col``."""
        self._check_index(row, col)
        self._data[row, col] = value

    def populate_random(self, rng: np.random.Generator) -> None:
        """
        Fill the matrix with values uniformly distributed from -1 to 1.

        Elements are drawn in row-major order, so the same generator state
        always produces the same matrix.
        """
        self._data[:, :] = rng.random((self.height, self.width)) * 2 - 1

    def values(self) -> Iterable[float]:
        """Iterate over the elements in row-major order."""
        return (float(value) for value in self._data.flat)

    def to_array(self) -> np.ndarray:
        """Return a copy of the underlying values."""
        return self._data.copy()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._data, other._data))

    __hash__ = None

    def __repr__(self) -> str:
        return f"Matrix({self.height}x{self.width})"

    def __str__(self) -> str:
        rows = (
            '[' + ', '.join(repr(float(v)) for v in row) + ']'
            for row in self._data
        )
        return '[' + '\n'.join(rows) + ']'
