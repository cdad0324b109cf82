"""
matrix_algebra.py
~~~~~~~~~~~~~~~~~

Pure functions over ``Matrix``.

Every function returns a newly allocated matrix and leaves its inputs
untouched. Operations that combine two matrices check the dimensions first
and raise ``ShapeMismatch`` rather than broadcasting or truncating.
"""

import numpy as np

from mnist_mlp.errors import ShapeMismatch
from mnist_mlp.matrix import Matrix


def _require_same_shape(operation: str, a: Matrix, b: Matrix) -> None:
    if a.shape != b.shape:
        raise ShapeMismatch(operation, a.shape, b.shape)


def add(a: Matrix, b: Matrix) -> Matrix:
    """
    Pairwise add two matrices of the same dimensions.

    [[a, b]  + [[e, f]  = [[a + e, b + f]
     [c, d]]    [g, h]]    [c + g, d + h]]
    """
    _require_same_shape('add', a, b)
    return Matrix._wrap(a._data + b._data)


def subtract(a: Matrix, b: Matrix) -> Matrix:
    """Pairwise subtract ``b`` from ``a``: ``add(a, scalar_multiply(-1, b))``."""
    return add(a, scalar_multiply(-1, b))


def multiply(a: Matrix, b: Matrix) -> Matrix:
    """
    Regular matrix product of an m x n and an n x l matrix.

    Returns:
        The m x l product ``a * b``

    Raises:
        ShapeMismatch: If ``a.width != b.height``
    """
    if a.width != b.height:
        raise ShapeMismatch('multiply', a.shape, b.shape)
    return Matrix._wrap(np.dot(a._data, b._data))


def scalar_multiply(scalar: float, a: Matrix) -> Matrix:
    """Multiply every element of ``a`` by ``scalar``."""
    return Matrix._wrap(a._data * scalar)


def pairwise_multiply(a: Matrix, b: Matrix) -> Matrix:
    """Element-wise (Hadamard) product of two matrices of the same dimensions."""
    _require_same_shape('pairwise_multiply', a, b)
    return Matrix._wrap(a._data * b._data)


def ones(height: int, width: int) -> Matrix:
    """Create a ``height`` x ``width`` matrix where every element is 1."""
    if height < 1 or width < 1:
        raise ShapeMismatch('ones', (height, width))
    return Matrix._wrap(np.ones((height, width), dtype=np.float64))


def transpose(a: Matrix) -> Matrix:
    """Rows become columns: an n x m matrix turns into an m x n matrix."""
    return Matrix._wrap(a._data.T.copy())


def argmax_flat_index(a: Matrix) -> int:
    """
    Index of the maximum element of ``a`` read as a flattened matrix.

    The scan is row-major and the running maximum is only replaced by a
    strictly greater value, so ties go to the earliest index.

    Example:
        [[1, 2]
         [5, 3]     flattens to [1, 2, 5, 3, 1, 4], so the result is 2.
         [1, 4]]
    """
    best = 0
    best_value = a._data.flat[0]
    for index, value in enumerate(a._data.flat):
        if value > best_value:
            best = index
            best_value = value
    return best
