"""
test_matrix_algebra.py
~~~~~~~~~~~~~~~~~~~~~~

Unit tests for the pure matrix operations.
"""

import pytest
import numpy as np

from mnist_mlp import matrix_algebra as ma
from mnist_mlp.errors import ShapeMismatch
from mnist_mlp.matrix import Matrix


def random_matrix(rng, height, width):
    m = Matrix(height, width)
    m.populate_random(rng)
    return m


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.mark.unit
class TestOperations:
    """Results of each operation on small known inputs."""

    def test_add(self):
        a = Matrix.from_rows([[1.0, 2.0], [3.0, 4.0]])
        b = Matrix.from_rows([[5.0, 6.0], [7.0, 8.0]])
        assert ma.add(a, b) == Matrix.from_rows([[6.0, 8.0], [10.0, 12.0]])

    def test_subtract(self):
        a = Matrix.from_rows([[1.0, 2.0]])
        b = Matrix.from_rows([[0.5, 3.0]])
        assert ma.subtract(a, b) == Matrix.from_rows([[0.5, -1.0]])

    def test_multiply(self):
        a = Matrix.from_rows([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
        b = Matrix.from_rows([[7.0], [8.0], [9.0]])
        assert ma.multiply(a, b) == Matrix.from_rows([[50.0], [122.0]])

    def test_scalar_multiply(self):
        a = Matrix.from_rows([[1.0, -2.0]])
        assert ma.scalar_multiply(-3, a) == Matrix.from_rows([[-3.0, 6.0]])

    def test_pairwise_multiply(self):
        a = Matrix.from_rows([[1.0, 2.0], [3.0, 4.0]])
        b = Matrix.from_rows([[2.0, 0.5], [-1.0, 0.0]])
        assert ma.pairwise_multiply(a, b) == Matrix.from_rows([[2.0, 1.0], [-3.0, 0.0]])

    def test_ones(self):
        assert ma.ones(2, 3) == Matrix.from_rows([[1.0] * 3] * 2)

    def test_transpose(self):
        a = Matrix.from_rows([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
        assert ma.transpose(a) == Matrix.from_rows([[1.0, 4.0], [2.0, 5.0], [3.0, 6.0]])

    def test_inputs_are_not_mutated(self):
        a = Matrix.from_rows([[1.0, 2.0]])
        b = Matrix.from_rows([[3.0, 4.0]])
        ma.add(a, b)
        ma.subtract(a, b)
        ma.pairwise_multiply(a, b)
        ma.scalar_multiply(2, a)
        t = ma.transpose(a)
        t.set(0, 0, 100.0)
        assert a == Matrix.from_rows([[1.0, 2.0]])
        assert b == Matrix.from_rows([[3.0, 4.0]])


@pytest.mark.unit
class TestShapeChecks:
    """Dimension violations raise ShapeMismatch instead of broadcasting."""

    def test_add_requires_same_shape(self):
        with pytest.raises(ShapeMismatch) as exc_info:
            ma.add(Matrix(2, 1), Matrix(1, 2))
        assert "[2, 1]" in str(exc_info.value)
        assert "[1, 2]" in str(exc_info.value)

    def test_subtract_requires_same_shape(self):
        with pytest.raises(ShapeMismatch):
            ma.subtract(Matrix(3, 1), Matrix(2, 1))

    def test_multiply_requires_inner_dimensions(self):
        with pytest.raises(ShapeMismatch):
            ma.multiply(Matrix(2, 3), Matrix(2, 3))

    def test_pairwise_multiply_requires_same_shape(self):
        with pytest.raises(ShapeMismatch):
            ma.pairwise_multiply(Matrix(2, 2), Matrix(2, 1))

    def test_shape_mismatch_is_a_value_error(self):
        with pytest.raises(ValueError):
            ma.add(Matrix(1, 1), Matrix(2, 2))


@pytest.mark.unit
class TestArgmax:
    """Flattened row-major index of the maximum element."""

    @pytest.mark.parametrize("k", range(10))
    def test_one_hot_decodes_to_its_index(self, k):
        y = Matrix(10, 1)
        y.set(k, 0, 1.0)
        assert ma.argmax_flat_index(y) == k

    def test_row_major_order(self):
        a = Matrix.from_rows([[1.0, 2.0], [5.0, 3.0], [1.0, 4.0]])
        assert ma.argmax_flat_index(a) == 2

    def test_ties_go_to_earliest_index(self):
        a = Matrix.from_rows([[0.2], [0.9], [0.9], [0.1]])
        assert ma.argmax_flat_index(a) == 1

    def test_all_equal_returns_zero(self):
        assert ma.argmax_flat_index(ma.ones(3, 3)) == 0


@pytest.mark.unit
class TestAlgebraicProperties:
    """Identities that hold for any compatible matrices."""

    def test_subtract_undoes_add(self, rng):
        for _ in range(5):
            a = random_matrix(rng, 4, 3)
            b = random_matrix(rng, 4, 3)
            result = ma.subtract(ma.add(a, b), b)
            assert np.allclose(result.to_array(), a.to_array(), atol=1e-9, rtol=0)

    def test_multiply_is_associative(self, rng):
        a = random_matrix(rng, 3, 4)
        b = random_matrix(rng, 4, 2)
        c = random_matrix(rng, 2, 5)
        left = ma.multiply(ma.multiply(a, b), c)
        right = ma.multiply(a, ma.multiply(b, c))
        assert left.shape == (3, 5)
        assert np.allclose(left.to_array(), right.to_array(), atol=1e-9)

    def test_double_transpose_is_identity(self, rng):
        for height, width in [(1, 1), (1, 7), (6, 2)]:
            a = random_matrix(rng, height, width)
            assert ma.transpose(ma.transpose(a)) == a
