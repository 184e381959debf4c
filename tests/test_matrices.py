import numpy as np
import pytest

from adahmc import matrices
from adahmc.errors import UnsupportedShapeError

SEED = 3046987125
SIZES = {1, 2, 5}
AX_SIZES = {0, 1}


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture(params=SIZES)
def size(request):
    return request.param


class PositiveDefiniteMatrixTests:
    def test_array(self, matrix, matrix_array):
        assert np.allclose(matrix.array, matrix_array)

    def test_shape(self, matrix, matrix_array):
        assert matrix.shape == matrix_array.shape

    def test_diagonal(self, matrix, matrix_array):
        assert np.allclose(matrix.diagonal, matrix_array.diagonal())

    def test_inv(self, matrix, matrix_array):
        assert np.allclose(matrix.inv.array, np.linalg.inv(matrix_array))

    def test_inv_of_inv(self, matrix, matrix_array):
        assert np.allclose(matrix.inv.inv.array, matrix_array)

    def test_sqrt(self, matrix, matrix_array):
        sqrt = np.asarray(matrix.sqrt)
        assert np.allclose(sqrt @ sqrt.T, matrix_array)

    @pytest.mark.parametrize("n_ax", AX_SIZES)
    def test_lmult(self, matrix, matrix_array, rng, n_ax):
        other = rng.standard_normal((matrix.shape[0],) + (2,) * n_ax)
        assert np.allclose(matrix @ other, np.dot(matrix_array, other))

    def test_rmult_vector(self, matrix, matrix_array, rng):
        other = rng.standard_normal(matrix.shape[0])
        assert np.allclose(other @ matrix, other @ matrix_array)

    def test_lmult_wrong_shape_raises(self, matrix, rng):
        other = rng.standard_normal(matrix.shape[0] + 1)
        with pytest.raises(UnsupportedShapeError):
            matrix @ other

    def test_array_conversion(self, matrix, matrix_array):
        assert np.allclose(np.asarray(matrix), matrix_array)


class TestIdentityMatrix(PositiveDefiniteMatrixTests):
    @pytest.fixture
    def matrix(self, size):
        return matrices.IdentityMatrix(size)

    @pytest.fixture
    def matrix_array(self, size):
        return np.identity(size)


class TestPositiveScaledIdentityMatrix(PositiveDefiniteMatrixTests):
    @pytest.fixture
    def scalar(self, rng):
        return abs(rng.standard_normal())

    @pytest.fixture
    def matrix(self, size, scalar):
        return matrices.PositiveScaledIdentityMatrix(scalar, size)

    @pytest.fixture
    def matrix_array(self, size, scalar):
        return scalar * np.identity(size)


class TestPositiveDiagonalMatrix(PositiveDefiniteMatrixTests):
    @pytest.fixture
    def diagonal(self, rng, size):
        return np.exp(rng.standard_normal(size))

    @pytest.fixture
    def matrix(self, diagonal):
        return matrices.PositiveDiagonalMatrix(diagonal)

    @pytest.fixture
    def matrix_array(self, diagonal):
        return np.diag(diagonal)


class TestDensePositiveDefiniteMatrix(PositiveDefiniteMatrixTests):
    @pytest.fixture
    def matrix_array(self, rng, size):
        sqrt = rng.standard_normal((size, size))
        return sqrt @ sqrt.T + np.identity(size)

    @pytest.fixture
    def matrix(self, matrix_array):
        return matrices.DensePositiveDefiniteMatrix(matrix_array)


def test_identity_matrix_without_size_multiplies_any_vector(rng):
    matrix = matrices.IdentityMatrix()
    vector = rng.standard_normal(7)
    assert np.all(matrix @ vector == vector)
    assert np.all(vector @ matrix == vector)


def test_positive_diagonal_matrix_non_positive_raises():
    with pytest.raises(ValueError):
        matrices.PositiveDiagonalMatrix(np.array([1.0, 0.0]))


def test_positive_diagonal_matrix_non_1d_raises():
    with pytest.raises(UnsupportedShapeError):
        matrices.PositiveDiagonalMatrix(np.ones((2, 2)))


def test_dense_matrix_non_square_raises():
    with pytest.raises(UnsupportedShapeError):
        matrices.DensePositiveDefiniteMatrix(np.ones((2, 3)))


def test_dense_matrix_requires_one_of_array_or_factor():
    with pytest.raises(ValueError):
        matrices.DensePositiveDefiniteMatrix()


def test_triangular_matrix_inverse(rng):
    array = np.tril(rng.standard_normal((4, 4))) + 4 * np.identity(4)
    for lower in (True, False):
        triangular = matrices.TriangularMatrix(
            array if lower else array.T, lower=lower
        )
        assert np.allclose(
            triangular.inv.array @ triangular.array, np.identity(4)
        )
        assert triangular.T.lower != lower
