"""Positive definite matrix representations of the Euclidean metric.

The metric matrix `M` is the covariance of the Gaussian momentum distribution.
Each class exposes the small set of operations needed by the Hamiltonian
system and adapters: products with vectors (`@`), the inverse `inv` used in
the kinetic energy, a square-root factor `sqrt` with `sqrt @ sqrt.T == M`
used to sample momenta and the `diagonal`.
"""

import abc
import numpy as np
import scipy.linalg as sla
from adahmc.errors import UnsupportedShapeError


class Matrix(abc.ABC):
    """Base class for matrix-like objects.

    Overloads the `@` operator for products with arrays.
    """

    __array_priority__ = 1

    def __init__(self, shape):
        self._shape = shape

    def __array__(self, dtype=None, copy=None):
        return self.array if dtype is None else self.array.astype(dtype)

    @property
    def shape(self):
        """Shape of matrix as a tuple `(num_rows, num_columns)`."""
        return self._shape

    def __matmul__(self, other):
        if isinstance(other, Matrix):
            return NotImplemented
        other = np.asarray(other)
        if self.shape[1] is not None and other.shape[0] != self.shape[1]:
            raise UnsupportedShapeError(
                f'Inconsistent dimensions for matrix multiplication: '
                f'{self.shape} and {other.shape}.')
        return self._left_matrix_multiply(other)

    def __rmatmul__(self, other):
        if isinstance(other, Matrix):
            return NotImplemented
        other = np.asarray(other)
        if self.shape[0] is not None and other.shape[-1] != self.shape[0]:
            raise UnsupportedShapeError(
                f'Inconsistent dimensions for matrix multiplication: '
                f'{other.shape} and {self.shape}.')
        return self._right_matrix_multiply(other)

    @property
    @abc.abstractmethod
    def array(self):
        """Full dense representation of matrix as a 2D array."""

    @abc.abstractmethod
    def _left_matrix_multiply(self, other):
        """Compute `self @ other` for an array `other`."""

    def _right_matrix_multiply(self, other):
        """Compute `other @ self` for an array `other`."""
        return (self.transpose @ other.T).T

    @property
    def transpose(self):
        """Transpose of matrix."""
        return self

    T = transpose

    @property
    def diagonal(self):
        """Diagonal of matrix as a 1D array."""
        return self.array.diagonal()

    def __str__(self):
        return f'(shape={self.shape})'

    def __repr__(self):
        return type(self).__name__ + str(self)


class PositiveDefiniteMatrix(Matrix):
    """Base class for symmetric positive definite matrices."""

    def __init__(self, shape):
        super().__init__(shape)
        self._inv = None
        self._sqrt = None

    @property
    def inv(self):
        """Inverse of matrix, also positive definite."""
        if self._inv is None:
            self._inv = self._construct_inv()
        return self._inv

    @property
    def sqrt(self):
        """Square-root factor `S` such that `S @ S.T` equals the matrix."""
        if self._sqrt is None:
            self._sqrt = self._construct_sqrt()
        return self._sqrt

    @abc.abstractmethod
    def _construct_inv(self):
        pass

    @abc.abstractmethod
    def _construct_sqrt(self):
        pass


class IdentityMatrix(PositiveDefiniteMatrix):
    """Identity matrix, optionally of unspecified size."""

    def __init__(self, size=None):
        super().__init__((size, size))

    def _left_matrix_multiply(self, other):
        return other

    def _right_matrix_multiply(self, other):
        return other

    def _construct_inv(self):
        return self

    def _construct_sqrt(self):
        return self

    @property
    def array(self):
        if self.shape[0] is None:
            raise RuntimeError(
                'Cannot get array representation for identity matrix with '
                'implicit size.')
        return np.identity(self.shape[0])

    @property
    def diagonal(self):
        return np.ones(self.shape[0])


class PositiveScaledIdentityMatrix(PositiveDefiniteMatrix):
    """Identity matrix multiplied by a positive scalar."""

    def __init__(self, scalar, size=None):
        """
        Args:
            scalar (float): Positive scale factor.
            size (int or None): Dimension, or `None` to leave it implicit.
        """
        if scalar <= 0:
            raise ValueError('Scale factor must be positive.')
        self.scalar = float(scalar)
        super().__init__((size, size))

    def _left_matrix_multiply(self, other):
        return self.scalar * other

    def _right_matrix_multiply(self, other):
        return self.scalar * other

    def _construct_inv(self):
        return PositiveScaledIdentityMatrix(1 / self.scalar, self.shape[0])

    def _construct_sqrt(self):
        return PositiveScaledIdentityMatrix(self.scalar**0.5, self.shape[0])

    @property
    def array(self):
        if self.shape[0] is None:
            raise RuntimeError(
                'Cannot get array representation for scaled identity matrix '
                'with implicit size.')
        return self.scalar * np.identity(self.shape[0])

    @property
    def diagonal(self):
        return self.scalar * np.ones(self.shape[0])

    def __str__(self):
        return f'(shape={self.shape}, scalar={self.scalar})'


class PositiveDiagonalMatrix(PositiveDefiniteMatrix):
    """Diagonal matrix with strictly positive diagonal."""

    def __init__(self, diagonal):
        """
        Args:
            diagonal (array): 1D array of positive diagonal entries.
        """
        diagonal = np.asarray(diagonal, dtype=np.float64)
        if diagonal.ndim != 1:
            raise UnsupportedShapeError('Diagonal must be a 1D array.')
        if not np.all(diagonal > 0):
            raise ValueError('Diagonal values must all be positive.')
        self._diagonal = diagonal
        super().__init__((diagonal.shape[0],) * 2)

    def _left_matrix_multiply(self, other):
        if other.ndim == 2:
            return self._diagonal[:, None] * other
        return self._diagonal * other

    def _right_matrix_multiply(self, other):
        return self._diagonal * other

    def _construct_inv(self):
        return PositiveDiagonalMatrix(1. / self._diagonal)

    def _construct_sqrt(self):
        return PositiveDiagonalMatrix(self._diagonal**0.5)

    @property
    def array(self):
        return np.diag(self._diagonal)

    @property
    def diagonal(self):
        return self._diagonal


class TriangularMatrix(Matrix):
    """Lower or upper triangular matrix, used as a square-root factor."""

    def __init__(self, array, lower=True):
        """
        Args:
            array (array): 2D array whose lower (or upper) triangle is used.
            lower (bool): Whether the matrix is lower triangular.
        """
        self._array = np.tril(array) if lower else np.triu(array)
        self.lower = lower
        super().__init__(self._array.shape)

    @property
    def array(self):
        return self._array

    def _left_matrix_multiply(self, other):
        return self._array @ other

    def _right_matrix_multiply(self, other):
        return other @ self._array

    @property
    def transpose(self):
        return TriangularMatrix(self._array.T, not self.lower)

    T = transpose

    @property
    def inv(self):
        return TriangularMatrix(
            sla.solve_triangular(
                self._array, np.identity(self.shape[0]), lower=self.lower),
            self.lower)


class DensePositiveDefiniteMatrix(PositiveDefiniteMatrix):
    """Dense positive definite matrix stored through a triangular factor.

    The matrix is represented as `F @ F.T` for a triangular factor `F`, by
    default the lower Cholesky factor of the array passed at construction.
    The inverse is then represented exactly by the factor `inv(F).T` without
    any further decomposition.
    """

    def __init__(self, array=None, factor=None):
        """
        Args:
            array (None or array): 2D symmetric positive definite array.
            factor (None or TriangularMatrix): Triangular factor of the matrix.
                Exactly one of `array` and `factor` must be given.
        """
        if (array is None) == (factor is None):
            raise ValueError('Exactly one of array and factor must be given.')
        if factor is None:
            array = np.asarray(array, dtype=np.float64)
            if array.ndim != 2 or array.shape[0] != array.shape[1]:
                raise UnsupportedShapeError('Array must be square and 2D.')
            factor = TriangularMatrix(
                sla.cholesky(array, lower=True), lower=True)
        self._factor = factor
        self._array = array
        super().__init__(factor.shape)

    @property
    def factor(self):
        """Triangular factor `F` with `F @ F.T` equal to the matrix."""
        return self._factor

    @property
    def array(self):
        if self._array is None:
            factor = self._factor.array
            self._array = factor @ factor.T
        return self._array

    def _left_matrix_multiply(self, other):
        return self._factor @ (self._factor.T @ other)

    def _right_matrix_multiply(self, other):
        return (other @ self._factor) @ self._factor.T

    def _construct_inv(self):
        return DensePositiveDefiniteMatrix(factor=self._factor.inv.T)

    def _construct_sqrt(self):
        return self._factor

    @property
    def diagonal(self):
        return (self._factor.array**2).sum(1)
