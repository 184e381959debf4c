"""Target density oracles and elementwise bijections to unconstrained space.

A model provides the log density of the target distribution on its natural,
possibly constrained, parameter space together with a bijection `T` from an
unconstrained space `R^n` onto that parameter space. Samplers only ever move
in the unconstrained space, where the target has density

    log p(T(u)) + log |det dT/du (u)|.

Model objects are called from the thread running a chain. A model used by
several concurrently running chains must be safe to call concurrently, or a
separate model instance must be created for each chain.
"""

from abc import ABC, abstractmethod
import numpy as np
from adahmc.autodiff import autodiff_fallback
from adahmc.errors import UnsupportedShapeError


class Model(ABC):
    """Abstract target density oracle.

    Subclasses must implement `log_density` and may override
    `grad_and_log_density` with an analytic gradient, which is otherwise
    constructed with Autograd. The default bijection is the identity.
    """

    @abstractmethod
    def log_density(self, pos):
        """Log density (up to a constant) at a constrained position.

        Args:
            pos (array): Position in the constrained parameter space.

        Returns:
            float: Log density value.
        """

    def grad_and_log_density(self, pos):
        """Gradient and value of the log density at a constrained position.

        Args:
            pos (array): Position in the constrained parameter space.

        Returns:
            grad (array): Gradient of `log_density` with respect to `pos`.
            value (float): Value of `log_density(pos)`.
        """
        if getattr(self, '_grad_and_log_density', None) is None:
            self._grad_and_log_density = autodiff_fallback(
                None, self.log_density, 'grad_and_value',
                'grad_and_log_density')
        return self._grad_and_log_density(pos)

    def transform_to_unconstrained(self, pos):
        """Map a constrained position to unconstrained space.

        Args:
            pos (array): Position in the constrained parameter space.

        Returns:
            u (array): Corresponding unconstrained position.
            log_det_jacobian (float): `log |det dT/du|` at `u`.
        """
        return np.array(pos, dtype=np.float64), 0.

    def transform_to_constrained(self, u):
        """Map an unconstrained position to the constrained space.

        Args:
            u (array): Unconstrained position.

        Returns:
            pos (array): Corresponding constrained position `T(u)`.
            log_det_jacobian (float): `log |det dT/du|` at `u`.
        """
        return np.array(u, dtype=np.float64), 0.

    def vjp_transform_to_constrained(self, u, vector):
        """Product of a vector with the Jacobian of `T` at `u`, `v^T dT/du`."""
        return vector

    def grad_log_det_jacobian(self, u):
        """Gradient of `log |det dT/du|` with respect to `u`."""
        return np.zeros_like(u, dtype=np.float64)


class DensityModel(Model):
    """Model on an unconstrained space defined by a log density function."""

    def __init__(self, log_density, grad_log_density=None):
        """
        Args:
            log_density (Callable[[array], float]): Log density function.
            grad_log_density (
                    None or Callable[[array], array or Tuple[array, float]]):
                Gradient of `log_density`, optionally returning the tuple
                `(grad, value)`. If `None` Autograd is used.
        """
        self._log_density = log_density
        self._grad_log_density = autodiff_fallback(
            grad_log_density, log_density, 'grad_and_value',
            'grad_log_density')

    def log_density(self, pos):
        return self._log_density(pos)

    def grad_and_log_density(self, pos):
        out = self._grad_log_density(pos)
        if isinstance(out, tuple):
            return out
        return out, self._log_density(pos)


class ElementwiseTransform(ABC):
    """Bijection `x = f(u)` from the real line to an interval, applied per
    coordinate."""

    @abstractmethod
    def forward(self, x):
        """Map constrained values to unconstrained values, `f^{-1}(x)`."""

    @abstractmethod
    def inverse(self, u):
        """Map unconstrained values to constrained values, `f(u)`."""

    @abstractmethod
    def log_abs_deriv(self, u):
        """Elementwise `log |f'(u)|`."""

    @abstractmethod
    def deriv(self, u):
        """Elementwise `f'(u)`."""

    @abstractmethod
    def grad_log_abs_deriv(self, u):
        """Elementwise derivative of `log |f'(u)|`."""


class IdentityTransform(ElementwiseTransform):

    def forward(self, x):
        return x

    def inverse(self, u):
        return u

    def log_abs_deriv(self, u):
        return np.zeros_like(u)

    def deriv(self, u):
        return np.ones_like(u)

    def grad_log_abs_deriv(self, u):
        return np.zeros_like(u)


class LogTransform(ElementwiseTransform):
    """Map to `(lower, inf)` with `x = lower + exp(u)`."""

    def __init__(self, lower=0.):
        self.lower = lower

    def forward(self, x):
        if np.any(x <= self.lower):
            raise ValueError(
                f'Values {x} not strictly above lower bound {self.lower}.')
        return np.log(x - self.lower)

    def inverse(self, u):
        return self.lower + np.exp(u)

    def log_abs_deriv(self, u):
        return u

    def deriv(self, u):
        return np.exp(u)

    def grad_log_abs_deriv(self, u):
        return np.ones_like(u)


class LogitTransform(ElementwiseTransform):
    """Map to `(lower, upper)` with a scaled and shifted logistic sigmoid."""

    def __init__(self, lower=0., upper=1.):
        if not upper > lower:
            raise ValueError('Upper bound must exceed lower bound.')
        self.lower = lower
        self.upper = upper

    def forward(self, x):
        if np.any(x <= self.lower) or np.any(x >= self.upper):
            raise ValueError(
                f'Values {x} not strictly inside ({self.lower}, {self.upper}).')
        z = (x - self.lower) / (self.upper - self.lower)
        return np.log(z) - np.log1p(-z)

    def _sigmoid(self, u):
        return 0.5 * (1 + np.tanh(0.5 * u))

    def inverse(self, u):
        return self.lower + (self.upper - self.lower) * self._sigmoid(u)

    def log_abs_deriv(self, u):
        return (np.log(self.upper - self.lower) - np.logaddexp(0, -u) -
                np.logaddexp(0, u))

    def deriv(self, u):
        s = self._sigmoid(u)
        return (self.upper - self.lower) * s * (1 - s)

    def grad_log_abs_deriv(self, u):
        return 1 - 2 * self._sigmoid(u)


class TransformedDensityModel(DensityModel):
    """Model on a box-constrained space with per-coordinate bijections.

    Each coordinate of the position has its own `ElementwiseTransform`. A
    single transform may be given to apply the same bijection to every
    coordinate.
    """

    def __init__(self, log_density, transforms, grad_log_density=None):
        """
        Args:
            log_density (Callable[[array], float]): Log density function on
                the constrained space.
            transforms (ElementwiseTransform or Sequence[ElementwiseTransform]):
                Bijection for every coordinate, or one per coordinate.
            grad_log_density (
                    None or Callable[[array], array or Tuple[array, float]]):
                Gradient of `log_density` with respect to the constrained
                position, optionally returning the tuple `(grad, value)`.
        """
        super().__init__(log_density, grad_log_density)
        self.transforms = transforms

    def _apply(self, method, vals):
        if isinstance(self.transforms, ElementwiseTransform):
            return getattr(self.transforms, method)(vals)
        if len(self.transforms) != vals.shape[0]:
            raise UnsupportedShapeError(
                f'{len(self.transforms)} transforms given for a position of '
                f'dimension {vals.shape[0]}.')
        return np.array([
            getattr(t, method)(v) for t, v in zip(self.transforms, vals)],
            dtype=np.float64)

    def transform_to_unconstrained(self, pos):
        pos = np.asarray(pos, dtype=np.float64)
        u = self._apply('forward', pos)
        return u, float(np.sum(self._apply('log_abs_deriv', u)))

    def transform_to_constrained(self, u):
        u = np.asarray(u, dtype=np.float64)
        return (self._apply('inverse', u),
                float(np.sum(self._apply('log_abs_deriv', u))))

    def vjp_transform_to_constrained(self, u, vector):
        return vector * self._apply('deriv', u)

    def grad_log_det_jacobian(self, u):
        return self._apply('grad_log_abs_deriv', u)
