"""Hamiltonian systems encapsulating energy functions and their derivatives."""

from abc import ABC, abstractmethod
import numpy as np
from adahmc.states import cache_in_state, cache_in_state_with_aux
from adahmc.errors import UnsupportedShapeError
import adahmc.matrices as matrices
from adahmc.autodiff import autodiff_fallback


class System(ABC):
    r"""Base class for Hamiltonian systems.

    The Hamiltonian function \(h\) is split as

    \[ h(q, p) = h_1(q) + h_2(q, p) \]

    with \(q\) the (unconstrained) position and \(p\) the momentum. The
    potential energy \(h_1\) is the negative logarithm of an unnormalized
    density on the position space, the target distribution to sample from.
    Energies and their derivatives are memoized in the `ChainState` objects
    they are evaluated at, so each is computed at most once per phase point.
    """

    def __init__(self, neg_log_dens, grad_neg_log_dens=None):
        """
        Args:
            neg_log_dens (Callable[[array], float]): Function which given a
                position array returns the negative logarithm of an
                unnormalized probability density on the position space.
            grad_neg_log_dens (
                    None or Callable[[array], array or Tuple[array, float]]):
                Function which given a position array returns the derivative of
                `neg_log_dens` with respect to the position array argument.
                It may instead return a 2-tuple `(grad, value)` with `value`
                the negative log density at the same position, which is then
                cached to avoid a separate evaluation. If `None` (the default)
                Autograd is used to construct it.
        """
        self._neg_log_dens = neg_log_dens
        self._grad_neg_log_dens = autodiff_fallback(
            grad_neg_log_dens, neg_log_dens,
            'grad_and_value', 'grad_neg_log_dens')

    @cache_in_state('pos')
    def neg_log_dens(self, state):
        """Negative logarithm of unnormalized density of target distribution.

        Args:
            state (adahmc.states.ChainState): State to compute value at.

        Returns:
            float: Value of computed negative log density.
        """
        return self._neg_log_dens(state.pos)

    @cache_in_state_with_aux('pos', 'neg_log_dens')
    def grad_neg_log_dens(self, state):
        """Derivative of negative log density with respect to position.

        Args:
            state (adahmc.states.ChainState): State to compute value at.

        Returns:
            array: Value of `neg_log_dens(state)` derivative with respect to
                `state.pos`.
        """
        return self._grad_neg_log_dens(state.pos)

    def h1(self, state):
        """Potential energy, the Hamiltonian component depending on position."""
        return self.neg_log_dens(state)

    def dh1_dpos(self, state):
        """Derivative of potential energy with respect to position."""
        return self.grad_neg_log_dens(state)

    def potential_and_gradient(self, state):
        """Potential energy and its gradient at the position of a state.

        The gradient is evaluated first so that oracles returning both
        quantities together fill both cache entries in one call.

        Args:
            state (adahmc.states.ChainState): State to compute values at.

        Returns:
            potential (float): Potential energy `h1(state)`.
            grad (array): Gradient of potential energy with respect to
                `state.pos`.
        """
        grad = self.dh1_dpos(state)
        return self.h1(state), grad

    def h1_flow(self, state, dt):
        """Apply exact flow map corresponding to `h1` Hamiltonian component.

        `state` argument is modified in place.

        Args:
            state (adahmc.states.ChainState): State to start flow at.
            dt (float): Time interval to simulate flow for.
        """
        state.mom = state.mom - dt * self.dh1_dpos(state)

    @abstractmethod
    def h2(self, state):
        """Kinetic energy, the Hamiltonian component depending on momentum."""

    @abstractmethod
    def dh2_dmom(self, state):
        """Derivative of kinetic energy with respect to momentum."""

    def h(self, state):
        """Hamiltonian function for system.

        Args:
            state (adahmc.states.ChainState): State to compute value at.

        Returns:
            float: Value of Hamiltonian.
        """
        return self.h1(state) + self.h2(state)

    def dh_dpos(self, state):
        return self.dh1_dpos(state)

    def dh_dmom(self, state):
        return self.dh2_dmom(state)

    @abstractmethod
    def sample_momentum(self, state, rng):
        """Sample a momentum from its conditional distribution given a position.

        Args:
            state (adahmc.states.ChainState): State defining position to
               condition on.
            rng (numpy.random.Generator): Numpy random number generator.

        Returns:
            mom (array): Sampled momentum.
        """


class EuclideanMetricSystem(System):
    r"""Hamiltonian system with a Euclidean metric on the position space.

    The metric has a fixed positive definite matrix representation \(M\), the
    mass matrix, and momenta are zero-mean Gaussian with covariance \(M\) so
    that the kinetic energy is

    \[ h_2(p) = \frac{1}{2} p^T M^{-1} p. \]

    The metric may be replaced between trajectories (e.g. by a metric adapter)
    but must not be changed while a trajectory is being simulated.
    """

    def __init__(self, neg_log_dens, metric=None, grad_neg_log_dens=None):
        """
        Args:
            neg_log_dens (Callable[[array], float]): Negative logarithm of an
                unnormalized density on the position space.
            metric (None or float or array or PositiveDefiniteMatrix): Mass
                matrix. If `None` (the default) the identity is used. A
                positive scalar specifies a scaled identity matrix, a 1D array
                a diagonal matrix by its diagonal and a 2D array a dense
                positive definite matrix.
            grad_neg_log_dens (
                    None or Callable[[array], array or Tuple[array, float]]):
                Derivative of `neg_log_dens`, see `System`.
        """
        super().__init__(neg_log_dens, grad_neg_log_dens)
        self.metric = metric

    @property
    def metric(self):
        """Mass matrix as a `adahmc.matrices.PositiveDefiniteMatrix`."""
        return self._metric

    @metric.setter
    def metric(self, metric):
        if metric is None:
            metric = matrices.IdentityMatrix()
        elif np.isscalar(metric) or (
                isinstance(metric, np.ndarray) and metric.ndim == 0):
            metric = matrices.PositiveScaledIdentityMatrix(float(metric))
        elif isinstance(metric, np.ndarray):
            if metric.ndim == 1:
                metric = matrices.PositiveDiagonalMatrix(metric)
            elif metric.ndim == 2:
                metric = matrices.DensePositiveDefiniteMatrix(metric)
            else:
                raise UnsupportedShapeError(
                    'If NumPy ndarray value is used for `metric` must be '
                    '0D (scaled identity matrix), 1D (diagonal matrix) or 2D '
                    '(dense positive definite matrix)')
        self._metric = metric

    @property
    def dim(self):
        """Position dimension fixed by the metric, or `None` if implicit."""
        return self._metric.shape[0]

    @cache_in_state('mom')
    def h2(self, state):
        return 0.5 * state.mom @ self.dh2_dmom(state)

    @cache_in_state('mom')
    def dh2_dmom(self, state):
        return self.metric.inv @ state.mom

    def kinetic_energy(self, state):
        """Kinetic energy `0.5 * mom @ inv(metric) @ mom` of a state."""
        return self.h2(state)

    def h2_flow(self, state, dt):
        """Apply exact flow map corresponding to `h2` Hamiltonian component.

        `state` argument is modified in place.

        Args:
            state (adahmc.states.ChainState): State to start flow at.
            dt (float): Time interval to simulate flow for.
        """
        state.pos = state.pos + dt * self.dh2_dmom(state)

    def sample_momentum(self, state, rng):
        return self.metric.sqrt @ rng.standard_normal(state.pos.shape)
