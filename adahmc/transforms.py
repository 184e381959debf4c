"""Parameter state bookkeeping between constrained and unconstrained spaces."""

import numpy as np
from adahmc.errors import Error, TransformError, UnsupportedShapeError


class ParameterState(object):
    """Current parameter vector of a chain and its cached log density.

    The vector is held either in the model's constrained representation or in
    the unconstrained representation, as recorded by the `transformed` flag.
    `log_dens` caches the log density *in the current representation*, i.e.
    including the log-Jacobian term when `transformed` is `True`, or is `None`
    when it needs recomputing. Assigning to `values` invalidates the cache
    while `update` sets the vector and its log density together.
    """

    def __init__(self, values, transformed=False, log_dens=None):
        self._values = np.array(values, dtype=np.float64)
        self.transformed = transformed
        self.log_dens = log_dens

    @property
    def values(self):
        return self._values

    @values.setter
    def values(self, values):
        self._values = np.array(values, dtype=np.float64)
        self.log_dens = None

    @property
    def dim(self):
        return self._values.shape[0]

    def update(self, values, log_dens):
        """Replace the vector and its log density together."""
        self._values = np.array(values, dtype=np.float64)
        self.log_dens = log_dens

    def copy(self):
        return type(self)(self._values, self.transformed, self.log_dens)

    def __repr__(self):
        return (
            f'ParameterState(values={self._values}, '
            f'transformed={self.transformed}, log_dens={self.log_dens})')


def _blocked_update(full, block_indices, block_vals):
    full = full.copy()
    full[block_indices] = block_vals
    return full


class TransformManager(object):
    """Moves parameter states between representations and evaluates the
    unconstrained log density of a model.

    Every transform into unconstrained space is paired with the inverse
    transform back, with the log-Jacobian added on the way in and subtracted
    on the way out, so the cached log density of a `ParameterState` always
    matches its representation.

    The model is called from the thread running the chain; a model shared by
    concurrently running chains must be safe to call concurrently.
    """

    def __init__(self, model):
        """
        Args:
            model (adahmc.models.Model): Target density oracle.
        """
        self.model = model

    def _call_transform(self, method, vals):
        try:
            return method(vals)
        except Error:
            raise
        except Exception as e:
            raise TransformError(
                f'Model transform {method.__name__} failed for values '
                f'{vals}.') from e

    def to_unconstrained(self, pos):
        """Unconstrained position and log-Jacobian for a constrained one."""
        return self._call_transform(self.model.transform_to_unconstrained, pos)

    def to_constrained(self, u):
        """Constrained position and log-Jacobian for an unconstrained one."""
        return self._call_transform(self.model.transform_to_constrained, u)

    def enter_unconstrained(self, state):
        """Rewrite a parameter state in the unconstrained representation.

        Does nothing if the state is already unconstrained.

        Args:
            state (ParameterState): State to update in place.

        Returns:
            ParameterState: The updated state.
        """
        if state.transformed:
            return state
        u, log_det_jac = self.to_unconstrained(state.values)
        if state.log_dens is None:
            state.log_dens = self.model.log_density(state.values)
        if u.shape != state.values.shape:
            raise UnsupportedShapeError(
                f'Transform changed dimension from {state.values.shape} to '
                f'{u.shape}.')
        state.update(u, state.log_dens + log_det_jac)
        state.transformed = True
        return state

    def return_to_constrained(self, state):
        """Rewrite a parameter state in the constrained representation.

        Does nothing if the state is already constrained.

        Args:
            state (ParameterState): State to update in place.

        Returns:
            ParameterState: The updated state.
        """
        if not state.transformed:
            return state
        pos, log_det_jac = self.to_constrained(state.values)
        log_dens = (
            None if state.log_dens is None else state.log_dens - log_det_jac)
        state.update(pos, log_dens)
        state.transformed = False
        return state

    def log_density(self, u):
        """Log density of the target in unconstrained space."""
        pos, log_det_jac = self.to_constrained(u)
        return self.model.log_density(pos) + log_det_jac

    def grad_and_log_density(self, u):
        """Gradient and value of the unconstrained log density."""
        pos, log_det_jac = self.to_constrained(u)
        grad, log_dens = self.model.grad_and_log_density(pos)
        grad_u = (
            self.model.vjp_transform_to_constrained(u, np.asarray(grad)) +
            self.model.grad_log_det_jacobian(u))
        return grad_u, log_dens + log_det_jac

    def potential_functions(self, u, block_indices=None):
        """Potential energy and gradient functions for a Hamiltonian system.

        Args:
            u (array): Current full unconstrained position.
            block_indices (None or array): Indices of the coordinates to
                update. Other coordinates are held fixed at their values in
                `u`. If `None` all coordinates are updated.

        Returns:
            neg_log_dens (Callable[[array], float]): Negative unconstrained
                log density of the active coordinates.
            grad_neg_log_dens (Callable[[array], Tuple[array, float]]):
                Function returning the gradient and value of `neg_log_dens`.
        """
        if block_indices is None:
            def neg_log_dens(pos):
                return -self.log_density(pos)

            def grad_neg_log_dens(pos):
                grad, log_dens = self.grad_and_log_density(pos)
                return -grad, -log_dens
        else:
            u = np.array(u, dtype=np.float64)

            def neg_log_dens(pos):
                return -self.log_density(_blocked_update(u, block_indices, pos))

            def grad_neg_log_dens(pos):
                grad, log_dens = self.grad_and_log_density(
                    _blocked_update(u, block_indices, pos))
                return -grad[block_indices], -log_dens
        return neg_log_dens, grad_neg_log_dens
