"""Symplectic integrators for simulation of Hamiltonian dynamics."""

from abc import ABC, abstractmethod
import numpy as np
from adahmc.errors import AdaptationError, NonFiniteEnergyError


class Integrator(ABC):
    """Base class for integrators."""

    def __init__(self, system, step_size=None):
        """
        Args:
            system (adahmc.systems.System): Hamiltonian system to integrate the
                dynamics of.
            step_size (float or None): Integrator time step. If set to `None`
                (the default) it is assumed that a step size adapter will be
                used to set the step size before calling the `step` method.
        """
        self.system = system
        self.step_size = step_size

    def step(self, state):
        """Perform a single integrator step from a supplied state.

        Args:
            state (adahmc.states.ChainState): System state to perform
                integrator step from. Not modified.

        Returns:
            new_state (adahmc.states.ChainState): New object corresponding to
                stepped state.

        Raises:
            adahmc.errors.NonFiniteEnergyError: If the potential energy or its
                gradient at the stepped state is not finite.
        """
        if self.step_size is None:
            raise AdaptationError(
                'Integrator `step_size` is `None`. This value should only be '
                'used if a step size adapter is being used to set the step '
                'size.')
        state = state.copy()
        self._step(state, state.dir * self.step_size)
        return state

    def integrate(self, state, n_step):
        """Perform `n_step` integrator steps from a supplied state.

        Args:
            state (adahmc.states.ChainState): State to start from. Not
                modified.
            n_step (int): Number of steps to take.

        Returns:
            adahmc.states.ChainState: Final state of the trajectory.
        """
        for _ in range(n_step):
            state = self.step(state)
        return state

    @abstractmethod
    def _step(self, state, dt):
        """Implementation of single integrator step.

        Args:
            state (adahmc.states.ChainState): System state to perform
                integrator step from. Updated in place.
            dt (float): Integrator time step. May be positive or negative.
        """


class LeapfrogIntegrator(Integrator):
    r"""
    Leapfrog integrator for Hamiltonian systems with tractable component flows.

    Each step is a half step of the momentum under the potential energy, a
    full step of the position under the kinetic energy and a second momentum
    half step,

    \[ p \gets p - \frac{\epsilon}{2} \nabla h_1(q), \quad
       q \gets q + \epsilon M^{-1} p, \quad
       p \gets p - \frac{\epsilon}{2} \nabla h_1(q). \]

    The gradient evaluated for the closing half step is cached in the state
    and reused by the opening half step of the next step, so there is one
    gradient evaluation per step. The map is volume preserving and reversible
    under negation of the integration direction.
    """

    def __init__(self, system, step_size=None):
        if not hasattr(system, 'h1_flow') or not hasattr(system, 'h2_flow'):
            raise ValueError(
                'Explicit leapfrog integrator can only be used for systems '
                'with explicit `h1_flow` and `h2_flow` Hamiltonian component '
                'flow maps.')
        super().__init__(system, step_size)

    def _step(self, state, dt):
        self.system.h1_flow(state, 0.5 * dt)
        self.system.h2_flow(state, dt)
        self.system.h1_flow(state, 0.5 * dt)
        potential, grad = self.system.potential_and_gradient(state)
        if not (np.isfinite(potential) and np.all(np.isfinite(grad))):
            raise NonFiniteEnergyError(
                f'Non-finite potential energy ({potential}) or gradient at '
                f'position {state.pos}.')
