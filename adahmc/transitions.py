"""Markov transition kernels."""

from abc import ABC, abstractmethod
from collections import namedtuple
import logging
from math import floor, inf
import numpy as np
from adahmc.utils import log_sum_exp, exp_ratio
from adahmc.errors import IntegratorError, HamiltonianDivergenceError

logger = logging.getLogger(__name__)


def _process_integrator_error(exception, stats):
    logger.info(f'Terminating trajectory due to error:\n{exception!s}')
    if isinstance(exception, HamiltonianDivergenceError):
        stats['diverging'] = True


def _metropolis_accept_prob(h_init, h_final):
    if not np.isfinite(h_final):
        return 0.
    return exp_ratio(h_init, h_final)


class Transition(ABC):
    """Base class for Markov transition kernels.

    Defines expected interface for transitions by sampler classes.
    """

    @property
    @abstractmethod
    def state_variables(self):
        """A set of names of state variables accessed by this transition."""

    @abstractmethod
    def sample(self, state, rng):
        """Sample a new chain state from the Markov transition kernel.

        Args:
            state (adahmc.states.ChainState): Current chain state.
            rng (numpy.random.Generator): Numpy random number generator.

        Returns:
            state (adahmc.states.ChainState): Updated state object.
            trans_stats (Dict[str, numeric] or None): Any statistics computed
                during the transition or `None` if no statistics.
        """


class IndependentMomentumTransition(Transition):
    """Independent momentum transition.

    Independently resamples the momentum component of the state from its
    conditional distribution given the position, `N(0, M)` for a Euclidean
    metric system with mass matrix `M`.
    """

    state_variables = {'mom'}

    def __init__(self, system):
        """
        Args:
            system (adahmc.systems.System): Hamiltonian system defining
                conditional distribution on momentum to leave invariant.
        """
        self.system = system

    def sample(self, state, rng):
        state.mom = self.system.sample_momentum(state, rng)
        return state, None


class IntegrationTransition(Transition):
    """Base class for integration transtions.

    Markov transition kernel which leaves canonical distribution invariant and
    jointly updates the position and momentum components of the chain state by
    integrating the Hamiltonian dynamics of the system to propose new values
    for the state.

    Every call to `sample` returns a statistics dictionary containing at
    least

      * `n_step`: number of integrator steps taken,
      * `accept_stat`: statistic in [0, 1] used for step size adaptation,
      * `diverging`: whether the trajectory was terminated by a divergence
        or non-finite energy,
      * `accepted`: whether the returned state differs from the initial one,
      * `energy_error`: Hamiltonian of returned state minus initial value,
      * `step_size`: integrator step size used.
    """

    state_variables = {'pos', 'mom', 'dir'}

    def __init__(self, system, integrator):
        """
        Args:
            system (adahmc.systems.System): Hamiltonian system to be simulated.
            integrator (adahmc.integrators.Integrator): Symplectic integrator
                appropriate to the specified Hamiltonian system.
        """
        self.system = system
        self.integrator = integrator

    def _finalize_stats(self, stats, init_state, next_state, h_init):
        stats['accepted'] = next_state is not init_state
        stats['energy_error'] = (
            self.system.h(next_state) - h_init if stats['accepted'] else 0.)
        stats['step_size'] = self.integrator.step_size
        return stats


class MetropolisIntegrationTransition(IntegrationTransition):
    """Base for HMC methods using a Metropolis accept step to sample new state.

    A trajectory is generated by integrating the dynamics from the current
    state for a number of integrator steps. The end state, with its
    integration direction negated so that the proposal is an involution, is
    accepted with probability `min(1, exp(h_init - h_final))`. The direction
    is then negated again whatever the decision, which leaves the direction
    unchanged on acceptance and reversed on rejection.
    """

    def _sample_n_step(self, state, n_step, rng):
        h_init = self.system.h(state)
        state_p = state
        stats = {'n_step': 0, 'diverging': False}
        integration_error = False
        try:
            for _ in range(n_step):
                state_p = self.integrator.step(state_p)
                stats['n_step'] += 1
        except IntegratorError as e:
            integration_error = True
            _process_integrator_error(e, stats)
        else:
            state_p.dir *= -1
        if state_p is not state and not integration_error:
            accept_prob = _metropolis_accept_prob(
                h_init, self.system.h(state_p))
        else:
            accept_prob = 0.
        stats['metrop_accept_prob'] = accept_prob
        stats['accept_stat'] = accept_prob
        next_state = state
        if not integration_error and rng.uniform() < accept_prob:
            next_state = state_p
        next_state.dir *= -1
        return next_state, self._finalize_stats(
            stats, state, next_state, h_init)


class MetropolisStaticIntegrationTransition(MetropolisIntegrationTransition):
    """Static integration transition with Metropolis sampling of new state.

    The trajectory is generated by integrating the state a fixed number of
    integrator steps. This is the originally proposed Hybrid Monte Carlo
    algorithm [1,2].

    References:

      1. Duane, S., Kennedy, A.D., Pendleton, B.J. and Roweth, D., 1987.
         Hybrid Monte Carlo. Physics letters B, 195(2), pp.216-222.
      2. Neal, R.M., 2011. MCMC using Hamiltonian dynamics.
         Handbook of Markov Chain Monte Carlo, 2(11), p.2.
    """

    def __init__(self, system, integrator, n_step):
        """
        Args:
            system (adahmc.systems.System): Hamiltonian system to be simulated.
            integrator (adahmc.integrators.Integrator): Symplectic integrator
                appropriate to the specified Hamiltonian system.
            n_step (int): Number of integrator steps to simulate in each
                transition.
        """
        super().__init__(system, integrator)
        if n_step < 1:
            raise ValueError('Number of integrator steps must be positive')
        self.n_step = n_step

    def sample(self, state, rng):
        return self._sample_n_step(state, self.n_step, rng)


class MetropolisFixedTimeIntegrationTransition(MetropolisIntegrationTransition):
    """Fixed integration time transition with Metropolis sampling.

    The trajectory length in time is held fixed while the step size varies,
    with the number of integrator steps set to
    `max(1, floor(integration_time / step_size))`. Combined with dual averaging
    step size adaptation this gives the HMC-DA algorithm of [1].

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
    """

    def __init__(self, system, integrator, integration_time):
        """
        Args:
            system (adahmc.systems.System): Hamiltonian system to be simulated.
            integrator (adahmc.integrators.Integrator): Symplectic integrator
                appropriate to the specified Hamiltonian system.
            integration_time (float): Target total integration time per
                trajectory, i.e. `n_step * step_size`.
        """
        super().__init__(system, integrator)
        if integration_time <= 0:
            raise ValueError('Integration time must be positive')
        self.integration_time = integration_time

    @property
    def n_step(self):
        """Number of steps for the current integrator step size."""
        return max(1, floor(self.integration_time / self.integrator.step_size))

    def sample(self, state, rng):
        return self._sample_n_step(state, self.n_step, rng)


def euclidean_no_u_turn_criterion(system, state_1, state_2, sum_mom):
    """No-U-turn termination criterion for Euclidean manifolds [1].

    Terminates trajectories when the velocities at the terminal states of
    the trajectory both have negative dot products with the vector from
    the position of the first terminal state to the position of the second
    terminal state, corresponding to further evolution of the trajectory
    reducing the distance between the terminal state positions.

    Args:
        system (adahmc.systems.System): Hamiltonian system being integrated.
        state_1 (adahmc.states.ChainState): First terminal state of trajectory.
        state_2 (adahmc.states.ChainState): Second terminal state of
            trajectory.
        sum_mom (array): Sum of momentums of trajectory states.

    Returns:
        terminate (bool): True if termination criterion is satisfied.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
    """
    return (
        np.sum(system.dh_dmom(state_1) * (state_2.pos - state_1.pos)) < 0 or
        np.sum(system.dh_dmom(state_2) * (state_2.pos - state_1.pos)) < 0)


def riemannian_no_u_turn_criterion(system, state_1, state_2, sum_mom):
    """Generalized no-U-turn termination criterion [2].

    Terminates trajectories when the velocity at either terminal state has a
    negative dot product with the sum of the momentums across the trajectory.
    This generalizes the criterion of [1], which uses the displacement between
    the terminal positions in place of the summed momentum.

    Args:
        system (adahmc.systems.System): Hamiltonian system being integrated.
        state_1 (adahmc.states.ChainState): First terminal state of trajectory.
        state_2 (adahmc.states.ChainState): Second terminal state of
            trajectory.
        sum_mom (array): Sum of momentums of trajectory states.

    Returns:
        terminate (bool): True if termination criterion is satisfied.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
      2. Betancourt, M., 2013. Generalizing the no-U-turn sampler to Riemannian
         manifolds. arXiv preprint arXiv:1304.1920.
    """
    return (
        np.sum(system.dh_dmom(state_1) * sum_mom) < 0 or
        np.sum(system.dh_dmom(state_2) * sum_mom) < 0)


# log_weight is the log of the sum of exp(-h) over the leaves of the subtree
_SubTree = namedtuple('_SubTree', [
    'negative', 'positive', 'sum_mom', 'log_weight', 'depth'])


class MultinomialDynamicIntegrationTransition(IntegrationTransition):
    """Dynamic integration transition with multinomial sampling of new state.

    In each transition a binary tree of states is recursively computed by
    integrating randomly forward and backward in time by a number of steps
    equal to the previous tree size [1,2] until a termination criterion on the
    tree leaves is met. The next chain state is chosen from the candidate
    states using a progressive multinomial sampling scheme [2] based on the
    relative probability densities of the different candidate states, with the
    sampling biased towards states in the most recently added subtree.

    Expansion stops when the criterion is met on the whole tree or on any
    subtree, when the Hamiltonian increases by more than `max_delta_h` over
    its initial value (a divergence) or when `max_tree_depth` doublings have
    been made. Subtrees which terminate or diverge while being built are
    discarded whole so no state from them can be selected.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
      2. Betancourt, M., 2017. A conceptual introduction to Hamiltonian Monte
         Carlo. arXiv preprint arXiv:1701.02434.
    """

    def __init__(self, system, integrator,
                 max_tree_depth=10, max_delta_h=1000,
                 termination_criterion=riemannian_no_u_turn_criterion,
                 do_extra_subtree_checks=True):
        """
        Args:
            system (adahmc.systems.System): Hamiltonian system to be simulated.
            integrator (adahmc.integrators.Integrator): Symplectic integrator
                appropriate to the specified Hamiltonian system.
            max_tree_depth (int): Maximum depth to expand trajectory binary
                tree to. The maximum number of integrator steps is
                `2**max_tree_depth - 1`.
            max_delta_h (float): Maximum change to tolerate in the Hamiltonian
                function over a trajectory before signalling a divergence.
            termination_criterion (
                    Callable[[System, ChainState, ChainState, array], bool]):
                Function computing criterion to use to determine when to
                terminate trajectory tree expansion, given the system, the two
                edge states of the (sub)tree being checked and the sum of the
                momentums over the (sub)tree. Defaults to
                `riemannian_no_u_turn_criterion`.
            do_extra_subtree_checks (bool): Whether to also check the
                criterion on the overlapping subtrees formed by the outer
                states of one half of a merged tree and the inner states of the
                other. This stops trajectories on near-Gaussian targets at step
                sizes where the criterion on the whole tree alone fails to
                detect a U-turn and expansion runs on to `max_tree_depth`.
        """
        super().__init__(system, integrator)
        if max_tree_depth < 1:
            raise ValueError('max_tree_depth must be positive')
        self.max_tree_depth = max_tree_depth
        self.max_delta_h = max_delta_h
        self.termination_criterion = termination_criterion
        self.do_extra_subtree_checks = do_extra_subtree_checks

    def _termination_criterion(self, tree, neg_subtree, pos_subtree):
        if self.termination_criterion(
                self.system, tree.negative, tree.positive, tree.sum_mom):
            return True
        elif tree.depth > 1 and self.do_extra_subtree_checks:
            if self.termination_criterion(
                    self.system, neg_subtree.negative, pos_subtree.negative,
                    neg_subtree.sum_mom + pos_subtree.negative.mom):
                return True
            elif self.termination_criterion(
                    self.system, neg_subtree.positive, pos_subtree.positive,
                    pos_subtree.sum_mom + neg_subtree.positive.mom):
                return True
        return False

    def _new_leaf(self, state, h):
        return _SubTree(
            negative=state, positive=state, sum_mom=np.asarray(state.mom),
            log_weight=-h, depth=0)

    def _merge_subtrees(self, neg_subtree, pos_subtree):
        assert neg_subtree.depth == pos_subtree.depth, (
            'Cannot merge subtrees of different depths')
        return _SubTree(
            negative=neg_subtree.negative, positive=pos_subtree.positive,
            log_weight=log_sum_exp(
                neg_subtree.log_weight, pos_subtree.log_weight),
            sum_mom=neg_subtree.sum_mom + pos_subtree.sum_mom,
            depth=neg_subtree.depth + 1)

    def _check_divergence(self, h, h_init):
        if h - h_init > self.max_delta_h:
            raise HamiltonianDivergenceError(f'delta_h = {h - h_init}')

    def _build_tree(self, depth, state, stats, rng, h_init):
        if depth == 0:
            try:
                state = self.integrator.step(state)
                h = self.system.h(state)
                h = inf if np.isnan(h) else h
                tree = self._new_leaf(state, h)
                stats['sum_metrop_accept_prob'] += _metropolis_accept_prob(
                    h_init, h)
                stats['n_step'] += 1
                self._check_divergence(h, h_init)
            except IntegratorError as e:
                _process_integrator_error(e, stats)
                return True, None, None
            return False, tree, state
        # inner subtree starts from current state, outer from its far end
        terminate, inner_tree, inner_proposal = self._build_tree(
            depth - 1, state, stats, rng, h_init)
        if terminate:
            return terminate, None, None
        state = inner_tree.positive if state.dir == 1 else inner_tree.negative
        terminate, outer_tree, outer_proposal = self._build_tree(
            depth - 1, state, stats, rng, h_init)
        if terminate:
            return terminate, None, None
        neg_subtree = inner_tree if state.dir == 1 else outer_tree
        pos_subtree = outer_tree if state.dir == 1 else inner_tree
        tree = self._merge_subtrees(neg_subtree, pos_subtree)
        # uniform multinomial choice between the two halves
        accept_outer_prob = exp_ratio(outer_tree.log_weight, tree.log_weight)
        proposal = (
            outer_proposal if rng.uniform() < accept_outer_prob else
            inner_proposal)
        terminate = self._termination_criterion(tree, neg_subtree, pos_subtree)
        return terminate, tree, proposal

    def sample(self, state, rng):
        init_state = state
        h_init = self.system.h(state)
        stats = {
            'n_step': 0, 'sum_metrop_accept_prob': 0., 'reject_prob': 1.,
            'diverging': False}
        tree = self._new_leaf(state, h_init)
        next_state = state
        for depth in range(self.max_tree_depth):
            direction = 2 * (rng.uniform() < 0.5) - 1
            state = tree.positive if direction == 1 else tree.negative
            state.dir = direction
            terminate, new_tree, new_proposal = self._build_tree(
                depth, state, stats, rng, h_init)
            if terminate:
                break
            # biased progressive sampling favouring the new subtree
            accept_proposal_prob = exp_ratio(
                new_tree.log_weight, tree.log_weight)
            if rng.uniform() < accept_proposal_prob:
                next_state = new_proposal
            stats['reject_prob'] *= (1. - accept_proposal_prob)
            neg_subtree = tree if direction == 1 else new_tree
            pos_subtree = new_tree if direction == 1 else tree
            tree = self._merge_subtrees(neg_subtree, pos_subtree)
            if self._termination_criterion(tree, neg_subtree, pos_subtree):
                break
        sum_accept_prob = stats.pop('sum_metrop_accept_prob')
        if stats['n_step'] > 0:
            stats['av_metrop_accept_prob'] = sum_accept_prob / stats['n_step']
        else:
            stats['av_metrop_accept_prob'] = 0.
        stats['accept_stat'] = (
            0. if stats['diverging'] else stats['av_metrop_accept_prob'])
        stats['tree_depth'] = depth + 1
        return next_state, self._finalize_stats(
            stats, init_state, next_state, h_init)
