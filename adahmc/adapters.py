"""Methods for adaptively setting algorithmic parameters of transitions."""

from abc import ABC, abstractmethod
import logging
from math import exp, log, sqrt
import numpy as np
from adahmc.errors import IntegratorError, AdaptationError
from adahmc.matrices import (
    PositiveDiagonalMatrix, DensePositiveDefiniteMatrix)

logger = logging.getLogger(__name__)


def _one_step_accept_prob(integrator, system, init_state, h_init):
    try:
        state = integrator.step(init_state)
        h = system.h(state)
    except IntegratorError:
        return 0.
    if not np.isfinite(h):
        return 0.
    return min(1., exp(min(h_init - h, 0.)))


def find_reasonable_step_size(state, system, integrator, init_step_size=0.1,
                              max_iters=100, target_accept_prob=0.5,
                              accept_prob_bounds=(0.25, 0.75)):
    """Find an initial integrator step size by a coarse search.

    Variant of Algorithm 4 in Hoffman and Gelman (2014). Starting from
    `init_step_size` a single leapfrog step is taken from `state` and the
    Metropolis acceptance probability `a = min(1, exp(h0 - h1))` computed. If
    `a` exceeds `target_accept_prob` the step size is repeatedly doubled until
    it falls below it, otherwise repeatedly halved until it rises above it.
    The step size is then refined by bisection in log space between the two
    bracketing values until `a` lies within `accept_prob_bounds`. Failed
    steps, e.g. due to a non-finite gradient, are treated as `a = 0`.

    The step size of `integrator` is set to the returned value.

    Args:
        state (adahmc.states.ChainState): State to step from, which should
            have a momentum assigned. Not modified.
        system (adahmc.systems.System): Hamiltonian system being simulated.
        integrator (adahmc.integrators.Integrator): Integrator to use.
        init_step_size (float): Step size to start the search from.
        max_iters (int): Maximum number of single step evaluations.
        target_accept_prob (float): Acceptance probability separating too
            large from too small step sizes in the bracketing phase.
        accept_prob_bounds (Tuple[float, float]): Acceptance probabilities
            accepted as close enough to the target in the bisection phase.

    Returns:
        float: Step size found.

    Raises:
        adahmc.errors.AdaptationError: If the Hamiltonian at `state` is not
            finite or no suitable step size is found within `max_iters`
            evaluations.
    """
    init_state = state.copy()
    h_init = system.h(init_state)
    if not np.isfinite(h_init):
        raise AdaptationError('Hamiltonian not finite at initial state.')
    lower, upper = accept_prob_bounds
    step_size = init_step_size
    integrator.step_size = step_size
    accept_prob = _one_step_accept_prob(integrator, system, init_state, h_init)
    direction = 1 if accept_prob > target_accept_prob else -1
    n_iter = 1
    # bracket the target by doubling or halving
    while n_iter < max_iters:
        prev_step_size = step_size
        step_size = step_size * 2. if direction == 1 else step_size / 2.
        integrator.step_size = step_size
        accept_prob = _one_step_accept_prob(
            integrator, system, init_state, h_init)
        n_iter += 1
        if (direction == 1) != (accept_prob > target_accept_prob):
            break
    else:
        raise AdaptationError(
            f'Could not bracket a reasonable initial step size in {max_iters} '
            f'iterations (final step size {step_size}). A very large final '
            f'step size may indicate that the target distribution is improper '
            f'while a very small one may indicate that the density is not '
            f'smooth at the initial point.')
    if lower <= accept_prob <= upper:
        logger.info(f'Found initial step size {step_size}')
        return step_size
    # bisect in log space, keeping the largest step size above the target
    log_small, log_big = sorted((log(prev_step_size), log(step_size)))
    while n_iter < max_iters:
        log_mid = 0.5 * (log_small + log_big)
        step_size = exp(log_mid)
        integrator.step_size = step_size
        accept_prob = _one_step_accept_prob(
            integrator, system, init_state, h_init)
        n_iter += 1
        if lower <= accept_prob <= upper:
            break
        elif accept_prob > upper:
            log_small = log_mid
        else:
            log_big = log_mid
    else:
        step_size = exp(log_small)
        integrator.step_size = step_size
    logger.info(f'Found initial step size {step_size}')
    return step_size


class Adapter(ABC):
    """Abstract adapter for implementing schemes to adapt transition parameters.

    Adaptation schemes update a collection of adaptation variables, the adapter
    state, after each chain transition from the sampled chain state and/or
    statistics of the transition such as an acceptance probability. After a
    run of adaptive transitions the final adapter state is used to set the
    transition parameters.
    """

    @abstractmethod
    def initialize(self, chain_state, transition):
        """Initialize adapter state prior to starting adaptive transitions.

        Args:
            chain_state (adahmc.states.ChainState): Initial chain state
                adaptive transition will be started from. May be used to
                calculate initial adapter state but should not be mutated.
            transition (adahmc.transitions.Transition): Markov transition being
                adapted. Attributes of the transition or child objects may be
                updated in-place by the method.

        Returns:
            adapt_state (Dict[str, Any]): Initial adapter state.
        """

    @abstractmethod
    def update(self, adapt_state, chain_state, trans_stats, transition):
        """Update adapter state after sampling transition being adapted.

        Args:
            adapt_state (Dict[str, Any]): Current adapter state. Entries will
                be updated in-place by the method.
            chain_state (adahmc.states.ChainState): Current chain state
                following sampling from transition being adapted. Not mutated.
            trans_stats (Dict[str, numeric]): Dictionary of statistics
                associated with transition being adapted. Not mutated.
            transition (adahmc.transitions.Transition): Markov transition being
                adapted. Attributes of the transition or child objects may be
                updated in-place by the method.
        """

    @abstractmethod
    def finalize(self, adapt_state, transition):
        """Update transition parameters based on final adapter state.

        Args:
            adapt_state (Dict[str, Any]): Final adapter state. Array buffers
                may be reused, in which case the corresponding entries are
                removed.
            transition (adahmc.transitions.Transition): Markov transition being
                adapted. Updated in-place by the method.
        """

    @property
    @abstractmethod
    def is_fast(self):
        """Whether the adapter is 'fast' or 'slow'.

        Fast adapters need only local information (e.g. the step size adapter)
        while slow adapters need global information from many iterations (e.g.
        metric adapters), see `adahmc.stagers.WindowedWarmUpStager`.
        """


class DualAveragingStepSizeAdapter(Adapter):
    """Dual averaging integrator step size adapter.

    Implementation of the dual averaging step size adaptation algorithm
    described in [1], a modified version of the stochastic optimisation scheme
    of [2]. The adaptation controls the `accept_stat` statistic of an
    integration transition to be close to a target value. The statistic
    adapted on can be altered by changing `adapt_stat_func`.

    If the integrator already has a step size when the adapter is initialized
    it is used as the starting point, otherwise one is found by
    `find_reasonable_step_size`. The regularization target is ten times the
    starting step size, so reinitializing at the start of each adaptation
    window restarts the optimisation from the current step size.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
      2. Nesterov, Y., 2009. Primal-dual subgradient methods for convex
         problems. Mathematical programming 120(1), pp.221-259.
    """

    is_fast = True

    def __init__(self, adapt_stat_target=0.8, adapt_stat_func=None,
                 log_step_size_reg_target=None,
                 log_step_size_reg_coefficient=0.05, iter_decay_coeff=0.75,
                 iter_offset=10, max_init_step_size_iters=100):
        """
        Args:
            adapt_stat_target (float): Target value for the transition statistic
                being controlled during adaptation.
            adapt_stat_func (Callable[[Dict[str, numeric]], numeric]): Function
                which given a dictionary of transition statistics outputs the
                value of the statistic to control during adaptation. By default
                selects the `'accept_stat'` entry.
            log_step_size_reg_target (float or None): Value to regularize the
                logarithm of the step size towards. If `None` set to
                `log(10 * init_step_size)` for the step size at initialization.
            log_step_size_reg_coefficient (float): Coefficient (gamma in [1])
                controlling the amount of regularisation. Defaults to 0.05.
            iter_decay_coeff (float): Exponent (kappa in [1]) of the decay of
                the weights of the smoothed log step size updates, in
                (0.5, 1]. Defaults to 0.75.
            iter_offset (int): Non-negative offset (t0 in [1]) stabilising
                early iterations. Defaults to 10.
            max_init_step_size_iters (int): Maximum number of iterations of
                the initial step size search.
        """
        self.adapt_stat_target = adapt_stat_target
        if adapt_stat_func is None:
            def adapt_stat_func(stats): return stats['accept_stat']
        self.adapt_stat_func = adapt_stat_func
        self.log_step_size_reg_target = log_step_size_reg_target
        self.log_step_size_reg_coefficient = log_step_size_reg_coefficient
        self.iter_decay_coeff = iter_decay_coeff
        self.iter_offset = iter_offset
        self.max_init_step_size_iters = max_init_step_size_iters

    def initialize(self, chain_state, transition):
        integrator = transition.integrator
        if not integrator.step_size:
            find_reasonable_step_size(
                chain_state, transition.system, integrator,
                max_iters=self.max_init_step_size_iters)
        init_step_size = integrator.step_size
        adapt_state = {
            'iter': 0,
            'smoothed_log_step_size': log(init_step_size),
            'adapt_stat_error': 0.,
        }
        if self.log_step_size_reg_target is None:
            adapt_state['log_step_size_reg_target'] = log(10 * init_step_size)
        else:
            adapt_state['log_step_size_reg_target'] = (
                self.log_step_size_reg_target)
        return adapt_state

    def update(self, adapt_state, chain_state, trans_stats, transition):
        adapt_state['iter'] += 1
        error_weight = 1 / (self.iter_offset + adapt_state['iter'])
        adapt_state['adapt_stat_error'] *= (1 - error_weight)
        adapt_state['adapt_stat_error'] += error_weight * (
            self.adapt_stat_target - self.adapt_stat_func(trans_stats))
        smoothing_weight = (1 / adapt_state['iter'])**self.iter_decay_coeff
        log_step_size = adapt_state['log_step_size_reg_target'] - (
            adapt_state['adapt_stat_error'] * sqrt(adapt_state['iter']) /
            self.log_step_size_reg_coefficient)
        adapt_state['smoothed_log_step_size'] *= (1 - smoothing_weight)
        adapt_state['smoothed_log_step_size'] += (
            smoothing_weight * log_step_size)
        transition.integrator.step_size = exp(log_step_size)

    def finalize(self, adapt_state, transition):
        transition.integrator.step_size = exp(
            adapt_state['smoothed_log_step_size'])


class OnlineVarianceMetricAdapter(Adapter):
    """Diagonal metric adapter using online variance estimates.

    Uses Welford's algorithm [1] to compute an online estimate of the sample
    variances of the unconstrained position components within the current
    adaptation window. The estimates are regularized towards a small common
    value, with more weight for few samples, following Stan [2]. The metric
    (mass matrix) is then set to the diagonal matrix of reciprocal variances,
    so that the kinetic energy uses the variances themselves as inverse mass.

    References:

      1. Welford, B. P., 1962. Note on a method for calculating corrected sums
         of squares and products. Technometrics, 4(3), pp. 419-420.
      2. Carpenter, B., Gelman, A., Hoffman, M.D., Lee, D., Goodrich, B.,
         Betancourt, M., Brubaker, M., Guo, J., Li, P. and Riddell, A., 2017.
         Stan: A probabilistic programming language. Journal of Statistical
         Software, 76(1).
    """

    is_fast = False

    def __init__(self, reg_iter_offset=5, reg_scale=1e-3):
        """
        Args:
            reg_iter_offset (int): Iteration offset in the weight
                `reg_iter_offset / (reg_iter_offset + n_iter)` given to the
                regularisation target. Zero disables regularisation.
            reg_scale (float): Positive value the variance estimates are
                regularized towards.
        """
        self.reg_iter_offset = reg_iter_offset
        self.reg_scale = reg_scale

    def initialize(self, chain_state, transition):
        return {
            'iter': 0,
            'mean': np.zeros_like(chain_state.pos, dtype=np.float64),
            'sum_diff_sq': np.zeros_like(chain_state.pos, dtype=np.float64)
        }

    def update(self, adapt_state, chain_state, trans_stats, transition):
        adapt_state['iter'] += 1
        pos_minus_mean = chain_state.pos - adapt_state['mean']
        adapt_state['mean'] += pos_minus_mean / adapt_state['iter']
        adapt_state['sum_diff_sq'] += pos_minus_mean * (
            chain_state.pos - adapt_state['mean'])

    def _regularize_var_est(self, var_est, n_iter):
        if self.reg_iter_offset:
            var_est *= n_iter / (self.reg_iter_offset + n_iter)
            var_est += self.reg_scale * (
                self.reg_iter_offset / (self.reg_iter_offset + n_iter))

    def finalize(self, adapt_state, transition):
        n_iter = adapt_state['iter']
        var_est = adapt_state.pop('sum_diff_sq')
        if n_iter < 2:
            raise AdaptationError(
                'At least two chain samples required to compute a variance '
                'estimates.')
        var_est /= (n_iter - 1)
        self._regularize_var_est(var_est, n_iter)
        transition.system.metric = PositiveDiagonalMatrix(var_est).inv


class OnlineCovarianceMetricAdapter(Adapter):
    """Dense metric adapter using online covariance estimates.

    Uses Welford's algorithm [1] to compute an online estimate of the sample
    covariance matrix of the unconstrained position components within the
    current adaptation window. The estimate is regularized towards a scaled
    identity matrix, with more weight for few samples, following Stan [2]. The
    metric (mass matrix) is set to the inverse of the regularized covariance
    estimate.

    References:

      1. Welford, B. P., 1962. Note on a method for calculating corrected sums
         of squares and products. Technometrics, 4(3), pp. 419-420.
      2. Carpenter, B., Gelman, A., Hoffman, M.D., Lee, D., Goodrich, B.,
         Betancourt, M., Brubaker, M., Guo, J., Li, P. and Riddell, A., 2017.
         Stan: A probabilistic programming language. Journal of Statistical
         Software, 76(1).
    """

    is_fast = False

    def __init__(self, reg_iter_offset=5, reg_scale=1e-3):
        """
        Args:
            reg_iter_offset (int): Iteration offset in the weight
                `reg_iter_offset / (reg_iter_offset + n_iter)` given to the
                regularisation target.
            reg_scale (float): Positive value added to the diagonal of the
                shrunk covariance estimate.
        """
        self.reg_iter_offset = reg_iter_offset
        self.reg_scale = reg_scale

    def initialize(self, chain_state, transition):
        dim_pos = chain_state.pos.shape[0]
        return {
            'iter': 0,
            'mean': np.zeros(shape=(dim_pos,)),
            'sum_diff_outer': np.zeros(shape=(dim_pos, dim_pos))
        }

    def update(self, adapt_state, chain_state, trans_stats, transition):
        adapt_state['iter'] += 1
        pos_minus_mean = chain_state.pos - adapt_state['mean']
        adapt_state['mean'] += pos_minus_mean / adapt_state['iter']
        adapt_state['sum_diff_outer'] += pos_minus_mean[None, :] * (
            chain_state.pos - adapt_state['mean'])[:, None]

    def _regularize_covar_est(self, covar_est, n_iter):
        covar_est *= (n_iter / (self.reg_iter_offset + n_iter))
        covar_est_diagonal = np.einsum('ii->i', covar_est)
        covar_est_diagonal += self.reg_scale * (
            self.reg_iter_offset / (self.reg_iter_offset + n_iter))

    def finalize(self, adapt_state, transition):
        n_iter = adapt_state['iter']
        covar_est = adapt_state.pop('sum_diff_outer')
        if n_iter < 2:
            raise AdaptationError(
                'At least two chain samples required to compute a covariance '
                'estimate.')
        covar_est /= (n_iter - 1)
        self._regularize_covar_est(covar_est, n_iter)
        transition.system.metric = DensePositiveDefiniteMatrix(covar_est).inv
