"""Per-chain Hamiltonian Monte Carlo sampler state machine."""

import enum
import logging
from collections import namedtuple
import numpy as np
from numpy.random import default_rng
import adahmc.transitions as trans
from adahmc.adapters import (
    DualAveragingStepSizeAdapter, OnlineVarianceMetricAdapter,
    OnlineCovarianceMetricAdapter, find_reasonable_step_size)
from adahmc.errors import Error, ConfigurationError, UnsupportedShapeError
from adahmc.integrators import LeapfrogIntegrator
from adahmc.matrices import Matrix
from adahmc.stagers import WarmUpStager, WindowedWarmUpStager
from adahmc.states import ChainState
from adahmc.systems import EuclideanMetricSystem
from adahmc.transforms import ParameterState, TransformManager

logger = logging.getLogger(__name__)


HamiltonianTransition = namedtuple(
    'HamiltonianTransition', ['pos', 'log_dens', 'stats'])
HamiltonianTransition.__doc__ = """Output of one sampler iteration.

`pos` is the chain position in the model's constrained space, `log_dens` the
model log density there and `stats` the transition statistics dictionary.
"""


class SamplerStatus(enum.Enum):
    """Lifecycle states of a `HamiltonianSampler`."""
    UNINITIALIZED = 'uninitialized'
    INITIALIZED = 'initialized'
    ADAPTING = 'adapting'
    SAMPLING = 'sampling'
    DONE = 'done'


_TERMINATION_CRITERIA = {
    'generalized': trans.riemannian_no_u_turn_criterion,
    'euclidean': trans.euclidean_no_u_turn_criterion,
}


def _static_transition(config, system, integrator):
    return trans.MetropolisStaticIntegrationTransition(
        system, integrator, config.n_step)


def _dual_averaging_transition(config, system, integrator):
    return trans.MetropolisFixedTimeIntegrationTransition(
        system, integrator, config.integration_time)


def _nuts_transition(config, system, integrator):
    return trans.MultinomialDynamicIntegrationTransition(
        system, integrator, max_tree_depth=config.max_tree_depth,
        max_delta_h=config.max_delta_h,
        termination_criterion=_TERMINATION_CRITERIA[
            config.termination_criterion])


_TRANSITION_BUILDERS = {
    'static': _static_transition,
    'dual_averaging': _dual_averaging_transition,
    'nuts': _nuts_transition,
}


def per_chain_rngs(base_rng, n_chain):
    """Construct independent random number generators for a set of chains.

    If the bit generator of `base_rng` has a `jumped` method this is used to
    produce independent substreams, otherwise its seed sequence is spawned.

    Args:
        base_rng (int or numpy.random.Generator): Seed or generator to derive
            the per-chain generators from.
        n_chain (int): Number of chains.

    Returns:
        List[numpy.random.Generator]: One generator per chain.
    """
    if not isinstance(base_rng, np.random.Generator):
        base_rng = default_rng(base_rng)
    bit_generator = base_rng.bit_generator
    if hasattr(bit_generator, 'jumped'):
        return [default_rng(bit_generator.jumped(i)) for i in range(n_chain)]
    elif hasattr(bit_generator, 'seed_seq'):
        seed_sequence = bit_generator.seed_seq
    elif hasattr(bit_generator, '_seed_seq'):
        seed_sequence = bit_generator._seed_seq
    else:
        raise ValueError(
            f'Unsupported random number generator type {type(base_rng)}.')
    return [default_rng(seed) for seed in seed_sequence.spawn(n_chain)]


class HamiltonianSampler(object):
    """Adaptive Hamiltonian Monte Carlo sampler for a single chain.

    Moves a chain through

        UNINITIALIZED -> INITIALIZED -> ADAPTING / SAMPLING -> DONE

    with `initialize`, `step` and `sample`. Each iteration draws a fresh
    momentum, simulates a trajectory with the variant selected by the
    configuration, updates any active adapters and then commits the proposal
    if accepted or keeps the previous position otherwise.

    Warm up is split into stages by a stager (windowed when the metric is
    adapted). Adapter states are updated once per iteration and the
    estimated step size and metric are only committed when a stage ends, so
    stopping between iterations always leaves a consistent state from which
    `step` or `sample` can carry on.

    If `block_indices` is given only those coordinates are updated, with the
    others held at their current values. This is intended for use within a
    Gibbs scheme where other samplers update the remaining coordinates
    through `condition_on` between steps. The position is then mapped to
    unconstrained space at the start of each iteration and back at the end.

    The sampler owns its random number generator, adapter states and metric,
    so independent chains may run in parallel with one sampler each,
    provided the model can be called concurrently (see `adahmc.models`).
    """

    def __init__(self, model, config, rng=None, metric=None,
                 block_indices=None, callback=None):
        """
        Args:
            model (adahmc.models.Model): Target density oracle.
            config (adahmc.config.SamplerAlgorithmConfig): Sampler settings.
            rng (None or int or numpy.random.Generator): Random number
                generator or seed for one.
            metric (None or float or array or
                    adahmc.matrices.PositiveDefiniteMatrix): Initial mass
                matrix. Defaults to the identity.
            block_indices (None or Sequence[int]): Indices of the coordinates
                to update, or `None` for all of them.
            callback (None or Callable[[Dict[str, Any]], Any]): Function
                called with the statistics of each iteration.
        """
        self.model = model
        self.config = config
        self.rng = rng if isinstance(rng, np.random.Generator) else (
            default_rng(rng))
        self.callback = callback
        self.block_indices = (
            None if block_indices is None else
            np.asarray(block_indices, dtype=np.intp))
        self.transform_manager = TransformManager(model)
        self.status = SamplerStatus.UNINITIALIZED
        self.step_size = config.step_size if config.step_size else None
        if metric is not None and not isinstance(metric, Matrix):
            metric = np.asarray(metric, dtype=np.float64)
        self.metric = metric
        self.iteration = 0
        self._param_state = None
        self._chain_state = None
        self._transition = None
        self._momentum_transition = None
        self._stages = None
        self._stage_index = 0
        self._stage_iter = 0
        self._adapter_states = None

    @property
    def dim(self):
        """Dimension of the full parameter vector."""
        return None if self._param_state is None else self._param_state.dim

    @property
    def position(self):
        """Current position in the constrained space."""
        self._check_initialized()
        if self._param_state.transformed:
            return self.transform_manager.to_constrained(
                self._param_state.values)[0]
        return self._param_state.values.copy()

    @property
    def is_adapting(self):
        """Whether the next iteration belongs to an adaptive stage."""
        return (
            self._stages is not None and
            self._stages[self._stage_index][1].adapters is not None)

    def _check_initialized(self):
        if self.status == SamplerStatus.UNINITIALIZED:
            raise Error('Sampler must be initialized before use.')

    def _random_init_state(self, dim, max_attempts=100):
        for _ in range(max_attempts):
            u = self.rng.uniform(-2, 2, size=dim)
            log_dens = self.transform_manager.log_density(u)
            if np.isfinite(log_dens):
                return ParameterState(u, transformed=True, log_dens=log_dens)
        raise ConfigurationError(
            f'No initial position with finite log density found in '
            f'{max_attempts} uniform draws from [-2, 2].')

    def initialize(self, init_pos=None, dim=None):
        """Set the initial position and prepare the sampler.

        Args:
            init_pos (None or array): Initial position in the constrained
                space. If `None` each unconstrained coordinate is drawn
                uniformly from [-2, 2].
            dim (None or int): Dimension of the position, required when
                `init_pos` is `None` and no metric was given.

        Raises:
            adahmc.errors.ConfigurationError: If the log density at
                `init_pos` is not finite.
            adahmc.errors.UnsupportedShapeError: If `init_pos`, the metric and
                `block_indices` have inconsistent dimensions.
        """
        if self.status != SamplerStatus.UNINITIALIZED:
            raise Error('Sampler has already been initialized.')
        if init_pos is None:
            if dim is None:
                if (self.block_indices is not None or
                        not isinstance(self.metric, np.ndarray) or
                        self.metric.ndim == 0):
                    raise ConfigurationError(
                        'Dimension required when no initial position given.')
                dim = self.metric.shape[0]
            param_state = self._random_init_state(dim)
        else:
            init_pos = np.asarray(init_pos, dtype=np.float64)
            if init_pos.ndim != 1:
                raise UnsupportedShapeError(
                    f'Initial position must be 1D, got shape {init_pos.shape}')
            param_state = ParameterState(init_pos)
            self.transform_manager.enter_unconstrained(param_state)
            if not np.isfinite(param_state.log_dens):
                raise ConfigurationError(
                    f'Log density at initial position is '
                    f'{param_state.log_dens}.')
        self._param_state = param_state
        self._check_block_indices()
        self._build_transition()
        self._momentum_transition.sample(self._chain_state, self.rng)
        if self.step_size is None:
            self.step_size = find_reasonable_step_size(
                self._chain_state, self._transition.system,
                self._transition.integrator)
        self._transition.integrator.step_size = self.step_size
        if self.block_indices is not None:
            self.transform_manager.return_to_constrained(self._param_state)
        self.status = SamplerStatus.INITIALIZED

    def _check_block_indices(self):
        if self.block_indices is None:
            return
        dim = self._param_state.dim
        if (self.block_indices.ndim != 1 or self.block_indices.size == 0 or
                np.any(self.block_indices < 0) or
                np.any(self.block_indices >= dim) or
                np.unique(self.block_indices).size != self.block_indices.size):
            raise UnsupportedShapeError(
                f'Block indices {self.block_indices} invalid for a position '
                f'of dimension {dim}.')

    def _active_dim(self):
        if self.block_indices is None:
            return self._param_state.dim
        return self.block_indices.size

    def _build_transition(self):
        """Build the Hamiltonian system, integrator and transitions.

        Expects the parameter state in unconstrained representation.
        """
        u = self._param_state.values
        neg_log_dens, grad_neg_log_dens = (
            self.transform_manager.potential_functions(u, self.block_indices))
        system = EuclideanMetricSystem(
            neg_log_dens, metric=self.metric,
            grad_neg_log_dens=grad_neg_log_dens)
        if system.dim is not None and system.dim != self._active_dim():
            raise UnsupportedShapeError(
                f'Metric of dimension {system.dim} does not match '
                f'{self._active_dim()} updated coordinates.')
        self.metric = system.metric
        integrator = LeapfrogIntegrator(system, self.step_size)
        self._transition = _TRANSITION_BUILDERS[self.config.variant](
            self.config, system, integrator)
        self._momentum_transition = trans.IndependentMomentumTransition(system)
        pos = u if self.block_indices is None else u[self.block_indices]
        self._chain_state = ChainState(
            pos=pos.copy(), mom=np.zeros_like(pos), dir=1)

    def _adapters(self, n_adapt_iter):
        adaptation = self.config.adaptation
        adapters = [DualAveragingStepSizeAdapter(
            adapt_stat_target=self.config.adapt_stat_target,
            log_step_size_reg_coefficient=(
                adaptation.log_step_size_reg_coefficient),
            iter_decay_coeff=adaptation.iter_decay_coeff,
            iter_offset=adaptation.iter_offset)]
        # metric estimates need at least two draws
        if n_adapt_iter < 2:
            return adapters
        if self.config.metric_type == 'diagonal':
            adapters.append(OnlineVarianceMetricAdapter(
                adaptation.reg_iter_offset, adaptation.reg_scale))
        elif self.config.metric_type == 'dense':
            adapters.append(OnlineCovarianceMetricAdapter(
                adaptation.reg_iter_offset, adaptation.reg_scale))
        return adapters

    def plan(self, n_sample=None):
        """Fix the adaptation schedule if not already fixed.

        Called by `sample` and `step`. The number of adaptive iterations is
        resolved from the configuration and `n_sample` the first time only.

        Args:
            n_sample (None or int): Number of transitions in the first
                requested run, used for the default adaptation horizon.

        Returns:
            List[Tuple[str, adahmc.stagers.ChainStage]]: Labelled stages.
        """
        if self._stages is None:
            n_adapt_iter = self.config.resolve_n_adapt_iter(n_sample)
            adapters = self._adapters(n_adapt_iter) if n_adapt_iter > 0 else []
            if any(not adapter.is_fast for adapter in adapters):
                stager = WindowedWarmUpStager(
                    **self.config.adaptation.stager_kwargs())
            else:
                stager = WarmUpStager()
            self._stages = list(
                stager.stages(n_adapt_iter, None, adapters).items())
            logger.info(
                'Adaptation schedule: ' + ', '.join(
                    f'{label} ({stage.n_iter})'
                    for label, stage in self._stages[:-1]))
        return self._stages

    def condition_on(self, pos):
        """Set the full position, e.g. after other Gibbs components moved.

        Args:
            pos (array): New position in the constrained space.
        """
        self._check_initialized()
        pos = np.asarray(pos, dtype=np.float64)
        if pos.shape != (self._param_state.dim,):
            raise UnsupportedShapeError(
                f'Position of shape {pos.shape} given, expected '
                f'{(self._param_state.dim,)}.')
        self.transform_manager.return_to_constrained(self._param_state)
        self._param_state.values = pos
        if self.block_indices is None:
            self.transform_manager.enter_unconstrained(self._param_state)
            self._build_transition()

    def _start_stage(self):
        _, stage = self._stages[self._stage_index]
        self._adapter_states = [
            adapter.initialize(self._chain_state, self._transition)
            for adapter in stage.adapters]

    def _end_stage(self):
        label, stage = self._stages[self._stage_index]
        for adapter, adapter_state in zip(stage.adapters, self._adapter_states):
            adapter.finalize(adapter_state, self._transition)
        self._adapter_states = None
        self._stage_index += 1
        self._stage_iter = 0
        self.step_size = self._transition.integrator.step_size
        self.metric = self._transition.system.metric
        logger.info(
            f'Finished {label} stage, step size {self.step_size:.3g}.')

    def step(self):
        """Perform one sampler iteration.

        Returns:
            HamiltonianTransition: Position and log density in constrained
                space with the transition statistics.
        """
        self._check_initialized()
        self.plan()
        param_state = self._param_state
        if self.block_indices is not None:
            self.transform_manager.enter_unconstrained(param_state)
            self._build_transition()
        _, stage = self._stages[self._stage_index]
        adapting = stage.adapters is not None
        self.status = (
            SamplerStatus.ADAPTING if adapting else SamplerStatus.SAMPLING)
        if adapting and self._stage_iter == 0:
            self._start_stage()
        prev_values = param_state.values.copy()
        prev_log_dens = param_state.log_dens
        system = self._transition.system
        state, _ = self._momentum_transition.sample(self._chain_state, self.rng)
        state, stats = self._transition.sample(state, self.rng)
        self._chain_state = state
        if adapting:
            for adapter, adapter_state in zip(
                    stage.adapters, self._adapter_states):
                adapter.update(adapter_state, state, stats, self._transition)
            self.step_size = self._transition.integrator.step_size
            self._stage_iter += 1
            if self._stage_iter == stage.n_iter:
                self._end_stage()
        if stats['accepted']:
            if self.block_indices is None:
                new_values = state.pos
            else:
                new_values = prev_values.copy()
                new_values[self.block_indices] = state.pos
            param_state.update(new_values, -system.neg_log_dens(state))
        else:
            param_state.update(prev_values, prev_log_dens)
        if self.block_indices is None:
            pos, log_det_jac = self.transform_manager.to_constrained(
                param_state.values)
            log_dens = param_state.log_dens - log_det_jac
        else:
            self.transform_manager.return_to_constrained(param_state)
            pos, log_dens = param_state.values.copy(), param_state.log_dens
        stats['iteration'] = self.iteration
        stats['adapting'] = adapting
        self.iteration += 1
        if self.callback is not None:
            self.callback(stats)
        return HamiltonianTransition(pos, log_dens, stats)

    def sample(self, n_sample):
        """Lazily generate a finite sequence of transitions.

        Adaptive iterations count towards `n_sample` unless the configuration
        sets `discard_warm_up`, in which case any remaining adaptive
        iterations are run first without being yielded. Calling `sample`
        again continues from where the previous stream stopped.

        Args:
            n_sample (int): Number of transitions to generate.

        Returns:
            Iterator[HamiltonianTransition]: Transitions in generation order.

        Raises:
            adahmc.errors.ConfigurationError: If the adaptation settings are
                inconsistent with `n_sample`. Raised on the call, before any
                iteration.
        """
        self._check_initialized()
        if n_sample < 0:
            raise ConfigurationError('n_sample must be non-negative.')
        self.plan(n_sample)
        return self._generate(n_sample)

    def _generate(self, n_sample):
        if self.config.discard_warm_up:
            while self.is_adapting:
                self.step()
        for _ in range(n_sample):
            yield self.step()
        self.status = SamplerStatus.DONE
