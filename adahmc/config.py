"""Immutable per-chain sampler configuration objects."""

from collections import namedtuple
from adahmc.errors import ConfigurationError
from adahmc.utils import default_n_adapt_iter


VARIANTS = ('static', 'dual_averaging', 'nuts')
METRIC_TYPES = ('unit', 'diagonal', 'dense')
TERMINATION_CRITERIA = ('generalized', 'euclidean')


_AdaptationConfigBase = namedtuple('AdaptationConfig', [
    'init_buffer', 'term_buffer', 'base_window', 'window_multiplier',
    'log_step_size_reg_coefficient', 'iter_offset', 'iter_decay_coeff',
    'reg_iter_offset', 'reg_scale'])


class AdaptationConfig(_AdaptationConfigBase):
    """Settings of the windowed warm up and its adapters.

    Attributes:
        init_buffer (int or None): Iterations in the initial fast (step size
            only) buffer.
        term_buffer (int or None): Iterations in the terminal fast buffer.
        base_window (int or None): Iterations in the first slow (metric)
            window, each following window being `window_multiplier` times
            longer.
        window_multiplier (float): Growth factor of slow windows.
        log_step_size_reg_coefficient (float): Dual averaging shrinkage
            (gamma).
        iter_offset (int): Dual averaging iteration offset (t0).
        iter_decay_coeff (float): Dual averaging decay exponent (kappa).
        reg_iter_offset (int): Weight offset regularizing metric estimates.
        reg_scale (float): Value metric variance estimates are regularized
            towards.

    If all three of `init_buffer`, `term_buffer` and `base_window` are `None`
    the defaults 75, 50 and 25 are used and shrunk proportionally, with a
    warning, for warm ups too short to hold them. Explicit values are used as
    given and a warm up too short for the buffers is a `ConfigurationError`.
    """

    __slots__ = ()

    def __new__(cls, init_buffer=None, term_buffer=None, base_window=None,
                window_multiplier=2, log_step_size_reg_coefficient=0.05,
                iter_offset=10, iter_decay_coeff=0.75, reg_iter_offset=5,
                reg_scale=1e-3):
        for name, val in (('init_buffer', init_buffer),
                          ('term_buffer', term_buffer)):
            if val is not None and val < 0:
                raise ConfigurationError(f'{name} must be non-negative.')
        if base_window is not None and base_window < 1:
            raise ConfigurationError('base_window must be positive.')
        if window_multiplier < 1:
            raise ConfigurationError('window_multiplier must be at least 1.')
        if log_step_size_reg_coefficient <= 0:
            raise ConfigurationError(
                'log_step_size_reg_coefficient must be positive.')
        if iter_offset < 0:
            raise ConfigurationError('iter_offset must be non-negative.')
        if not 0.5 < iter_decay_coeff <= 1:
            raise ConfigurationError('iter_decay_coeff must be in (0.5, 1].')
        return super().__new__(
            cls, init_buffer, term_buffer, base_window, window_multiplier,
            log_step_size_reg_coefficient, iter_offset, iter_decay_coeff,
            reg_iter_offset, reg_scale)

    @property
    def uses_default_windows(self):
        return (self.init_buffer is None and self.term_buffer is None and
                self.base_window is None)

    def stager_kwargs(self):
        """Keyword arguments for `adahmc.stagers.WindowedWarmUpStager`."""
        return {
            'n_init_fast_stage_iter': (
                75 if self.init_buffer is None else self.init_buffer),
            'n_final_fast_stage_iter': (
                50 if self.term_buffer is None else self.term_buffer),
            'n_init_slow_window_iter': (
                25 if self.base_window is None else self.base_window),
            'slow_window_multiplier': self.window_multiplier,
            'shrink_to_fit': self.uses_default_windows,
        }


_SamplerAlgorithmConfigBase = namedtuple('SamplerAlgorithmConfig', [
    'variant', 'step_size', 'n_step', 'integration_time', 'max_tree_depth',
    'max_delta_h', 'adapt_stat_target', 'n_adapt_iter', 'metric_type',
    'termination_criterion', 'discard_warm_up', 'adaptation'])


class SamplerAlgorithmConfig(_SamplerAlgorithmConfigBase):
    """Immutable configuration of a Hamiltonian sampler for one chain.

    Use the `static_hmc`, `dual_averaging_hmc` and `nuts` factory functions
    for variant-appropriate defaults. All values are validated on
    construction and invalid combinations raise `ConfigurationError`.

    Attributes:
        variant (str): One of `'static'`, `'dual_averaging'` or `'nuts'`.
        step_size (float or None): Integrator step size. Zero or `None`
            requests an automatic initial search. For the adaptive variants a
            non-zero value is used as the starting point of adaptation.
        n_step (int or None): Integrator steps per trajectory (static).
        integration_time (float or None): Trajectory length in time
            (dual averaging).
        max_tree_depth (int): Maximum number of trajectory doublings (NUTS).
        max_delta_h (float): Energy increase signalling a divergence (NUTS).
        adapt_stat_target (float): Target acceptance statistic for step size
            adaptation, in (0, 1).
        n_adapt_iter (int or None): Number of adaptive warm up iterations.
            `None` selects `min(1000, round(n_sample / 2))` for the adaptive
            variants. Static HMC never adapts.
        metric_type (str): Mass matrix form, one of `'unit'`, `'diagonal'` or
            `'dense'`. Only the step size is adapted for `'unit'`.
        termination_criterion (str): `'generalized'` (default) or
            `'euclidean'` no-U-turn criterion (NUTS).
        discard_warm_up (bool): Whether adaptive iterations are run silently
            before the requested samples instead of being counted among them.
        adaptation (AdaptationConfig): Window sizing and adapter constants.
    """

    __slots__ = ()

    def __new__(cls, variant, step_size=0., n_step=None, integration_time=None,
                max_tree_depth=10, max_delta_h=1000., adapt_stat_target=0.8,
                n_adapt_iter=None, metric_type='unit',
                termination_criterion='generalized', discard_warm_up=False,
                adaptation=None):
        if variant not in VARIANTS:
            raise ConfigurationError(
                f'Unknown variant {variant!r}, expected one of {VARIANTS}.')
        if step_size is not None and step_size < 0:
            raise ConfigurationError('step_size must be non-negative.')
        if variant == 'static':
            if n_step is None or n_step < 1:
                raise ConfigurationError(
                    'Static HMC requires a positive number of steps n_step.')
            if n_adapt_iter:
                raise ConfigurationError('Static HMC does not adapt.')
        if variant == 'dual_averaging' and (
                integration_time is None or integration_time <= 0):
            raise ConfigurationError(
                'Dual averaging HMC requires a positive integration_time.')
        if variant == 'nuts':
            if max_tree_depth < 1:
                raise ConfigurationError('max_tree_depth must be positive.')
            if max_delta_h <= 0:
                raise ConfigurationError('max_delta_h must be positive.')
            if n_adapt_iter == 0:
                raise ConfigurationError(
                    'NUTS requires adaptation; n_adapt_iter must not be 0.')
        if not 0 < adapt_stat_target < 1:
            raise ConfigurationError('adapt_stat_target must be in (0, 1).')
        if n_adapt_iter is not None and n_adapt_iter < 0:
            raise ConfigurationError('n_adapt_iter must be non-negative.')
        if metric_type not in METRIC_TYPES:
            raise ConfigurationError(
                f'Unknown metric_type {metric_type!r}, expected one of '
                f'{METRIC_TYPES}.')
        if termination_criterion not in TERMINATION_CRITERIA:
            raise ConfigurationError(
                f'Unknown termination_criterion {termination_criterion!r}, '
                f'expected one of {TERMINATION_CRITERIA}.')
        if adaptation is None:
            adaptation = AdaptationConfig()
        return super().__new__(
            cls, variant, step_size, n_step, integration_time, max_tree_depth,
            max_delta_h, adapt_stat_target, n_adapt_iter, metric_type,
            termination_criterion, discard_warm_up, adaptation)

    @property
    def is_adaptive(self):
        return self.variant != 'static'

    def resolve_n_adapt_iter(self, n_sample=None):
        """Number of adaptive iterations for a run of `n_sample` transitions.

        Args:
            n_sample (int or None): Number of transitions requested, `None`
                if unknown.

        Returns:
            int: Number of adaptive warm up iterations.

        Raises:
            adahmc.errors.ConfigurationError: If adaptive iterations are
                counted among the samples and not fewer than `n_sample`.
        """
        if not self.is_adaptive:
            return 0
        if self.n_adapt_iter is None:
            return default_n_adapt_iter(n_sample)
        if (not self.discard_warm_up and n_sample is not None and
                0 < n_sample <= self.n_adapt_iter):
            raise ConfigurationError(
                f'Number of adaptive iterations ({self.n_adapt_iter}) must be '
                f'less than the number of samples ({n_sample}).')
        return self.n_adapt_iter


def static_hmc(step_size, n_step, metric_type='unit', **kwargs):
    """Configuration for HMC with fixed step size and number of steps."""
    return SamplerAlgorithmConfig(
        'static', step_size=step_size, n_step=n_step, metric_type=metric_type,
        **kwargs)


def dual_averaging_hmc(integration_time, adapt_stat_target=0.8,
                       n_adapt_iter=None, step_size=0., metric_type='unit',
                       **kwargs):
    """Configuration for HMC with fixed integration time and adapted step."""
    return SamplerAlgorithmConfig(
        'dual_averaging', step_size=step_size,
        integration_time=integration_time,
        adapt_stat_target=adapt_stat_target, n_adapt_iter=n_adapt_iter,
        metric_type=metric_type, **kwargs)


def nuts(adapt_stat_target=0.8, n_adapt_iter=None, max_tree_depth=10,
         max_delta_h=1000., step_size=0., metric_type='diagonal', **kwargs):
    """Configuration for the No-U-Turn sampler with windowed adaptation."""
    return SamplerAlgorithmConfig(
        'nuts', step_size=step_size, adapt_stat_target=adapt_stat_target,
        n_adapt_iter=n_adapt_iter, max_tree_depth=max_tree_depth,
        max_delta_h=max_delta_h, metric_type=metric_type, **kwargs)
