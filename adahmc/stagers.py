"""Classes for splitting the adaptive warm up of a chain into stages."""

import abc
import logging
from collections import OrderedDict, namedtuple
from itertools import accumulate
from adahmc.errors import ConfigurationError

logger = logging.getLogger(__name__)


ChainStage = namedtuple('ChainStage', ['n_iter', 'adapters'])
ChainStage.__doc__ = """Contiguous block of chain iterations sharing adapters.

Adapters active in the stage are initialized at its first iteration and
finalized after its last, so that a metric or step size estimated in a stage
is only committed at the stage boundary. `adapters` is `None` for the
non-adaptive main stage.
"""


class Stager(abc.ABC):
    """Abstract chain iteration stager."""

    @abc.abstractmethod
    def stages(self, n_warm_up_iter, n_main_iter, adapters):
        """Create dictionary of labels and parameters of sampling stages.

        Args:
            n_warm_up_iter (int): Number of adaptive warm up iterations.
                Depending on the adapters these may be split between one or
                more adaptive stages.
            n_main_iter (int or None): Number of iterations in the final
                non-adaptive stage, or `None` if unbounded.
            adapters (Iterable[adahmc.adapters.Adapter]): Adapters to use
                during warm up. Updates are applied in the order given.

        Returns:
            OrderedDict[str, ChainStage]: Ordered dictionary specifying
                sampling stage parameters keyed by a descriptive label.
        """


class WarmUpStager(Stager):
    """Chain iteration stager with a single adaptive warm up stage.

    Sampling is split in to two stages:

      1. An adaptive warm up stage with all adapters active.
      2. A main sampling stage with no adapters active.
    """

    def stages(self, n_warm_up_iter, n_main_iter, adapters):
        sampling_stages = OrderedDict()
        if n_warm_up_iter > 0:
            sampling_stages['Adaptive warm up'] = ChainStage(
                n_warm_up_iter, list(adapters))
        sampling_stages['Main non-adaptive'] = ChainStage(n_main_iter, None)
        return sampling_stages


class WindowedWarmUpStager(Stager):
    """Chain iteration stager with a hierarchy of adaptive warm up stages.

    Following the approach of [Stan](https://mc-stan.org) adapters are split
    into 'fast' adapters, which only need local information (the step size),
    and 'slow' adapters, which need more global information (the metric). Each
    adapter identifies itself by its `is_fast` attribute.

    The adaptive warm up iterations are split into three stages:

      1. An initial fast adaptive buffer with only fast adapters active, the
         metric left at its initial value.
      2. A slow adaptive stage with both slow and fast adapters active.
      3. A final fast adaptive buffer with only fast adapters active.

    The slow stage is split into a sequence of growing, memoryless windows,
    with all adapters reinitialized at the start of each window and the metric
    committed at its end. Each window is `slow_window_multiplier` times longer
    than the last, except the final window which absorbs the remaining
    iterations whenever the next full-size window would not fit.

    For 1000 warm up iterations and the default settings the slow windows
    have 25, 50, 100, 200 and 500 iterations and span iterations 75 to 950.
    """

    def __init__(
            self, n_init_slow_window_iter=25, n_init_fast_stage_iter=75,
            n_final_fast_stage_iter=50, slow_window_multiplier=2,
            shrink_to_fit=False):
        """
        Args:
            n_init_slow_window_iter (int): Number of iterations in the initial
                (smallest) window of the slow adaptation stage.
            n_init_fast_stage_iter (int): Number of iterations in the initial
                fast adaptation buffer.
            n_final_fast_stage_iter (int): Number of iterations in the final
                fast adaptation buffer.
            slow_window_multiplier (float): Factor by which each slow window
                is longer than the previous one.
            shrink_to_fit (bool): If `True` and the three initial lengths do
                not fit into the number of warm up iterations, the buffers are
                set to 15% and 10% of the warm up iterations with a single slow
                window holding the rest. If `False` (the default) a warm up too
                short for the two buffers raises a `ConfigurationError`.
        """
        if slow_window_multiplier < 1:
            raise ConfigurationError('slow_window_multiplier must be >= 1.')
        if min(n_init_slow_window_iter, n_init_fast_stage_iter,
               n_final_fast_stage_iter) < 0 or n_init_slow_window_iter == 0:
            raise ConfigurationError(
                'Buffer lengths must be non-negative and the initial slow '
                'window length positive.')
        self.n_init_slow_window_iter = n_init_slow_window_iter
        self.n_init_fast_stage_iter = n_init_fast_stage_iter
        self.n_final_fast_stage_iter = n_final_fast_stage_iter
        self.slow_window_multiplier = slow_window_multiplier
        self.shrink_to_fit = shrink_to_fit

    def _partition(self, n_warm_up_iter):
        n_init_fast = self.n_init_fast_stage_iter
        n_final_fast = self.n_final_fast_stage_iter
        n_init_slow = self.n_init_slow_window_iter
        if n_init_fast + n_init_slow + n_final_fast > n_warm_up_iter:
            if self.shrink_to_fit:
                logger.warning(
                    f'{n_warm_up_iter} warm up iterations too few for '
                    f'buffers of {n_init_fast} and {n_final_fast} iterations '
                    f'and an initial window of {n_init_slow}; using 15% / 75% '
                    f'/ 10% split instead.')
                n_init_fast = int(0.15 * n_warm_up_iter)
                n_final_fast = int(0.1 * n_warm_up_iter)
            elif n_warm_up_iter <= n_init_fast + n_final_fast:
                raise ConfigurationError(
                    f'Adaptation horizon of {n_warm_up_iter} iterations is not '
                    f'longer than the initial ({n_init_fast}) and final '
                    f'({n_final_fast}) fast adaptation buffers combined.')
            else:
                logger.warning(
                    f'Slow adaptation stage of '
                    f'{n_warm_up_iter - n_init_fast - n_final_fast} iterations '
                    f'shorter than initial window length {n_init_slow}; '
                    f'using a single window.')
            n_slow = n_warm_up_iter - n_init_fast - n_final_fast
            return n_init_fast, [n_slow] if n_slow > 0 else [], n_final_fast
        n_slow_stage_iter = n_warm_up_iter - n_init_fast - n_final_fast
        n_window_iter = n_init_slow
        slow_windows = []
        counter = 0
        while counter < n_slow_stage_iter:
            # last window takes all remaining iterations if the window after
            # it would overrun the slow stage
            counter_next = (
                counter + int((1 + self.slow_window_multiplier) * n_window_iter)
            )
            if counter_next > n_slow_stage_iter:
                n_window_iter = n_slow_stage_iter - counter
            slow_windows.append(n_window_iter)
            counter += n_window_iter
            n_window_iter = int(self.slow_window_multiplier * n_window_iter)
        return n_init_fast, slow_windows, n_final_fast

    def slow_window_sizes(self, n_warm_up_iter):
        """Lengths of the slow adaptation windows for a warm up length.

        Args:
            n_warm_up_iter (int): Number of adaptive warm up iterations.

        Returns:
            List[int]: Positive window lengths summing to the number of
                iterations between the two fast buffers.
        """
        return self._partition(n_warm_up_iter)[1]

    def window_boundaries(self, n_warm_up_iter):
        """Iteration indices at which the slow adaptation windows end.

        Args:
            n_warm_up_iter (int): Number of adaptive warm up iterations.

        Returns:
            List[int]: Strictly increasing (zero-based, exclusive) end indices
                of each slow window, the last equal to the start of the final
                fast buffer.
        """
        n_init_fast, slow_windows, _ = self._partition(n_warm_up_iter)
        return [n_init_fast + end for end in accumulate(slow_windows)]

    def stages(self, n_warm_up_iter, n_main_iter, adapters):
        adapters = list(adapters)
        fast_adapters = [adapter for adapter in adapters if adapter.is_fast]
        n_init_fast, slow_windows, n_final_fast = self._partition(
            n_warm_up_iter)
        sampling_stages = OrderedDict()
        if n_init_fast > 0:
            sampling_stages['Initial fast adaptive'] = ChainStage(
                n_init_fast, fast_adapters)
        for i, n_iter in enumerate(slow_windows):
            sampling_stages[
                f'Slow adaptive ({i + 1}/{len(slow_windows)})'] = ChainStage(
                    n_iter, adapters)
        if n_final_fast > 0:
            sampling_stages['Final fast adaptive'] = ChainStage(
                n_final_fast, fast_adapters)
        sampling_stages['Main non-adaptive'] = ChainStage(n_main_iter, None)
        return sampling_stages
