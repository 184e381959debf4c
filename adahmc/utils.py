"""Utility functions."""

from math import log, exp, log1p, inf


LOG_2 = log(2.)


def log1p_exp(val):
    """Numerically stable implementation of `log(1 + exp(val))`."""
    if val > 0.:
        return val + log1p(exp(-val))
    else:
        return log1p(exp(val))


def log_sum_exp(val1, val2):
    """Numerically stable implementation of `log(exp(val1) + exp(val2))`."""
    if val1 == -inf and val2 == -inf:
        return -inf
    elif val1 > val2:
        return val1 + log1p_exp(val2 - val1)
    else:
        return val2 + log1p_exp(val1 - val2)


def exp_ratio(log_num, log_denom):
    """Compute `min(1, exp(log_num - log_denom))` guarding against overflow."""
    if log_denom == -inf:
        return 0.
    diff = log_num - log_denom
    return 1. if diff >= 0. else exp(diff)


def default_n_adapt_iter(n_sample):
    """Default number of adaptive iterations for a run of `n_sample` draws.

    Half the run, capped at 1000 iterations. When the run length is unknown
    the cap is used.
    """
    if n_sample is None:
        return 1000
    return min(1000, int(round(n_sample / 2)))
