from math import exp, inf, log

import numpy as np
import pytest

import adahmc

VALS = (-inf, -1000.0, -2.5, 0.0, 1.5, 700.0)


@pytest.mark.parametrize("val", VALS[1:])
def test_log1p_exp(val):
    expected = np.logaddexp(0, val)
    assert np.isclose(adahmc.utils.log1p_exp(val), expected)


@pytest.mark.parametrize("val1", VALS)
@pytest.mark.parametrize("val2", VALS)
def test_log_sum_exp(val1, val2):
    expected = np.logaddexp(val1, val2)
    actual = adahmc.utils.log_sum_exp(val1, val2)
    if expected == -inf:
        assert actual == -inf
    else:
        assert np.isclose(actual, expected)


def test_exp_ratio_capped_at_one():
    assert adahmc.utils.exp_ratio(2.0, 1.0) == 1.0
    assert adahmc.utils.exp_ratio(1.0, 1.0) == 1.0


def test_exp_ratio_less_than_one():
    assert np.isclose(adahmc.utils.exp_ratio(1.0, 2.0), exp(-1.0))


def test_exp_ratio_zero_denominator_weight():
    assert adahmc.utils.exp_ratio(-inf, -inf) == 0.0


def test_log_2():
    assert adahmc.utils.LOG_2 == log(2)


@pytest.mark.parametrize(
    "n_sample,expected",
    [(None, 1000), (10, 5), (101, 50), (2000, 1000), (5000, 1000)],
)
def test_default_n_adapt_iter(n_sample, expected):
    assert adahmc.utils.default_n_adapt_iter(n_sample) == expected
