import numpy as np
import pytest

import adahmc.autograd_wrapper as autograd_wrapper
from adahmc.autodiff import DIFF_OPS, autodiff_fallback

N_POINTS_TO_TEST = 5
SEED = 3046987125


def test_provided_derivative_returned_unchanged():
    def grad(x):
        return x

    diff_func = autodiff_fallback(grad, lambda x: 0.5 * x @ x, "grad_and_value", "grad")
    assert diff_func is grad


def test_unknown_diff_op_raises():
    with pytest.raises(ValueError):
        autodiff_fallback(None, lambda x: x, "hessian_and_value", "hessian")


def test_missing_autograd_raises(monkeypatch):
    monkeypatch.setattr(autograd_wrapper, "AUTOGRAD_AVAILABLE", False)
    with pytest.raises(ValueError):
        autodiff_fallback(None, lambda x: x, "grad_and_value", "grad")


@pytest.mark.parametrize("diff_op_name", DIFF_OPS)
def test_autograd_diff_ops(diff_op_name):
    pytest.importorskip("autograd")
    import autograd.numpy as anp

    rng = np.random.default_rng(SEED)

    def func(q):
        return anp.sum(anp.log1p(q**2)) + 0.5 * anp.sum(q**2)

    def grad_func(q):
        return 2 * q / (1 + q**2) + q

    diff_func = autodiff_fallback(None, func, diff_op_name, diff_op_name)
    for _ in range(N_POINTS_TO_TEST):
        q = rng.standard_normal(3)
        grad, value = diff_func(q)
        assert np.allclose(grad, grad_func(q))
        assert np.isclose(value, func(q))
