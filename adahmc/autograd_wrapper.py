"""Autograd differential operators used when derivatives are not supplied."""

from functools import wraps
AUTOGRAD_AVAILABLE = True
try:
    from autograd.wrap_util import unary_to_nary
    from autograd.core import make_vjp
    from autograd.extend import vspace
except ImportError:
    AUTOGRAD_AVAILABLE = False


def _wrapped_unary_to_nary(func):
    """Use functools.wraps with unary_to_nary decorator."""
    if AUTOGRAD_AVAILABLE:
        return wraps(func)(unary_to_nary(func))
    else:
        return func


@_wrapped_unary_to_nary
def grad_and_value(fun, x):
    """
    Makes a function that returns both gradient and value of a function.
    """
    vjp, val = make_vjp(fun, x)
    if not vspace(val).size == 1:
        raise TypeError('grad_and_value only applies to real scalar-output'
                        ' functions.')
    return vjp(vspace(val).ones()), val

