"""Automatic differentation fallback for constructing derivative functions."""

import adahmc.autograd_wrapper as autograd_wrapper


"""Names of the differential operators the fallback can construct."""
DIFF_OPS = [
    # gradient and value for scalar valued functions
    'grad_and_value',
]


def autodiff_fallback(diff_func, func, diff_op_name, name):
    """Generate derivative function automatically if not provided.

    Args:
        diff_func (None or Callable): Either a callable implementing the
            required derivative function or `None` if none was provided.
        func (Callable): Function to differentiate.
        diff_op_name (str): Name of differential operator in
            `adahmc.autograd_wrapper` to apply to `func`.
        name (str): Name of derivative function to use in error message.

    Returns:
        Callable: `diff_func` if not `None`, otherwise the derivative of
            `func` generated with Autograd.

    Raises:
        ValueError: If `diff_func` is `None` and Autograd is not installed.
    """
    if diff_func is not None:
        return diff_func
    elif diff_op_name not in DIFF_OPS:
        raise ValueError(
            f'Differential operator {diff_op_name} is not defined.')
    elif autograd_wrapper.AUTOGRAD_AVAILABLE:
        return getattr(autograd_wrapper, diff_op_name)(func)
    else:
        raise ValueError(
            f'Autograd not available therefore {name} must be provided.')
