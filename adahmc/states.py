"""Phase point state of a Hamiltonian trajectory and memoization helpers."""

import copy
from functools import wraps
from collections import Counter


def _cache_key(system, method):
    """Key identifying a method of a particular system instance in a cache."""
    if not isinstance(method, str):
        method = method.__name__
    return (f'{type(system).__name__}.{method}', id(system))


def _register_dependencies(state, keys, depends_on):
    for key in keys:
        if key not in state._cache:
            for var in depends_on:
                state._dependencies[var].add(key)


def cache_in_state(*depends_on):
    """Memoize a system method in the state it is evaluated at.

    The decorated method must take a single `ChainState` argument. The value
    it returns is stored in the state and reused on later calls until one of
    the named state variables is reassigned, at which point the stored value is
    discarded.

    Args:
       *depends_on: Names of the state variables (e.g. `'pos'`) the returned
           value is a function of.
    """
    def decorator(method):
        @wraps(method)
        def wrapper(self, state):
            key = _cache_key(self, method)
            _register_dependencies(state, (key,), depends_on)
            if state._cache.get(key) is None:
                state._cache[key] = method(self, state)
                if state._call_counts is not None:
                    state._call_counts[key] += 1
            return state._cache[key]
        return wrapper
    return decorator


def cache_in_state_with_aux(depends_on, auxiliary_outputs):
    """Memoize a system method which may also return auxiliary outputs.

    As `cache_in_state`, except that if the wrapped method returns a tuple
    the entries after the first are stored as the cached values of the system
    methods named in `auxiliary_outputs`. This allows a gradient evaluation
    which also computes the function value to fill both cache entries with one
    call to the underlying function.

    Args:
        depends_on (str or Tuple[str]): Names of the state variables the
            returned value(s) are a function of.
        auxiliary_outputs (str or Tuple[str]): Names of other memoized methods
            of the same system whose values may be returned alongside the
            primary output, in order.
    """
    if isinstance(depends_on, str):
        depends_on = (depends_on,)
    if isinstance(auxiliary_outputs, str):
        auxiliary_outputs = (auxiliary_outputs,)

    def decorator(method):
        @wraps(method)
        def wrapper(self, state):
            prim_key = _cache_key(self, method)
            keys = [prim_key] + [_cache_key(self, a) for a in auxiliary_outputs]
            _register_dependencies(state, keys, depends_on)
            if state._cache.get(prim_key) is None:
                vals = method(self, state)
                if isinstance(vals, tuple):
                    for key, val in zip(keys, vals):
                        state._cache[key] = val
                else:
                    state._cache[prim_key] = vals
                if state._call_counts is not None:
                    state._call_counts[prim_key] += 1
            return state._cache[prim_key]
        return wrapper
    return decorator


class ChainState(object):
    """Phase point of a Hamiltonian trajectory.

    Holds the variables of a point in phase space, usually the unconstrained
    position `pos`, momentum `mom` and integration direction `dir`, together
    with a cache of quantities derived from them by memoized system methods
    (e.g. the potential energy and its gradient). Reassigning a variable
    clears every cached value registered as depending on it.

    Variables are passed as keyword arguments,

        state = ChainState(pos=pos, mom=mom, dir=1)

    while keyword arguments with a leading underscore are reserved for
    internal bookkeeping.
    """

    def __init__(self, *, _call_counts=None, _dependencies=None, _cache=None,
                 **variables):
        """
        Kwargs:
            **variables: State variables, names must not start with an
                underscore and must not be `copy`.
            _call_counts (None or Dict): Counter of calls to memoized methods
                which missed the cache, shared between all copies of a state.
                Useful to check how often an oracle has been evaluated.
            _dependencies (None or Dict): Internal. Map from variable names to
                the cache keys depending on them.
            _cache (None or Dict): Internal. Map from cache keys to memoized
                values, or `None` for invalidated entries.
        """
        self.__dict__['_variables'] = variables
        if _dependencies is None:
            _dependencies = {name: set() for name in variables}
        self.__dict__['_dependencies'] = _dependencies
        self.__dict__['_cache'] = {} if _cache is None else _cache
        self.__dict__['_call_counts'] = (
            Counter(_call_counts) if not isinstance(_call_counts, Counter)
            else _call_counts)

    def __getattr__(self, name):
        if name in self._variables:
            return self._variables[name]
        raise AttributeError(
            f"'{type(self).__name__}' object has no attribute '{name}'")

    def __setattr__(self, name, value):
        if name in self._variables:
            self._variables[name] = value
            for key in self._dependencies[name]:
                self._cache[key] = None
        else:
            super().__setattr__(name, value)

    def __contains__(self, name):
        return name in self._variables

    def copy(self):
        """Create a copy of the state with independent variable values.

        The cache is shallow copied, so memoized values computed before the
        copy are shared but later invalidations are not.

        Returns:
            ChainState: Copy of state.
        """
        return type(self)(
            _dependencies=self._dependencies, _cache=self._cache.copy(),
            _call_counts=self._call_counts,
            **{name: copy.copy(val) for name, val in self._variables.items()})

    def __str__(self):
        return (
            '(\n ' +
            ',\n '.join(f'{k}={v}' for k, v in self._variables.items()) +
            ')')

    def __repr__(self):
        return type(self).__name__ + str(self)
