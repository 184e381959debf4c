"""Exception types."""


class Error(RuntimeError):
    """Base class for errors."""


class ConfigurationError(Error, ValueError):
    """Error raised when sampler settings are invalid, before any sampling."""


class UnsupportedShapeError(ConfigurationError):
    """Error raised when parameter, metric or block dimensions disagree."""


class TransformError(ConfigurationError):
    """Error raised when a model bijection fails to transform a state."""


class IntegratorError(Error):
    """Error raised when integrator step fails."""


class HamiltonianDivergenceError(IntegratorError):
    """Error raised when integration of Hamiltonian dynamics diverges."""


class NonFiniteEnergyError(HamiltonianDivergenceError):
    """Error raised when potential energy or its gradient becomes non-finite."""


class AdaptationError(Error):
    """Error raised when adaptation of transition parameters fails."""
