"""Exceptions raised by the contrastive divergence engine."""


class BoltzmannError(Exception):
    """Base class for all boltzmann_cd errors."""


class ConfigurationError(BoltzmannError, ValueError):
    """Invalid model or trainer configuration."""


class PreconditionError(BoltzmannError, ValueError):
    """A batch does not fit the model it is trained against."""


class NumericDivergenceError(BoltzmannError, ArithmeticError):
    """A gradient, weight or bias became NaN or infinite."""
