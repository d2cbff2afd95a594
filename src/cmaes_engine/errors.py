"""
Exception types raised by the CMA-ES engine.

Construction problems derive from ``ValueError`` so callers that already guard
option parsing with ``except ValueError`` keep working. Runtime signals
(``DegenerateGeneration``, ``IllConditioned``, ``EvaluationCancelled``) are
caught by the optimizer driver and turned into termination reasons.
"""


class CMAESError(Exception):
    """Base class for every error raised by this package."""


class InvalidOptionsError(CMAESError, ValueError):
    """Options rejected before any generation runs."""


class InvalidDimension(InvalidOptionsError):
    """The number of dimensions is not a positive integer."""


class InvalidPopulationSize(InvalidOptionsError):
    """The population size is too small for recombination (needs >= 2)."""


class InvalidSigma(InvalidOptionsError):
    """The initial step size is non-positive or not finite."""


class MeanDimensionMismatch(InvalidOptionsError):
    """The initial mean does not have ``dimension`` entries."""


class InvalidLearningRate(InvalidOptionsError):
    """A learning rate (``cm`` or a strategy override) is out of range."""


class InvalidThreshold(InvalidOptionsError):
    """A termination threshold or cap is negative or not a number."""


class DegenerateGeneration(CMAESError):
    """Every candidate of a generation has a non-finite fitness."""


class IllConditioned(CMAESError):
    """The covariance matrix (or step size) broke down numerically."""


class EvaluationCancelled(CMAESError):
    """The evaluation capability was aborted or timed out."""
