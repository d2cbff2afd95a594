"""
Construction options for the CMA-ES optimizer.

All user-facing configuration lives in ``CMAESOptions``. Defaults follow the
published CMA-ES settings; every termination threshold can be overridden.
"""

import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import numpy as np

from .errors import (
    InvalidDimension,
    InvalidLearningRate,
    InvalidOptionsError,
    InvalidPopulationSize,
    InvalidSigma,
    InvalidThreshold,
    MeanDimensionMismatch,
)


class Weights(Enum):
    """Recombination weight scheme."""

    # Log-linear weights for the best mu candidates, zero for the rest
    POSITIVE = "positive"
    # Like POSITIVE, plus negative weights for the worst candidates (active CMA-ES)
    NEGATIVE = "negative"
    # Equal weights for the best mu candidates
    UNIFORM = "uniform"


STRATEGY_OVERRIDE_KEYS = ("cs", "damps", "cc", "c1", "cmu")


def default_population_size(dimension: int) -> int:
    """Return ``4 + floor(3 * ln(n))``."""
    return 4 + int(math.floor(3.0 * math.log(dimension)))


@dataclass
class CMAESOptions:
    """
    Options for building a ``CMAES`` optimizer.

    Args:
        dimension: Number of dimensions of the search space (n)
        initial_mean: Starting mean, defaults to the origin
        initial_sigma: Starting step size, defaults to 0.5
        population_size: Candidates per generation (lambda), defaults to
            ``4 + floor(3 * ln(n))``
        weights: Recombination weight scheme
        cm: Learning rate for the mean, in (0, 1]
        seed: Seed for the random sampler, ``None`` for OS entropy
        max_generations: Optional cap on completed generations
        max_evaluations: Optional cap on objective evaluations
        max_time: Optional wall-clock cap in seconds
        fun_target: Stop once a generation reaches this fitness
        tol_fun: Threshold for the TolFun criterion
        tol_fun_rel: Relative TolFun threshold, 0 disables it
        tol_fun_hist: Threshold for the TolFunHist criterion
        tol_x: Threshold for the TolX criterion, defaults to ``1e-12 * initial_sigma``
        tol_x_up: Growth factor for the TolXUp criterion
        tol_condition_cov: Condition number bound for the ConditionCov criterion
        equal_fun_values_ratio: Fraction of flat generations for EqualFunValues
        strategy_overrides: Optional overrides for ``cs``, ``damps``, ``cc``,
            ``c1`` and ``cmu``
        print_gap_evals: Print a rich status panel every this many evaluations
        log_path: Append log records and console panels to this file
    """

    dimension: int
    initial_mean: Optional[np.ndarray] = None
    initial_sigma: float = 0.5
    population_size: Optional[int] = None
    weights: Weights = Weights.NEGATIVE
    cm: float = 1.0
    seed: Optional[int] = None

    max_generations: Optional[int] = None
    max_evaluations: Optional[int] = None
    max_time: Optional[float] = None
    fun_target: Optional[float] = None
    tol_fun: float = 1e-12
    tol_fun_rel: float = 0.0
    tol_fun_hist: float = 1e-12
    tol_x: Optional[float] = None
    tol_x_up: float = 1e8
    tol_condition_cov: float = 1e14
    equal_fun_values_ratio: float = 1.0 / 3.0

    strategy_overrides: Dict[str, float] = field(default_factory=dict)

    print_gap_evals: Optional[int] = None
    log_path: Optional[str] = None

    def __post_init__(self):
        if self.initial_mean is not None:
            self.initial_mean = np.array(self.initial_mean, dtype=float).ravel()
        if isinstance(self.weights, str):
            try:
                self.weights = Weights(self.weights.lower())
            except ValueError:
                raise InvalidOptionsError(
                    f"Unknown weights scheme '{self.weights}', "
                    f"expected one of {[w.value for w in Weights]}"
                ) from None

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> "CMAESOptions":
        """Build options from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise InvalidOptionsError(f"Unknown option(s): {', '.join(unknown)}")
        return cls(**dict(config))

    @property
    def resolved_population_size(self) -> int:
        if self.population_size is None:
            return default_population_size(self.dimension)
        return self.population_size

    @property
    def resolved_initial_mean(self) -> np.ndarray:
        if self.initial_mean is None:
            return np.zeros(self.dimension)
        return self.initial_mean.copy()

    @property
    def resolved_tol_x(self) -> float:
        if self.tol_x is None:
            return 1e-12 * self.initial_sigma
        return self.tol_x

    def validate(self) -> "CMAESOptions":
        """
        Check every option and raise the matching ``InvalidOptionsError``.

        Returns:
            self, so calls can be chained
        """
        if isinstance(self.dimension, bool) or not isinstance(self.dimension, (int, np.integer)):
            raise InvalidDimension(f"dimension must be an integer, got {self.dimension!r}")
        if self.dimension <= 0:
            raise InvalidDimension(f"dimension must be >= 1, got {self.dimension}")

        lam = self.resolved_population_size
        if isinstance(lam, bool) or not isinstance(lam, (int, np.integer)) or lam < 2:
            raise InvalidPopulationSize(f"population_size must be an integer >= 2, got {lam!r}")

        if not (isinstance(self.initial_sigma, (int, float, np.floating))
                and math.isfinite(self.initial_sigma) and self.initial_sigma > 0):
            raise InvalidSigma(f"initial_sigma must be positive and finite, got {self.initial_sigma!r}")

        if self.initial_mean is not None:
            if len(self.initial_mean) != self.dimension:
                raise MeanDimensionMismatch(
                    f"initial_mean has {len(self.initial_mean)} dimensions, "
                    f"expected {self.dimension}"
                )
            if not np.all(np.isfinite(self.initial_mean)):
                raise InvalidOptionsError("initial_mean must only contain finite values")

        if not (0.0 < self.cm <= 1.0):
            raise InvalidLearningRate(f"cm must be in (0, 1], got {self.cm}")

        unknown = sorted(set(self.strategy_overrides) - set(STRATEGY_OVERRIDE_KEYS))
        if unknown:
            raise InvalidOptionsError(f"Unknown strategy override(s): {', '.join(unknown)}")
        for key, value in self.strategy_overrides.items():
            if not math.isfinite(value) or value <= 0:
                raise InvalidLearningRate(f"Strategy override '{key}' must be positive, got {value}")
            if key != "damps" and value > 1.0:
                raise InvalidLearningRate(f"Strategy override '{key}' must be <= 1, got {value}")

        for name in ("max_generations", "max_evaluations", "max_time", "print_gap_evals"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidThreshold(f"{name} must be non-negative, got {value}")
        for name in ("tol_fun", "tol_fun_rel", "tol_fun_hist", "resolved_tol_x",
                     "tol_x_up", "tol_condition_cov", "equal_fun_values_ratio"):
            value = getattr(self, name)
            if math.isnan(value) or value < 0:
                raise InvalidThreshold(f"{name.replace('resolved_', '')} must be non-negative, got {value}")
        if self.fun_target is not None and math.isnan(self.fun_target):
            raise InvalidThreshold("fun_target must not be NaN")

        return self
