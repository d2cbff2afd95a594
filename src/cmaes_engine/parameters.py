"""
Strategy parameters for CMA-ES.

The recombination weights and learning rates depend only on the dimension,
the population size and optional overrides, so they are derived once when the
optimizer is built and never change afterwards. Defaults follow Hansen's
"The CMA Evolution Strategy: A Tutorial" (2016).
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from .options import CMAESOptions, Weights

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class StrategyParameters:
    """Immutable strategy parameters of one optimizer instance."""

    dimension: int
    population_size: int          # lambda
    mu: int                       # Number of parents
    weights: np.ndarray           # (lambda,) - recombination weights, best first
    mueff: float                  # Variance effective selection mass
    mueff_neg: float              # Same for the negative part of the raw weights
    cm: float                     # Learning rate for the mean
    cs: float                     # Time constant for sigma evolution path
    damps: float                  # Damping for sigma adaptation
    cc: float                     # Time constant for C evolution path
    c1: float                     # Learning rate for rank-one update
    cmu: float                    # Learning rate for rank-mu update
    chi_n: float                  # Expected value of ||N(0,I)||
    eigen_update_gap: int         # Generations between eigendecompositions
    weight_scheme: Weights = Weights.NEGATIVE
    overrides: Dict[str, float] = field(default_factory=dict)

    @property
    def positive_weights(self) -> np.ndarray:
        """Weights of the best ``mu`` candidates (sum to 1)."""
        return self.weights[:self.mu]

    @property
    def weights_sum(self) -> float:
        return float(self.weights.sum())

    @property
    def h_sigma_threshold(self) -> float:
        """Multiple of ``chi_n`` below which the rank-one path keeps cumulating."""
        return 1.4 + 2.0 / (self.dimension + 1.0)


def _raw_weights(population_size: int) -> np.ndarray:
    return math.log((population_size + 1) / 2.0) - np.log(np.arange(1, population_size + 1))


def _selection_mass(weights: np.ndarray) -> float:
    if len(weights) == 0 or not np.any(weights):
        return 0.0
    return float(weights.sum() ** 2 / (weights ** 2).sum())


def compute_strategy_parameters(
    dimension: int,
    population_size: int,
    weight_scheme: Weights = Weights.NEGATIVE,
    cm: float = 1.0,
    overrides: Optional[Dict[str, float]] = None,
) -> StrategyParameters:
    """
    Derive the strategy parameters for a given dimension and population size.

    Args:
        dimension: Number of dimensions n
        population_size: Number of candidates per generation (lambda)
        weight_scheme: Positive, negative (active CMA-ES) or uniform weights
        cm: Learning rate for the mean
        overrides: Optional replacement values for cs, damps, cc, c1, cmu

    Returns:
        StrategyParameters with weights sorted best-first
    """
    n = dimension
    lam = population_size
    overrides = dict(overrides or {})
    mu = lam // 2

    raw = _raw_weights(lam)
    positive_raw = raw[:mu]
    negative_raw = raw[mu:]

    if weight_scheme is Weights.UNIFORM:
        positive = np.full(mu, 1.0 / mu)
    else:
        positive = positive_raw / positive_raw.sum()

    mueff = _selection_mass(positive)
    mueff_neg = _selection_mass(negative_raw[negative_raw < 0])

    # Adaptation constants
    cc = (4.0 + mueff / n) / (n + 4.0 + 2.0 * mueff / n)
    cs = (mueff + 2.0) / (n + mueff + 5.0)
    c1 = 2.0 / ((n + 1.3) ** 2 + mueff)
    cmu = min(1.0 - c1, 2.0 * (mueff - 2.0 + 1.0 / mueff) / ((n + 2.0) ** 2 + mueff))
    cc = overrides.get("cc", cc)
    cs = overrides.get("cs", cs)
    c1 = overrides.get("c1", c1)
    cmu = overrides.get("cmu", cmu)
    damps = overrides.get(
        "damps",
        1.0 + 2.0 * max(0.0, math.sqrt((mueff - 1.0) / (n + 1.0)) - 1.0) + cs,
    )

    negative = np.zeros(lam - mu)
    if weight_scheme is Weights.NEGATIVE and cmu > 0 and np.any(negative_raw < 0):
        # Cap the total negative mass so the rank-mu update stays positive definite
        alpha_mu = 1.0 + c1 / cmu
        alpha_mueff = 1.0 + 2.0 * mueff_neg / (mueff + 2.0)
        alpha_posdef = (1.0 - c1 - cmu) / (n * cmu)
        cap = max(0.0, min(alpha_mu, alpha_mueff, alpha_posdef))
        negative_mass = np.abs(negative_raw[negative_raw < 0]).sum()
        negative = np.where(negative_raw < 0, cap * negative_raw / negative_mass, 0.0)

    weights = np.concatenate([positive, negative])

    chi_n = math.sqrt(n) * (1.0 - 1.0 / (4.0 * n) + 1.0 / (21.0 * n ** 2))

    # Eigendecomposition every 1 / (c1 + cmu) / n / 10 generations
    eigen_update_gap = max(1, int(1.0 / (c1 + cmu) / n / 10.0)) if c1 + cmu > 0 else 1

    params = StrategyParameters(
        dimension=n,
        population_size=lam,
        mu=mu,
        weights=weights,
        mueff=mueff,
        mueff_neg=mueff_neg,
        cm=cm,
        cs=cs,
        damps=damps,
        cc=cc,
        c1=c1,
        cmu=cmu,
        chi_n=chi_n,
        eigen_update_gap=eigen_update_gap,
        weight_scheme=weight_scheme,
        overrides=overrides,
    )
    logger.debug(
        "Strategy parameters: n=%d lambda=%d mu=%d mueff=%.4f cs=%.4f damps=%.4f "
        "cc=%.4f c1=%.4g cmu=%.4g eigen gap=%d",
        n, lam, mu, mueff, cs, damps, cc, c1, cmu, eigen_update_gap,
    )
    return params


def parameters_from_options(options: CMAESOptions) -> StrategyParameters:
    """Derive strategy parameters from validated options."""
    return compute_strategy_parameters(
        dimension=options.dimension,
        population_size=options.resolved_population_size,
        weight_scheme=options.weights,
        cm=options.cm,
        overrides=options.strategy_overrides,
    )
