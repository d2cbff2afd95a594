"""
Random sampling and population generation for CMA-ES.
"""

from typing import List, Optional

import numpy as np

from .data_structures import Candidate, DistributionState
from .errors import InvalidDimension, InvalidPopulationSize


class Sampler:
    """
    Seedable source of standard normal vectors.

    Wraps a ``numpy.random.Generator`` so that two samplers built with the same
    seed produce the same sequence of draws.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def standard_normal(self, count: int, dimension: int) -> np.ndarray:
        """Draw a ``(count, dimension)`` block of independent N(0, 1) samples."""
        return self.rng.standard_normal((count, dimension))


def generate_population(
    state: DistributionState,
    population_size: int,
    sampler: Sampler,
) -> List[Candidate]:
    """
    Generate a population by sampling from N(mean, sigma^2 C).

    Uses the cached eigendecomposition: with C = B diag(D) B^T a standard
    normal ``z`` maps to ``y = B (sqrt(D) * z)`` and ``x = mean + sigma * y``.

    Args:
        state: Current distribution state
        population_size: Number of candidates to generate (lambda)
        sampler: Random sampler, advanced by ``population_size * n`` draws

    Returns:
        Candidates in sampling order

    Raises:
        InvalidDimension: If the state has no dimensions
        InvalidPopulationSize: If ``population_size`` < 2
    """
    n = state.dimension
    if n <= 0:
        raise InvalidDimension(f"dimension must be >= 1, got {n}")
    if population_size < 2:
        raise InvalidPopulationSize(f"population_size must be >= 2, got {population_size}")

    z = sampler.standard_normal(population_size, n)
    # Row-wise y_k = B @ (sqrt(D) * z_k)
    y = (z * state.axis_lengths) @ state.B.T
    x = state.mean + state.sigma * y

    return [
        Candidate(x=x[k], y=y[k], z=z[k], index=k)
        for k in range(population_size)
    ]
