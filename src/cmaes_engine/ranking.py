"""
Fitness ranking for evaluated candidates (minimization).
"""

from typing import List, Sequence

import numpy as np

from .data_structures import Candidate
from .errors import DegenerateGeneration


def rank_candidates(candidates: Sequence[Candidate]) -> List[Candidate]:
    """
    Order evaluated candidates from best to worst.

    Ties keep sampling order. NaN and infinite fitness values are ranked after
    every finite value (also in sampling order) so a partially broken
    objective still yields a usable ordering.

    Args:
        candidates: Candidates with their ``fitness`` assigned

    Returns:
        New list, best candidate first

    Raises:
        DegenerateGeneration: If no candidate has a finite fitness
    """
    fitness = np.array([c.fitness for c in candidates], dtype=float)
    finite = np.isfinite(fitness)
    if not np.any(finite):
        raise DegenerateGeneration(
            f"All {len(candidates)} candidates have non-finite fitness"
        )

    # lexsort uses the last key first: finite, then fitness, then sampling order
    sort_keys = np.where(finite, fitness, 0.0)
    sampling_order = np.array([c.index for c in candidates])
    order = np.lexsort((sampling_order, sort_keys, ~finite))
    return [candidates[i] for i in order]
