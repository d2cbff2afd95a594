"""
Data structures for the CMA-ES engine.
"""

import math
from collections import deque
from dataclasses import dataclass, field, replace
from typing import List, Optional

import numpy as np


class RollingBuffer:
    """
    Fixed-size rolling buffer for bounded history tracking.

    Entries are kept oldest first; once the buffer holds ``max_size`` entries
    every append evicts the oldest one.
    """

    def __init__(self, max_size: int):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")

        self.buffer = deque(maxlen=max_size)
        self.max_size = max_size

    def append(self, value):
        self.buffer.append(value)

    @property
    def is_full(self) -> bool:
        return len(self.buffer) == self.max_size

    def recent(self, count: int) -> list:
        """Return the ``count`` most recent entries, oldest first."""
        if count <= 0:
            return []
        return list(self.buffer)[-count:]

    def __len__(self):
        return len(self.buffer)

    def __getitem__(self, index):
        return self.buffer[index]

    def __iter__(self):
        return iter(self.buffer)

    def to_list(self):
        return list(self.buffer)


@dataclass
class DistributionState:
    """Search distribution of one optimizer at the end of a generation."""

    mean: np.ndarray              # (n,) - distribution center
    sigma: float                  # Global step size
    C: np.ndarray                 # (n, n) - covariance matrix

    # Eigendecomposition C = B diag(D) B^T (refreshed periodically)
    B: np.ndarray                 # (n, n) - eigenvectors as columns
    D: np.ndarray                 # (n,) - eigenvalues, descending
    inv_sqrt_C: np.ndarray        # (n, n) - B diag(D^-1/2) B^T

    # Evolution paths
    path_sigma: np.ndarray        # (n,) - step-size path
    path_c: np.ndarray            # (n,) - covariance path

    generation: int               # Completed generations
    eigen_countdown: int          # Generations until the next forced refresh

    @property
    def dimension(self) -> int:
        return len(self.mean)

    @property
    def axis_lengths(self) -> np.ndarray:
        """Square roots of the cached eigenvalues."""
        return np.sqrt(self.D)

    @property
    def condition_number(self) -> float:
        d_min = float(np.min(self.D))
        if d_min <= 0:
            return math.inf
        return float(np.max(self.D)) / d_min

    @property
    def max_standard_deviation(self) -> float:
        """Standard deviation along the longest principal axis."""
        return self.sigma * math.sqrt(float(np.max(self.D)))

    def copy(self) -> "DistributionState":
        return replace(
            self,
            mean=self.mean.copy(),
            C=self.C.copy(),
            B=self.B.copy(),
            D=self.D.copy(),
            inv_sqrt_C=self.inv_sqrt_C.copy(),
            path_sigma=self.path_sigma.copy(),
            path_c=self.path_c.copy(),
        )


@dataclass
class Candidate:
    """One sampled point of a generation."""

    x: np.ndarray                 # Candidate solution mean + sigma * y
    y: np.ndarray                 # Distribution-shaped direction B (D^1/2 * z)
    z: np.ndarray                 # Standard normal draw
    index: int                    # Position in sampling order
    fitness: float = math.nan

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.fitness)


class TerminationHistory:
    """
    Rolling history used by the termination criteria.

    The buffers are sized to the longest window any criterion looks at, so
    memory stays bounded no matter how long the optimizer runs.
    """

    def __init__(self, dimension: int, population_size: int, initial_max_std: float):
        extra = int(math.ceil(30.0 * dimension / population_size))
        self.tol_fun_window = 10 + extra
        self.stagnation_window = 120 + extra
        # Never rank 0, which would compare the best value with itself
        self.flat_rank = min(population_size - 1, max(1, int(math.ceil(0.1 + population_size / 4.0))))

        self.best_fitness = RollingBuffer(self.stagnation_window)
        self.median_fitness = RollingBuffer(self.stagnation_window)
        self.flat_fitness = RollingBuffer(self.tol_fun_window)
        self.sigma = RollingBuffer(self.tol_fun_window)
        self.mean = RollingBuffer(self.tol_fun_window)

        self.first_median: Optional[float] = None
        self.best_median: Optional[float] = None
        self.min_max_std = initial_max_std

    def record(self, ranked_fitness: np.ndarray, state: DistributionState):
        """
        Append one completed generation.

        Args:
            ranked_fitness: Fitness values in ranked order (best first, non-finite last)
            state: Distribution state after adaptation
        """
        finite = ranked_fitness[np.isfinite(ranked_fitness)]
        best = float(finite[0])
        median = float(np.median(finite))

        self.best_fitness.append(best)
        self.median_fitness.append(median)
        self.flat_fitness.append(bool(ranked_fitness[self.flat_rank] == best))
        self.sigma.append(state.sigma)
        self.mean.append(state.mean.copy())

        if self.first_median is None:
            self.first_median = median
        if self.best_median is None or median < self.best_median:
            self.best_median = median
        self.min_max_std = min(self.min_max_std, state.max_standard_deviation)


@dataclass
class GenerationReport:
    """Summary of the optimizer after a generation."""

    generation: int
    evaluations: int
    best_fitness: float
    best_solution: Optional[np.ndarray]
    generation_best_fitness: float
    median_fitness: float
    mean: np.ndarray
    sigma: float
    condition_number: float
    reasons: List = field(default_factory=list)

    @property
    def terminated(self) -> bool:
        return len(self.reasons) > 0


@dataclass
class OptimizationResult:
    """Final outcome of an optimization run."""

    reasons: List
    generations: int
    evaluations: int
    best_fitness: float
    best_solution: Optional[np.ndarray]
    mean: np.ndarray
    sigma: float
    condition_number: float
    state: DistributionState

    @property
    def reason(self):
        """The first triggered termination reason."""
        return self.reasons[0] if self.reasons else None
