"""
Evaluation capabilities for the CMA-ES driver.

The driver never calls the objective itself. It hands the whole population to
an ``evaluate_all(solutions) -> fitness values`` callable and waits for every
value before ranking. This module provides a serial capability and a
multiprocessing one that are interchangeable.
"""

import logging
import math
import time
from multiprocessing import Pool, TimeoutError as PoolTimeoutError, cpu_count
from typing import Callable, List, Optional, Sequence

import numpy as np

from .errors import EvaluationCancelled

logger = logging.getLogger(__name__)

Objective = Callable[[np.ndarray], float]
EvaluateAll = Callable[[Sequence[np.ndarray]], Sequence[float]]


def coerce_fitness(value) -> float:
    """Convert an objective result to float, mapping anything unusable to NaN."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _evaluate_worker(args):
    """
    Evaluate a single solution - module level for pickling.

    Parameters
    ----------
    args : tuple
        (objective, solution, index)

    Returns
    -------
    tuple
        (fitness, index), fitness is NaN if the objective raised
    """
    objective, solution, idx = args
    try:
        return coerce_fitness(objective(solution)), idx
    except Exception as e:
        logger.warning(f"Evaluation failed for candidate {idx}: {e}")
        return math.nan, idx


class SerialEvaluator:
    """Evaluate candidates one after another in the calling process."""

    def __init__(self, objective: Objective):
        self.objective = objective

    def __call__(self, solutions: Sequence[np.ndarray]) -> List[float]:
        fitness_results = [None] * len(solutions)
        for idx, solution in enumerate(solutions):
            fitness_val, _ = _evaluate_worker((self.objective, solution, idx))
            fitness_results[idx] = fitness_val
        return fitness_results


class PoolEvaluator:
    """
    Evaluate candidates in parallel with a multiprocessing pool.

    Results come back through ``imap_unordered`` tagged with their index, so
    the returned list is always in sampling order. The pool is created lazily
    and reused across generations; close it with ``close()`` or use the
    evaluator as a context manager.

    Parameters
    ----------
    objective : callable
        Picklable objective, ``objective(x) -> float``
    processes : int, optional
        Number of worker processes (default: cpu_count - 1)
    timeout : float, optional
        Seconds to wait for a whole population before cancelling
    """

    def __init__(self, objective: Objective, processes: Optional[int] = None,
                 timeout: Optional[float] = None):
        if processes is None:
            processes = max(1, cpu_count() - 1)
        if processes < 1:
            raise ValueError(f"processes must be >= 1, got {processes}")
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self.objective = objective
        self.processes = processes
        self.timeout = timeout
        self._pool = None

    def _ensure_pool(self):
        if self._pool is None:
            logger.info(f"Creating multiprocessing pool with {self.processes} workers")
            self._pool = Pool(processes=self.processes)
        return self._pool

    def __call__(self, solutions: Sequence[np.ndarray]) -> List[float]:
        pool = self._ensure_pool()

        # Pre-allocate results array to maintain ordering
        fitness_results = [None] * len(solutions)
        eval_args = [(self.objective, np.asarray(sol), idx) for idx, sol in enumerate(solutions)]

        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        iterator = pool.imap_unordered(_evaluate_worker, eval_args)
        for _ in range(len(eval_args)):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                fitness_val, idx = iterator.next(remaining)
            except PoolTimeoutError:
                logger.warning(f"Evaluation timed out after {self.timeout}s, terminating pool")
                self.terminate()
                raise EvaluationCancelled(
                    f"Population evaluation exceeded {self.timeout}s"
                ) from None
            fitness_results[idx] = fitness_val

        return fitness_results

    def terminate(self):
        """Stop the workers immediately, discarding pending evaluations."""
        if self._pool is None:
            return
        try:
            self._pool.terminate()
            self._pool.join()
        finally:
            self._pool = None

    def close(self):
        """Close and join the pool after pending work finishes."""
        if self._pool is None:
            return
        try:
            self._pool.close()
            self._pool.join()
            logger.debug("Multiprocessing pool cleaned up successfully")
        except Exception as e:
            logger.error(f"Error cleaning up multiprocessing pool: {e}")
            self.terminate()
        finally:
            self._pool = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.terminate()
        return False
