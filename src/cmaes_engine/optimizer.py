"""
Main CMA-ES optimizer driver.

``CMAES`` owns one search distribution and advances it one generation at a
time: sample a population, hand it to an evaluation capability, rank the
results, adapt the distribution and check the termination criteria.
"""

import copy
import logging
import math
import time
from dataclasses import replace
from typing import List, Optional, Sequence, Union

import numpy as np

from .checkpoint import Checkpoint, load_checkpoint, save_checkpoint
from .core import initialize_state, update_distribution
from .data_structures import (
    Candidate,
    DistributionState,
    GenerationReport,
    OptimizationResult,
    TerminationHistory,
)
from .errors import DegenerateGeneration, EvaluationCancelled, IllConditioned
from .evaluation import EvaluateAll, Objective, SerialEvaluator, coerce_fitness
from .logging_utils import (
    console_wrapper,
    log_message,
    render_generation_panel,
    render_termination_panel,
    setup_logging,
)
from .options import CMAESOptions
from .parameters import StrategyParameters, parameters_from_options
from .ranking import rank_candidates
from .sampling import Sampler, generate_population
from .termination import (
    TerminationReason,
    TerminationThresholds,
    check_termination_criteria,
)

logger = logging.getLogger(__name__)

# Generations that always get a status panel when printing is enabled
ALWAYS_PRINT_GENERATIONS = 3


class CMAES:
    """
    Covariance Matrix Adaptation Evolution Strategy (minimization).

    Build it from ``CMAESOptions`` or from keyword arguments accepted by
    ``CMAESOptions``. Invalid options raise an ``InvalidOptionsError``
    subclass before any generation runs.

    Two ways to drive it:

    - ``ask()`` / ``tell(candidates, fitness)`` when the caller evaluates
      candidates itself
    - ``step(evaluate_all)`` / ``run(evaluate_all)`` with an evaluation
      capability such as ``SerialEvaluator`` or ``PoolEvaluator``

    Example::

        es = CMAES(dimension=5, initial_sigma=1.0, seed=1, max_generations=500)
        result = es.optimize(lambda x: float(np.sum(x ** 2)))
        print(result.reason, result.best_fitness)
    """

    def __init__(self, options: Optional[CMAESOptions] = None, **kwargs):
        if options is None:
            options = CMAESOptions(**kwargs)
        elif kwargs:
            options = replace(options, **kwargs)
        self._options = options.validate()

        if options.log_path is not None:
            setup_logging(options.log_path)

        self._params = parameters_from_options(options)
        self._thresholds = TerminationThresholds.from_options(options)
        self._sampler = Sampler(options.seed)
        self._state = initialize_state(
            options.resolved_initial_mean, options.initial_sigma, self._params
        )
        # C = I, so the largest axis standard deviation starts at sigma0
        self._history = TerminationHistory(
            self._params.dimension, self._params.population_size, options.initial_sigma
        )

        self._evaluations = 0
        self._best_fitness = math.inf
        self._best_solution: Optional[np.ndarray] = None
        self._generation_best = math.nan
        self._generation_median = math.nan
        self._reasons: List[TerminationReason] = []

        self._elapsed_before = 0.0
        self._start_time = time.monotonic()
        self._last_print_evals = 0

        logger.info(
            f"CMA-ES configured: n={self._params.dimension}, "
            f"lambda={self._params.population_size}, mu={self._params.mu}, "
            f"mueff={self._params.mueff:.3f}, sigma0={options.initial_sigma}, "
            f"weights={self._params.weight_scheme.value}, seed={options.seed}"
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def options(self) -> CMAESOptions:
        return self._options

    @property
    def parameters(self) -> StrategyParameters:
        return self._params

    @property
    def state(self) -> DistributionState:
        return self._state

    @property
    def history(self) -> TerminationHistory:
        return self._history

    @property
    def generation(self) -> int:
        return self._state.generation

    @property
    def evaluations(self) -> int:
        return self._evaluations

    @property
    def best_solution(self) -> Optional[np.ndarray]:
        return None if self._best_solution is None else self._best_solution.copy()

    @property
    def best_fitness(self) -> float:
        return self._best_fitness

    @property
    def terminated(self) -> bool:
        return len(self._reasons) > 0

    @property
    def termination_reasons(self) -> List[TerminationReason]:
        return list(self._reasons)

    @property
    def elapsed(self) -> float:
        """Wall-clock seconds spent by this optimizer, including resumed runs."""
        return self._elapsed_before + (time.monotonic() - self._start_time)

    def report(self) -> GenerationReport:
        """Summary of the last completed generation."""
        return GenerationReport(
            generation=self._state.generation,
            evaluations=self._evaluations,
            best_fitness=self._best_fitness,
            best_solution=self.best_solution,
            generation_best_fitness=self._generation_best,
            median_fitness=self._generation_median,
            mean=self._state.mean.copy(),
            sigma=self._state.sigma,
            condition_number=self._state.condition_number,
            reasons=list(self._reasons),
        )

    def result(self) -> OptimizationResult:
        """Final outcome, also valid while the run is still going."""
        return OptimizationResult(
            reasons=list(self._reasons),
            generations=self._state.generation,
            evaluations=self._evaluations,
            best_fitness=self._best_fitness,
            best_solution=self.best_solution,
            mean=self._state.mean.copy(),
            sigma=self._state.sigma,
            condition_number=self._state.condition_number,
            state=self._state.copy(),
        )

    # ------------------------------------------------------------------
    # Generation loop
    # ------------------------------------------------------------------

    def _ensure_running(self):
        if self.terminated:
            reasons = ", ".join(str(r) for r in self._reasons)
            raise RuntimeError(f"Optimizer already terminated ({reasons})")

    def ask(self) -> List[Candidate]:
        """Sample the next population from the current distribution."""
        self._ensure_running()
        return generate_population(self._state, self._params.population_size, self._sampler)

    def tell(self, candidates: Sequence[Candidate], fitness: Sequence[float]) -> GenerationReport:
        """
        Complete a generation with the fitness of every candidate from ``ask()``.

        Args:
            candidates: The population returned by ``ask()``
            fitness: One value per candidate, in the same order. Values that
                cannot be converted to float count as NaN

        Returns:
            Report of the completed generation, ``reasons`` is non-empty once
            the optimizer has terminated

        Raises:
            RuntimeError: If the optimizer already terminated
            ValueError: If the number of values does not match the population
        """
        self._ensure_running()
        lam = self._params.population_size
        fitness = list(fitness)
        if len(candidates) != lam or len(fitness) != lam:
            raise ValueError(
                f"Expected {lam} candidates and fitness values, "
                f"got {len(candidates)} and {len(fitness)}"
            )

        for candidate, value in zip(candidates, fitness):
            candidate.fitness = coerce_fitness(value)
        self._evaluations += lam

        try:
            ranked = rank_candidates(candidates)
        except DegenerateGeneration as e:
            return self._terminate_fatal(TerminationReason.DEGENERATE_GENERATION, e)

        ranked_fitness = np.array([c.fitness for c in ranked])
        generation_best = ranked[0]
        improved = generation_best.fitness < self._best_fitness
        if improved:
            self._best_fitness = generation_best.fitness
            self._best_solution = generation_best.x.copy()
        self._generation_best = generation_best.fitness
        self._generation_median = float(np.median(ranked_fitness[np.isfinite(ranked_fitness)]))

        try:
            new_state = update_distribution(self._state, ranked, self._params)
        except IllConditioned as e:
            return self._terminate_fatal(TerminationReason.ILL_CONDITIONED, e)

        self._state = new_state
        self._history.record(ranked_fitness, new_state)

        generation_fitness = np.array([c.fitness for c in candidates])
        self._reasons = check_termination_criteria(
            new_state,
            self._history,
            generation_fitness,
            self._thresholds,
            self._evaluations,
            self.elapsed,
        )

        logger.debug(
            f"Gen {new_state.generation}: best={self._generation_best:.6e}, "
            f"median={self._generation_median:.6e}, sigma={new_state.sigma:.3e}, "
            f"cond={new_state.condition_number:.3e}"
        )
        if improved:
            logger.debug(f"New best fitness {self._best_fitness:.6e} at generation {new_state.generation}")

        report = self.report()
        self._print_generation(report, improved)
        if report.terminated:
            self._announce_termination(report)
        return report

    def step(self, evaluate_all: EvaluateAll) -> GenerationReport:
        """
        Run exactly one generation through an evaluation capability.

        ``evaluate_all`` receives the list of solutions and must return one
        fitness value per solution. Raising ``EvaluationCancelled`` or an
        interrupt from the keyboard terminates the optimizer with
        ``CANCELLED`` and keeps the last completed generation. Any other
        failure (an exception, a result that is not a sequence, or a wrong
        number of values) counts as an all-NaN generation and ends the run
        with ``DEGENERATE_GENERATION``.
        """
        candidates = self.ask()
        solutions = [c.x.copy() for c in candidates]
        try:
            fitness = list(evaluate_all(solutions))
            if len(fitness) != len(candidates):
                raise ValueError(f"Expected {len(candidates)} fitness values, got {len(fitness)}")
        except (EvaluationCancelled, KeyboardInterrupt) as e:
            return self._terminate_fatal(TerminationReason.CANCELLED, e)
        except Exception as e:
            logger.warning(f"Evaluation failed for generation {self.generation + 1}: {e}")
            fitness = [math.nan] * len(candidates)
        return self.tell(candidates, fitness)

    def run(self, evaluate_all: EvaluateAll) -> OptimizationResult:
        """Step until a termination criterion triggers."""
        while not self.terminated:
            self.step(evaluate_all)
        return self.result()

    def optimize(self, objective: Objective) -> OptimizationResult:
        """Run with a plain ``objective(x) -> float`` evaluated serially."""
        return self.run(SerialEvaluator(objective))

    def _terminate_fatal(self, reason: TerminationReason, error: BaseException) -> GenerationReport:
        logger.warning(f"Generation {self._state.generation + 1} aborted ({reason}): {error}")
        self._reasons = [reason]
        report = self.report()
        self._announce_termination(report)
        return report

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _print_generation(self, report: GenerationReport, improved: bool):
        gap = self._options.print_gap_evals
        if gap is None:
            return
        if report.generation > ALWAYS_PRINT_GENERATIONS \
                and report.evaluations - self._last_print_evals < gap:
            return
        self._last_print_evals = report.evaluations
        console_wrapper(render_generation_panel(report, improved), self._options.log_path)

    def _announce_termination(self, report: GenerationReport):
        reasons = ", ".join(str(r) for r in report.reasons)
        logger.info(
            f"CMA-ES terminated after {report.generation} generations and "
            f"{report.evaluations} evaluations ({reasons}), best fitness {report.best_fitness:.6e}"
        )
        if self._options.print_gap_evals is not None:
            console_wrapper(render_termination_panel(report), self._options.log_path)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def checkpoint(self) -> Checkpoint:
        """Snapshot everything needed to continue after the last completed generation."""
        return Checkpoint(
            options=self._options,
            state=self._state.copy(),
            history=copy.deepcopy(self._history),
            sampler=copy.deepcopy(self._sampler),
            evaluations=self._evaluations,
            best_solution=self.best_solution,
            best_fitness=self._best_fitness,
            elapsed=self.elapsed,
            reasons=list(self._reasons),
        )

    def save_checkpoint(self, checkpoint_path: str) -> bool:
        """Write ``checkpoint()`` to disk, see ``save_checkpoint``."""
        return save_checkpoint(checkpoint_path, self.checkpoint())

    @classmethod
    def from_checkpoint(cls, checkpoint: Union[Checkpoint, str]) -> "CMAES":
        """
        Rebuild an optimizer from a checkpoint or a checkpoint file.

        Continuing the restored optimizer gives the same trajectory as the
        uninterrupted run.

        Raises:
            ValueError: If ``checkpoint`` is a path without a usable checkpoint
        """
        if isinstance(checkpoint, str):
            path = checkpoint
            checkpoint = load_checkpoint(path)
            if checkpoint is None:
                raise ValueError(f"No usable checkpoint at {path}")

        es = cls(checkpoint.options)
        es._state = checkpoint.state.copy()
        es._history = copy.deepcopy(checkpoint.history)
        es._sampler = copy.deepcopy(checkpoint.sampler)
        es._evaluations = checkpoint.evaluations
        es._best_fitness = checkpoint.best_fitness
        es._best_solution = None if checkpoint.best_solution is None else checkpoint.best_solution.copy()
        es._reasons = list(checkpoint.reasons)
        es._elapsed_before = checkpoint.elapsed
        es._last_print_evals = checkpoint.evaluations

        log_message(
            f"[green]Resumed CMA-ES at generation {es.generation} "
            f"({es.evaluations:,} evaluations, best {es.best_fitness:.6e})[/green]",
            checkpoint.options.log_path,
            emoji="✅",
        )
        return es
