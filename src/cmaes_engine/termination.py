"""
Termination criteria for CMA-ES.

The criteria are a closed set from the published algorithm, so they are
modelled as one enumeration and checked uniformly after every generation.
Most of them guard against numerical breakdown, ``TOL_*`` are problem
dependent tolerances and ``MAX_*`` bound the run.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np

from .data_structures import DistributionState, TerminationHistory
from .options import CMAESOptions


class TerminationReason(Enum):
    """Why an optimizer stopped."""

    MAX_EVALUATIONS = "MaxEvaluations"
    MAX_GENERATIONS = "MaxGenerations"
    MAX_TIME = "MaxTime"
    FUN_TARGET = "FunTarget"
    # Best values of recent generations and the current generation spread are flat
    TOL_FUN = "TolFun"
    # Like TOL_FUN, relative to the overall improvement of the median value
    TOL_FUN_REL = "TolFunRel"
    TOL_FUN_HIST = "TolFunHist"
    # Distribution collapsed in every coordinate
    TOL_X = "TolX"
    # Largest standard deviation grew far beyond its historical minimum
    TOL_X_UP = "TolXUp"
    CONDITION_COV = "ConditionCov"
    NO_EFFECT_AXIS = "NoEffectAxis"
    NO_EFFECT_COORD = "NoEffectCoord"
    EQUAL_FUN_VALUES = "EqualFunValues"
    STAGNATION = "Stagnation"
    # Fatal signals
    DEGENERATE_GENERATION = "DegenerateGeneration"
    ILL_CONDITIONED = "IllConditioned"
    CANCELLED = "Cancelled"

    def __str__(self):
        return self.value


FATAL_REASONS = frozenset({
    TerminationReason.DEGENERATE_GENERATION,
    TerminationReason.ILL_CONDITIONED,
    TerminationReason.CANCELLED,
})


@dataclass
class TerminationThresholds:
    """Resolved thresholds of every criterion."""

    max_generations: Optional[int]
    max_evaluations: Optional[int]
    max_time: Optional[float]
    fun_target: Optional[float]
    tol_fun: float
    tol_fun_rel: float
    tol_fun_hist: float
    tol_x: float
    tol_x_up: float
    tol_condition_cov: float
    equal_fun_values_ratio: float

    @classmethod
    def from_options(cls, options: CMAESOptions) -> "TerminationThresholds":
        return cls(
            max_generations=options.max_generations,
            max_evaluations=options.max_evaluations,
            max_time=options.max_time,
            fun_target=options.fun_target,
            tol_fun=options.tol_fun,
            tol_fun_rel=options.tol_fun_rel,
            tol_fun_hist=options.tol_fun_hist,
            tol_x=options.resolved_tol_x,
            tol_x_up=options.tol_x_up,
            tol_condition_cov=options.tol_condition_cov,
            equal_fun_values_ratio=options.equal_fun_values_ratio,
        )


def _value_range(values) -> float:
    values = np.asarray(values, dtype=float)
    return float(np.max(values) - np.min(values))


def _did_improve(values: List[float], window: int) -> bool:
    """Whether the recent 30% of a window has a lower median than the oldest 30%."""
    values = values[-window:]
    subrange = int(window * 0.3)
    if subrange < 1:
        return True
    oldest = values[:subrange]
    recent = values[-subrange:]
    return float(np.median(recent)) < float(np.median(oldest))


def check_termination_criteria(
    state: DistributionState,
    history: TerminationHistory,
    generation_fitness: np.ndarray,
    thresholds: TerminationThresholds,
    evaluations: int,
    elapsed: float = 0.0,
) -> List[TerminationReason]:
    """
    Check every non-fatal termination criterion.

    Args:
        state: Distribution state after the latest update
        history: Rolling history including the latest generation
        generation_fitness: Fitness values of the latest generation
        thresholds: Resolved thresholds
        evaluations: Objective evaluations so far
        elapsed: Seconds since the optimizer was created

    Returns:
        Triggered reasons in check order, empty if the run should continue
    """
    n = state.dimension
    triggered = []

    finite = generation_fitness[np.isfinite(generation_fitness)]

    if thresholds.max_evaluations is not None and evaluations >= thresholds.max_evaluations:
        triggered.append(TerminationReason.MAX_EVALUATIONS)

    if thresholds.max_generations is not None and state.generation >= thresholds.max_generations:
        triggered.append(TerminationReason.MAX_GENERATIONS)

    if thresholds.max_time is not None and elapsed >= thresholds.max_time:
        triggered.append(TerminationReason.MAX_TIME)

    if thresholds.fun_target is not None and len(finite) > 0 \
            and np.min(finite) <= thresholds.fun_target:
        triggered.append(TerminationReason.FUN_TARGET)

    # TolFun / TolFunRel over the short history window
    window = history.tol_fun_window
    range_history = None
    if len(history.best_fitness) >= window:
        range_history = _value_range(history.best_fitness.recent(window))
        range_current = _value_range(finite) if len(finite) == len(generation_fitness) else math.inf

        if range_history < thresholds.tol_fun and range_current < thresholds.tol_fun:
            triggered.append(TerminationReason.TOL_FUN)

        if history.first_median is not None and history.best_median is not None:
            tol_rel = thresholds.tol_fun_rel * abs(history.first_median - history.best_median)
            if range_history < tol_rel and range_current < tol_rel:
                triggered.append(TerminationReason.TOL_FUN_REL)

    # TolX: every coordinate standard deviation and path component is tiny
    coordinate_std = state.sigma * np.sqrt(np.abs(np.diag(state.C)))
    if np.all(coordinate_std < thresholds.tol_x) \
            and np.all(np.abs(state.sigma * state.path_c) < thresholds.tol_x):
        triggered.append(TerminationReason.TOL_X)

    # ConditionCov
    condition = state.condition_number
    if not math.isfinite(condition) or condition > thresholds.tol_condition_cov:
        triggered.append(TerminationReason.CONDITION_COV)

    # NoEffectAxis: cycle through one principal axis per generation
    k = state.generation % n
    axis_step = 0.1 * state.sigma * math.sqrt(state.D[k]) * state.B[:, k]
    if np.array_equal(state.mean, state.mean + axis_step):
        triggered.append(TerminationReason.NO_EFFECT_AXIS)

    # NoEffectCoord
    coord_step = 0.2 * coordinate_std
    if np.any(state.mean == state.mean + coord_step):
        triggered.append(TerminationReason.NO_EFFECT_COORD)

    # TolFunHist
    if range_history is not None and range_history < thresholds.tol_fun_hist:
        triggered.append(TerminationReason.TOL_FUN_HIST)

    # EqualFunValues: best equals a lower-ranked value in too many recent generations
    if history.flat_fitness.is_full:
        flat_ratio = sum(history.flat_fitness) / len(history.flat_fitness)
        if flat_ratio > thresholds.equal_fun_values_ratio:
            triggered.append(TerminationReason.EQUAL_FUN_VALUES)

    # Stagnation: neither best nor median values improved over the long window
    stagnation_window = history.stagnation_window
    if len(history.best_fitness) >= stagnation_window \
            and len(history.median_fitness) >= stagnation_window:
        if not _did_improve(history.best_fitness.to_list(), stagnation_window) \
                and not _did_improve(history.median_fitness.to_list(), stagnation_window):
            triggered.append(TerminationReason.STAGNATION)

    # TolXUp
    if history.min_max_std > 0 \
            and state.max_standard_deviation / history.min_max_std > thresholds.tol_x_up:
        triggered.append(TerminationReason.TOL_X_UP)

    return triggered
