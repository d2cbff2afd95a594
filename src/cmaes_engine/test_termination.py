"""
Tests for the termination criteria.

Each criterion is triggered on its own by building the distribution state and
the rolling history by hand.

Testing Framework: pytest + Hypothesis
"""

import math

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st

from cmaes_engine.core import initialize_state
from cmaes_engine.data_structures import RollingBuffer, TerminationHistory
from cmaes_engine.options import CMAESOptions
from cmaes_engine.parameters import compute_strategy_parameters
from cmaes_engine.termination import (
    FATAL_REASONS,
    TerminationReason,
    TerminationThresholds,
    _did_improve,
    check_termination_criteria,
)

N = 2
LAMBDA = 6
# 10 + ceil(30 * 2 / 6) and 120 + ceil(30 * 2 / 6)
HIST_WINDOW = 20
STAGNATION_WINDOW = 130

SPREAD = np.arange(LAMBDA, dtype=float)


def _state(**changes):
    params = compute_strategy_parameters(N, LAMBDA)
    state = initialize_state(np.zeros(N), 1.0, params)
    for name, value in changes.items():
        setattr(state, name, value)
    return state


def _history():
    return TerminationHistory(N, LAMBDA, initial_max_std=1.0)


def _thresholds(**options):
    return TerminationThresholds.from_options(
        CMAESOptions(dimension=N, population_size=LAMBDA, **options)
    )


def _check(state=None, history=None, fitness=None, evaluations=0, elapsed=0.0, **options):
    return check_termination_criteria(
        state if state is not None else _state(),
        history if history is not None else _history(),
        np.asarray(fitness if fitness is not None else 10.0 + SPREAD, dtype=float),
        _thresholds(**options),
        evaluations,
        elapsed,
    )


def _record(history, rows):
    state = _state()
    for row in rows:
        history.record(np.sort(np.asarray(row, dtype=float)), state)
    return history


# =============================================================================
# Baseline and bookkeeping
# =============================================================================

def test_fresh_state_does_not_terminate():
    assert _check() == []


def test_history_windows():
    history = _history()
    assert history.tol_fun_window == HIST_WINDOW
    assert history.stagnation_window == STAGNATION_WINDOW
    assert history.flat_rank == 2


def test_rolling_buffer_evicts_oldest():
    buffer = RollingBuffer(3)
    for value in range(5):
        buffer.append(value)
    assert buffer.to_list() == [2, 3, 4]
    assert buffer.recent(2) == [3, 4]
    assert buffer.is_full
    with pytest.raises(ValueError):
        RollingBuffer(0)


def test_fatal_reasons():
    assert FATAL_REASONS == {
        TerminationReason.DEGENERATE_GENERATION,
        TerminationReason.ILL_CONDITIONED,
        TerminationReason.CANCELLED,
    }
    assert str(TerminationReason.TOL_FUN) == "TolFun"


@pytest.mark.parametrize("values,window,improved", [
    ([5.0] * 10, 10, False),
    (list(range(10, 0, -1)), 10, True),
    (list(range(10)), 10, False),
    ([1.0, 2.0], 2, True),
])
def test_did_improve(values, window, improved):
    assert _did_improve(values, window) is improved


# =============================================================================
# Budgets
# =============================================================================

def test_max_evaluations():
    assert _check(evaluations=59, max_evaluations=60) == []
    assert _check(evaluations=60, max_evaluations=60) == [TerminationReason.MAX_EVALUATIONS]


def test_max_generations():
    assert _check(state=_state(generation=4), max_generations=5) == []
    assert _check(state=_state(generation=5), max_generations=5) == [TerminationReason.MAX_GENERATIONS]


def test_max_time():
    assert _check(elapsed=4.9, max_time=5.0) == []
    assert _check(elapsed=5.0, max_time=5.0) == [TerminationReason.MAX_TIME]


def test_fun_target():
    assert _check(fitness=10.0 + SPREAD, fun_target=9.0) == []
    assert _check(fitness=9.0 + SPREAD, fun_target=9.0) == [TerminationReason.FUN_TARGET]
    assert _check(fitness=[math.nan] * 5 + [8.0], fun_target=9.0) == [TerminationReason.FUN_TARGET]


# =============================================================================
# Function value tolerances
# =============================================================================

def test_tol_fun_needs_full_window():
    flat = [1.0 + 1e-14 * SPREAD]
    history = _record(_history(), flat * (HIST_WINDOW - 1))
    assert _check(history=history, fitness=flat[0], tol_fun_hist=0.0) == []

    _record(history, flat)
    assert _check(history=history, fitness=flat[0], tol_fun_hist=0.0) == [TerminationReason.TOL_FUN]


def test_tol_fun_ignores_generation_with_nan():
    flat = [1.0 + 1e-14 * SPREAD]
    history = _record(_history(), flat * HIST_WINDOW)
    fitness = np.append(flat[0][:-1], math.nan)
    assert _check(history=history, fitness=fitness, tol_fun_hist=0.0) == []


def test_tol_fun_rel():
    history = _record(_history(), [100.0 + SPREAD])
    _record(history, [1.0 + 1e-3 * SPREAD] * HIST_WINDOW)

    reasons = _check(history=history, fitness=1.0 + 1e-3 * SPREAD,
                     tol_fun=0.0, tol_fun_hist=0.0, tol_fun_rel=0.1)
    assert reasons == [TerminationReason.TOL_FUN_REL]

    assert _check(history=history, fitness=1.0 + 1e-3 * SPREAD,
                  tol_fun=0.0, tol_fun_hist=0.0) == []


def test_tol_fun_hist():
    history = _record(_history(), [1.0 + SPREAD] * HIST_WINDOW)
    assert _check(history=history, fitness=1.0 + SPREAD) == [TerminationReason.TOL_FUN_HIST]


def test_equal_fun_values():
    flat_row = [1.0, 1.0, 1.0, 3.0, 4.0, 5.0]
    distinct_row = 1.0 + SPREAD

    history = _record(_history(), [flat_row] * 7 + [distinct_row] * 12)
    assert _check(history=history, tol_fun_hist=0.0) == []

    # 7 flat generations out of a full window of 20
    _record(history, [distinct_row])
    assert _check(history=history, tol_fun_hist=0.0) == [TerminationReason.EQUAL_FUN_VALUES]

    # One more distinct generation evicts a flat one: 6 / 20 is not above 1/3
    _record(history, [distinct_row])
    assert _check(history=history, tol_fun_hist=0.0) == []


@pytest.mark.parametrize("population_size", [2, 3])
def test_flat_flag_for_smallest_populations(population_size):
    """The best value is compared with the second one, never with itself."""
    history = TerminationHistory(N, population_size, initial_max_std=1.0)
    assert history.flat_rank == 1

    history.record(np.array([1.0, 2.0, 3.0][:population_size]), _state())
    history.record(np.array([1.0, 1.0, 3.0][:population_size]), _state())
    assert history.flat_fitness.to_list() == [False, True]


@settings(max_examples=100)
@given(
    population_size=st.integers(min_value=2, max_value=40),
    values=st.lists(st.floats(min_value=-1e6, max_value=1e6), min_size=40, max_size=40, unique=True),
)
def test_flat_flag_not_set_for_distinct_values(population_size, values):
    """With distinct fitness values no generation is ever flagged as flat."""
    history = TerminationHistory(N, population_size, initial_max_std=1.0)
    assert 1 <= history.flat_rank <= population_size - 1

    history.record(np.sort(np.array(values[:population_size])), _state())
    assert history.flat_fitness.to_list() == [False]


def test_stagnation():
    # Best and median slowly get worse
    rows = [1.0 + 0.01 * k + SPREAD for k in range(STAGNATION_WINDOW)]
    history = _record(_history(), rows[:-1])
    assert _check(history=history) == []

    _record(history, rows[-1:])
    assert _check(history=history) == [TerminationReason.STAGNATION]


def test_no_stagnation_while_improving():
    rows = [1000.0 - k + SPREAD for k in range(STAGNATION_WINDOW)]
    history = _record(_history(), rows)
    assert _check(history=history) == []


# =============================================================================
# Distribution criteria
# =============================================================================

def test_tol_x():
    assert _check(state=_state(sigma=1e-20)) == [TerminationReason.TOL_X]


def test_tol_x_respects_evolution_path():
    state = _state(sigma=1e-20, path_c=np.array([1e9, 0.0]))
    assert _check(state=state) == []


def test_tol_x_up():
    assert _check(state=_state(sigma=1e7)) == []
    assert _check(state=_state(sigma=1e9)) == [TerminationReason.TOL_X_UP]


def test_condition_cov():
    state = _state(C=np.diag([1e15, 1.0]), D=np.array([1e15, 1.0]))
    assert _check(state=state) == [TerminationReason.CONDITION_COV]


def test_no_effect_axis():
    # 0.1 is below half an ulp of 2**50, 0.2 is not
    state = _state(mean=np.array([2.0 ** 50, 2.0 ** 50]))
    assert _check(state=state) == [TerminationReason.NO_EFFECT_AXIS]


def test_no_effect_coord():
    # Only the second coordinate is too large for a 0.2 step
    state = _state(mean=np.array([0.0, 2.0 ** 51]))
    assert _check(state=state) == [TerminationReason.NO_EFFECT_COORD]


def test_reasons_are_reported_in_check_order():
    state = _state(sigma=1e-20, generation=10)
    reasons = _check(state=state, evaluations=100, max_evaluations=50, max_generations=10)
    assert reasons == [
        TerminationReason.MAX_EVALUATIONS,
        TerminationReason.MAX_GENERATIONS,
        TerminationReason.TOL_X,
    ]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
