"""
Tests for strategy parameter derivation.

Testing Framework: pytest + Hypothesis
"""

import math

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st

from cmaes_engine.options import Weights
from cmaes_engine.parameters import compute_strategy_parameters


@settings(max_examples=100)
@given(
    dimension=st.integers(min_value=1, max_value=200),
    population_size=st.integers(min_value=2, max_value=500),
    scheme=st.sampled_from(list(Weights)),
)
def test_positive_weights_sum_to_one(dimension, population_size, scheme):
    """The first mu weights are positive, non-increasing and sum to 1 for every scheme."""
    params = compute_strategy_parameters(dimension, population_size, scheme)
    positive = params.positive_weights

    assert params.mu == population_size // 2
    assert len(params.weights) == population_size
    assert math.isclose(positive.sum(), 1.0, rel_tol=1e-12)
    assert np.all(positive > 0)
    assert np.all(np.diff(positive) <= 1e-15)


@settings(max_examples=100)
@given(
    dimension=st.integers(min_value=1, max_value=200),
    population_size=st.integers(min_value=2, max_value=500),
)
def test_learning_rates_in_range(dimension, population_size):
    params = compute_strategy_parameters(dimension, population_size)

    assert 0 < params.cs < 1
    assert 0 < params.cc <= 1
    assert 0 < params.c1 < 1
    assert 0 <= params.cmu < 1
    assert params.c1 + params.cmu <= 1 + 1e-12
    assert params.damps >= 1
    assert 1 <= params.mueff <= params.mu + 1e-9
    assert params.eigen_update_gap >= 1


@settings(max_examples=100)
@given(
    dimension=st.integers(min_value=1, max_value=100),
    population_size=st.integers(min_value=4, max_value=300),
)
def test_negative_weight_mass_is_capped(dimension, population_size):
    """Active CMA-ES weights never exceed the positive-definiteness cap."""
    params = compute_strategy_parameters(dimension, population_size, Weights.NEGATIVE)
    negative = params.weights[params.mu:]
    assert np.all(negative <= 0)

    if params.cmu == 0:
        assert np.all(negative == 0)
        return

    cap = min(
        1 + params.c1 / params.cmu,
        1 + 2 * params.mueff_neg / (params.mueff + 2),
        (1 - params.c1 - params.cmu) / (dimension * params.cmu),
    )
    assert abs(negative.sum()) <= max(cap, 0.0) + 1e-12


def test_positive_and_uniform_schemes_have_no_negative_weights():
    for scheme in (Weights.POSITIVE, Weights.UNIFORM):
        params = compute_strategy_parameters(10, 20, scheme)
        assert np.all(params.weights[params.mu:] == 0)
        assert params.weights_sum == pytest.approx(1.0)


def test_uniform_weights_are_equal():
    params = compute_strategy_parameters(4, 12, Weights.UNIFORM)
    assert np.allclose(params.positive_weights, 1 / 6)
    assert params.mueff == pytest.approx(6.0)


def test_tiny_population_has_no_rank_mu_update():
    """With lambda <= 3 the rank-mu learning rate is zero, so no negative weights."""
    for lam in (2, 3):
        params = compute_strategy_parameters(5, lam)
        assert params.cmu == 0
        assert np.all(params.weights[params.mu:] == 0)


def test_known_values_for_dimension_ten():
    """Compare against the published defaults for n=10, lambda=10."""
    params = compute_strategy_parameters(10, 10, Weights.POSITIVE)
    assert params.mu == 5
    assert params.mueff == pytest.approx(3.1672, abs=1e-4)
    assert params.cs == pytest.approx((params.mueff + 2) / (10 + params.mueff + 5))
    assert params.c1 == pytest.approx(2 / (11.3 ** 2 + params.mueff))
    assert params.chi_n == pytest.approx(3.0847, abs=1e-4)
    assert params.h_sigma_threshold == pytest.approx(1.4 + 2 / 11)


def test_overrides_replace_defaults():
    params = compute_strategy_parameters(
        6, 10, overrides={"cs": 0.3, "damps": 2.5, "cc": 0.4, "c1": 0.01, "cmu": 0.02}
    )
    assert (params.cs, params.damps, params.cc, params.c1, params.cmu) == (0.3, 2.5, 0.4, 0.01, 0.02)
    assert params.overrides["cs"] == 0.3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
