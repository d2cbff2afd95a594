"""
Core CMA-ES algorithm implementation.

State initialization, the generational update of mean, evolution paths, step
size and covariance matrix, and the periodic eigendecomposition of C.
"""

import logging
import math
from typing import Sequence, Tuple

import numpy as np

from .data_structures import Candidate, DistributionState
from .errors import IllConditioned, InvalidDimension, InvalidSigma
from .parameters import StrategyParameters

logger = logging.getLogger(__name__)

# Eigenvalues below this floor are clamped before taking square roots
EIGENVALUE_FLOOR = 1e-20
# Condition number beyond which C is treated as numerically broken
MAX_CONDITION = 1e18
# Relative asymmetry of C that forces an early eigendecomposition
SYMMETRY_TOLERANCE = 1e-10


def initialize_state(
    initial_mean: np.ndarray,
    sigma0: float,
    params: StrategyParameters,
) -> DistributionState:
    """
    Create a fresh distribution state with identity covariance.

    Args:
        initial_mean: Starting mean of the search distribution
        sigma0: Initial step size
        params: Strategy parameters of the optimizer

    Returns:
        DistributionState with zero evolution paths at generation 0
    """
    n = len(initial_mean)
    if n < 1:
        raise InvalidDimension(f"dimension must be >= 1, got {n}")
    if not (math.isfinite(sigma0) and sigma0 > 0):
        raise InvalidSigma(f"sigma0 must be positive, got {sigma0}")

    return DistributionState(
        mean=np.array(initial_mean, dtype=float).copy(),
        sigma=float(sigma0),
        C=np.eye(n),
        B=np.eye(n),
        D=np.ones(n),
        inv_sqrt_C=np.eye(n),
        path_sigma=np.zeros(n),
        path_c=np.zeros(n),
        generation=0,
        eigen_countdown=params.eigen_update_gap,
    )


def needs_forced_refresh(C: np.ndarray) -> bool:
    """Whether C drifted far enough from a valid covariance matrix to refresh now."""
    if not np.all(np.isfinite(C)):
        return True
    if np.any(np.diag(C) <= 0):
        return True
    scale = np.max(np.abs(C))
    return bool(np.max(np.abs(C - C.T)) > SYMMETRY_TOLERANCE * scale)


def refresh_eigensystem(C: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Eigendecompose C, clamping eigenvalues that drifted below the floor.

    When clamping happens, C is rebuilt from the clamped decomposition so that
    ``B @ diag(D) @ B.T`` reconstructs the returned matrix.

    Args:
        C: Covariance matrix (symmetrized here)

    Returns:
        Tuple of (C, B, D, inv_sqrt_C) with D sorted in descending order

    Raises:
        IllConditioned: If C is not finite, cannot be decomposed, or its
            condition number exceeds ``MAX_CONDITION``
    """
    C = (C + C.T) / 2.0
    if not np.all(np.isfinite(C)):
        raise IllConditioned("Covariance matrix contains non-finite values")

    try:
        eigenvalues, eigenvectors = np.linalg.eigh(C)
    except np.linalg.LinAlgError as e:
        raise IllConditioned(f"Eigendecomposition of the covariance matrix failed: {e}") from e

    # Sort by eigenvalues (descending)
    idx = eigenvalues.argsort()[::-1]
    eigenvalues = eigenvalues[idx]
    B = eigenvectors[:, idx]

    if not eigenvalues[0] > 0:
        raise IllConditioned(f"Largest eigenvalue is not positive: {eigenvalues[0]}")

    clamped = eigenvalues < EIGENVALUE_FLOOR
    D = np.maximum(eigenvalues, EIGENVALUE_FLOOR)
    if np.any(clamped):
        logger.debug("Clamped %d eigenvalue(s) below %.1e", int(clamped.sum()), EIGENVALUE_FLOOR)
        C = (B * D) @ B.T
        C = (C + C.T) / 2.0

    condition = D[0] / D[-1]
    if condition > MAX_CONDITION:
        raise IllConditioned(f"Condition number {condition:.3e} exceeds {MAX_CONDITION:.0e}")

    inv_sqrt_C = (B / np.sqrt(D)) @ B.T
    return C, B, D, inv_sqrt_C


def update_distribution(
    state: DistributionState,
    ranked: Sequence[Candidate],
    params: StrategyParameters,
) -> DistributionState:
    """
    Update the distribution from a ranked population.

    Implements the CMA-ES update equations:
    1. Move the mean towards the weighted best ``mu`` directions
    2. Update the step-size evolution path ``path_sigma``
    3. Update sigma from the length of ``path_sigma``
    4. Update the covariance path ``path_c`` (stalled on rapid sigma increase)
    5. Update C with rank-one and rank-mu terms
    6. Count down to, and perform, the next eigendecomposition

    The input state is left untouched.

    Args:
        state: Distribution state the population was sampled from
        ranked: Candidates ordered best first (see ``rank_candidates``)
        params: Strategy parameters

    Returns:
        New DistributionState for the next generation

    Raises:
        IllConditioned: If sigma or C break down numerically
    """
    n = state.dimension
    mu = params.mu
    weights = params.weights
    sigma = state.sigma

    y = np.array([c.y for c in ranked])

    # 1. Mean update from the best mu directions
    y_w = params.positive_weights @ y[:mu]
    mean = state.mean + params.cm * sigma * y_w

    # 2. Step-size path, whitened with the cached C^-1/2
    cs = params.cs
    path_sigma = (1.0 - cs) * state.path_sigma + \
        math.sqrt(cs * (2.0 - cs) * params.mueff) * (state.inv_sqrt_C @ y_w)
    ps_norm = float(np.linalg.norm(path_sigma))

    # 3. Step-size update
    new_sigma = sigma * math.exp((cs / params.damps) * (ps_norm / params.chi_n - 1.0))
    if not (math.isfinite(new_sigma) and new_sigma > 0):
        raise IllConditioned(f"Step size broke down: sigma={new_sigma}")

    # 4. Covariance path with Heaviside stall
    correction = math.sqrt(1.0 - (1.0 - cs) ** (2.0 * (state.generation + 1)))
    h_sigma = 1.0 if ps_norm / correction < params.h_sigma_threshold * params.chi_n else 0.0
    cc = params.cc
    path_c = (1.0 - cc) * state.path_c + \
        h_sigma * math.sqrt(cc * (2.0 - cc) * params.mueff) * y_w

    # 5. Covariance update
    c1 = params.c1
    cmu = params.cmu
    adjusted = weights.copy()
    negative = adjusted < 0
    if np.any(negative):
        # Rescale negative weights by n / ||C^-1/2 y||^2 to keep C positive definite
        whitened_sq = np.sum((y[negative] @ state.inv_sqrt_C.T) ** 2, axis=1)
        adjusted[negative] *= n / np.maximum(whitened_sq, 1e-300)

    rank_one = np.outer(path_c, path_c)
    rank_mu = (adjusted[:, np.newaxis] * y).T @ y
    delta_h = (1.0 - h_sigma) * cc * (2.0 - cc)
    decay = 1.0 - c1 - cmu * params.weights_sum + c1 * delta_h

    C = decay * state.C + c1 * rank_one + cmu * rank_mu
    force = needs_forced_refresh(C)
    C = (C + C.T) / 2.0

    # 6. Eigen-refresh scheduling
    countdown = state.eigen_countdown - 1
    # Between refreshes B, D and inv_sqrt_C lag behind C, and so do the
    # condition guards and the termination checks that read D
    B, D, inv_sqrt_C = state.B, state.D, state.inv_sqrt_C
    if countdown <= 0 or force:
        if force:
            logger.debug("Forced eigendecomposition at generation %d", state.generation + 1)
        C, B, D, inv_sqrt_C = refresh_eigensystem(C)
        countdown = params.eigen_update_gap

    return DistributionState(
        mean=mean,
        sigma=new_sigma,
        C=C,
        B=B,
        D=D,
        inv_sqrt_C=inv_sqrt_C,
        path_sigma=path_sigma,
        path_c=path_c,
        generation=state.generation + 1,
        eigen_countdown=countdown,
    )
