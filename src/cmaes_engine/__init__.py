"""
CMA-ES generational update engine.

This package provides a black-box minimizer over R^n based on the Covariance
Matrix Adaptation Evolution Strategy. The ``CMAES`` driver samples candidate
solutions, evaluates them through an injected capability (serial or
multiprocessing) and adapts mean, step size and covariance until one of the
termination criteria triggers. Optimizer state can be checkpointed and resumed.
"""

from .checkpoint import Checkpoint, load_checkpoint, save_checkpoint
from .data_structures import (
    Candidate,
    DistributionState,
    GenerationReport,
    OptimizationResult,
)
from .errors import (
    CMAESError,
    DegenerateGeneration,
    EvaluationCancelled,
    IllConditioned,
    InvalidDimension,
    InvalidLearningRate,
    InvalidOptionsError,
    InvalidPopulationSize,
    InvalidSigma,
    InvalidThreshold,
    MeanDimensionMismatch,
)
from .evaluation import PoolEvaluator, SerialEvaluator
from .optimizer import CMAES
from .options import CMAESOptions, Weights
from .parameters import StrategyParameters
from .sampling import Sampler
from .termination import TerminationReason

__all__ = [
    'CMAES',
    'CMAESOptions',
    'Weights',
    'StrategyParameters',
    'DistributionState',
    'Candidate',
    'GenerationReport',
    'OptimizationResult',
    'TerminationReason',
    'Sampler',
    'SerialEvaluator',
    'PoolEvaluator',
    'Checkpoint',
    'save_checkpoint',
    'load_checkpoint',
    'CMAESError',
    'InvalidOptionsError',
    'InvalidDimension',
    'InvalidPopulationSize',
    'InvalidSigma',
    'MeanDimensionMismatch',
    'InvalidLearningRate',
    'InvalidThreshold',
    'DegenerateGeneration',
    'IllConditioned',
    'EvaluationCancelled',
]
