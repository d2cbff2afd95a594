"""
Checkpoint save/load functionality for CMA-ES optimization.
"""

import logging
import os
import pickle
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .data_structures import DistributionState, TerminationHistory
from .logging_utils import console_wrapper
from .options import CMAESOptions
from .sampling import Sampler

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    """Everything needed to resume an optimizer after the last completed generation."""

    options: CMAESOptions
    state: DistributionState
    history: TerminationHistory
    sampler: Sampler
    evaluations: int
    best_solution: Optional[np.ndarray]
    best_fitness: float
    elapsed: float
    reasons: List = field(default_factory=list)


def save_checkpoint(checkpoint_path: str, checkpoint: Checkpoint) -> bool:
    """
    Save a checkpoint to disk.

    The file is written to a temporary path first and renamed, so an
    interrupted save never leaves a truncated checkpoint behind. Failures are
    reported but do not raise, the optimization can continue.

    Args:
        checkpoint_path: Path to save checkpoint file
        checkpoint: Snapshot taken with ``CMAES.checkpoint()``

    Returns:
        True if the checkpoint was written
    """
    temp_path = checkpoint_path + '.tmp'
    try:
        checkpoint_dir = os.path.dirname(checkpoint_path)
        if checkpoint_dir:
            os.makedirs(checkpoint_dir, exist_ok=True)

        with open(temp_path, 'wb') as f:
            pickle.dump(checkpoint, f, protocol=pickle.HIGHEST_PROTOCOL)
        os.replace(temp_path, checkpoint_path)

        logger.info(
            f"Checkpoint saved to {checkpoint_path}: generation {checkpoint.state.generation}, "
            f"best fitness {checkpoint.best_fitness:.6e}"
        )
        return True

    except (OSError, pickle.PicklingError) as e:
        logger.error(f"Failed to save checkpoint: {e}")
        console_wrapper(f"[yellow]⚠️ Checkpoint save failed: {e}, continuing optimization[/yellow]")
        if os.path.exists(temp_path):
            os.remove(temp_path)
        return False


def load_checkpoint(checkpoint_path: str) -> Optional[Checkpoint]:
    """
    Load a checkpoint from disk.

    Args:
        checkpoint_path: Path to checkpoint file

    Returns:
        Checkpoint object if successful, None if the file is missing or corrupted
    """
    if not os.path.exists(checkpoint_path):
        console_wrapper(f"[cyan]ℹ️ No checkpoint found at {checkpoint_path}, starting fresh[/cyan]")
        return None

    try:
        with open(checkpoint_path, 'rb') as f:
            checkpoint = pickle.load(f)
    except (pickle.UnpicklingError, EOFError, AttributeError, OSError) as e:
        logger.warning(f"Checkpoint file corrupted: {e}")
        console_wrapper(f"[yellow]⚠️ Checkpoint file corrupted: {e}, starting fresh[/yellow]")
        return None
    except Exception as e:
        logger.warning(f"Failed to load checkpoint: {e}")
        console_wrapper(f"[yellow]⚠️ Failed to load checkpoint: {e}, starting fresh[/yellow]")
        return None

    if not isinstance(checkpoint, Checkpoint):
        console_wrapper("[yellow]⚠️ Checkpoint file has invalid format, starting fresh[/yellow]")
        return None

    logger.info(f"Checkpoint loaded from {checkpoint_path}: generation {checkpoint.state.generation}")
    return checkpoint
