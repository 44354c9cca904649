"""Training loop (plain and guided) and GSGD bookkeeping."""

from guided_sgd.training.gsgd import (
    INITIAL_PREVIOUS_ERROR,
    ConsistencyBuffer,
    GSGDState,
    ReplayEvent,
    consistency_score,
    improvement_position,
    replay_order,
    revisit_window,
)
from guided_sgd.training.trainer import Trainer, TrainingState, resolve_device, train_network

__all__ = [
    "INITIAL_PREVIOUS_ERROR",
    "ConsistencyBuffer",
    "GSGDState",
    "ReplayEvent",
    "Trainer",
    "TrainingState",
    "consistency_score",
    "improvement_position",
    "replay_order",
    "resolve_device",
    "revisit_window",
    "train_network",
]
