"""Progress reporting, validation, early stopping, history and checkpoints."""

from guided_sgd.reporting.checkpoint import CheckpointSaver, checkpoint_load, checkpoint_save
from guided_sgd.reporting.reporters import (
    HistoryRecorder,
    OutputFunctionReporter,
    ProgressLogger,
    Reporter,
    ValidationReporter,
    VectorReporter,
    dataset_loss,
)
from guided_sgd.reporting.summary import MiniBatchSummary, TrainingInfo

__all__ = [
    "CheckpointSaver",
    "HistoryRecorder",
    "MiniBatchSummary",
    "OutputFunctionReporter",
    "ProgressLogger",
    "Reporter",
    "TrainingInfo",
    "ValidationReporter",
    "VectorReporter",
    "checkpoint_load",
    "checkpoint_save",
    "dataset_loss",
]
