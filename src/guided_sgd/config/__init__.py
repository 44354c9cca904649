"""Training options and configuration errors.

Options are validated once, at construction, and are immutable for the
lifetime of a training run.
"""

from guided_sgd.config.options import (
    ConfigurationError,
    ExecutionEnvironment,
    ScheduleMethod,
    ShuffleOption,
    SolverName,
    ThresholdMethod,
    TrainingOptions,
    training_options,
    validate_options,
)

__all__ = [
    "ConfigurationError",
    "ExecutionEnvironment",
    "ScheduleMethod",
    "ShuffleOption",
    "SolverName",
    "ThresholdMethod",
    "TrainingOptions",
    "training_options",
    "validate_options",
]
