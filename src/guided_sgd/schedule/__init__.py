"""Learning rate schedules, advanced once at the end of every epoch."""

from guided_sgd.schedule.learn_rate import (
    CosineSchedule,
    LearnRateSchedule,
    NullSchedule,
    PiecewiseSchedule,
    create_schedule,
)

__all__ = [
    "CosineSchedule",
    "LearnRateSchedule",
    "NullSchedule",
    "PiecewiseSchedule",
    "create_schedule",
]
