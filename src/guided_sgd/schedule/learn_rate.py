"""Learning rate schedule recipes.

A schedule maps (current rate, finished epoch) to the rate for the next
epoch. Schedules hold only their configuration: calling ``update`` twice
with the same arguments returns the same rate.

References:
    - Loshchilov & Hutter, "SGDR: Stochastic Gradient Descent with Warm Restarts", 2016
    - Optax schedules: https://optax.readthedocs.io/en/latest/api/optimizer_schedules.html

"""

from __future__ import annotations

import math
from typing import NamedTuple, Protocol

from guided_sgd.config import ConfigurationError, ScheduleMethod, TrainingOptions


class LearnRateSchedule(Protocol):
    def update(self, learn_rate: float, epoch: int) -> float: ...


class NullSchedule(NamedTuple):
    """Schedule that never changes the learning rate."""

    def update(self, learn_rate: float, epoch: int) -> float:
        return learn_rate


class PiecewiseSchedule(NamedTuple):
    """Piecewise constant schedule.

    Multiplies the rate by ``drop_factor`` at the end of every epoch that
    is a multiple of ``drop_period``.

    Examples:
        >>> schedule = PiecewiseSchedule(drop_factor=0.5, drop_period=2)
        >>> schedule.update(0.1, 1)
        0.1
        >>> schedule.update(0.1, 2)
        0.05

    """

    drop_factor: float
    drop_period: int

    def update(self, learn_rate: float, epoch: int) -> float:
        if epoch % self.drop_period == 0:
            return self.drop_factor * learn_rate
        return learn_rate


class CosineSchedule(NamedTuple):
    """Cosine annealing over epochs.

    Smoothly decays the learning rate from ``base_rate`` to ``min_rate``
    over ``max_epochs``. The returned rate depends only on the epoch, so
    the incoming rate is ignored.

    Examples:
        >>> schedule = CosineSchedule(base_rate=0.1, max_epochs=100)
        >>> schedule.update(0.1, 100)
        0.0
        >>> 0.04 < schedule.update(0.1, 50) < 0.06
        True

    """

    base_rate: float
    max_epochs: int
    min_rate: float = 0.0

    def update(self, learn_rate: float, epoch: int) -> float:
        if epoch >= self.max_epochs:
            return self.min_rate
        progress = epoch / self.max_epochs
        return self.min_rate + 0.5 * (self.base_rate - self.min_rate) * (1 + math.cos(math.pi * progress))


def create_schedule(options: TrainingOptions) -> LearnRateSchedule:
    """Build the schedule named by ``options.learn_rate_schedule``.

    Raises:
        ConfigurationError: Unsupported schedule method.

    """
    method = options.learn_rate_schedule
    if method == ScheduleMethod.NONE:
        return NullSchedule()
    if method == ScheduleMethod.PIECEWISE:
        return PiecewiseSchedule(options.learn_rate_drop_factor, options.learn_rate_drop_period)
    if method == ScheduleMethod.COSINE:
        return CosineSchedule(options.initial_learn_rate, options.max_epochs)
    raise ConfigurationError(f"unsupported learn rate schedule {method!r}")
