"""Per-iteration training summaries and the recorded training history."""

from __future__ import annotations

import math
from typing import Any, NamedTuple

import jax.numpy as jnp


class MiniBatchSummary(NamedTuple):
    """Snapshot of one training iteration, threaded through the reporters.

    Examples:
        >>> import jax.numpy as jnp
        >>> s = MiniBatchSummary(
        ...     epoch=1, iteration=1, time=0.0, loss=0.5, learn_rate=0.01,
        ...     predictions=jnp.array([[0.9, 0.1], [0.2, 0.8]]),
        ...     response=jnp.array([[1.0, 0.0], [1.0, 0.0]]),
        ... )
        >>> s.accuracy
        50.0

    """

    epoch: int
    iteration: int
    time: float
    loss: float
    learn_rate: float
    predictions: Any = None
    response: Any = None
    validation_loss: float | None = None

    @property
    def rmse(self) -> float | None:
        if self.predictions is None or self.response is None:
            return None
        predictions = jnp.asarray(self.predictions)
        response = jnp.asarray(self.response).reshape(predictions.shape)
        num_observations = max(predictions.shape[0], 1)
        return float(jnp.sqrt(jnp.sum((predictions - response) ** 2) / num_observations))

    @property
    def accuracy(self) -> float | None:
        if self.predictions is None or self.response is None:
            return None
        predictions = jnp.asarray(self.predictions)
        if predictions.ndim < 2:
            return None
        response = jnp.asarray(self.response)
        hits = jnp.argmax(predictions, axis=-1) == jnp.argmax(response, axis=-1)
        return float(100.0 * jnp.mean(hits))


class TrainingInfo(NamedTuple):
    """History of a training run, one entry per reported iteration.

    ``validation_loss`` holds NaN for iterations without a validation pass.
    """

    iteration: tuple[int, ...] = ()
    epoch: tuple[int, ...] = ()
    training_loss: tuple[float, ...] = ()
    learn_rate: tuple[float, ...] = ()
    validation_loss: tuple[float, ...] = ()
    final_validation_loss: float = math.nan
