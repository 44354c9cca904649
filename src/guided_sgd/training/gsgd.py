"""Guided SGD (GSGD) bookkeeping.

Guided training alternates two phases inside each epoch:

* collecting: every new mini-batch is trained on, stored, and scored
  against a held-out verification batch; a short trailing window of
  earlier batches is re-evaluated (forward pass only) and scored too;
* guided replay: every ``rho`` collected batches, the batches with the
  highest mean consistency score (psi) are trained on again, then the
  collection window is flushed.

This module holds the per-window arena and the pure scoring and
selection rules. Batch ordinals are 0-based here: ordinal ``k`` is the
``k+1``-th batch collected since the last flush.

References:
    - Singh et al., "Guided Stochastic Gradient Descent Algorithm for
      inconsistent datasets", Applied Soft Computing, 2018

"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NamedTuple

from jax import Array

# Starting verification error; larger than any loss expected in practice.
INITIAL_PREVIOUS_ERROR = 10.0


def improvement_position(verification_loss: float, previous_error: float) -> int:
    """Return 2 if the last update lowered the verification loss, else 1.

    Examples:
        >>> improvement_position(0.4, 0.5)
        2
        >>> improvement_position(0.5, 0.5)
        1

    """
    return 2 if verification_loss < previous_error else 1


def consistency_score(previous_error: float, revisit_loss: float, position: int) -> float:
    """Signed score ``(-1)^position * (previous_error - revisit_loss)`` for a revisited batch.

    Examples:
        >>> consistency_score(1.0, 0.25, 2)
        0.75
        >>> consistency_score(1.0, 0.25, 1)
        -0.75

    """
    return (-1) ** position * (previous_error - revisit_loss)


def revisit_window(loop_count: int, revisit_batch_num: int) -> list[int]:
    """Ordinals of earlier batches to re-evaluate, most recent first.

    The batch just trained on (ordinal ``loop_count - 1``) is never part
    of the window. With two batches collected, the single earlier batch
    is revisited; after that, the ``revisit_batch_num - 1`` batches
    immediately before the one just trained on.

    Examples:
        >>> revisit_window(1, 2)
        []
        >>> revisit_window(2, 2)
        [0]
        >>> revisit_window(5, 2)
        [3]
        >>> revisit_window(6, 4)
        [4, 3, 2]

    """
    if loop_count < 2:
        return []
    if loop_count == 2:
        return [0]
    stop = max(loop_count - revisit_batch_num, 0)
    return list(range(loop_count - 2, stop - 1, -1))


def replay_order(average_scores: list[float], rho: int) -> list[int]:
    """Ordinals to replay in the guided phase, highest mean score first.

    At most ``min(rho // 2, len(average_scores))`` of the top-ranked
    batches are considered; any with a non-positive mean score is skipped.
    Ties keep collection order.

    Examples:
        >>> replay_order([0.1, -0.2, 0.5, 0.3, 0.0, 0.2, -0.1], rho=7)
        [2, 3, 5]
        >>> replay_order([-0.1, 0.4, -0.3], rho=7)
        [1]

    """
    min_repeat = min(rho // 2, len(average_scores))
    ranked = sorted(range(len(average_scores)), key=average_scores.__getitem__, reverse=True)
    return [k for k in ranked[:min_repeat] if average_scores[k] > 0]


Batch = tuple[Any, Any]


class ConsistencyBuffer:
    """Fixed-capacity store of collected batches and their psi scores.

    Capacity is ``rho``: the guided phase always fires, and flushes the
    buffer, when ``loop_count`` reaches a multiple of ``rho``. Slots are
    cleared in place on flush.

    Examples:
        >>> buf = ConsistencyBuffer(capacity=3)
        >>> k = buf.collect(("x0", "y0"))
        >>> buf.add_score(k, 0.5)
        >>> buf.add_score(k, -0.1)
        >>> buf.loop_count, buf.scores(0)
        (1, (0.5, -0.1))
        >>> buf.flush()
        >>> buf.loop_count
        0

    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.loop_count = 0
        self._batches: list[Batch | None] = [None] * capacity
        self._psi: list[list[float]] = [[] for _ in range(capacity)]

    def __len__(self) -> int:
        return self.loop_count

    @property
    def is_full(self) -> bool:
        return self.loop_count == self.capacity

    def collect(self, batch: Batch) -> int:
        """Store ``batch`` in the next slot and return its ordinal."""
        if self.is_full:
            raise IndexError("consistency buffer is full; flush before collecting")
        ordinal = self.loop_count
        self._batches[ordinal] = batch
        self._psi[ordinal].clear()
        self.loop_count += 1
        return ordinal

    def batch(self, ordinal: int) -> Batch:
        self._check(ordinal)
        return self._batches[ordinal]

    def add_score(self, ordinal: int, score: float) -> None:
        self._check(ordinal)
        self._psi[ordinal].append(float(score))

    def scores(self, ordinal: int) -> tuple[float, ...]:
        self._check(ordinal)
        return tuple(self._psi[ordinal])

    def average_scores(self) -> list[float]:
        """Mean psi of every collected batch, in collection order."""
        return [sum(s) / len(s) if s else 0.0 for s in self._psi[: self.loop_count]]

    def flush(self) -> None:
        for k in range(self.loop_count):
            self._batches[k] = None
            self._psi[k].clear()
        self.loop_count = 0

    def _check(self, ordinal: int) -> None:
        if not 0 <= ordinal < self.loop_count:
            raise IndexError(f"batch ordinal {ordinal} out of range for {self.loop_count} collected batches")


class ReplayEvent(NamedTuple):
    """One guided-replay phase: where it fired and which ordinals it replayed."""

    epoch: int
    iteration: int
    loop_count: int
    replayed: tuple[int, ...]


@dataclass
class GSGDState:
    """Mutable guided-mode state, owned by one ``Trainer.train`` call."""

    buffer: ConsistencyBuffer
    key: Array
    verification_batches: list[Batch] = field(default_factory=list)
    previous_error: float = INITIAL_PREVIOUS_ERROR
    revisit: bool = False
    replays: list[ReplayEvent] = field(default_factory=list)

    def reset_window(self) -> None:
        self.buffer.flush()
        self.revisit = False
