"""Mini-batch dispatcher recipes.

A dispatcher walks a dataset one mini-batch at a time. ``start`` rewinds
to the first batch, ``shuffle`` draws a new observation order, ``next``
returns ``(X, Y)`` and ``is_done`` reports exhaustion.

Shuffling is driven by an explicit JAX PRNG key that is split on every
shuffle, so a dispatcher built from the same seed always visits the
data in the same order.

References:
    - JAX random: https://jax.readthedocs.io/en/latest/random-numbers.html

"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable

import jax
import jax.numpy as jnp
from jax import Array

from guided_sgd.config import ConfigurationError


class EndOfEpoch(str, Enum):
    """How a remainder smaller than the mini-batch size is handled."""

    TRUNCATE_LAST = "truncate-last"
    DISCARD_LAST = "discard-last"


@runtime_checkable
class DataDispatcher(Protocol):
    @property
    def is_done(self) -> bool: ...

    def start(self) -> None: ...

    def shuffle(self) -> None: ...

    def next(self) -> tuple[Any, Any]: ...


class ArrayDispatcher:
    """Dispatch mini-batches from in-memory arrays.

    Observations are indexed along the leading axis of ``x`` and ``y``.
    With ``truncate-last`` the final mini-batch holds whatever remains;
    with ``discard-last`` a short remainder is skipped. Calling ``next``
    after the data is exhausted serves the final mini-batch again.

    Args:
        x: Predictors, shape (num_observations, ...).
        y: Responses, shape (num_observations, ...).
        mini_batch_size: Observations per mini-batch; capped at the
            number of observations.
        end_of_epoch: "truncate-last" or "discard-last".
        key: PRNG key for shuffling. Defaults to ``jax.random.key(0)``.

    Examples:
        >>> import jax.numpy as jnp
        >>> data = ArrayDispatcher(jnp.arange(5.0), jnp.arange(5.0), mini_batch_size=2)
        >>> data.start()
        >>> batches = []
        >>> while not data.is_done:
        ...     x, _ = data.next()
        ...     batches.append(x.tolist())
        >>> batches
        [[0.0, 1.0], [2.0, 3.0], [4.0]]

    """

    def __init__(
        self,
        x: Any,
        y: Any,
        mini_batch_size: int,
        end_of_epoch: str | EndOfEpoch = EndOfEpoch.TRUNCATE_LAST,
        key: Array | None = None,
    ):
        self.x = jnp.asarray(x)
        self.y = jnp.asarray(y)
        if self.x.shape[0] != self.y.shape[0]:
            raise ConfigurationError(
                f"x and y disagree on the number of observations: {self.x.shape[0]} != {self.y.shape[0]}"
            )
        if mini_batch_size <= 0:
            raise ConfigurationError(f"mini_batch_size must be positive, got {mini_batch_size}")
        try:
            self.end_of_epoch = EndOfEpoch(end_of_epoch)
        except ValueError:
            raise ConfigurationError(f"invalid end_of_epoch {end_of_epoch!r}") from None

        self.num_observations = int(self.x.shape[0])
        self.mini_batch_size = min(mini_batch_size, self.num_observations)
        self._key = jax.random.key(0) if key is None else key
        self._order = jnp.arange(self.num_observations)
        self._begin = 0
        self._end = self.mini_batch_size
        self._done = self.num_observations == 0

    @property
    def is_done(self) -> bool:
        return self._done

    @property
    def num_mini_batches(self) -> int:
        full, remainder = divmod(self.num_observations, self.mini_batch_size or 1)
        if remainder and self.end_of_epoch == EndOfEpoch.TRUNCATE_LAST:
            return full + 1
        return full

    def start(self) -> None:
        self._begin = 0
        self._end = self.mini_batch_size
        self._done = self.num_observations == 0

    def shuffle(self) -> None:
        self._key, subkey = jax.random.split(self._key)
        self._order = jax.random.permutation(subkey, self.num_observations)

    def next(self) -> tuple[Array, Array]:
        indices = self._order[self._begin : self._end]
        batch = self.x[indices], self.y[indices]
        self._advance()
        return batch

    def _advance(self) -> None:
        if self._done:
            return
        if self._end == self.num_observations:
            self._done = True
        elif self._end + self.mini_batch_size > self.num_observations:
            if self.end_of_epoch == EndOfEpoch.TRUNCATE_LAST:
                self._begin += self.mini_batch_size
                self._end = self.num_observations
            else:
                self._done = True
        else:
            self._begin += self.mini_batch_size
            self._end += self.mini_batch_size
