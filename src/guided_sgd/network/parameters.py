"""Learnable parameters, floating point precision and the network protocol.

The trainer never looks inside a network. It reads per-parameter learn
rate and L2 factors from ``learnable_parameters`` and otherwise talks to
the network through four operations, each returning new values rather
than mutating shared state.

"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, NamedTuple, Protocol, runtime_checkable

import jax.numpy as jnp
from jax import Array


class LearnableParameter(NamedTuple):
    """A tensor updated by gradient descent, with its local factors.

    The effective learning rate of the parameter is the global rate times
    ``learn_rate_factor``; the effective L2 factor is the global L2
    regularization times ``l2_factor``. A ``learn_rate_factor`` of zero
    freezes the parameter.
    """

    value: Array
    learn_rate_factor: float = 1.0
    l2_factor: float = 1.0


class Precision(NamedTuple):
    """Floating point precision used for solver constants and moving averages.

    Examples:
        >>> import jax.numpy as jnp
        >>> p = Precision(jnp.float32)
        >>> p.cast(0.5).dtype
        dtype('float32')
        >>> p.zeros((2,)).tolist()
        [0.0, 0.0]

    Note:
        ``jnp.float64`` only takes effect when ``jax_enable_x64`` is set.

    """

    dtype: Any = jnp.float32

    def cast(self, x: Any) -> Array:
        return jnp.asarray(x, dtype=self.dtype)

    def zeros(self, shape: tuple[int, ...] = ()) -> Array:
        return jnp.zeros(shape, dtype=self.dtype)


Gradients = dict[str, "Array | None"]
Step = dict[str, Array]


@runtime_checkable
class Network(Protocol):
    """Operations the trainer needs from a differentiable model."""

    @property
    def learnable_parameters(self) -> Mapping[str, LearnableParameter]: ...

    def compute_gradients_for_training(
        self,
        x: Any,
        y: Any,
        needs_state: bool,
        propagate_state: bool,
    ) -> tuple[Gradients, Any, Any]: ...

    def loss(self, predictions: Any, y: Any) -> Array: ...

    def update_learnable_parameters(self, step: Step) -> Network: ...

    def update_network_state(self, states: Any, needs_state: bool) -> Network: ...
