"""Dense reference network.

A small functional multilayer perceptron that satisfies the
:class:`~guided_sgd.network.parameters.Network` protocol. Gradients and
predictions come from a single ``jax.value_and_grad`` pass so the
forward computation is shared between loss reporting and the update.

References:
    - JAX nn API: https://jax.readthedocs.io/en/latest/jax.nn.html
    - JAX autodiff cookbook: https://jax.readthedocs.io/en/latest/notebooks/autodiff_cookbook.html

"""

from __future__ import annotations

import functools
from collections.abc import Mapping, Sequence
from typing import Any, NamedTuple

import jax
import jax.numpy as jnp
from jax import Array

from guided_sgd.config import ConfigurationError
from guided_sgd.network.parameters import Gradients, LearnableParameter, Step

LOSS_FUNCTIONS = ("mse", "cross_entropy")


def _forward(values: dict[str, Array], x: Array, num_layers: int, loss_name: str) -> Array:
    h = x.reshape(x.shape[0], -1)
    for i in range(1, num_layers + 1):
        # Weights are stored (fan_out, fan_in).
        h = h @ values[f"fc{i}/weights"].T + values[f"fc{i}/bias"]
        if i < num_layers:
            h = jax.nn.relu(h)
    if loss_name == "cross_entropy":
        h = jax.nn.softmax(h, axis=-1)
    return h


def _loss(predictions: Array, y: Array, loss_name: str) -> Array:
    n = predictions.shape[0]
    if loss_name == "cross_entropy":
        eps = jnp.finfo(predictions.dtype).tiny
        return -jnp.sum(y * jnp.log(predictions + eps)) / n
    return 0.5 * jnp.sum((predictions - y.reshape(predictions.shape)) ** 2) / n


@functools.partial(jax.jit, static_argnames=("num_layers", "loss_name"))
def _value_and_grad(
    values: dict[str, Array],
    x: Array,
    y: Array,
    num_layers: int,
    loss_name: str,
) -> tuple[tuple[Array, Array], dict[str, Array]]:
    def objective(v):
        predictions = _forward(v, x, num_layers, loss_name)
        return _loss(predictions, y, loss_name), predictions

    return jax.value_and_grad(objective, has_aux=True)(values)


class DenseNetwork(NamedTuple):
    """Multilayer perceptron with relu hidden layers.

    Parameters are named ``fc<i>/weights`` and ``fc<i>/bias``. The output
    layer is linear for ``"mse"`` and softmax for ``"cross_entropy"``
    (responses are then one-hot encoded).

    Examples:
        >>> import jax
        >>> import jax.numpy as jnp
        >>> net = DenseNetwork.create(jax.random.key(0), [3, 4, 2])
        >>> sorted(net.learnable_parameters)
        ['fc1/bias', 'fc1/weights', 'fc2/bias', 'fc2/weights']
        >>> net.predict(jnp.ones((5, 3))).shape
        (5, 2)

    """

    parameters: Mapping[str, LearnableParameter]
    num_layers: int
    loss_name: str = "mse"

    @classmethod
    def create(
        cls,
        key: Array,
        layer_sizes: Sequence[int],
        loss_name: str = "mse",
        dtype: Any = jnp.float32,
    ) -> DenseNetwork:
        """Initialize weights with He-normal scaling and biases with zeros.

        Args:
            key: PRNG key (consumed).
            layer_sizes: Input size followed by each layer's output size.
            loss_name: "mse" or "cross_entropy".
            dtype: Parameter dtype.

        Raises:
            ConfigurationError: Fewer than two layer sizes or unknown loss.

        """
        if len(layer_sizes) < 2:
            raise ConfigurationError("layer_sizes needs an input size and at least one layer")
        if loss_name not in LOSS_FUNCTIONS:
            raise ConfigurationError(f"unsupported loss {loss_name!r}; expected one of: {', '.join(LOSS_FUNCTIONS)}")

        keys = jax.random.split(key, len(layer_sizes) - 1)
        parameters: dict[str, LearnableParameter] = {}
        for i, (fan_in, fan_out) in enumerate(zip(layer_sizes[:-1], layer_sizes[1:]), start=1):
            scale = jnp.sqrt(2.0 / fan_in)
            weights = jax.random.normal(keys[i - 1], (fan_out, fan_in), dtype=dtype) * scale
            parameters[f"fc{i}/weights"] = LearnableParameter(weights)
            parameters[f"fc{i}/bias"] = LearnableParameter(jnp.zeros((fan_out,), dtype=dtype))
        return cls(parameters=parameters, num_layers=len(layer_sizes) - 1, loss_name=loss_name)

    @property
    def learnable_parameters(self) -> Mapping[str, LearnableParameter]:
        return self.parameters

    def _values(self) -> dict[str, Array]:
        return {name: p.value for name, p in self.parameters.items()}

    def predict(self, x: Array) -> Array:
        return _forward(self._values(), jnp.asarray(x), self.num_layers, self.loss_name)

    def compute_gradients_for_training(
        self,
        x: Array,
        y: Array,
        needs_state: bool = False,
        propagate_state: bool = False,
    ) -> tuple[Gradients, Array, None]:
        """Forward and backward pass on one mini-batch.

        Returns:
            Tuple of (gradients, predictions, states). The network has no
            recurrent state, so states is always None.

        """
        (_, predictions), grads = _value_and_grad(
            self._values(), jnp.asarray(x), jnp.asarray(y), self.num_layers, self.loss_name
        )
        return dict(grads), predictions, None

    def loss(self, predictions: Array, y: Array) -> Array:
        return _loss(predictions, jnp.asarray(y), self.loss_name)

    def update_learnable_parameters(self, step: Step) -> DenseNetwork:
        parameters = dict(self.parameters)
        for name, delta in step.items():
            parameters[name] = parameters[name]._replace(value=parameters[name].value + delta)
        return self._replace(parameters=parameters)

    def update_network_state(self, states: Any, needs_state: bool) -> DenseNetwork:
        return self

    def with_factors(
        self,
        name: str,
        *,
        learn_rate_factor: float | None = None,
        l2_factor: float | None = None,
    ) -> DenseNetwork:
        """Return a copy with different local factors for one parameter.

        Examples:
            >>> import jax
            >>> net = DenseNetwork.create(jax.random.key(0), [2, 1])
            >>> frozen = net.with_factors("fc1/bias", learn_rate_factor=0.0)
            >>> frozen.learnable_parameters["fc1/bias"].learn_rate_factor
            0.0

        """
        parameters = dict(self.parameters)
        param = parameters[name]
        if learn_rate_factor is not None:
            param = param._replace(learn_rate_factor=learn_rate_factor)
        if l2_factor is not None:
            param = param._replace(l2_factor=l2_factor)
        parameters[name] = param
        return self._replace(parameters=parameters)
