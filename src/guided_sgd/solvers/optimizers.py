"""Solver (update rule) recipes.

Functional solver implementations compatible with JAX's transform model.
All state is explicit: each solver returns ``(initial_state, calculate_update)``
and ``calculate_update(gradients, global_learn_rate, state)`` returns
``(step, new_state)``. The step is a per-parameter delta that the network
ADDS to each parameter value; it already points downhill.

Parameters whose learn rate factor is zero, or whose gradient is missing,
get no entry in the step and their moving averages are left untouched,
so frozen parameters are never perturbed.

References:
    - Optax library: https://optax.readthedocs.io/
    - Kingma & Ba, "Adam: A Method for Stochastic Optimization", 2014
    - Tieleman & Hinton, "Lecture 6.5 - RMSProp", COURSERA 2012

"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from typing import Any, NamedTuple

import jax.numpy as jnp
from jax import Array

from guided_sgd.config import ConfigurationError, SolverName, TrainingOptions
from guided_sgd.network.parameters import Gradients, LearnableParameter, Precision, Step

CalculateUpdate = Callable[[Gradients, float, Any], tuple[Step, Any]]


class SgdmState(NamedTuple):
    """SGD with momentum state tracking one velocity per parameter."""

    momentum: Array
    local_learn_rates: dict[str, Array]
    velocities: dict[str, Array]


class AdamState(NamedTuple):
    """Adam solver state tracking first/second moments."""

    beta1: Array
    beta2: Array
    eps: Array
    step: int
    local_learn_rates: dict[str, Array]
    m: dict[str, Array]  # First moment estimates
    v: dict[str, Array]  # Second moment estimates


class RMSPropState(NamedTuple):
    """RMSProp solver state tracking the squared-gradient moving average."""

    decay: Array
    eps: Array
    step: int
    local_learn_rates: dict[str, Array]
    s: dict[str, Array]


def _local_learn_rates(
    learnable_parameters: Mapping[str, LearnableParameter],
    precision: Precision,
) -> dict[str, Array]:
    return {name: precision.cast(p.learn_rate_factor) for name, p in learnable_parameters.items()}


def _zeros_like_parameters(
    learnable_parameters: Mapping[str, LearnableParameter],
    precision: Precision,
) -> dict[str, Array]:
    return {name: precision.zeros(jnp.shape(p.value)) for name, p in learnable_parameters.items()}


def _is_learning(local_rates: dict[str, Array], name: str, grad: Array | None) -> bool:
    return grad is not None and jnp.size(grad) > 0 and float(local_rates.get(name, 0.0)) != 0.0


def sgdm_solver(
    learnable_parameters: Mapping[str, LearnableParameter],
    momentum: float = 0.9,
    precision: Precision = Precision(),
) -> tuple[SgdmState, CalculateUpdate]:
    """Create a stochastic gradient descent with momentum solver.

    Update per learning parameter ``i``::

        v_i <- momentum * v_i - lr * local_rate_i * g_i
        step_i = v_i

    Args:
        learnable_parameters: Parameters to optimize (shapes and factors).
        momentum: Contribution of the previous step, in [0, 1).
        precision: Precision for constants and velocities.

    Returns:
        Tuple of (initial_state, calculate_update).

    Examples:
        >>> import jax.numpy as jnp
        >>> from guided_sgd.network import LearnableParameter
        >>> params = {"w": LearnableParameter(jnp.array([1.0]))}
        >>> state, calculate_update = sgdm_solver(params, momentum=0.9)
        >>> step, state = calculate_update({"w": jnp.array([1.0])}, 0.1, state)
        >>> [round(x, 4) for x in step["w"].tolist()]
        [-0.1]
        >>> step, state = calculate_update({"w": jnp.array([1.0])}, 0.1, state)
        >>> [round(x, 4) for x in step["w"].tolist()]
        [-0.19]

    """
    state = SgdmState(
        momentum=precision.cast(momentum),
        local_learn_rates=_local_learn_rates(learnable_parameters, precision),
        velocities=_zeros_like_parameters(learnable_parameters, precision),
    )

    def calculate_update(
        gradients: Gradients,
        global_learn_rate: float,
        state: SgdmState,
    ) -> tuple[Step, SgdmState]:
        velocities = dict(state.velocities)
        step: Step = {}
        for name, g in gradients.items():
            # No update needed for parameters that are not learning
            if not _is_learning(state.local_learn_rates, name, g):
                continue
            lr = global_learn_rate * state.local_learn_rates[name]
            velocities[name] = state.momentum * velocities[name] - lr * g
            step[name] = velocities[name]
        return step, state._replace(velocities=velocities)

    return state, calculate_update


def learn_rate_shrink_factor(beta1: float, beta2: float, t: int) -> float:
    """Adam bias correction folded into the learning rate.

    Examples:
        >>> round(learn_rate_shrink_factor(0.9, 0.9, 1), 4)
        3.1623

    """
    return math.sqrt(1 - beta2**t) / (1 - beta1**t)


def adam_solver(
    learnable_parameters: Mapping[str, LearnableParameter],
    beta1: float = 0.9,
    beta2: float = 0.999,
    eps: float = 1e-8,
    precision: Precision = Precision(),
) -> tuple[AdamState, CalculateUpdate]:
    """Create an Adam solver (Kingma & Ba, 2014).

    Adaptive learning rates per parameter using first and second moment
    estimates. Bias correction is applied as a single shrink factor on
    the learning rate; the update counter ``t`` advances once per call
    and is shared by all parameters.

    Args:
        learnable_parameters: Parameters to optimize (shapes and factors).
        beta1: Exponential decay rate for first moment (mean).
        beta2: Exponential decay rate for second moment (variance).
        eps: Numerical stability constant.
        precision: Precision for constants and moments.

    Returns:
        Tuple of (initial_state, calculate_update).

    Examples:
        >>> import jax.numpy as jnp
        >>> from guided_sgd.network import LearnableParameter
        >>> params = {"w": LearnableParameter(jnp.array([1.0, 2.0, 3.0]))}
        >>> state, calculate_update = adam_solver(params)
        >>> grads = {"w": jnp.array([0.1, 0.2, 0.3])}
        >>> step, new_state = calculate_update(grads, 0.001, state)
        >>> step["w"].shape, new_state.step
        ((3,), 1)

    """
    state = AdamState(
        beta1=precision.cast(beta1),
        beta2=precision.cast(beta2),
        eps=precision.cast(eps),
        step=0,
        local_learn_rates=_local_learn_rates(learnable_parameters, precision),
        m=_zeros_like_parameters(learnable_parameters, precision),
        v=_zeros_like_parameters(learnable_parameters, precision),
    )

    def calculate_update(
        gradients: Gradients,
        global_learn_rate: float,
        state: AdamState,
    ) -> tuple[Step, AdamState]:
        t = state.step + 1
        shrink = learn_rate_shrink_factor(float(state.beta1), float(state.beta2), t)
        new_m = dict(state.m)
        new_v = dict(state.v)
        step: Step = {}

        for name, g in gradients.items():
            if not _is_learning(state.local_learn_rates, name, g):
                continue
            lr = shrink * global_learn_rate * state.local_learn_rates[name]
            new_m[name] = state.beta1 * new_m[name] + (1 - state.beta1) * g
            new_v[name] = state.beta2 * new_v[name] + (1 - state.beta2) * g**2
            step[name] = -lr * new_m[name] / (jnp.sqrt(new_v[name]) + state.eps)

        return step, state._replace(step=t, m=new_m, v=new_v)

    return state, calculate_update


def rmsprop_solver(
    learnable_parameters: Mapping[str, LearnableParameter],
    decay: float = 0.9,
    eps: float = 1e-8,
    precision: Precision = Precision(),
) -> tuple[RMSPropState, CalculateUpdate]:
    """Create an RMSProp solver.

    Divides each gradient by the root of a moving average of its square::

        s_i <- decay * s_i + (1 - decay) * g_i^2
        step_i = -lr * local_rate_i * g_i / (sqrt(s_i) + eps)

    Examples:
        >>> import jax.numpy as jnp
        >>> from guided_sgd.network import LearnableParameter
        >>> params = {"w": LearnableParameter(jnp.array([5.0]))}
        >>> state, calculate_update = rmsprop_solver(params)
        >>> step, _ = calculate_update({"w": jnp.array([1.0])}, 0.01, state)
        >>> float(step["w"][0]) < 0
        True

    """
    state = RMSPropState(
        decay=precision.cast(decay),
        eps=precision.cast(eps),
        step=0,
        local_learn_rates=_local_learn_rates(learnable_parameters, precision),
        s=_zeros_like_parameters(learnable_parameters, precision),
    )

    def calculate_update(
        gradients: Gradients,
        global_learn_rate: float,
        state: RMSPropState,
    ) -> tuple[Step, RMSPropState]:
        new_s = dict(state.s)
        step: Step = {}
        for name, g in gradients.items():
            if not _is_learning(state.local_learn_rates, name, g):
                continue
            lr = global_learn_rate * state.local_learn_rates[name]
            new_s[name] = state.decay * new_s[name] + (1 - state.decay) * g**2
            step[name] = -lr * g / (jnp.sqrt(new_s[name]) + state.eps)
        return step, state._replace(step=state.step + 1, s=new_s)

    return state, calculate_update


def create_solver(
    learnable_parameters: Mapping[str, LearnableParameter],
    options: TrainingOptions,
    precision: Precision = Precision(),
) -> tuple[Any, CalculateUpdate]:
    """Create the solver named by ``options.solver``.

    Raises:
        ConfigurationError: Unsupported solver name.

    """
    try:
        name = SolverName(options.solver)
    except ValueError:
        raise ConfigurationError(f"unsupported solver {options.solver!r}") from None

    if name == SolverName.SGDM:
        return sgdm_solver(learnable_parameters, options.momentum, precision)
    if name == SolverName.ADAM:
        return adam_solver(
            learnable_parameters,
            options.gradient_decay_factor,
            options.squared_gradient_decay_factor,
            options.epsilon,
            precision,
        )
    return rmsprop_solver(learnable_parameters, options.squared_gradient_decay_factor, options.epsilon, precision)
