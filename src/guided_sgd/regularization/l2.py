"""L2 regularization recipes.

The effective L2 factor of each parameter is its local ``l2_factor``
times the global ``l2_regularization`` option. Factors are computed
once, when the regularizer is created, and never change afterwards.

References:
    - Krogh & Hertz, "A Simple Weight Decay Can Improve Generalization", 1992

"""

from __future__ import annotations

from collections.abc import Mapping
from typing import NamedTuple

import jax.numpy as jnp
from jax import Array

from guided_sgd.config import ConfigurationError, TrainingOptions
from guided_sgd.network.parameters import Gradients, LearnableParameter, Precision

SUPPORTED_REGULARIZERS = ("l2",)


class RegularizerL2(NamedTuple):
    """L2 penalty ``0.5 * sum_i f_i * ||w_i||^2`` with per-parameter factors.

    Attributes:
        effective_factors: Effective L2 factor per parameter name.

    Examples:
        >>> import jax.numpy as jnp
        >>> from guided_sgd.network import LearnableParameter
        >>> params = {"w": LearnableParameter(jnp.array([1.0, 2.0]), l2_factor=2.0)}
        >>> reg = RegularizerL2.create(params, l2_regularization=0.1)
        >>> round(float(reg.effective_factors["w"]), 6)
        0.2
        >>> round(float(reg.regularize_loss(1.0, params)), 6)
        1.5

    """

    effective_factors: Mapping[str, Array]

    @classmethod
    def create(
        cls,
        learnable_parameters: Mapping[str, LearnableParameter],
        l2_regularization: float,
        precision: Precision = Precision(),
    ) -> RegularizerL2:
        global_factor = precision.cast(l2_regularization)
        factors = {name: precision.cast(p.l2_factor) * global_factor for name, p in learnable_parameters.items()}
        return cls(effective_factors=factors)

    def regularize_loss(self, loss: Array | float, learnable_parameters: Mapping[str, LearnableParameter]) -> Array:
        """Add the L2 penalty of every parameter to ``loss``."""
        regularized = jnp.asarray(loss)
        for name, factor in self.effective_factors.items():
            weights = learnable_parameters[name].value
            regularized = regularized + 0.5 * factor * jnp.sum(weights**2)
        return regularized

    def regularize_gradients(
        self,
        gradients: Gradients,
        learnable_parameters: Mapping[str, LearnableParameter],
    ) -> Gradients:
        """Add ``f_i * w_i`` to the gradient of every learning parameter.

        Frozen parameters (zero learn rate factor) and parameters without
        a gradient are passed through untouched, since nothing downstream
        uses them.
        """
        regularized = dict(gradients)
        for name, factor in self.effective_factors.items():
            grad = regularized.get(name)
            param = learnable_parameters[name]
            if param.learn_rate_factor != 0 and grad is not None and grad.size > 0:
                regularized[name] = factor * param.value + grad
        return regularized


def create_regularizer(
    name: str,
    learnable_parameters: Mapping[str, LearnableParameter],
    options: TrainingOptions,
    precision: Precision = Precision(),
) -> RegularizerL2:
    """Create the regularizer called ``name`` (case-insensitive).

    Raises:
        ConfigurationError: Unsupported regularizer name.

    """
    if name.lower() == "l2":
        return RegularizerL2.create(learnable_parameters, options.l2_regularization, precision)
    raise ConfigurationError(f"unsupported regularizer {name!r}; expected one of: {', '.join(SUPPORTED_REGULARIZERS)}")
