"""Gradient thresholding recipes.

Norm-based and value-based clipping applied to the full set of
gradients once per iteration. Parameters without a gradient (``None``)
are left out of every norm and passed through unchanged.

References:
    - Pascanu et al., "On the difficulty of training recurrent neural networks", 2013
    - Optax clipping: https://optax.readthedocs.io/en/latest/api/transformations.html#optax.clip_by_global_norm

"""

from __future__ import annotations

import math
from typing import NamedTuple

import jax.numpy as jnp
from jax import Array

from guided_sgd.config import ConfigurationError, ThresholdMethod, TrainingOptions
from guided_sgd.network.parameters import Gradients


def clip_by_l2_norm(grad: Array, threshold: float) -> Array:
    """Rescale one gradient so its L2 norm is at most ``threshold``.

    Examples:
        >>> import jax.numpy as jnp
        >>> [round(v, 4) for v in clip_by_l2_norm(jnp.array([3.0, 4.0]), 1.0).tolist()]
        [0.6, 0.8]

    """
    norm = jnp.sqrt(jnp.sum(grad**2))
    return jnp.where(norm > threshold, grad * (threshold / norm), grad)


def clip_by_global_l2_norm(grads: list[Array], threshold: float) -> list[Array]:
    """Rescale all gradients by one factor so their joint L2 norm is at most ``threshold``."""
    global_norm = jnp.sqrt(sum(jnp.sum(g**2) for g in grads))
    scale = jnp.where(global_norm > threshold, threshold / global_norm, 1.0)
    return [g * scale for g in grads]


def clip_by_value(grad: Array, threshold: float) -> Array:
    """Clamp every element of ``grad`` into [-threshold, threshold]."""
    return jnp.clip(grad, -threshold, threshold)


class GradientThresholder(NamedTuple):
    """Clips a set of gradients according to a method and threshold.

    Examples:
        >>> import jax.numpy as jnp
        >>> from guided_sgd.config import ThresholdMethod
        >>> thresholder = GradientThresholder(ThresholdMethod.ABSOLUTE_VALUE, 1.0)
        >>> grads = {"w": jnp.array([-3.0, 0.5, 2.0]), "frozen": None}
        >>> clipped = thresholder.threshold(grads)
        >>> clipped["w"].tolist()
        [-1.0, 0.5, 1.0]
        >>> clipped["frozen"] is None
        True

    """

    method: ThresholdMethod = ThresholdMethod.L2NORM
    limit: float = math.inf

    @classmethod
    def from_options(cls, options: TrainingOptions) -> GradientThresholder:
        return cls(options.gradient_threshold_method, options.gradient_threshold)

    def threshold(self, gradients: Gradients) -> Gradients:
        if self.method == ThresholdMethod.NONE or math.isinf(self.limit):
            return gradients

        names = [name for name, g in gradients.items() if g is not None and g.size > 0]
        clipped = dict(gradients)
        if self.method == ThresholdMethod.GLOBAL_L2NORM:
            for name, g in zip(names, clip_by_global_l2_norm([gradients[n] for n in names], self.limit)):
                clipped[name] = g
        elif self.method == ThresholdMethod.L2NORM:
            for name in names:
                clipped[name] = clip_by_l2_norm(gradients[name], self.limit)
        elif self.method == ThresholdMethod.ABSOLUTE_VALUE:
            for name in names:
                clipped[name] = clip_by_value(gradients[name], self.limit)
        else:
            raise ConfigurationError(f"unsupported gradient_threshold_method {self.method!r}")
        return clipped
