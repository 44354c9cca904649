"""Learnable parameters, the network protocol and a dense reference network.

The trainer consumes any object implementing :class:`Network`.
:class:`DenseNetwork` is a functional JAX implementation used by the
examples and tests.
"""

from guided_sgd.network.dense import DenseNetwork
from guided_sgd.network.parameters import (
    Gradients,
    LearnableParameter,
    Network,
    Precision,
    Step,
)

__all__ = [
    "DenseNetwork",
    "Gradients",
    "LearnableParameter",
    "Network",
    "Precision",
    "Step",
]
