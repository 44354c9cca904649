"""Update rules turning gradients into per-parameter steps.

Each solver is a pair of explicit state and a pure update function.
"""

from guided_sgd.solvers.optimizers import (
    AdamState,
    CalculateUpdate,
    RMSPropState,
    SgdmState,
    adam_solver,
    create_solver,
    learn_rate_shrink_factor,
    rmsprop_solver,
    sgdm_solver,
)

__all__ = [
    "AdamState",
    "CalculateUpdate",
    "RMSPropState",
    "SgdmState",
    "adam_solver",
    "create_solver",
    "learn_rate_shrink_factor",
    "rmsprop_solver",
    "sgdm_solver",
]
