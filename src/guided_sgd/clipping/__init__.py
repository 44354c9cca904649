"""Gradient clipping by per-parameter norm, global norm or absolute value."""

from guided_sgd.clipping.thresholder import (
    GradientThresholder,
    clip_by_global_l2_norm,
    clip_by_l2_norm,
    clip_by_value,
)

__all__ = [
    "GradientThresholder",
    "clip_by_global_l2_norm",
    "clip_by_l2_norm",
    "clip_by_value",
]
