"""Tests for guided_sgd.clipping module."""

from __future__ import annotations

import math

import jax.numpy as jnp
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from guided_sgd.clipping import GradientThresholder, clip_by_global_l2_norm, clip_by_l2_norm, clip_by_value
from guided_sgd.config import ConfigurationError, ThresholdMethod, training_options


class TestClipByL2Norm:
    """Tests for clip_by_l2_norm."""

    def test_rescales(self):
        out = clip_by_l2_norm(jnp.array([3.0, 4.0]), 2.5)
        assert jnp.allclose(out, jnp.array([1.5, 2.0]))

    def test_below_threshold_unchanged(self):
        g = jnp.array([0.3, 0.4])
        assert jnp.allclose(clip_by_l2_norm(g, 1.0), g)

    @given(st.floats(min_value=0.01, max_value=10.0, allow_nan=False))
    @settings(max_examples=20, deadline=None)
    def test_norm_bounded(self, threshold):
        out = clip_by_l2_norm(jnp.array([3.0, -4.0, 12.0]), threshold)
        assert float(jnp.linalg.norm(out)) <= threshold * (1 + 1e-5)


class TestClipByGlobalL2Norm:
    """Tests for clip_by_global_l2_norm."""

    def test_joint_scale(self):
        out = clip_by_global_l2_norm([jnp.array([3.0]), jnp.array([4.0])], 1.0)
        assert jnp.allclose(out[0], jnp.array([0.6]))
        assert jnp.allclose(out[1], jnp.array([0.8]))

    def test_below_threshold_unchanged(self):
        out = clip_by_global_l2_norm([jnp.array([0.1]), jnp.array([0.2])], 1.0)
        assert jnp.allclose(out[1], jnp.array([0.2]))


class TestClipByValue:
    """Tests for clip_by_value."""

    def test_clamps(self):
        out = clip_by_value(jnp.array([-5.0, 0.5, 5.0]), 2.0)
        assert out.tolist() == [-2.0, 0.5, 2.0]


class TestGradientThresholder:
    """Tests for GradientThresholder."""

    def test_none_passthrough(self):
        grads = {"w": jnp.array([100.0])}
        assert GradientThresholder(ThresholdMethod.NONE, 1.0).threshold(grads) is grads

    def test_infinite_limit_passthrough(self):
        grads = {"w": jnp.array([100.0])}
        assert GradientThresholder(ThresholdMethod.L2NORM, math.inf).threshold(grads) is grads

    def test_per_parameter_l2norm(self):
        grads = {"a": jnp.array([3.0, 4.0]), "b": jnp.array([0.1])}
        out = GradientThresholder(ThresholdMethod.L2NORM, 1.0).threshold(grads)
        assert jnp.allclose(out["a"], jnp.array([0.6, 0.8]))
        assert jnp.allclose(out["b"], jnp.array([0.1]))

    def test_global_l2norm(self):
        grads = {"a": jnp.array([3.0]), "b": jnp.array([4.0])}
        out = GradientThresholder(ThresholdMethod.GLOBAL_L2NORM, 1.0).threshold(grads)
        assert jnp.allclose(out["b"], jnp.array([0.8]))

    def test_absolute_value(self):
        grads = {"a": jnp.array([-3.0, 0.5])}
        out = GradientThresholder(ThresholdMethod.ABSOLUTE_VALUE, 1.0).threshold(grads)
        assert out["a"].tolist() == [-1.0, 0.5]

    def test_missing_gradient_skipped(self):
        grads = {"a": jnp.array([3.0, 4.0]), "frozen": None}
        out = GradientThresholder(ThresholdMethod.GLOBAL_L2NORM, 1.0).threshold(grads)
        assert out["frozen"] is None
        assert jnp.allclose(out["a"], jnp.array([0.6, 0.8]))

    def test_from_options(self):
        opts = training_options(gradient_threshold_method="absolute-value", gradient_threshold=0.5)
        assert GradientThresholder.from_options(opts) == GradientThresholder(ThresholdMethod.ABSOLUTE_VALUE, 0.5)

    def test_unknown_method_raises(self):
        thresholder = GradientThresholder("l2-norm", 0.01)
        with pytest.raises(ConfigurationError, match="gradient_threshold_method"):
            thresholder.threshold({"w": jnp.array([3.0, 4.0])})
