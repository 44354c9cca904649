"""Tests for guided_sgd.training.gsgd module."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from guided_sgd.training import (
    ConsistencyBuffer,
    consistency_score,
    improvement_position,
    replay_order,
    revisit_window,
)


class TestImprovementPosition:
    """Tests for improvement_position."""

    def test_improved(self):
        assert improvement_position(0.1, 10.0) == 2

    def test_equal_is_not_improvement(self):
        assert improvement_position(1.0, 1.0) == 1

    def test_worse(self):
        assert improvement_position(2.0, 1.0) == 1


class TestConsistencyScore:
    """Tests for consistency_score."""

    def test_sign_follows_position(self):
        assert consistency_score(1.0, 0.4, 2) == pytest.approx(0.6)
        assert consistency_score(1.0, 0.4, 1) == pytest.approx(-0.6)

    def test_revisit_worse_than_previous(self):
        assert consistency_score(0.5, 0.8, 2) == pytest.approx(-0.3)
        assert consistency_score(0.5, 0.8, 1) == pytest.approx(0.3)


class TestRevisitWindow:
    """Tests for revisit_window."""

    def test_first_batch_has_no_window(self):
        assert revisit_window(1, 3) == []

    def test_second_batch_revisits_first(self):
        assert revisit_window(2, 2) == [0]
        assert revisit_window(2, 5) == [0]

    def test_revisit_batch_num_two(self):
        for loop_count in range(3, 15):
            assert revisit_window(loop_count, 2) == [loop_count - 2]

    def test_window_at_loop_count_five(self):
        assert len(revisit_window(5, 2)) == 1
        assert revisit_window(5, 3) == [3, 2]

    def test_window_truncated_at_first_batch(self):
        assert revisit_window(3, 10) == [1, 0]

    def test_revisit_batch_num_one(self):
        assert revisit_window(4, 1) == []

    @given(st.integers(min_value=3, max_value=50), st.integers(min_value=1, max_value=10))
    @settings(max_examples=20)
    def test_window_bounds(self, loop_count, revisit_batch_num):
        window = revisit_window(loop_count, revisit_batch_num)
        assert len(window) == min(revisit_batch_num - 1, loop_count - 1)
        assert loop_count - 1 not in window
        assert all(0 <= k < loop_count - 1 for k in window)
        assert window == sorted(window, reverse=True)


class TestReplayOrder:
    """Tests for replay_order."""

    def test_top_half_of_rho(self):
        averages = [0.1, 0.4, 0.3, 0.2, 0.5, 0.05, 0.6]
        assert replay_order(averages, rho=7) == [6, 4, 1]

    def test_skips_non_positive(self):
        averages = [-0.5, 0.2, 0.0, -0.1, -0.3, -0.2, -0.4]
        assert replay_order(averages, rho=7) == [1]

    def test_all_non_positive(self):
        assert replay_order([-1.0, 0.0, -2.0], rho=7) == []

    def test_fewer_batches_than_half_rho(self):
        assert replay_order([0.3, 0.1], rho=7) == [0, 1]

    def test_ties_keep_collection_order(self):
        assert replay_order([0.2, 0.5, 0.5, 0.5], rho=4) == [1, 2]

    def test_rho_one_replays_nothing(self):
        assert replay_order([1.0], rho=1) == []

    @given(
        st.lists(st.floats(min_value=-5.0, max_value=5.0, allow_nan=False), min_size=1, max_size=20),
        st.integers(min_value=1, max_value=20),
    )
    @settings(max_examples=20)
    def test_selection_bounds(self, averages, rho):
        selected = replay_order(averages, rho)
        assert len(selected) <= min(rho // 2, len(averages))
        assert all(averages[k] > 0 for k in selected)
        assert len(set(selected)) == len(selected)
        assert [averages[k] for k in selected] == sorted((averages[k] for k in selected), reverse=True)


class TestConsistencyBuffer:
    """Tests for ConsistencyBuffer."""

    def test_collect_assigns_ordinals(self):
        buf = ConsistencyBuffer(capacity=3)
        assert [buf.collect((i, i)) for i in range(3)] == [0, 1, 2]
        assert buf.loop_count == 3
        assert len(buf) == 3
        assert buf.is_full
        assert buf.batch(1) == (1, 1)

    def test_full_buffer_rejects_collect(self):
        buf = ConsistencyBuffer(capacity=1)
        buf.collect(("x", "y"))
        with pytest.raises(IndexError, match="full"):
            buf.collect(("x", "y"))

    def test_average_scores(self):
        buf = ConsistencyBuffer(capacity=3)
        a = buf.collect(("a", "a"))
        b = buf.collect(("b", "b"))
        buf.add_score(a, 1.0)
        buf.add_score(a, -0.5)
        buf.add_score(b, 0.3)
        assert buf.average_scores() == pytest.approx([0.25, 0.3])

    def test_flush_clears_everything(self):
        buf = ConsistencyBuffer(capacity=2)
        k = buf.collect(("x", "y"))
        buf.add_score(k, 1.0)
        buf.flush()
        assert buf.loop_count == 0
        assert buf.average_scores() == []
        with pytest.raises(IndexError):
            buf.batch(0)
        k = buf.collect(("x2", "y2"))
        assert buf.scores(k) == ()
        assert buf.batch(k) == ("x2", "y2")

    def test_out_of_range_ordinal(self):
        buf = ConsistencyBuffer(capacity=4)
        buf.collect(("x", "y"))
        with pytest.raises(IndexError, match="out of range"):
            buf.add_score(1, 0.5)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError, match="capacity"):
            ConsistencyBuffer(capacity=0)

    def test_trigger_cadence(self):
        """Flushing whenever loop_count hits a multiple of rho fires at 7, 14, 21."""
        rho = 7
        buf = ConsistencyBuffer(capacity=rho)
        fired = []
        for collected in range(1, 22):
            buf.collect((collected, collected))
            if buf.loop_count % rho == 0:
                fired.append(collected)
                buf.flush()
                assert buf.loop_count == 0
                assert buf.average_scores() == []
        assert fired == [7, 14, 21]
