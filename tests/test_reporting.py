"""Tests for guided_sgd.reporting module."""

from __future__ import annotations

import logging
import math
import threading

import jax
import jax.numpy as jnp
import pytest

from guided_sgd.data import ArrayDispatcher
from guided_sgd.network import DenseNetwork, LearnableParameter
from guided_sgd.reporting import (
    CheckpointSaver,
    HistoryRecorder,
    MiniBatchSummary,
    OutputFunctionReporter,
    ProgressLogger,
    Reporter,
    TrainingInfo,
    ValidationReporter,
    VectorReporter,
    checkpoint_load,
    checkpoint_save,
    dataset_loss,
)


def _summary(iteration, loss=1.0, **kwargs):
    return MiniBatchSummary(epoch=1, iteration=iteration, time=0.0, loss=loss, learn_rate=0.01, **kwargs)


class _Recorder(Reporter):
    def __init__(self, name, calls):
        self.name = name
        self.calls = calls

    def start(self):
        self.calls.append((self.name, "start"))

    def compute_iteration(self, summary, network):
        return summary._replace(loss=summary.loss + 1)

    def report_iteration(self, summary):
        self.calls.append((self.name, summary.loss))


class TestMiniBatchSummary:
    """Tests for MiniBatchSummary."""

    def test_accuracy(self):
        s = _summary(
            1,
            predictions=jnp.array([[0.9, 0.1], [0.2, 0.8], [0.6, 0.4]]),
            response=jnp.array([[1.0, 0.0], [0.0, 1.0], [0.0, 1.0]]),
        )
        assert s.accuracy == pytest.approx(200.0 / 3)

    def test_rmse(self):
        s = _summary(1, predictions=jnp.array([[1.0], [3.0]]), response=jnp.array([0.0, 1.0]))
        assert s.rmse == pytest.approx(math.sqrt((1 + 4) / 2))

    def test_without_predictions(self):
        s = _summary(1)
        assert s.accuracy is None
        assert s.rmse is None


class TestVectorReporter:
    """Tests for VectorReporter."""

    def test_calls_in_order_and_threads_summary(self):
        calls = []
        reporter = VectorReporter([_Recorder("a", calls), _Recorder("b", calls)])
        reporter.start()
        summary = reporter.compute_iteration(_summary(1, loss=0.0), None)
        reporter.report_iteration(summary)
        assert calls == [("a", "start"), ("b", "start"), ("a", 2.0), ("b", 2.0)]

    def test_flattens_nested(self):
        inner = VectorReporter([Reporter(), Reporter()])
        outer = VectorReporter([inner, Reporter()])
        assert len(outer.reporters) == 3


class TestProgressLogger:
    """Tests for ProgressLogger."""

    def test_logs_first_and_every_frequency(self, caplog):
        reporter = ProgressLogger(frequency=3)
        with caplog.at_level(logging.INFO, logger="guided_sgd.reporting.reporters"):
            reporter.start()
            header_lines = len(caplog.records)
            for i in range(1, 7):
                reporter.report_iteration(_summary(i, loss=0.5))
        rows = [r.getMessage() for r in caplog.records[header_lines:]]
        assert len(rows) == 3
        assert all("0.5000" in row for row in rows)

    def test_finish_logs_last_row_once(self, caplog):
        reporter = ProgressLogger(frequency=10)
        with caplog.at_level(logging.INFO, logger="guided_sgd.reporting.reporters"):
            reporter.report_iteration(_summary(1))
            reporter.report_iteration(_summary(2))
            reporter.finish(_summary(2), None)
        rows = [r.getMessage() for r in caplog.records if r.getMessage().startswith("| ")]
        assert len(rows) == 2


class _ConstantLossNetwork:
    """Network whose loss never changes."""

    def compute_gradients_for_training(self, x, y, needs_state, propagate_state):
        return {}, jnp.zeros_like(x), None

    def loss(self, predictions, y):
        return jnp.asarray(1.0)


class TestDatasetLoss:
    """Tests for dataset_loss."""

    def test_weighted_by_observations(self):
        net = DenseNetwork.create(jax.random.key(0), [1, 1])
        x = jnp.arange(5.0).reshape(5, 1)
        y = jnp.zeros((5, 1))
        full = float(net.loss(net.predict(x), y))
        assert dataset_loss(net, ArrayDispatcher(x, y, 2)) == pytest.approx(full, rel=1e-5)


class TestValidationReporter:
    """Tests for ValidationReporter."""

    def _data(self):
        return ArrayDispatcher(jnp.ones((4, 1)), jnp.ones((4, 1)), 2)

    def test_fills_validation_loss_on_frequency(self):
        reporter = ValidationReporter(self._data(), frequency=2, stop_event=threading.Event())
        net = _ConstantLossNetwork()
        assert reporter.compute_iteration(_summary(1), net).validation_loss == 1.0
        assert reporter.compute_iteration(_summary(3), net).validation_loss is None
        assert reporter.compute_iteration(_summary(4), net).validation_loss == 1.0

    def test_patience_sets_stop_event(self):
        event = threading.Event()
        reporter = ValidationReporter(self._data(), frequency=1, stop_event=event, patience=2)
        net = _ConstantLossNetwork()
        reporter.compute_iteration(_summary(1), net)
        reporter.compute_iteration(_summary(2), net)
        assert not event.is_set()
        reporter.compute_iteration(_summary(3), net)
        assert event.is_set()

    def test_infinite_patience_never_stops(self):
        event = threading.Event()
        reporter = ValidationReporter(self._data(), frequency=1, stop_event=event)
        for i in range(1, 20):
            reporter.compute_iteration(_summary(i), _ConstantLossNetwork())
        assert not event.is_set()

    def test_finish_validates_unseen_iteration(self):
        reporter = ValidationReporter(self._data(), frequency=50, stop_event=threading.Event())
        net = _ConstantLossNetwork()
        reporter.compute_iteration(_summary(1), net)
        assert reporter.compute_finish(_summary(7), net).validation_loss == 1.0
        assert reporter.compute_finish(_summary(7), net).validation_loss is None


class TestOutputFunctionReporter:
    """Tests for OutputFunctionReporter."""

    def test_true_return_stops(self):
        event = threading.Event()
        seen = []
        reporter = OutputFunctionReporter(
            [lambda s: s.iteration >= 2, lambda s: seen.append(s.iteration)],
            event,
        )
        reporter.report_iteration(_summary(1))
        assert not event.is_set()
        reporter.report_iteration(_summary(2))
        assert event.is_set()
        assert seen == [1, 2]


class TestHistoryRecorder:
    """Tests for HistoryRecorder."""

    def test_records_iterations(self):
        history = HistoryRecorder()
        history.start()
        history.report_iteration(_summary(1, loss=0.5))
        history.report_iteration(_summary(2, loss=0.25, validation_loss=0.3))
        history.finish(_summary(2, validation_loss=0.3), None)
        info = history.info
        assert info.iteration == (1, 2)
        assert info.training_loss == (0.5, 0.25)
        assert math.isnan(info.validation_loss[0])
        assert info.validation_loss[1] == 0.3
        assert info.final_validation_loss == 0.3

    def test_empty(self):
        info = HistoryRecorder().info
        assert isinstance(info, TrainingInfo)
        assert info.iteration == ()
        assert math.isnan(info.final_validation_loss)


class TestCheckpoint:
    """Tests for checkpoint_save, checkpoint_load and CheckpointSaver."""

    def test_roundtrip(self, tmp_path):
        params = {
            "fc1/weights": LearnableParameter(jnp.arange(6.0).reshape(2, 3), learn_rate_factor=0.5, l2_factor=2.0),
            "fc1/bias": LearnableParameter(jnp.zeros(2)),
        }
        path = checkpoint_save(params, tmp_path / "net.npz")
        restored = checkpoint_load(path)
        assert list(restored) == list(params)
        assert jnp.array_equal(restored["fc1/weights"].value, params["fc1/weights"].value)
        assert restored["fc1/weights"].learn_rate_factor == 0.5
        assert restored["fc1/weights"].l2_factor == 2.0

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            checkpoint_load(tmp_path / "missing.npz")

    def test_saver_names_file_by_iteration_and_epoch(self, tmp_path):
        net = DenseNetwork.create(jax.random.key(0), [2, 1])
        CheckpointSaver(tmp_path).report_epoch(3, 42, net)
        path = tmp_path / "net_checkpoint__42__3.npz"
        assert path.exists()
        assert set(checkpoint_load(path)) == set(net.learnable_parameters)
