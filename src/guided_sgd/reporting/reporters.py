"""Training reporters.

The trainer calls a single reporter through these hooks:

    setup → start → (compute_iteration → report_iteration)* per iteration
    → report_epoch per epoch → compute_finish → finish

``compute_iteration`` and ``compute_finish`` may return an updated
summary (e.g. with a validation loss filled in); it is always called
before ``report_iteration`` so reporters see the completed summary.
Reporters that want training to end early set the shared stop event;
the trainer observes it at the next iteration or epoch boundary.

"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Iterable
from typing import Any

from guided_sgd.data import DataDispatcher
from guided_sgd.network import Network
from guided_sgd.reporting.summary import MiniBatchSummary, TrainingInfo

logger = logging.getLogger(__name__)


class Reporter:
    """Base reporter: every hook is a no-op."""

    def setup(self) -> None:
        pass

    def start(self) -> None:
        pass

    def compute_iteration(self, summary: MiniBatchSummary, network: Network) -> MiniBatchSummary:
        return summary

    def report_iteration(self, summary: MiniBatchSummary) -> None:
        pass

    def report_epoch(self, epoch: int, iteration: int, network: Network) -> None:
        pass

    def compute_finish(self, summary: MiniBatchSummary, network: Network) -> MiniBatchSummary:
        return summary

    def finish(self, summary: MiniBatchSummary, network: Network) -> None:
        pass


class VectorReporter(Reporter):
    """Fan every hook out to a list of reporters, in order."""

    def __init__(self, reporters: Iterable[Reporter] = ()):
        self.reporters: list[Reporter] = []
        for reporter in reporters:
            self.add(reporter)

    def add(self, reporter: Reporter) -> None:
        if isinstance(reporter, VectorReporter):
            self.reporters.extend(reporter.reporters)
        else:
            self.reporters.append(reporter)

    def setup(self) -> None:
        for reporter in self.reporters:
            reporter.setup()

    def start(self) -> None:
        for reporter in self.reporters:
            reporter.start()

    def compute_iteration(self, summary: MiniBatchSummary, network: Network) -> MiniBatchSummary:
        for reporter in self.reporters:
            summary = reporter.compute_iteration(summary, network)
        return summary

    def report_iteration(self, summary: MiniBatchSummary) -> None:
        for reporter in self.reporters:
            reporter.report_iteration(summary)

    def report_epoch(self, epoch: int, iteration: int, network: Network) -> None:
        for reporter in self.reporters:
            reporter.report_epoch(epoch, iteration, network)

    def compute_finish(self, summary: MiniBatchSummary, network: Network) -> MiniBatchSummary:
        for reporter in self.reporters:
            summary = reporter.compute_finish(summary, network)
        return summary

    def finish(self, summary: MiniBatchSummary, network: Network) -> None:
        for reporter in self.reporters:
            reporter.finish(summary, network)


_COLUMNS = ("Epoch", "Iteration", "Time (s)", "Mini-batch loss", "Validation loss", "Base learn rate")
_WIDTH = 15


def _format_row(values: Iterable[str]) -> str:
    return "| " + " | ".join(v.center(_WIDTH) for v in values) + " |"


def _format_float(value: float | None, digits: int = 4) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ""
    return f"{value:.{digits}f}"


class ProgressLogger(Reporter):
    """Log a progress table row every ``frequency`` iterations (and on the first)."""

    def __init__(self, frequency: int = 50, log: logging.Logger | None = None):
        self.frequency = frequency
        self.log = log or logger
        self._message = ""
        self._last_logged = ""

    def start(self) -> None:
        border = "|" + "=" * (len(_COLUMNS) * (_WIDTH + 3) - 1) + "|"
        self.log.info(border)
        self.log.info(_format_row(_COLUMNS))
        self.log.info(border)

    def report_iteration(self, summary: MiniBatchSummary) -> None:
        self._message = _format_row(
            (
                str(summary.epoch),
                str(summary.iteration),
                f"{summary.time:.2f}",
                _format_float(float(summary.loss)),
                _format_float(summary.validation_loss),
                _format_float(float(summary.learn_rate), 6),
            )
        )
        if summary.iteration == 1 or summary.iteration % self.frequency == 0:
            self._emit()

    def finish(self, summary: MiniBatchSummary, network: Network) -> None:
        self._emit()
        self.log.info("|" + "=" * (len(_COLUMNS) * (_WIDTH + 3) - 1) + "|")

    def _emit(self) -> None:
        if self._message and self._message != self._last_logged:
            self.log.info(self._message)
        self._last_logged = self._message


def dataset_loss(network: Network, data: DataDispatcher) -> float:
    """Observation-weighted mean loss of ``network`` over every batch of ``data``."""
    total, count = 0.0, 0
    data.start()
    while not data.is_done:
        x, y = data.next()
        _, predictions, _ = network.compute_gradients_for_training(x, y, False, False)
        n = int(predictions.shape[0]) if getattr(predictions, "ndim", 0) else 1
        total += float(network.loss(predictions, y)) * n
        count += n
    return total / count if count else math.nan


class ValidationReporter(Reporter):
    """Evaluate the loss on held-out data every ``frequency`` iterations.

    After ``patience`` consecutive evaluations that fail to improve on the
    best validation loss seen so far, the stop event is set.
    """

    def __init__(
        self,
        data: DataDispatcher,
        frequency: int,
        stop_event: threading.Event,
        patience: float = math.inf,
    ):
        self.data = data
        self.frequency = frequency
        self.patience = patience
        self.stop_event = stop_event
        self.best_loss = math.inf
        self.failures = 0
        self._last_iteration = 0

    def start(self) -> None:
        self.best_loss = math.inf
        self.failures = 0
        self._last_iteration = 0

    def compute_iteration(self, summary: MiniBatchSummary, network: Network) -> MiniBatchSummary:
        if summary.iteration == 1 or summary.iteration % self.frequency == 0:
            return self._validate(summary, network)
        return summary

    def compute_finish(self, summary: MiniBatchSummary, network: Network) -> MiniBatchSummary:
        if summary.iteration != self._last_iteration:
            return self._validate(summary, network)
        return summary

    def _validate(self, summary: MiniBatchSummary, network: Network) -> MiniBatchSummary:
        loss = dataset_loss(network, self.data)
        self._last_iteration = summary.iteration
        if loss < self.best_loss:
            self.best_loss = loss
            self.failures = 0
        else:
            self.failures += 1
            if self.failures >= self.patience and not self.stop_event.is_set():
                logger.info(
                    "validation loss has not improved for %d evaluations; stopping at iteration %d",
                    self.failures,
                    summary.iteration,
                )
                self.stop_event.set()
        return summary._replace(validation_loss=loss)


class OutputFunctionReporter(Reporter):
    """Call user functions with each summary; a True return stops training."""

    def __init__(self, functions: Iterable[Callable[[MiniBatchSummary], Any]], stop_event: threading.Event):
        self.functions = list(functions)
        self.stop_event = stop_event

    def report_iteration(self, summary: MiniBatchSummary) -> None:
        # Every function is called even after one asks to stop.
        stop = [bool(fn(summary)) for fn in self.functions]
        if any(stop) and not self.stop_event.is_set():
            logger.info("output function requested stop at iteration %d", summary.iteration)
            self.stop_event.set()


class HistoryRecorder(Reporter):
    """Record loss, learn rate and validation loss of every reported iteration."""

    def __init__(self):
        self._rows: list[tuple[int, int, float, float, float]] = []
        self._final_validation_loss = math.nan

    def start(self) -> None:
        self._rows = []
        self._final_validation_loss = math.nan

    def report_iteration(self, summary: MiniBatchSummary) -> None:
        validation = math.nan if summary.validation_loss is None else float(summary.validation_loss)
        self._rows.append(
            (summary.iteration, summary.epoch, float(summary.loss), float(summary.learn_rate), validation)
        )

    def finish(self, summary: MiniBatchSummary, network: Network) -> None:
        if summary.validation_loss is not None:
            self._final_validation_loss = float(summary.validation_loss)

    @property
    def info(self) -> TrainingInfo:
        if not self._rows:
            return TrainingInfo(final_validation_loss=self._final_validation_loss)
        iteration, epoch, loss, learn_rate, validation = zip(*self._rows)
        return TrainingInfo(
            iteration=iteration,
            epoch=epoch,
            training_loss=loss,
            learn_rate=learn_rate,
            validation_loss=validation,
            final_validation_loss=self._final_validation_loss,
        )
