"""Mini-batch training loop, plain and guided.

Every optimization step runs the same pipeline:

    network.compute_gradients_for_training → regularize_gradients
    → GradientThresholder.threshold → calculate_update
    → update_learnable_parameters → update_network_state

The network, solver state, learning rate and guided-mode state are
threaded through the loop as a :class:`TrainingState` value; the network
and the solver never mutate in place. Guided mode (``options.is_guided``)
adds the GSGD collecting and replay phases from :mod:`guided_sgd.training.gsgd`.

Stop requests are cooperative: :meth:`Trainer.request_stop` (or a
reporter setting ``stop_event``) is observed at the top of every
iteration and after every epoch; an optimization step in flight always
completes.

A network that exposes a true ``is_stateful`` attribute is trained with
``needs_state=True``; a dispatcher whose ``is_next_mini_batch_same_obs``
attribute is true asks the network to propagate state across batches.

"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any, NamedTuple

import jax

from guided_sgd.clipping import GradientThresholder
from guided_sgd.config import (
    ConfigurationError,
    ExecutionEnvironment,
    ShuffleOption,
    SolverName,
    TrainingOptions,
    validate_options,
)
from guided_sgd.data import ArrayDispatcher, DataDispatcher
from guided_sgd.network import Network, Precision
from guided_sgd.regularization import RegularizerL2, create_regularizer
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
)
from guided_sgd.schedule import create_schedule
from guided_sgd.solvers import CalculateUpdate, create_solver
from guided_sgd.training.gsgd import (
    ConsistencyBuffer,
    GSGDState,
    ReplayEvent,
    consistency_score,
    improvement_position,
    replay_order,
    revisit_window,
)

logger = logging.getLogger(__name__)


class TrainingState(NamedTuple):
    """Values threaded through the training loop.

    ``gsgd`` is None in plain mode.
    """

    network: Any
    solver_state: Any
    learn_rate: float
    iteration: int = 0
    gsgd: GSGDState | None = None


class _Pipeline(NamedTuple):
    regularizer: RegularizerL2
    thresholder: GradientThresholder
    calculate_update: CalculateUpdate
    needs_state: bool
    propagate_state: bool


def resolve_device(environment: ExecutionEnvironment | str) -> jax.Device:
    """Return the JAX device to train on.

    Raises:
        ConfigurationError: ``gpu`` requested but no GPU backend is available.

    Examples:
        >>> resolve_device("cpu").platform
        'cpu'

    """
    environment = ExecutionEnvironment(environment)
    if environment == ExecutionEnvironment.CPU:
        return jax.devices("cpu")[0]
    if environment == ExecutionEnvironment.GPU:
        try:
            return jax.devices("gpu")[0]
        except RuntimeError:
            raise ConfigurationError("execution_environment 'gpu' requested but no GPU backend is available") from None
    return jax.devices()[0]


class Trainer:
    """Train a :class:`~guided_sgd.network.Network` on mini-batches from a dispatcher.

    Args:
        options: Validated training options.
        reporter: Receives per-iteration summaries; defaults to a no-op.
        precision: Precision of solver constants and moving averages.

    Raises:
        ConfigurationError: Invalid options or unavailable execution environment.

    Examples:
        >>> import jax, jax.numpy as jnp
        >>> from guided_sgd.config import training_options
        >>> from guided_sgd.data import ArrayDispatcher
        >>> from guided_sgd.network import DenseNetwork
        >>> x, y = jnp.ones((8, 2)), jnp.zeros((8, 1))
        >>> net = DenseNetwork.create(jax.random.key(0), [2, 1])
        >>> opts = training_options("sgdm", max_epochs=2, mini_batch_size=4, verbose=False)
        >>> trained = Trainer(opts).train(net, ArrayDispatcher(x, y, mini_batch_size=4))
        >>> loss = lambda n: float(n.loss(n.predict(x), y))
        >>> loss(trained) < loss(net)
        True

    """

    def __init__(
        self,
        options: TrainingOptions,
        reporter: Reporter | None = None,
        precision: Precision = Precision(),
    ):
        validate_options(options)
        self.options = options
        self.reporter = reporter if reporter is not None else Reporter()
        self.precision = precision
        self.schedule = create_schedule(options)
        self.thresholder = GradientThresholder.from_options(options)
        self.device = resolve_device(options.execution_environment)
        self.stop_event = threading.Event()
        self.gsgd_state: GSGDState | None = None

    def request_stop(self) -> None:
        """Ask training to stop at the next iteration or epoch boundary."""
        self.stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

    def train(self, network: Network, data: DataDispatcher) -> Network:
        """Run ``options.max_epochs`` epochs and return the trained network."""
        opts = self.options
        params = network.learnable_parameters
        solver_state, calculate_update = create_solver(params, opts, self.precision)
        pipeline = _Pipeline(
            regularizer=create_regularizer("l2", params, opts, self.precision),
            thresholder=self.thresholder,
            calculate_update=calculate_update,
            needs_state=bool(getattr(network, "is_stateful", False)),
            propagate_state=bool(getattr(data, "is_next_mini_batch_same_obs", False)),
        )
        gsgd = None
        if opts.is_guided:
            gsgd = GSGDState(buffer=ConsistencyBuffer(opts.rho), key=jax.random.key(opts.seed))
        state = TrainingState(network, solver_state, float(opts.initial_learn_rate), gsgd=gsgd)

        self.stop_event.clear()
        self.gsgd_state = None

        mode = "guided" if opts.is_guided else "plain"
        logger.info(
            "training started: %s mode, solver %s, %d epoch(s), on %s",
            mode,
            SolverName(opts.solver).value,
            opts.max_epochs,
            self.device.platform.upper(),
        )
        self.reporter.setup()
        self.reporter.start()
        start_time = time.perf_counter()
        summary = None

        for epoch in range(1, opts.max_epochs + 1):
            if self.stop_requested:
                break
            self._shuffle(data, epoch)
            data.start()
            if opts.is_guided:
                state, summary = self._guided_epoch(state, data, pipeline, epoch, start_time, summary)
            else:
                state, summary = self._plain_epoch(state, data, pipeline, epoch, start_time, summary)

            state = state._replace(learn_rate=float(self.schedule.update(state.learn_rate, epoch)))
            self.reporter.report_epoch(epoch, state.iteration, state.network)
            logger.info("epoch %d finished at iteration %d", epoch, state.iteration)
            if self.stop_requested:
                logger.info("stop requested; ending training after epoch %d", epoch)
                break

        if summary is None:
            summary = MiniBatchSummary(
                epoch=0, iteration=0, time=time.perf_counter() - start_time, loss=math.nan, learn_rate=state.learn_rate
            )
        summary = self.reporter.compute_finish(summary, state.network)
        self.reporter.finish(summary, state.network)
        logger.info("training finished after %d iteration(s)", state.iteration)
        self.gsgd_state = state.gsgd
        return state.network

    def _plain_epoch(self, state, data, pipeline, epoch, start_time, summary):
        while not data.is_done and not self.stop_requested:
            x, y = self._next_batch(data)
            state, predictions, loss = self._optimization_step(state, x, y, pipeline)
            state = state._replace(iteration=state.iteration + 1)
            summary = self._report(state, epoch, start_time, loss, predictions, y)
        return state, summary

    def _guided_epoch(self, state, data, pipeline, epoch, start_time, summary):
        opts = self.options
        gsgd = state.gsgd
        # A window left partially filled by the previous epoch is dropped without replay.
        gsgd.reset_window()
        gsgd.verification_batches = []

        while not data.is_done and not self.stop_requested:
            if not gsgd.verification_batches:
                gsgd.verification_batches = [self._next_batch(data) for _ in range(opts.verification_set_num)]
                if data.is_done:
                    break

            x, y = self._next_batch(data)
            ordinal = gsgd.buffer.collect((x, y))
            state, predictions, loss = self._optimization_step(state, x, y, pipeline)
            state = state._replace(iteration=state.iteration + 1)
            summary = self._report(state, epoch, start_time, loss, predictions, y)

            verification_loss = self._verification_loss(state.network, gsgd, pipeline)
            position = improvement_position(verification_loss, gsgd.previous_error)
            if gsgd.revisit:
                for k in revisit_window(gsgd.buffer.loop_count, opts.revisit_batch_num):
                    revisit_loss = self._forward_loss(state.network, *gsgd.buffer.batch(k), pipeline)
                    gsgd.buffer.add_score(k, consistency_score(gsgd.previous_error, revisit_loss, position))
            gsgd.buffer.add_score(ordinal, gsgd.previous_error - verification_loss)
            if opts.debug:
                logger.debug(
                    "iteration %d: batch %d verification loss %.6g (previous %.6g)",
                    state.iteration,
                    ordinal,
                    verification_loss,
                    gsgd.previous_error,
                )
            gsgd.previous_error = verification_loss
            gsgd.revisit = True

            if gsgd.buffer.loop_count % opts.rho == 0:
                state = self._guided_replay(state, pipeline, epoch)
        return state, summary

    def _guided_replay(self, state: TrainingState, pipeline: _Pipeline, epoch: int) -> TrainingState:
        """Retrain on the collected batches with the best mean consistency, then flush."""
        gsgd = state.gsgd
        averages = gsgd.buffer.average_scores()
        selected = replay_order(averages, self.options.rho)
        for k in selected:
            x, y = gsgd.buffer.batch(k)
            state, _, _ = self._optimization_step(state, x, y, pipeline)
            gsgd.previous_error = self._verification_loss(state.network, gsgd, pipeline)

        if self.options.debug:
            logger.debug(
                "guided replay at iteration %d: mean psi %s, replayed %s",
                state.iteration,
                [round(a, 6) for a in averages],
                selected,
            )
        gsgd.replays.append(ReplayEvent(epoch, state.iteration, gsgd.buffer.loop_count, tuple(selected)))
        gsgd.reset_window()
        return state

    def _optimization_step(self, state: TrainingState, x: Any, y: Any, pipeline: _Pipeline):
        network = state.network
        gradients, predictions, states = network.compute_gradients_for_training(
            x, y, pipeline.needs_state, pipeline.propagate_state
        )
        loss = network.loss(predictions, y)
        gradients = pipeline.regularizer.regularize_gradients(gradients, network.learnable_parameters)
        gradients = pipeline.thresholder.threshold(gradients)
        step, solver_state = pipeline.calculate_update(gradients, state.learn_rate, state.solver_state)
        network = network.update_learnable_parameters(step)
        network = network.update_network_state(states, pipeline.needs_state)
        return state._replace(network=network, solver_state=solver_state), predictions, loss

    def _forward_loss(self, network: Network, x: Any, y: Any, pipeline: _Pipeline) -> float:
        _, predictions, _ = network.compute_gradients_for_training(
            x, y, pipeline.needs_state, pipeline.propagate_state
        )
        return float(network.loss(predictions, y))

    def _verification_loss(self, network: Network, gsgd: GSGDState, pipeline: _Pipeline) -> float:
        gsgd.key, subkey = jax.random.split(gsgd.key)
        index = int(jax.random.randint(subkey, (), 0, len(gsgd.verification_batches)))
        return self._forward_loss(network, *gsgd.verification_batches[index], pipeline)

    def _next_batch(self, data: DataDispatcher) -> tuple[Any, Any]:
        x, y = data.next()
        return jax.device_put(x, self.device), jax.device_put(y, self.device)

    def _shuffle(self, data: DataDispatcher, epoch: int) -> None:
        shuffle = self.options.shuffle
        if shuffle == ShuffleOption.EVERY_EPOCH or (shuffle == ShuffleOption.ONCE and epoch == 1):
            data.shuffle()

    def _report(self, state, epoch, start_time, loss, predictions, y) -> MiniBatchSummary:
        summary = MiniBatchSummary(
            epoch=epoch,
            iteration=state.iteration,
            time=time.perf_counter() - start_time,
            loss=float(loss),
            learn_rate=state.learn_rate,
            predictions=predictions,
            response=y,
        )
        summary = self.reporter.compute_iteration(summary, state.network)
        self.reporter.report_iteration(summary)
        return summary


def train_network(
    network: Network,
    data: DataDispatcher | tuple[Any, Any],
    options: TrainingOptions,
    validation_data: DataDispatcher | tuple[Any, Any] | None = None,
    output_functions: Iterable[Callable[[MiniBatchSummary], Any]] = (),
    precision: Precision = Precision(),
) -> tuple[Network, TrainingInfo]:
    """Train ``network`` with the reporters implied by ``options``.

    ``data`` and ``validation_data`` are either dispatchers or ``(x, y)``
    arrays; arrays are split into mini-batches of ``options.mini_batch_size``.
    Validation runs when ``validation_data`` is given, progress is logged
    when ``options.verbose`` is set, and a checkpoint is written after
    every epoch when ``options.checkpoint_path`` is set.

    Returns:
        The trained network and its :class:`TrainingInfo` history.

    Raises:
        ConfigurationError: Invalid options, or a training dispatcher whose
            mini-batch size disagrees with ``options.mini_batch_size``.

    Examples:
        >>> import jax, jax.numpy as jnp
        >>> from guided_sgd.config import training_options
        >>> from guided_sgd.network import DenseNetwork
        >>> net = DenseNetwork.create(jax.random.key(0), [2, 1])
        >>> opts = training_options("sgdm", max_epochs=1, mini_batch_size=2, verbose=False)
        >>> _, info = train_network(net, (jnp.ones((8, 2)), jnp.zeros((8, 1))), opts)
        >>> info.iteration
        (1, 2, 3, 4)

    """
    reporter = VectorReporter()
    trainer = Trainer(options, reporter, precision)
    history = HistoryRecorder()
    data = _as_dispatcher(data, options)

    if validation_data is not None:
        reporter.add(
            ValidationReporter(
                _as_dispatcher(validation_data, options, check_size=False),
                options.validation_frequency,
                trainer.stop_event,
                options.validation_patience,
            )
        )
    reporter.add(history)
    if options.verbose:
        reporter.add(ProgressLogger(options.verbose_frequency))
    output_functions = list(output_functions)
    if output_functions:
        reporter.add(OutputFunctionReporter(output_functions, trainer.stop_event))
    if options.checkpoint_path is not None:
        reporter.add(CheckpointSaver(options.checkpoint_path))

    trained = trainer.train(network, data)
    return trained, history.info


def _as_dispatcher(data: Any, options: TrainingOptions, check_size: bool = True) -> DataDispatcher:
    if isinstance(data, tuple):
        x, y = data
        return ArrayDispatcher(x, y, options.mini_batch_size, key=jax.random.key(options.seed))

    size = getattr(data, "mini_batch_size", None)
    count = getattr(data, "num_observations", None)
    if check_size and size is not None and count is not None and size != min(options.mini_batch_size, count):
        raise ConfigurationError(
            f"dispatcher serves mini-batches of {size} but options.mini_batch_size is {options.mini_batch_size}"
        )
    return data
