"""Training option recipes.

Options are an immutable record built once before training and never
mutated afterwards. Every string-valued choice is a ``str`` enum so a
typo surfaces as a ``ConfigurationError`` at construction rather than
as a silent fallback deep inside the training loop.

References:
    - Optax optimizer hyper-parameters: https://optax.readthedocs.io/en/latest/api/optimizers.html
    - Kingma & Ba, "Adam: A Method for Stochastic Optimization", 2014

"""

from __future__ import annotations

import math
import os
from enum import Enum
from typing import Any, NamedTuple


class ConfigurationError(ValueError):
    """Raised when training options, solver or regularizer names are invalid."""


class SolverName(str, Enum):
    SGDM = "sgdm"
    ADAM = "adam"
    RMSPROP = "rmsprop"


class ShuffleOption(str, Enum):
    NEVER = "never"
    ONCE = "once"
    EVERY_EPOCH = "every-epoch"


class ThresholdMethod(str, Enum):
    NONE = "none"
    L2NORM = "l2norm"
    GLOBAL_L2NORM = "global-l2norm"
    ABSOLUTE_VALUE = "absolute-value"


class ScheduleMethod(str, Enum):
    NONE = "none"
    PIECEWISE = "piecewise"
    COSINE = "cosine"


class ExecutionEnvironment(str, Enum):
    AUTO = "auto"
    CPU = "cpu"
    GPU = "gpu"


class TrainingOptions(NamedTuple):
    """Immutable set of recognized training options.

    Build through :func:`training_options`, which fills in solver-specific
    defaults and validates every field.
    """

    solver: SolverName = SolverName.SGDM
    initial_learn_rate: float = 0.01
    momentum: float = 0.9
    gradient_decay_factor: float = 0.9
    squared_gradient_decay_factor: float = 0.999
    epsilon: float = 1e-8
    learn_rate_schedule: ScheduleMethod = ScheduleMethod.NONE
    learn_rate_drop_factor: float = 0.1
    learn_rate_drop_period: int = 10
    l2_regularization: float = 1e-4
    gradient_threshold_method: ThresholdMethod = ThresholdMethod.L2NORM
    gradient_threshold: float = math.inf
    max_epochs: int = 30
    mini_batch_size: int = 128
    verbose: bool = True
    verbose_frequency: int = 50
    validation_frequency: int = 50
    validation_patience: float = math.inf
    shuffle: ShuffleOption = ShuffleOption.ONCE
    checkpoint_path: str | None = None
    execution_environment: ExecutionEnvironment = ExecutionEnvironment.AUTO
    is_guided: bool = False
    rho: int | None = None
    revisit_batch_num: int | None = None
    verification_set_num: int | None = None
    seed: int = 0
    debug: bool = False


_SOLVER_DEFAULTS: dict[SolverName, dict[str, Any]] = {
    SolverName.SGDM: {"initial_learn_rate": 0.01},
    SolverName.ADAM: {
        "initial_learn_rate": 0.001,
        "gradient_decay_factor": 0.9,
        "squared_gradient_decay_factor": 0.999,
    },
    SolverName.RMSPROP: {
        "initial_learn_rate": 0.001,
        "squared_gradient_decay_factor": 0.9,
    },
}

# Options that only make sense for a subset of solvers.
_SOLVER_SPECIFIC: dict[str, frozenset[SolverName]] = {
    "momentum": frozenset({SolverName.SGDM}),
    "gradient_decay_factor": frozenset({SolverName.ADAM}),
    "squared_gradient_decay_factor": frozenset({SolverName.ADAM, SolverName.RMSPROP}),
    "epsilon": frozenset({SolverName.ADAM, SolverName.RMSPROP}),
}

_GUIDED_FIELDS = ("rho", "revisit_batch_num", "verification_set_num")

_CHOICE_FIELDS: dict[str, type[Enum]] = {
    "solver": SolverName,
    "learn_rate_schedule": ScheduleMethod,
    "gradient_threshold_method": ThresholdMethod,
    "shuffle": ShuffleOption,
    "execution_environment": ExecutionEnvironment,
}

_POSITIVE_INT_FIELDS = (
    "learn_rate_drop_period",
    "max_epochs",
    "mini_batch_size",
    "verbose_frequency",
    "validation_frequency",
)


def training_options(solver: str | SolverName = "sgdm", **overrides: Any) -> TrainingOptions:
    """Create validated training options for a solver.

    Args:
        solver: Solver name: "sgdm", "adam" or "rmsprop".
        **overrides: Any :class:`TrainingOptions` field.

    Returns:
        Validated, immutable TrainingOptions.

    Raises:
        ConfigurationError: Unknown solver or option, option not valid for
            the solver, value out of range, or guided mode without rho,
            revisit_batch_num and verification_set_num.

    Examples:
        >>> opts = training_options("adam", max_epochs=5)
        >>> opts.initial_learn_rate
        0.001
        >>> opts.max_epochs
        5
        >>> guided = training_options(
        ...     "sgdm", is_guided=True, rho=7, revisit_batch_num=2, verification_set_num=4
        ... )
        >>> guided.rho
        7

    """
    name = _as_enum(SolverName, solver, "solver")

    unknown = sorted(set(overrides) - set(TrainingOptions._fields))
    if unknown:
        raise ConfigurationError(f"unrecognized training option(s): {', '.join(unknown)}")

    for field, solvers in _SOLVER_SPECIFIC.items():
        if field in overrides and name not in solvers:
            raise ConfigurationError(f"option '{field}' is not valid for solver '{name.value}'")

    values: dict[str, Any] = {"solver": name}
    values.update(_SOLVER_DEFAULTS[name])
    values.update(overrides)
    for field, enum_cls in _CHOICE_FIELDS.items():
        if field in values:
            values[field] = _as_enum(enum_cls, values[field], field)

    options = TrainingOptions(**values)
    validate_options(options)
    return options


def validate_options(options: TrainingOptions) -> None:
    """Check every choice field of ``options`` against its enum and every numeric field against its range.

    Raises:
        ConfigurationError: On the first invalid field.

    """
    for field, enum_cls in _CHOICE_FIELDS.items():
        _as_enum(enum_cls, getattr(options, field), field)

    _require_range("initial_learn_rate", options.initial_learn_rate, low=0.0, low_open=True)
    _require_range("momentum", options.momentum, low=0.0, high=1.0)
    _require_range("gradient_decay_factor", options.gradient_decay_factor, low=0.0, high=1.0)
    _require_range("squared_gradient_decay_factor", options.squared_gradient_decay_factor, low=0.0, high=1.0)
    _require_range("epsilon", options.epsilon, low=0.0, low_open=True)
    _require_range("l2_regularization", options.l2_regularization, low=0.0)
    _require_range("learn_rate_drop_factor", options.learn_rate_drop_factor, low=0.0, high=1.0, high_open=False)
    _require_range("gradient_threshold", options.gradient_threshold, low=0.0, low_open=True, allow_inf=True)

    for field in _POSITIVE_INT_FIELDS:
        _require_positive_int(field, getattr(options, field))

    patience = options.validation_patience
    if not (patience == math.inf or (_is_int(patience) and patience > 0)):
        raise ConfigurationError(f"validation_patience must be a positive integer or inf, got {patience!r}")

    if not _is_int(options.seed):
        raise ConfigurationError(f"seed must be an integer, got {options.seed!r}")

    if options.checkpoint_path is not None and not os.path.isdir(options.checkpoint_path):
        raise ConfigurationError(f"checkpoint_path must be an existing directory, got {options.checkpoint_path!r}")

    if options.is_guided:
        missing = [field for field in _GUIDED_FIELDS if getattr(options, field) is None]
        if missing:
            raise ConfigurationError(f"guided training requires {', '.join(missing)}")
        for field in _GUIDED_FIELDS:
            _require_positive_int(field, getattr(options, field))


def _as_enum(enum_cls: type[Enum], value: Any, field: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"invalid {field} {value!r}; expected one of: {choices}") from None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_positive_int(field: str, value: Any) -> None:
    if not _is_int(value) or value <= 0:
        raise ConfigurationError(f"{field} must be a positive integer, got {value!r}")


def _require_range(
    field: str,
    value: Any,
    *,
    low: float,
    high: float | None = None,
    low_open: bool = False,
    high_open: bool = True,
    allow_inf: bool = False,
) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ConfigurationError(f"{field} must be a real number, got {value!r}")
    if math.isinf(value) and not (allow_inf and value > 0):
        raise ConfigurationError(f"{field} must be finite, got {value!r}")
    too_low = value <= low if low_open else value < low
    too_high = high is not None and (value >= high if high_open else value > high)
    if too_low or too_high:
        bounds = f"{'(' if low_open else '['}{low}, {high if high is not None else 'inf'}{')' if high_open else ']'}"
        raise ConfigurationError(f"{field} must lie in {bounds}, got {value!r}")
