"""Checkpoint recipes.

Learnable parameters are written to a NumPy ``.npz`` archive: one
``value_<i>`` array per parameter plus the parameter names and their
learn rate / L2 factors, so a checkpoint restores the full parameter set.

"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import jax.numpy as jnp
import numpy as np

from guided_sgd.network import LearnableParameter, Network
from guided_sgd.reporting.reporters import Reporter

logger = logging.getLogger(__name__)


def checkpoint_save(parameters: Mapping[str, LearnableParameter], path: str | os.PathLike) -> Path:
    """Save learnable parameters to ``path`` (.npz).

    Examples:
        >>> import tempfile, jax.numpy as jnp
        >>> from guided_sgd.network import LearnableParameter
        >>> params = {"fc1/weights": LearnableParameter(jnp.ones((2, 2)), learn_rate_factor=0.5)}
        >>> with tempfile.TemporaryDirectory() as d:
        ...     path = checkpoint_save(params, f"{d}/net.npz")
        ...     restored = checkpoint_load(path)
        >>> restored["fc1/weights"].learn_rate_factor
        0.5

    """
    path = Path(path)
    names = list(parameters)
    arrays = {f"value_{i}": np.asarray(parameters[name].value) for i, name in enumerate(names)}
    np.savez(
        path,
        names=np.array(names, dtype=str),
        learn_rate_factors=np.array([parameters[n].learn_rate_factor for n in names], dtype=np.float64),
        l2_factors=np.array([parameters[n].l2_factor for n in names], dtype=np.float64),
        **arrays,
    )
    return path


def checkpoint_load(path: str | os.PathLike) -> dict[str, LearnableParameter]:
    """Load learnable parameters written by :func:`checkpoint_save`.

    Raises:
        FileNotFoundError: ``path`` does not exist.

    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"checkpoint not found: {path}")
    with np.load(path, allow_pickle=False) as data:
        names = [str(n) for n in data["names"]]
        return {
            name: LearnableParameter(
                value=jnp.asarray(data[f"value_{i}"]),
                learn_rate_factor=float(data["learn_rate_factors"][i]),
                l2_factor=float(data["l2_factors"][i]),
            )
            for i, name in enumerate(names)
        }


class CheckpointSaver(Reporter):
    """Write a checkpoint at the end of every epoch."""

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory)

    def report_epoch(self, epoch: int, iteration: int, network: Network) -> None:
        path = self.directory / f"net_checkpoint__{iteration}__{epoch}.npz"
        checkpoint_save(network.learnable_parameters, path)
        logger.debug("saved checkpoint %s", path)
