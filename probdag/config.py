"""
Process-wide compilation settings.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass

import jax
import jax.numpy as jnp

__all__ = ["Config", "config", "data_as_constants"]

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """
    Settings read when a model is compiled.

    The settings are read once per compilation pass. Changing them while a pass
    is running has no effect on that pass.
    """

    float_type: str = "float32"
    """The float dtype of all tensors, ``"float32"`` or ``"float64"``."""

    data_as_constants: bool = False
    """
    Whether data nodes are compiled as constants. If ``False``, data nodes are
    compiled as placeholders whose values are fed when the model is evaluated.
    """

    default_n_chains: int = 4
    """The number of chains used when no number of chains is requested."""

    def validate(self) -> Config:
        """Raises a :class:`ValueError` if the settings cannot be used."""
        if self.float_type not in ("float32", "float64"):
            raise ValueError(
                f"float_type must be 'float32' or 'float64', not {self.float_type!r}"
            )

        x64_enabled = jax.dtypes.canonicalize_dtype(jnp.float64) == jnp.float64
        if self.float_type == "float64" and not x64_enabled:
            raise ValueError(
                "float_type 'float64' requires jax_enable_x64, see "
                "jax.config.update('jax_enable_x64', True)"
            )

        if self.default_n_chains < 1:
            raise ValueError(f"{self.default_n_chains=} must be positive")

        return self


config = Config()
"""The process-wide settings."""


@contextmanager
def data_as_constants(enabled: bool = True) -> Generator[Config]:
    """
    Context manager compiling data nodes as constants (or placeholders, if
    ``enabled=False``). The previous mode is restored on exit.
    """
    previous = config.data_as_constants
    config.data_as_constants = enabled
    logger.debug(f"Set data_as_constants={enabled}, was {previous}")

    try:
        yield config
    finally:
        config.data_as_constants = previous
