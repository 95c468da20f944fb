"""
Maps from the unconstrained (free) space to the support of a variable.

Each :class:`.Constraint` supplies the map from a free tensor to the
constrained tensor, the log-absolute-Jacobian of that map and its inverse.
Free tensors have the shape ``(batch, free_size)``; log-Jacobians are summed
over everything but the batch axis and have the shape ``(batch,)``.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from types import MappingProxyType
from typing import Any, ClassVar

import jax
import jax.numpy as jnp
import numpy as np

from .backend import Array, ValidationError, sum_event

__all__ = [
    "CONSTRAINTS",
    "Constraint",
    "CorrelationMatrix",
    "CovarianceMatrix",
    "Interval",
    "LowerBounded",
    "Unconstrained",
    "UpperBounded",
    "constraint_tag",
    "get_constraint",
]


class Constraint(ABC):
    """A bijection from the free space to a constrained space."""

    tag: ClassVar[str]
    """The constraint tag the strategy is registered under."""

    def free_size(self, dim: Sequence[int]) -> int:
        """The length of the free vector of a variable with shape ``dim``."""
        return math.prod(dim)

    @abstractmethod
    def forward(self, x: Array, lower: float, upper: float) -> Array:
        """Maps the free tensor ``x`` to the constrained space."""

    @abstractmethod
    def log_jacobian(self, x: Array, lower: float, upper: float) -> Array:
        """The log-absolute-Jacobian of :meth:`.forward`, per batch entry."""

    @abstractmethod
    def inverse(self, y: Any, lower: float, upper: float) -> np.ndarray:
        """
        Maps one constrained value ``y`` back to its flat free vector.

        Raises a :class:`.ValidationError` if ``y`` lies outside the support.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Scalar constraints ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


def _check_open_interval(y: np.ndarray, lower: float, upper: float) -> None:
    if np.any(y <= lower) or np.any(y >= upper):
        raise ValidationError(
            f"Values must lie strictly between {lower} and {upper}, got {y.tolist()}"
        )


class Unconstrained(Constraint):
    """The identity map."""

    tag = "none"

    def forward(self, x, lower, upper):
        return x

    def log_jacobian(self, x, lower, upper):
        return jnp.zeros(jnp.shape(x)[0], dtype=x.dtype)

    def inverse(self, y, lower, upper):
        y = np.asarray(y, dtype=float).ravel()
        if not np.all(np.isfinite(y)):
            raise ValidationError(f"Values must be finite, got {y.tolist()}")
        return y


class Interval(Constraint):
    """The logistic map to ``(lower, upper)``."""

    tag = "both"

    def forward(self, x, lower, upper):
        return jax.nn.sigmoid(x) * (upper - lower) + lower

    def log_jacobian(self, x, lower, upper):
        return sum_event(x - 2.0 * jax.nn.softplus(x) + math.log(upper - lower))

    def inverse(self, y, lower, upper):
        y = np.asarray(y, dtype=float).ravel()
        _check_open_interval(y, lower, upper)
        p = (y - lower) / (upper - lower)
        return np.log(p) - np.log1p(-p)


class UpperBounded(Constraint):
    """The map ``upper - exp(x)`` to ``(-inf, upper)``."""

    tag = "low"

    def forward(self, x, lower, upper):
        return upper - jnp.exp(x)

    def log_jacobian(self, x, lower, upper):
        return sum_event(x)

    def inverse(self, y, lower, upper):
        y = np.asarray(y, dtype=float).ravel()
        _check_open_interval(y, -np.inf, upper)
        return np.log(upper - y)


class LowerBounded(Constraint):
    """The map ``exp(x) + lower`` to ``(lower, inf)``."""

    tag = "high"

    def forward(self, x, lower, upper):
        return jnp.exp(x) + lower

    def log_jacobian(self, x, lower, upper):
        return sum_event(x)

    def inverse(self, y, lower, upper):
        y = np.asarray(y, dtype=float).ravel()
        _check_open_interval(y, lower, np.inf)
        return np.log(y - lower)


def constraint_tag(lower: float, upper: float) -> str:
    """The tag of the scalar constraint with the given bounds."""
    if lower == -np.inf and upper == np.inf:
        return "none"

    if lower == -np.inf:
        return "low"

    if upper == np.inf:
        return "high"

    return "both"


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Matrix constraints ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


def _square_dim(dim: Sequence[int], tag: str) -> int:
    if len(dim) != 2 or dim[0] != dim[1] or dim[0] < 2:
        raise ValidationError(
            f"A {tag} variable needs a square dimension of at least 2 x 2, "
            f"got {tuple(dim)}"
        )
    return dim[0]


def _triangular_root(k: int, offset: int) -> int:
    # solves k = n * (n + offset) / 2 for n
    n = (math.sqrt(8 * k + offset**2) - offset) / 2
    if k < 1 or n != int(n):
        raise ValidationError(f"{k} is not a valid length of a free matrix vector")
    return int(n)


def _cholesky(y: Any, tag: str) -> np.ndarray:
    y = np.asarray(y, dtype=float)
    if y.ndim != 2 or y.shape[0] != y.shape[1] or not np.allclose(y, y.T):
        raise ValidationError(f"A {tag} value must be a symmetric square matrix")
    try:
        return np.linalg.cholesky(y)
    except np.linalg.LinAlgError as e:
        raise ValidationError(f"A {tag} value must be positive definite") from e


def _log1m_tanh_square(x: Array) -> Array:
    # log(1 - tanh(x)^2), stable for large |x|
    return 2.0 * (math.log(2.0) - x - jax.nn.softplus(-2.0 * x))


class CorrelationMatrix(Constraint):
    """
    A map to correlation matrices via canonical partial correlations.

    The free vector holds one entry per element of the strictly lower triangle,
    in row-major order. ``tanh`` maps the entries to partial correlations ``z``,
    which are accumulated row by row into the Cholesky factor ``L`` with
    ``L[i, j] = z[i, j] * sqrt(1 - sum(L[i, :j] ** 2))``. The result is
    ``L @ L.T``.
    """

    tag = "correlation_matrix"

    def free_size(self, dim):
        n = _square_dim(dim, self.tag)
        return n * (n - 1) // 2

    @staticmethod
    def _cholesky_factor(z: Array) -> Array:
        n = _triangular_root(z.shape[-1], 1) + 1
        zero = jnp.zeros(z.shape[:-1], dtype=z.dtype)
        rows = []
        position = 0

        for i in range(n):
            sumsq = zero
            row = []

            for _ in range(i):
                w = z[..., position] * jnp.sqrt(1.0 - sumsq)
                sumsq = sumsq + w**2
                row.append(w)
                position += 1

            row.append(jnp.sqrt(1.0 - sumsq))
            row.extend([zero] * (n - i - 1))
            rows.append(jnp.stack(row, axis=-1))

        return jnp.stack(rows, axis=-2)

    def forward(self, x, lower, upper):
        chol = self._cholesky_factor(jnp.tanh(x))
        return chol @ jnp.swapaxes(chol, -1, -2)

    def log_jacobian(self, x, lower, upper):
        n = _triangular_root(x.shape[-1], 1) + 1
        _, cols = np.tril_indices(n, -1)

        # partial correlations in column j enter the correlation matrix with the
        # power n - j - 2
        powers = jnp.asarray(n - cols - 2, dtype=x.dtype)
        log1m_z2 = _log1m_tanh_square(x)

        return sum_event(log1m_z2) + 0.5 * sum_event(powers * log1m_z2)

    def inverse(self, y, lower, upper):
        chol = _cholesky(y, self.tag)
        if not np.allclose(np.diag(y), 1.0):
            raise ValidationError("A correlation matrix must have a unit diagonal")

        n = chol.shape[0]
        z = []

        for i in range(n):
            sumsq = 0.0
            for j in range(i):
                z.append(chol[i, j] / np.sqrt(1.0 - sumsq))
                sumsq += chol[i, j] ** 2

        return np.arctanh(np.asarray(z, dtype=float))


class CovarianceMatrix(Constraint):
    """
    A map to covariance matrices via a Cholesky factor.

    The first ``n`` free entries are the logarithms of the diagonal of the
    Cholesky factor ``L``, the remaining entries fill its strictly lower
    triangle in row-major order. The result is ``L @ L.T``.
    """

    tag = "covariance_matrix"

    def free_size(self, dim):
        n = _square_dim(dim, self.tag)
        return n * (n + 1) // 2

    def forward(self, x, lower, upper):
        n = _triangular_root(x.shape[-1], 1)
        rows, cols = np.tril_indices(n, -1)
        diag = np.arange(n)

        chol = jnp.zeros((*x.shape[:-1], n, n), dtype=x.dtype)
        chol = chol.at[..., diag, diag].set(jnp.exp(x[..., :n]))
        chol = chol.at[..., rows, cols].set(x[..., n:])

        return chol @ jnp.swapaxes(chol, -1, -2)

    def log_jacobian(self, x, lower, upper):
        n = _triangular_root(x.shape[-1], 1)
        powers = jnp.asarray(n - np.arange(1, n + 1) + 2, dtype=x.dtype)
        return n * math.log(2.0) + jnp.sum(powers * x[..., :n], axis=-1)

    def inverse(self, y, lower, upper):
        chol = _cholesky(y, self.tag)
        n = chol.shape[0]
        rows, cols = np.tril_indices(n, -1)
        return np.concatenate([np.log(np.diag(chol)), chol[rows, cols]])


CONSTRAINTS: MappingProxyType[str, Constraint] = MappingProxyType(
    {
        constraint.tag: constraint
        for constraint in (
            Unconstrained(),
            Interval(),
            UpperBounded(),
            LowerBounded(),
            CorrelationMatrix(),
            CovarianceMatrix(),
        )
    }
)
"""The available constraints by tag."""


def get_constraint(tag: str) -> Constraint:
    """Returns the constraint registered under ``tag``."""
    try:
        return CONSTRAINTS[tag]
    except KeyError as e:
        raise ValidationError(
            f"Unknown constraint {tag!r}. Available constraints: "
            f"{', '.join(CONSTRAINTS)}"
        ) from e
