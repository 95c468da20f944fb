"""
Tensor helpers and the table of operations available to operation nodes.

Every tensor created while a graph is compiled carries a leading batch axis,
used to evaluate several chains at once. The helpers in this module create
such tensors and reconcile their batch axes.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from types import MappingProxyType
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np

from .config import config

__all__ = [
    "OPERATIONS",
    "Array",
    "BroadcastError",
    "ValidationError",
    "add_first_dim",
    "as_2d_array",
    "batch_size",
    "fl",
    "float_dtype",
    "match_batches",
    "resolve_operation",
    "sum_event",
]

Array = Any


class ValidationError(ValueError):
    """Raised when a node is constructed from invalid arguments."""


class BroadcastError(ValueError):
    """Raised when the batch axes of tensors cannot be reconciled."""


def float_dtype() -> jnp.dtype:
    """The configured float dtype."""
    return jnp.dtype(config.float_type)


def fl(x: Any) -> Array:
    """Creates a constant tensor of the configured float dtype."""
    return jnp.asarray(x, dtype=float_dtype())


def is_array(x: Any) -> bool:
    return isinstance(x, (jax.Array, np.ndarray)) and x.ndim > 0


def as_2d_array(x: Any) -> np.ndarray:
    """
    Coerces ``x`` to a float array with at least two dimensions.

    Scalars become ``(1, 1)`` arrays and vectors of length ``n`` become column
    vectors of shape ``(n, 1)``. Arrays with two or more dimensions keep their
    shape.
    """
    try:
        array = np.array(x, dtype=float)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Cannot coerce object of type {type(x).__name__} to a numeric array"
        ) from e

    if array.ndim == 0:
        return array.reshape(1, 1)

    if array.ndim == 1:
        return array.reshape(-1, 1)

    return array


def add_first_dim(x: Any) -> np.ndarray:
    """Prepends a batch axis of size one."""
    return np.expand_dims(np.asarray(x), 0)


def batch_size(x: Any) -> int | None:
    """The size of the batch axis of ``x``, or ``None`` if ``x`` is no tensor."""
    if not is_array(x):
        return None
    return x.shape[0]


def match_batches(args: Sequence[Any]) -> list[Any]:
    """
    Reconciles the batch axes of the tensors in ``args``.

    Tensors with a batch axis of size one are broadcast to the batch size of the
    other tensors. Arguments that are not tensors are returned unchanged.

    Raises
    ------
    BroadcastError
        If the tensors have more than one distinct batch size larger than one.
    """
    sizes = {batch_size(arg) for arg in args if is_array(arg)}
    sizes.discard(1)

    if len(sizes) > 1:
        raise BroadcastError(
            f"Cannot reconcile the batch dimensions {sorted(sizes)}; tensors must "
            "have the same batch size or a batch size of 1"
        )

    if not sizes:
        return list(args)

    (n,) = sizes
    return [
        jnp.broadcast_to(arg, (n, *arg.shape[1:]))
        if is_array(arg) and arg.shape[0] == 1
        else arg
        for arg in args
    ]


def _event_axes(x: Array) -> tuple[int, ...]:
    return tuple(range(1, jnp.ndim(x)))


def sum_event(x: Array) -> Array:
    """Sums over all axes but the batch axis."""
    return jnp.sum(x, axis=_event_axes(x))


def _sum(x: Array) -> Array:
    return jnp.sum(x, axis=_event_axes(x), keepdims=True)


def _mean(x: Array) -> Array:
    return jnp.mean(x, axis=_event_axes(x), keepdims=True)


def _transpose(x: Array) -> Array:
    return jnp.swapaxes(x, -1, -2)


def _reshape(x: Array, dim: tuple[int, ...]) -> Array:
    return jnp.reshape(x, (-1, *dim))


OPERATIONS: MappingProxyType[str, Callable[..., Array]] = MappingProxyType(
    {
        "add": jnp.add,
        "subtract": jnp.subtract,
        "multiply": jnp.multiply,
        "divide": jnp.divide,
        "power": jnp.power,
        "negative": jnp.negative,
        "exp": jnp.exp,
        "log": jnp.log,
        "sqrt": jnp.sqrt,
        "abs": jnp.abs,
        "square": jnp.square,
        "sigmoid": jax.nn.sigmoid,
        "softplus": jax.nn.softplus,
        "tanh": jnp.tanh,
        "matmul": jnp.matmul,
        "transpose": _transpose,
        "sum": _sum,
        "mean": _mean,
        "reshape": _reshape,
    }
)
"""Operations that operation nodes can refer to by name."""


def resolve_operation(
    operation: str | Callable[..., Array],
) -> tuple[str, Callable[..., Array]]:
    """
    Returns the name and the function of an operation.

    ``operation`` is either the name of an entry in :data:`.OPERATIONS` or a
    function acting on batched tensors.
    """
    if callable(operation):
        return getattr(operation, "__name__", repr(operation)), operation

    try:
        return operation, OPERATIONS[operation]
    except KeyError as e:
        raise ValidationError(
            f"Unknown operation {operation!r}. Available operations: "
            f"{', '.join(OPERATIONS)}"
        ) from e
