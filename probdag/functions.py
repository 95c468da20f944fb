"""
Functions of nodes.

The functions build :class:`.OperationNode` objects. They accept nodes and
plain arrays, which are wrapped in :class:`.DataNode` objects.

>>> x = to_node(1.0)
>>> y = log(exp(x))
>>> y is x
True
"""

from __future__ import annotations

from typing import Any

from .backend import ValidationError
from .nodes import Node, OperationNode, to_node

__all__ = [
    "abs",
    "exp",
    "ilogit",
    "log",
    "matmul",
    "mean",
    "sigmoid",
    "softplus",
    "sqrt",
    "square",
    "sum",
    "tanh",
    "transpose",
]


def exp(x: Any) -> Node:
    """
    The exponential of ``x``.

    The result remembers ``x`` as its logarithm, see :func:`.log`. If ``x`` is
    itself a logarithm, its argument is returned.
    """
    x = to_node(x)

    if "exp" in x.representations:
        return x.representations["exp"]

    return OperationNode("exp", x, representations={"log": x})


def log(x: Any) -> Node:
    """
    The natural logarithm of ``x``.

    The result remembers ``x`` as its exponential, see :func:`.exp`. If ``x`` is
    itself an exponential, its argument is returned.
    """
    x = to_node(x)

    if "log" in x.representations:
        return x.representations["log"]

    return OperationNode("log", x, representations={"exp": x})


def sqrt(x: Any) -> OperationNode:
    return OperationNode("sqrt", x)


def abs(x: Any) -> OperationNode:
    return OperationNode("abs", x)


def square(x: Any) -> OperationNode:
    return OperationNode("square", x)


def sigmoid(x: Any) -> OperationNode:
    """The logistic function ``1 / (1 + exp(-x))``."""
    return OperationNode("sigmoid", x)


ilogit = sigmoid


def softplus(x: Any) -> OperationNode:
    """The function ``log(1 + exp(x))``."""
    return OperationNode("softplus", x)


def tanh(x: Any) -> OperationNode:
    return OperationNode("tanh", x)


def matmul(x: Any, y: Any) -> OperationNode:
    """
    The matrix product of ``x`` and ``y``.

    Raises
    ------
    ValidationError
        If the number of columns of ``x`` differs from the number of rows of
        ``y``.
    """
    x, y = to_node(x), to_node(y)

    if len(x.dim) != 2 or len(y.dim) != 2 or x.dim[1] != y.dim[0]:
        raise ValidationError(
            f"Incompatible dimensions for matrix multiplication: {x.dim} and {y.dim}"
        )

    return OperationNode("matmul", x, y, dim=(x.dim[0], y.dim[1]))


def transpose(x: Any) -> OperationNode:
    """Swaps the last two dimensions of ``x``."""
    x = to_node(x)
    *leading, rows, cols = x.dim
    return OperationNode("transpose", x, dim=(*leading, cols, rows))


def sum(x: Any) -> OperationNode:
    """The sum of all elements of ``x``, with all dimensions kept."""
    x = to_node(x)
    return OperationNode("sum", x, dim=(1,) * len(x.dim))


def mean(x: Any) -> OperationNode:
    """The mean of all elements of ``x``, with all dimensions kept."""
    x = to_node(x)
    return OperationNode("mean", x, dim=(1,) * len(x.dim))
