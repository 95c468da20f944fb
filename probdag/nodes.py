"""
Nodes of a model graph.

A model is a directed acyclic graph of four kinds of nodes:

- :class:`.DataNode` wraps fixed data.
- :class:`.OperationNode` is a deterministic function of its parents.
- :class:`.VariableNode` is a free parameter, defined by a map from an
  unconstrained free tensor to its support.
- :class:`.DistributionNode` makes its target a random quantity and produces a
  log-density function.

Nodes are compiled by a :class:`.Dag`, which asks each node, parents first,
to materialize its tensor representation into a shared environment.
"""

from __future__ import annotations

import itertools
import logging
import weakref
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, ClassVar

import jax.numpy as jnp
import numpy as np
import tensorflow_probability.substrates.jax as tfp

from .backend import (
    Array,
    ValidationError,
    add_first_dim,
    as_2d_array,
    fl,
    match_batches,
    resolve_operation,
    sum_event,
)
from .constraints import Constraint, constraint_tag, get_constraint
from .unknowns import unknowns

if TYPE_CHECKING:
    from .dag import Environment

__all__ = [
    "DataNode",
    "DistributionNode",
    "Node",
    "OperationNode",
    "VariableNode",
    "as_data",
    "as_dim",
    "distrib",
    "observe",
    "op",
    "to_node",
    "variable",
    "vble",
]

Dim = Sequence[int] | int | None

logger = logging.getLogger(__name__)

_node_ids = itertools.count()


def as_dim(dim: Dim) -> tuple[int, ...]:
    """Coerces ``dim`` to a shape with at least two dimensions."""
    if dim is None:
        return (1, 1)

    shape = tuple(int(d) for d in np.atleast_1d(dim))

    if len(shape) == 1:
        shape = (shape[0], 1)

    if any(d < 1 for d in shape):
        raise ValidationError(f"Dimensions must be positive, got {shape}")

    return shape


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Node ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class Node(ABC):
    """
    A node of a model graph.

    A node has a shape with at least two dimensions, a value of that shape
    (possibly with unknown entries, see :class:`.Unknowns`), an ordered tuple of
    parents and a tuple of children. Parents can be shared by many children.

    .. note::
        This class is abstract. Subclasses define :meth:`.materialize`.

    Parameters
    ----------
    dim
        The shape of the node. A single integer ``n`` is read as ``(n, 1)``.
    value
        The initial value. If ``None``, the value is unknown.
    """

    # lets numpy hand mixed operations over to the reflected dunder methods
    __array_ufunc__ = None

    def __init__(self, dim: Dim = None, value: Any = None):
        self.id: int = next(_node_ids)
        """The unique identifier of the node, used as key during compilation."""

        self._dim = as_dim(dim)
        self._parents: list[Node] = []
        self._children: list[Node] = []
        self._distribution: weakref.ref[DistributionNode] | Callable[[], None] = (
            lambda: None
        )

        self.representations: dict[str, Node] = {}
        """Cached alternative representations of the node, e.g. its logarithm."""

        self.value = unknowns(self._dim) if value is None else value

    @property
    def dim(self) -> tuple[int, ...]:
        """The shape of the node."""
        return self._dim

    @property
    def value(self) -> np.ndarray:
        """The current value of the node."""
        return self._value

    @value.setter
    def value(self, value: Any):
        if not isinstance(value, np.ndarray):
            value = np.asarray(value, dtype=float)

        shape = np.shape(value)

        if shape != self.dim:
            raise ValidationError(
                f"{repr(self)} has dimension {self.dim}, cannot assign a value of "
                f"dimension {shape}"
            )

        self._value = value

    @property
    def parents(self) -> tuple[Node, ...]:
        """The parent nodes."""
        return tuple(self._parents)

    @property
    def children(self) -> tuple[Node, ...]:
        """The child nodes."""
        return tuple(self._children)

    def add_parent(self, node: Node) -> Node:
        """Adds ``node`` as a parent and ``self`` as a child of ``node``."""
        if node is self:
            raise ValidationError(f"{repr(self)} cannot be its own parent")

        if not any(parent is node for parent in self._parents):
            self._parents.append(node)

        if not any(child is self for child in node._children):
            node._children.append(self)

        return self

    def remove_parent(self, node: Node) -> Node:
        """Removes the edge between ``node`` and ``self``."""
        self._parents = [parent for parent in self._parents if parent is not node]
        node._children = [child for child in node._children if child is not self]
        return self

    @property
    def distribution(self) -> DistributionNode | None:
        """The distribution node whose target this node is, if any."""
        return self._distribution()

    def _set_distribution(self, distribution: DistributionNode) -> Node:
        self._distribution = weakref.ref(distribution)
        return self

    def _unset_distribution(self) -> Node:
        self._distribution = lambda: None
        return self

    @abstractmethod
    def materialize(self, env: Environment) -> None:
        """
        Writes the tensor representation of the node into ``env``.

        Must only be called after all parents have been materialized.
        """

    # arithmetic builds operation nodes

    def __add__(self, other: Any) -> OperationNode:
        return op("add", self, other)

    def __radd__(self, other: Any) -> OperationNode:
        return op("add", other, self)

    def __sub__(self, other: Any) -> OperationNode:
        return op("subtract", self, other)

    def __rsub__(self, other: Any) -> OperationNode:
        return op("subtract", other, self)

    def __mul__(self, other: Any) -> OperationNode:
        return op("multiply", self, other)

    def __rmul__(self, other: Any) -> OperationNode:
        return op("multiply", other, self)

    def __truediv__(self, other: Any) -> OperationNode:
        return op("divide", self, other)

    def __rtruediv__(self, other: Any) -> OperationNode:
        return op("divide", other, self)

    def __pow__(self, other: Any) -> OperationNode:
        return op("power", self, other)

    def __neg__(self) -> OperationNode:
        return op("negative", self)

    def __matmul__(self, other: Any) -> OperationNode:
        from .functions import matmul

        return matmul(self, other)

    def __rmatmul__(self, other: Any) -> OperationNode:
        from .functions import matmul

        return matmul(other, self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id}, dim={self.dim})"


def to_node(x: Any) -> Node:
    """Returns ``x`` if it is a node and wraps it in a :class:`.DataNode` otherwise."""
    if isinstance(x, Node):
        return x
    return DataNode(x)


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Data ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class DataNode(Node):
    """
    A node wrapping fixed data.

    The data are coerced to a float array with at least two dimensions, see
    :func:`~.backend.as_2d_array`.

    Depending on :attr:`.Config.data_as_constants`, the data are compiled into
    a constant or into a placeholder whose value is fed at evaluation time.

    Examples
    --------
    >>> DataNode([1.0, 2.0, 3.0]).dim
    (3, 1)
    """

    def __init__(self, data: Any):
        data = as_2d_array(data)
        super().__init__(dim=data.shape, value=data)

    def materialize(self, env: Environment) -> None:
        value = add_first_dim(self.value)

        if env.data_as_constants:
            tensor = fl(value)
        else:
            env.data_list[self.id] = value
            tensor = env.placeholder(self, value.shape)

        env.assign(self, tensor)


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Operation ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


def _broadcast_dims(arguments: Sequence[Node], operation_name: str) -> tuple[int, ...]:
    """
    The elementwise maximum of the argument shapes.

    Unlike a plain maximum, shapes that do not broadcast against each other are
    rejected: along every axis, all sizes other than 1 must agree. ``(2, 3)``
    and ``(4, 3)`` raise a :class:`.ValidationError` when the node is created
    instead of failing later in the backend.
    """
    if not arguments:
        raise ValidationError(
            f"Operation {operation_name!r} has no array arguments, its dimension "
            "must be given explicitly"
        )

    dims = [arg.dim for arg in arguments]

    if len({len(dim) for dim in dims}) > 1:
        raise ValidationError(
            f"Cannot apply operation {operation_name!r} to arguments with different "
            f"numbers of dimensions: {dims}"
        )

    for axis, sizes in enumerate(zip(*dims)):
        if len(set(sizes) - {1}) > 1:
            raise ValidationError(
                f"Cannot apply operation {operation_name!r} to arguments with "
                f"incompatible dimensions {dims} (axis {axis})"
            )

    return tuple(int(d) for d in np.max(dims, axis=0))


class OperationNode(Node):
    """
    A node representing a deterministic function of its parent nodes.

    Parameters
    ----------
    operation
        The name of an entry in :data:`~.backend.OPERATIONS` or a function acting
        on batched tensors. Names are resolved when the node is created.
    *args
        The array arguments. Arguments that are not nodes are wrapped in
        :class:`.DataNode` objects. The arguments become the parents of the node.
    dim
        The shape of the result. Either a shape, a function mapping the list of
        argument shapes to the result shape, or ``None``, in which case the
        elementwise maximum of the argument shapes is used.
    operation_args
        Extra arguments passed to the operation after the tensors, as they are.
    value
        The value of the node. Must have the shape ``dim``. If ``None``, the
        value is unknown.
    representations
        Alternative representations of the node, e.g. ``{"log": x}`` for a node
        computing ``exp(x)``.
    """

    def __init__(
        self,
        operation: str | Callable[..., Array],
        *args: Any,
        dim: Dim | Callable[[list[tuple[int, ...]]], Dim] = None,
        operation_args: Sequence[Any] = (),
        value: Any = None,
        representations: dict[str, Node] | None = None,
    ):
        name, function = resolve_operation(operation)
        arguments = [to_node(arg) for arg in args]

        if dim is None:
            dim = _broadcast_dims(arguments, name)
        elif callable(dim):
            dim = dim([arg.dim for arg in arguments])

        dim = as_dim(dim)

        if value is not None and np.shape(value) != dim:
            raise ValidationError(
                f"Values of dimension {np.shape(value)} have the wrong dimension for "
                f"operation {name!r} with dimension {dim}"
            )

        super().__init__(dim=dim, value=value)

        self.operation_name = name
        self.operation = function
        self.operation_args = list(operation_args)
        self.arguments = arguments
        self.representations = dict(representations or {})

        for argument in arguments:
            self.add_parent(argument)

    def materialize(self, env: Environment) -> None:
        args = [env.get(argument) for argument in self.arguments]
        args = match_batches([*args, *self.operation_args])
        env.assign(self, self.operation(*args))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id}, operation={self.operation_name!r}, "
            f"dim={self.dim})"
        )


def op(
    operation: str | Callable[..., Array], *args: Any, **kwargs: Any
) -> OperationNode:
    """Shorthand for :class:`.OperationNode`."""
    return OperationNode(operation, *args, **kwargs)


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Variable ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


def _scalar_bound(x: Any, which: str) -> float:
    array = np.asarray(x)

    if array.size != 1 or not np.issubdtype(array.dtype, np.number):
        raise ValidationError(
            f"lower and upper must be numeric values of length 1, got {which}={x!r}"
        )

    return float(array.reshape(()))


def _check_bounds(lower: Any, upper: Any) -> tuple[float, float, str]:
    lower = _scalar_bound(lower, "lower")
    upper = _scalar_bound(upper, "upper")
    tag = constraint_tag(lower, upper)

    if tag == "none":
        bad_limits = False
    elif tag == "low":
        bad_limits = not np.isfinite(upper)
    elif tag == "high":
        bad_limits = not np.isfinite(lower)
    else:
        bad_limits = not (np.isfinite(lower) and np.isfinite(upper))

    if bad_limits:
        raise ValidationError(
            "lower and upper must either be -inf (lower only), inf (upper only) "
            f"or finite scalars, got lower={lower}, upper={upper}"
        )

    if lower >= upper:
        raise ValidationError(
            f"upper bound must be greater than lower bound, got lower={lower}, "
            f"upper={upper}"
        )

    return lower, upper, tag


class VariableNode(Node):
    """
    A free parameter with lower and upper bounds.

    The compiler keeps an unconstrained free tensor for each variable node. The
    node defines the map from the free tensor to the support ``(lower, upper)``
    and the log-Jacobian of that map. The map is selected by the constraint tag,
    derived from the bounds:

    =========  =====================  ==================================
    tag        support                map ``f(x)``
    =========  =====================  ==================================
    ``none``   ``(-inf, inf)``        ``x``
    ``low``    ``(-inf, upper)``      ``upper - exp(x)``
    ``high``   ``(lower, inf)``       ``exp(x) + lower``
    ``both``   ``(lower, upper)``     ``sigmoid(x) * (upper - lower) + lower``
    =========  =====================  ==================================

    Parameters
    ----------
    lower
        The lower bound, a number or ``-inf``.
    upper
        The upper bound, a number or ``inf``.
    dim
        The shape of the variable.
    constraint
        A structured constraint (``"correlation_matrix"`` or
        ``"covariance_matrix"``) used instead of the constraint derived from the
        bounds. Requires the default bounds.

    Raises
    ------
    ValidationError
        If the bounds are not numbers of length 1, are non-finite in a way other
        than ``lower=-inf`` or ``upper=inf``, or if ``lower >= upper``.
    """

    def __init__(
        self,
        lower: float = -np.inf,
        upper: float = np.inf,
        dim: Dim = 1,
        constraint: str | None = None,
    ):
        lower, upper, tag = _check_bounds(lower, upper)

        if constraint is not None:
            if tag != "none":
                raise ValidationError(
                    f"A {constraint} variable cannot have bounds, got lower={lower}, "
                    f"upper={upper}"
                )
            tag = constraint

        strategy = get_constraint(tag)
        free_size = strategy.free_size(as_dim(dim))

        super().__init__(dim=dim)

        self.lower = lower
        self.upper = upper
        self.constraint = tag
        self._strategy: Constraint = strategy
        self._free_size = free_size

    @property
    def free_size(self) -> int:
        """The length of the free vector of one chain."""
        return self._free_size

    def from_free(self, free: Array) -> Array:
        """Maps a free tensor of shape ``(batch, free_size)`` to the support."""
        value = self._strategy.forward(free, self.lower, self.upper)
        return jnp.reshape(value, (-1, *self.dim))

    def log_jacobian(self, free: Array) -> Array:
        """The log-Jacobian of :meth:`.from_free` per batch entry."""
        return self._strategy.log_jacobian(free, self.lower, self.upper)

    def to_free(self, value: Any) -> np.ndarray:
        """
        Maps a constrained value to the free vector of one chain.

        Raises a :class:`.ValidationError` if the value has the wrong dimension
        or lies outside the support.
        """
        try:
            value = np.broadcast_to(np.asarray(value, dtype=float), self.dim)
        except ValueError as e:
            raise ValidationError(
                f"Cannot use a value of dimension {np.shape(value)} for {repr(self)}"
            ) from e

        try:
            return self._strategy.inverse(value, self.lower, self.upper)
        except ValidationError as e:
            raise ValidationError(f"Invalid value for {repr(self)}: {e}") from e

    def materialize(self, env: Environment) -> None:
        free = env.get(self, "free")
        env.assign(self, self.log_jacobian(free), "adj")
        env.assign(self, self.from_free(free))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id}, constraint={self.constraint!r}, "
            f"lower={self.lower}, upper={self.upper}, dim={self.dim})"
        )


def vble(truncation: Sequence[float] | None = None, dim: Dim = 1) -> VariableNode:
    """Creates a :class:`.VariableNode` bounded by ``truncation``."""
    if truncation is None:
        truncation = (-np.inf, np.inf)

    lower, upper = truncation
    return VariableNode(lower=lower, upper=upper, dim=dim)


def variable(
    lower: float = -np.inf, upper: float = np.inf, dim: Dim = 1
) -> VariableNode:
    """Creates a free parameter without a distribution."""
    return VariableNode(lower=lower, upper=upper, dim=dim)


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Distribution ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class DistributionNode(Node):
    """
    A node making its target a random quantity.

    A distribution node owns a *target*, the node whose distribution it is, and
    a number of named parameter nodes. On construction, the target is a new
    :class:`.VariableNode` restricted to the truncation interval (or the
    support). The target can be replaced with :meth:`.remove_target` followed
    by :meth:`.add_target`, e.g. when data are observed.

    When materialized, the node does not produce a tensor, but a function
    mapping a target tensor to the per-chain log-density.

    Subclasses implement :meth:`.tfp_distribution` or override
    :meth:`.log_density_function`, :meth:`.log_cdf_function` and
    :meth:`.log_survival_function`.

    Parameters
    ----------
    name
        The name of the distribution.
    dim
        The shape of the target.
    truncation
        An interval ``(lower, upper)`` within :attr:`.bounds` to truncate the
        distribution to. A truncation equal to the bounds is ignored.
    discrete
        Whether the distribution is discrete.

    Raises
    ------
    ValidationError
        If the truncation is not an interval within :attr:`.bounds`, or if the
        distribution has no CDF and cannot be truncated.
    """

    bounds: tuple[float, float] = (-np.inf, np.inf)
    """The support of the distribution without truncation."""

    has_cdf: ClassVar[bool] = False
    """Whether the distribution has a CDF and can thus be truncated."""

    def __init__(
        self,
        name: str = "no distribution",
        dim: Dim = None,
        truncation: Sequence[float] | None = None,
        discrete: bool = False,
    ):
        bounds = (float(self.bounds[0]), float(self.bounds[1]))
        truncation = self._check_truncation(name, bounds, truncation)

        super().__init__(dim=dim)

        self.distribution_name = name
        self.discrete = discrete
        self.bounds = bounds
        self.truncation = truncation
        self.parameters: dict[str, Node] = {}
        self.target: Node | None = None

        self.add_target(self.create_target(truncation))

        self.user_node: Node = self.target  # type: ignore[assignment]
        """The representation of the distribution exposed to the user."""

    def _check_truncation(
        self,
        name: str,
        bounds: tuple[float, float],
        truncation: Sequence[float] | None,
    ) -> tuple[float, float] | None:
        if truncation is None:
            return None

        try:
            lower, upper = (float(t) for t in truncation)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"truncation must be a pair of numbers, got {truncation!r}"
            ) from e

        if not lower < upper:
            raise ValidationError(
                f"truncation must be an interval with lower < upper, got "
                f"({lower}, {upper})"
            )

        if (lower, upper) == bounds:
            logger.debug(f"Truncation of {name} distribution equals its bounds")
            return None

        if lower < bounds[0] or upper > bounds[1]:
            raise ValidationError(
                f"truncation ({lower}, {upper}) must lie within the support "
                f"{bounds} of the {name} distribution"
            )

        if not self.has_cdf:
            raise ValidationError(f"The {name} distribution cannot be truncated")

        return lower, upper

    def create_target(self, truncation: tuple[float, float] | None) -> Node:
        """Creates the default target, a variable restricted to the support."""
        return vble(truncation or self.bounds, dim=self.dim)

    def add_target(self, new_target: Node) -> DistributionNode:
        """Sets ``new_target`` as the target and as a parent of this node."""
        if self.target is not None:
            raise RuntimeError(
                f"{repr(self)} already has a target, call remove_target() first"
            )

        if new_target.dim != self.dim:
            raise ValidationError(
                f"{repr(self)} has dimension {self.dim}, cannot use a target of "
                f"dimension {new_target.dim}"
            )

        if new_target.distribution is not None:
            raise ValidationError(f"{repr(new_target)} already has a distribution")

        self.target = new_target
        self.add_parent(new_target)
        self.value = new_target.value
        new_target._set_distribution(self)
        self.reset_target_flags()
        return self

    def reset_target_flags(self) -> None:
        """Hook to reset flags describing the target, called when it changes."""

    def remove_target(self) -> DistributionNode:
        """Removes the target, which must be replaced before compilation."""
        if self.target is None:
            raise RuntimeError(f"{repr(self)} has no target")

        self.remove_parent(self.target)
        self.target._unset_distribution()
        self.target = None
        return self

    def get_target_node(self) -> Node:
        """The node whose tensor the log-density is evaluated at."""
        if self.target is None:
            raise RuntimeError(f"{repr(self)} has no target")
        return self.target

    def add_parameter(self, parameter: Any, name: str) -> Node:
        """Adds a parameter node under ``name`` and makes it a parent."""
        node = to_node(parameter)
        self.add_parent(node)
        self.parameters[name] = node
        return node

    def fetch_parameters(self, env: Environment) -> dict[str, Array]:
        """Fetches the tensors of the parameters from ``env``."""
        return {name: env.get(node) for name, node in self.parameters.items()}

    def tfp_distribution(self, parameters: dict[str, Array]) -> Any:
        """Creates the TFP distribution object for the parameter tensors."""
        raise NotImplementedError(
            f"{type(self).__name__} does not define a distribution"
        )

    def log_density_function(self, x: Array, parameters: dict[str, Array]) -> Array:
        """The log-density of ``x``, per element or per batch entry."""
        return self.tfp_distribution(parameters).log_prob(x)

    def log_cdf_function(self, x: Array, parameters: dict[str, Array]) -> Array:
        return self.tfp_distribution(parameters).log_cdf(x)

    def log_survival_function(self, x: Array, parameters: dict[str, Array]) -> Array:
        """The log of ``1 - CDF(x)``."""
        return self.tfp_distribution(parameters).log_survival_function(x)

    def log_density_offset(self, parameters: dict[str, Array]) -> Array:
        """
        The log of the probability mass within the truncation interval.

        The density of a distribution truncated to ``(lower, upper)`` is the
        untruncated density divided by ``CDF(upper) - CDF(lower)``. The mass is
        computed in log space. In the upper tail, it is the difference of the
        survival functions, which keeps its precision where the CDF rounds to 1.
        """
        if self.truncation is None:
            raise RuntimeError(f"{repr(self)} is not truncated")

        lower, upper = self.truncation

        if lower == self.bounds[0]:
            return self.log_cdf_function(fl(upper), parameters)

        log_sf_lower = self.log_survival_function(fl(lower), parameters)

        if upper == self.bounds[1]:
            return log_sf_lower

        log_cdf_upper = self.log_cdf_function(fl(upper), parameters)
        from_cdf = tfp.math.log_sub_exp(
            log_cdf_upper, self.log_cdf_function(fl(lower), parameters)
        )
        from_sf = tfp.math.log_sub_exp(
            log_sf_lower, self.log_survival_function(fl(upper), parameters)
        )

        return jnp.where(log_sf_lower < log_cdf_upper, from_sf, from_cdf)

    def materialize(self, env: Environment) -> None:
        def density(target: Array) -> Array:
            parameters = self.fetch_parameters(env)

            target, *values = match_batches([target, *parameters.values()])
            parameters = dict(zip(parameters, values))

            log_prob = self.log_density_function(target, parameters)

            if self.truncation is not None:
                log_prob = log_prob - self.log_density_offset(parameters)

            return sum_event(log_prob)

        env.assign(self, density)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id}, "
            f"distribution={self.distribution_name!r}, dim={self.dim})"
        )


def distrib(distribution: type[DistributionNode], *args: Any, **kwargs: Any) -> Node:
    """Creates a distribution node and returns its user-facing node."""
    return distribution(*args, **kwargs).user_node


def as_data(x: Any) -> DataNode:
    """Wraps ``x`` in a :class:`.DataNode`."""
    if isinstance(x, DataNode):
        return x

    if isinstance(x, Node):
        raise ValidationError(f"{repr(x)} is not data")

    return DataNode(x)


def observe(data: Any, user_node: Node) -> DataNode:
    """
    Observes ``data`` as a realization of the distribution of ``user_node``.

    The data replace the variable that was the target of the distribution.

    Raises
    ------
    ValidationError
        If ``user_node`` has no distribution, or the data already belong to a
        distribution, have the wrong dimension, lie outside the support or are
        not integers for a discrete distribution. The graph is left unchanged.
    """
    distribution = user_node.distribution

    if distribution is None:
        raise ValidationError(f"{repr(user_node)} has no distribution")

    data_node = as_data(data)

    if data_node.distribution is not None:
        raise ValidationError(f"{repr(data_node)} already has a distribution")

    if data_node.dim != distribution.dim:
        raise ValidationError(
            f"Cannot observe data of dimension {data_node.dim} for "
            f"{repr(distribution)} of dimension {distribution.dim}"
        )

    values = np.asarray(data_node.value)
    lower, upper = distribution.truncation or distribution.bounds

    if np.any(values < lower) or np.any(values > upper):
        raise ValidationError(
            f"Observed data must lie within ({lower}, {upper}) for {repr(distribution)}"
        )

    if distribution.discrete and not np.all(values == np.round(values)):
        raise ValidationError(
            f"Observed data must be integers for {repr(distribution)}"
        )

    distribution.remove_target()
    distribution.add_target(data_node)
    distribution.user_node = data_node

    logger.debug(f"Observed {repr(data_node)} for {repr(distribution)}")
    return data_node
