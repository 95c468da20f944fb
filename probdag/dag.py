"""
Compilation of a model graph into log-density functions.

A :class:`.Dag` collects all nodes connected to the nodes it is created from,
sorts them topologically and materializes them, parents first, into an
:class:`.Environment`. The result of a pass is the per-chain joint log-density
of the model as a function of the *free state*, a dictionary mapping the ids
of the variable nodes to free tensors of the shape ``(n_chains, free_size)``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import jax
import jax.flatten_util
import jax.numpy as jnp
import networkx as nx
import numpy as np

from .backend import (
    Array,
    ValidationError,
    add_first_dim,
    fl,
    float_dtype,
    match_batches,
)
from .config import config
from .nodes import DataNode, DistributionNode, Node, OperationNode, VariableNode

__all__ = ["Dag", "Environment"]

logger = logging.getLogger(__name__)

FreeState = dict[int, Array]

KINDS = ("value", "free", "adj")


class Environment:
    """
    The storage of one materialization pass.

    Entries are keyed by the id of a node and a kind:

    - ``"value"``: the tensor of a node, or the log-density function of a
      distribution node.
    - ``"free"``: the free tensor of a variable node.
    - ``"adj"``: the log-Jacobian of a variable node.

    Every entry is written exactly once.

    Parameters
    ----------
    feed
        The values of the data placeholders, by node id. Each value carries a
        leading batch axis.
    """

    def __init__(self, feed: Mapping[int, Any] | None = None):
        self.tensors: dict[tuple[int, str], Any] = {}
        self.feed: dict[int, Any] = dict(feed or {})

        self.data_list: dict[int, np.ndarray] = {}
        """The data registered by data nodes compiled as placeholders."""

        self.data_as_constants: bool = config.validate().data_as_constants
        """Whether data nodes are compiled as constants in this pass."""

    def assign(self, node: Node, value: Any, kind: str = "value") -> None:
        if kind not in KINDS:
            raise ValueError(f"Unknown kind {kind!r}, must be one of {KINDS}")

        key = (node.id, kind)

        if key in self.tensors:
            raise RuntimeError(f"The {kind} of {repr(node)} has already been assigned")

        self.tensors[key] = value

    def get(self, node: Node, kind: str = "value") -> Any:
        try:
            return self.tensors[(node.id, kind)]
        except KeyError as e:
            raise KeyError(
                f"The {kind} of {repr(node)} has not been materialized"
            ) from e

    def has(self, node: Node, kind: str = "value") -> bool:
        return (node.id, kind) in self.tensors

    def placeholder(self, node: Node, shape: tuple[int, ...]) -> Array:
        """
        Returns the value fed for ``node``.

        The batch axis of the fed value may differ from ``shape``.

        Raises
        ------
        KeyError
            If no value has been fed for ``node``.
        ValidationError
            If the fed value does not match ``shape`` apart from the batch axis.
        """
        try:
            value = self.feed[node.id]
        except KeyError as e:
            raise KeyError(f"No value has been fed for {repr(node)}") from e

        if tuple(np.shape(value)[1:]) != tuple(shape[1:]):
            raise ValidationError(
                f"The value fed for {repr(node)} has dimension {np.shape(value)}, "
                f"expected {tuple(shape)}"
            )

        return fl(value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(entries={len(self.tensors)})"


class Dag:
    """
    A compiled model graph.

    Parameters
    ----------
    *nodes
        Nodes of the model. All nodes connected to them through parents or
        children become part of the graph.

    Raises
    ------
    ValidationError
        If a distribution has no target, if a discrete distribution has a
        variable as its target, or if the graph has a cycle.

    Examples
    --------
    >>> import probdag as pdg
    >>> mu = pdg.normal(0.0, 1.0)
    >>> y = pdg.observe([0.5, 1.5], pdg.normal(mu, 1.0, dim=2))
    >>> dag = pdg.Dag(mu)
    >>> state = dag.initial_free_state(n_chains=3)
    >>> dag.log_density(state).shape
    (3,)
    """

    def __init__(self, *nodes: Node):
        if not nodes:
            raise ValidationError("A DAG needs at least one node")

        graph = self._build_graph(self._collect(nodes))

        try:
            self._nodes: list[Node] = list(nx.topological_sort(graph))
        except nx.NetworkXUnfeasible as e:
            raise ValidationError("The model graph has a cycle") from e

        self._graph = graph
        self._nodes_by_id = {node.id: node for node in self._nodes}
        self._validate()

        logger.info(
            f"Built a DAG with {len(self._nodes)} nodes: "
            f"{len(self.variable_nodes)} variables, {len(self.data_nodes)} data, "
            f"{len(self.operation_nodes)} operations, "
            f"{len(self.distribution_nodes)} distributions"
        )

    @staticmethod
    def _collect(nodes: Iterable[Node]) -> list[Node]:
        """Collects the connected component of ``nodes``."""
        collected: dict[int, Node] = {}
        stack = list(nodes)

        while stack:
            node = stack.pop()

            if node.id in collected:
                continue

            collected[node.id] = node
            stack.extend(node.parents)
            stack.extend(node.children)

        return sorted(collected.values(), key=lambda node: node.id)

    @staticmethod
    def _build_graph(nodes: Iterable[Node]) -> nx.DiGraph:
        """Builds the directed graph with edges from parents to children."""
        nodes = list(nodes)
        edges: list[tuple[Node, Node]] = []

        for node in nodes:
            edges.extend((parent, node) for parent in node.parents)

        graph = nx.DiGraph()
        graph.add_nodes_from(nodes)
        graph.add_edges_from(edges)
        return graph

    def _validate(self) -> None:
        for node in self.distribution_nodes:
            if node.target is None:
                raise ValidationError(f"{repr(node)} has no target")

            if node.discrete and isinstance(node.target, VariableNode):
                raise ValidationError(
                    f"{repr(node)} is discrete, its target must be observed data"
                )

    # ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
    # Nodes ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
    # ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

    @property
    def graph(self) -> nx.DiGraph:
        """The directed graph of the nodes."""
        return self._graph

    @property
    def nodes(self) -> list[Node]:
        """All nodes in topological order."""
        return list(self._nodes)

    @property
    def variable_nodes(self) -> list[VariableNode]:
        return [node for node in self._nodes if isinstance(node, VariableNode)]

    @property
    def data_nodes(self) -> list[DataNode]:
        return [node for node in self._nodes if isinstance(node, DataNode)]

    @property
    def operation_nodes(self) -> list[OperationNode]:
        return [node for node in self._nodes if isinstance(node, OperationNode)]

    @property
    def distribution_nodes(self) -> list[DistributionNode]:
        return [node for node in self._nodes if isinstance(node, DistributionNode)]

    def data_feed(self) -> dict[int, np.ndarray]:
        """The current values of the data nodes with a batch axis, by node id."""
        return {node.id: add_first_dim(node.value) for node in self.data_nodes}

    def _feed(self, data: Mapping[Node | int, Any] | None) -> dict[int, np.ndarray]:
        feed = self.data_feed()

        if not data:
            return feed

        if config.data_as_constants:
            logger.warning("Data nodes are compiled as constants, ignoring new data")

        for key, value in data.items():
            node_id = key.id if isinstance(key, Node) else key
            node = self._nodes_by_id.get(node_id)

            if not isinstance(node, DataNode):
                raise ValidationError(f"{key!r} is not a data node of the DAG")

            value = np.asarray(value, dtype=float)

            if value.shape == node.dim:
                value = add_first_dim(value)
            elif value.shape[1:] != node.dim:
                raise ValidationError(
                    f"Cannot feed a value of dimension {value.shape} to {repr(node)}"
                )

            feed[node_id] = value

        return feed

    # ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
    # Evaluation ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
    # ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

    def _materialize(self, free_state: Mapping[int, Any], feed: dict) -> Environment:
        env = Environment(feed)

        for node in self.variable_nodes:
            try:
                free = fl(free_state[node.id])
            except KeyError as e:
                raise KeyError(f"The free state has no entry for {repr(node)}") from e

            if free.ndim != 2 or free.shape[1] != node.free_size:
                raise ValidationError(
                    f"The free state of {repr(node)} must have the shape "
                    f"(n_chains, {node.free_size}), got {free.shape}"
                )

            env.assign(node, free, "free")

        for node in self._nodes:
            node.materialize(env)

        return env

    def materialize(
        self,
        free_state: Mapping[int, Any],
        data: Mapping[Node | int, Any] | None = None,
    ) -> Environment:
        """
        Runs one materialization pass.

        Parameters
        ----------
        free_state
            The free tensors of the variable nodes, by node id.
        data
            New values for data nodes, by node or node id, used if the data
            nodes are compiled as placeholders. The values have the dimension
            of the node, optionally with a leading batch axis.
        """
        return self._materialize(free_state, self._feed(data))

    @staticmethod
    def _joint(
        env: Environment,
        distributions: list[DistributionNode],
        variables: list[VariableNode],
        adjust: bool,
    ) -> Array:
        terms = []

        for node in distributions:
            density = env.get(node)
            terms.append(density(env.get(node.get_target_node())))

        if adjust:
            terms.extend(env.get(node, "adj") for node in variables)

        if not terms:
            return jnp.zeros(1, dtype=float_dtype())

        return jnp.sum(jnp.stack(match_batches(terms)), axis=0)

    def log_density(
        self,
        free_state: Mapping[int, Any],
        data: Mapping[Node | int, Any] | None = None,
        adjust: bool = True,
    ) -> Array:
        """
        The joint log-density of the model per chain.

        The log-density is the sum of the log-densities of all distributions.
        If ``adjust`` is ``True``, the log-Jacobians of the variables are added,
        which makes it a density of the free state.
        """
        env = self.materialize(free_state, data)
        return self._joint(env, self.distribution_nodes, self.variable_nodes, adjust)

    def log_density_function(
        self, adjust: bool = True, jit: bool = True
    ) -> Callable[[FreeState], Array]:
        """
        Returns the joint log-density as a function of the free state.

        The current values of the data nodes are fixed in the function.
        """
        feed = self.data_feed()
        distributions = self.distribution_nodes
        variables = self.variable_nodes

        def log_density(free_state: FreeState) -> Array:
            env = self._materialize(free_state, feed)
            return self._joint(env, distributions, variables, adjust)

        return jax.jit(log_density) if jit else log_density

    def value_and_grad(
        self,
        free_state: Mapping[int, Any],
        data: Mapping[Node | int, Any] | None = None,
        adjust: bool = True,
    ) -> tuple[Array, FreeState]:
        """
        The joint log-density per chain and its gradient.

        The chains are independent, so the gradient of the summed log-density
        holds the gradient of each chain in its row of the free state.
        """

        def total(state):
            log_density = self.log_density(state, data, adjust)
            return jnp.sum(log_density), log_density

        free_state = {key: fl(value) for key, value in free_state.items()}
        (_, log_density), grad = jax.value_and_grad(total, has_aux=True)(free_state)
        return log_density, grad

    def grad(
        self,
        free_state: Mapping[int, Any],
        data: Mapping[Node | int, Any] | None = None,
        adjust: bool = True,
    ) -> FreeState:
        """The gradient of the joint log-density with respect to the free state."""
        return self.value_and_grad(free_state, data, adjust)[1]

    # ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
    # Free state ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
    # ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

    def initial_free_state(
        self,
        n_chains: int | None = None,
        inits: Mapping[Node, Any] | None = None,
        seed: int | None = None,
    ) -> FreeState:
        """
        Creates a free state to start inference from.

        Parameters
        ----------
        n_chains
            The number of chains. Defaults to :attr:`.Config.default_n_chains`.
        inits
            Initial constrained values of variable nodes. They are mapped to the
            free space and used for all chains. The values of the nodes are
            updated.
        seed
            If ``None``, the free tensors of the other variables are zero.
            Otherwise, they are drawn uniformly from ``(-2, 2)``.

        Raises
        ------
        ValidationError
            If an initial value belongs to a node that is no variable of the DAG
            or lies outside the support of the variable.
        """
        n_chains = config.default_n_chains if n_chains is None else n_chains

        if n_chains < 1:
            raise ValidationError(f"n_chains must be positive, got {n_chains}")

        inits = dict(inits or {})
        variables = self.variable_nodes

        for node in inits:
            if not any(node is variable for variable in variables):
                raise ValidationError(f"{node!r} is not a variable of the DAG")

        # all initial values are checked before any variable is changed
        init_values = {}
        init_frees = {}

        for node, init in inits.items():
            init_frees[node] = node.to_free(init)
            init_values[node] = np.array(
                np.broadcast_to(np.asarray(init, dtype=float), node.dim)
            )

        for node, value in init_values.items():
            node.value = value

        if seed is not None:
            keys = list(jax.random.split(jax.random.PRNGKey(seed), len(variables)))
        else:
            keys = [None] * len(variables)

        free_state = {}

        for node, key in zip(variables, keys):
            shape = (n_chains, node.free_size)

            if node in init_frees:
                free = init_frees[node]
                free_state[node.id] = fl(np.tile(free, (n_chains, 1)))
            elif key is None:
                free_state[node.id] = jnp.zeros(shape, dtype=float_dtype())
            else:
                free_state[node.id] = jax.random.uniform(
                    key, shape, dtype=float_dtype(), minval=-2.0, maxval=2.0
                )

        logger.debug(f"Initialized the free state of {len(variables)} variables")
        return free_state

    def constrained_values(
        self,
        free_state: Mapping[int, Any],
        data: Mapping[Node | int, Any] | None = None,
    ) -> dict[VariableNode, Array]:
        """The constrained values of the variables, with a batch axis."""
        env = self.materialize(free_state, data)
        return {node: env.get(node) for node in self.variable_nodes}

    def flatten(self, free_state: Mapping[int, Any]) -> Array:
        """Flattens a free state into a vector."""
        flat, _ = jax.flatten_util.ravel_pytree(dict(free_state))
        return flat

    def unflatten(self, flat: Any) -> FreeState:
        """Restores a free state from a vector created with :meth:`.flatten`."""
        flat = fl(flat)
        total_size = sum(node.free_size for node in self.variable_nodes)

        if flat.ndim != 1 or total_size == 0 or flat.size % total_size:
            raise ValidationError(
                f"A vector of length {flat.size} is no flat free state of the DAG"
            )

        n_chains = flat.size // total_size
        template = {
            node.id: jnp.zeros((n_chains, node.free_size), dtype=flat.dtype)
            for node in self.variable_nodes
        }
        _, unravel = jax.flatten_util.ravel_pytree(template)
        return unravel(flat)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(nodes={len(self._nodes)})"
