"""
Graph Builder - Accumulates a workflow definition.

The builder is pure data: it records node bodies, edges, subgraph bindings
and middleware descriptors, and ``compile()`` turns a snapshot of them into
an independent ``CompiledGraph``. Compiling the same builder twice yields
two engines that only differ in the options passed.

Example:
    graph = (
        Graph()
        .node("fetch", fetch)
        .node("summarize", summarize)
        .edge(START, "fetch")
        .edge("fetch", "summarize")
        .edge("summarize", END)
    )
    engine = graph.compile(storage=InMemoryCheckpointStorage())
    final_state = await engine.execute("run-1", {"url": url})
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from graphflow.graph.edge import Edge, Router, make_edge
from graphflow.graph.middleware import Middleware, MiddlewareStack
from graphflow.graph.node import (
    END,
    START,
    FunctionNode,
    Node,
    NodeFn,
    SubgraphEntry,
    SubgraphInput,
    SubgraphNode,
    SubgraphOutput,
    noop,
)

if TYPE_CHECKING:
    from graphflow.graph.executor import CompiledGraph
    from graphflow.runtime.writer import EventWriter
    from graphflow.storage.checkpoint_store import CheckpointStorage

logger = logging.getLogger(__name__)


class Graph:
    """Workflow definition: nodes, edges, subgraphs and middleware."""

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, list[Edge]] = {}
        self._subgraphs: dict[str, SubgraphEntry] = {}
        self._middleware: list[Middleware] = []

        self.node(START, noop)
        self.node(END, noop)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def node(self, node_id: str, fn: NodeFn) -> Graph:
        """Register a function node. ``fn`` may be sync or async."""
        self._register(FunctionNode(id=node_id, fn=fn))
        return self

    def edge(self, source: str, target: str | Router) -> Graph:
        """Connect ``source`` to a fixed node id or to a router ``state -> node_id``."""
        self._edges.setdefault(source, []).append(make_edge(source, target))
        return self

    def graph(
        self,
        node_id: str,
        child: Graph,
        input: SubgraphInput,
        output: SubgraphOutput,
    ) -> Graph:
        """
        Register a node that runs ``child`` as a nested graph.

        Args:
            node_id: Parent node id
            child: Complete child graph definition
            input: Parent state -> child initial state
            output: (child final state, parent state) -> parent update
        """
        entry = SubgraphEntry(graph=child, input=input, output=output)
        self._register(SubgraphNode(id=node_id, entry=entry))
        self._subgraphs[node_id] = entry
        return self

    def use(self, middleware: Middleware) -> Graph:
        """Append a middleware descriptor; earlier registrations wrap later ones."""
        self._middleware.append(middleware)
        return self

    def _register(self, node: Node) -> None:
        if node.id in self._nodes:
            raise ValueError(f"Node '{node.id}' is already registered")
        self._nodes[node.id] = node

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> Mapping[str, Node]:
        return MappingProxyType(self._nodes)

    @property
    def edges(self) -> Mapping[str, tuple[Edge, ...]]:
        return MappingProxyType({source: tuple(edges) for source, edges in self._edges.items()})

    @property
    def subgraphs(self) -> Mapping[str, SubgraphEntry]:
        return MappingProxyType(self._subgraphs)

    @property
    def middleware(self) -> tuple[Middleware, ...]:
        return tuple(self._middleware)

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile(
        self,
        storage: CheckpointStorage | None = None,
        on_start: Callable[[Mapping[str, Any], EventWriter], Awaitable[None] | None] | None = None,
        on_finish: Callable[[Mapping[str, Any] | None], Awaitable[None] | None] | None = None,
    ) -> CompiledGraph:
        """
        Build an engine bound to a snapshot of this definition.

        Without ``storage`` the configured default is used: file-backed
        checkpoints when a checkpoint directory is configured, in-memory
        otherwise.
        """
        from graphflow.config import create_default_storage
        from graphflow.graph.executor import CompiledGraph, CompileOptions

        options = CompileOptions(
            storage=storage if storage is not None else create_default_storage(),
            on_start=on_start,
            on_finish=on_finish,
        )
        logger.debug(
            f"Compiling graph: {len(self._nodes)} nodes, "
            f"{sum(len(e) for e in self._edges.values())} edges, "
            f"{len(self._middleware)} middleware"
        )
        return CompiledGraph(
            nodes=dict(self._nodes),
            edges={source: tuple(edges) for source, edges in self._edges.items()},
            middleware=MiddlewareStack.from_descriptors(self._middleware),
            options=options,
        )
