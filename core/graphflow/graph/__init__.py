"""Graph structures: nodes, edges, middleware and the batch executor."""

from graphflow.graph.builder import Graph
from graphflow.graph.edge import DynamicEdge, Edge, EdgeKind, StaticEdge
from graphflow.graph.executor import (
    CompiledGraph,
    CompileOptions,
    ExecutionContext,
    RunStatus,
    subgraph_run_id,
)
from graphflow.graph.middleware import (
    EventChain,
    GraphMiddlewareContext,
    Middleware,
    MiddlewareChain,
    MiddlewareStack,
    NodeMiddlewareContext,
    StateMiddlewareContext,
    compose,
)
from graphflow.graph.node import (
    END,
    START,
    FunctionNode,
    Node,
    NodeContext,
    NodeKind,
    SubgraphEntry,
    SubgraphNode,
)
from graphflow.graph.state import apply_update, resolve_initial_state

__all__ = [
    # Builder
    "Graph",
    # Node
    "START",
    "END",
    "Node",
    "NodeKind",
    "FunctionNode",
    "SubgraphNode",
    "SubgraphEntry",
    "NodeContext",
    # Edge
    "Edge",
    "EdgeKind",
    "StaticEdge",
    "DynamicEdge",
    # Middleware
    "Middleware",
    "MiddlewareStack",
    "MiddlewareChain",
    "EventChain",
    "GraphMiddlewareContext",
    "NodeMiddlewareContext",
    "StateMiddlewareContext",
    "compose",
    # Executor
    "CompiledGraph",
    "CompileOptions",
    "ExecutionContext",
    "RunStatus",
    "subgraph_run_id",
    # State
    "apply_update",
    "resolve_initial_state",
]
