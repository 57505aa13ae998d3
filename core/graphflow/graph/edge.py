"""
Edge Protocol - How nodes connect in a graph.

Edge Types:
- static: Always traverse to a fixed target after the source completes
- dynamic: A router function picks the target from the merged state

Several edges from one source fan out; several edges into one target fan in
and are deduplicated to a single execution by the scheduler. A target that
names no registered node resolves to nothing.

Example:
    graph.edge("classify", lambda state: "escalate" if state["urgent"] else "reply")
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

Router = Callable[[Mapping[str, Any]], str]


class EdgeKind(StrEnum):
    """How an edge picks its target."""

    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class StaticEdge:
    source: str
    target: str

    kind = EdgeKind.STATIC

    def resolve(self, state: Mapping[str, Any]) -> str:
        return self.target


@dataclass(frozen=True)
class DynamicEdge:
    """Edge whose target is computed from the post-batch state."""

    source: str
    router: Router

    kind = EdgeKind.DYNAMIC

    def resolve(self, state: Mapping[str, Any]) -> str:
        return self.router(state)


Edge = StaticEdge | DynamicEdge


def make_edge(source: str, target: str | Router) -> Edge:
    """Build the edge variant matching ``target``."""
    if callable(target):
        return DynamicEdge(source=source, router=target)
    return StaticEdge(source=source, target=target)
