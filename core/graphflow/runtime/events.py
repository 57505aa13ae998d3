"""Structural events emitted by the graph engine.

Defines a discriminated union of frozen dataclasses. Every event passes
through the event middleware chain before it reaches the writer; a
middleware that does not call ``next`` drops it.

``to_dict()`` gives the data-part shape used by remote consumers:
``{"type": "data-node-start", "data": "node_id"}``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class StateEvent:
    """Full state snapshot after initial resolution or a merged update."""

    type: Literal["state"] = "state"
    state: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "data-state", "data": self.state}


@dataclass(frozen=True)
class NodeStartEvent:
    """A node body is about to run."""

    type: Literal["node:start"] = "node:start"
    node_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": "data-node-start", "data": self.node_id}


@dataclass(frozen=True)
class NodeEndEvent:
    """A node body finished and all of its updates were merged."""

    type: Literal["node:end"] = "node:end"
    node_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": "data-node-end", "data": self.node_id}


@dataclass(frozen=True)
class NodeSuspenseEvent:
    """A node raised a suspense signal."""

    type: Literal["node:suspense"] = "node:suspense"
    node_id: str = ""
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": "data-node-suspense", "data": {"nodeId": self.node_id, "data": self.data}}


GraphEvent = StateEvent | NodeStartEvent | NodeEndEvent | NodeSuspenseEvent
