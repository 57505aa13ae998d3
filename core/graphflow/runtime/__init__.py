"""Run-time plumbing: structural events and output sinks."""

from graphflow.runtime.events import (
    GraphEvent,
    NodeEndEvent,
    NodeStartEvent,
    NodeSuspenseEvent,
    StateEvent,
)
from graphflow.runtime.writer import EventWriter, NullWriter, QueueWriter

__all__ = [
    "GraphEvent",
    "StateEvent",
    "NodeStartEvent",
    "NodeEndEvent",
    "NodeSuspenseEvent",
    "EventWriter",
    "NullWriter",
    "QueueWriter",
]
