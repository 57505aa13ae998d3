"""
graphflow - Resumable workflow graphs.

Define nodes and edges with ``Graph``, compile, and run with a run id. A run
that suspends keeps a checkpoint; calling it again with the same run id
resumes where it stopped.
"""

from graphflow.errors import CheckpointStorageError, SuspenseError
from graphflow.graph import (
    END,
    START,
    CompiledGraph,
    Graph,
    GraphMiddlewareContext,
    Middleware,
    NodeContext,
    NodeMiddlewareContext,
    RunStatus,
    StateMiddlewareContext,
)
from graphflow.runtime import (
    GraphEvent,
    NodeEndEvent,
    NodeStartEvent,
    NodeSuspenseEvent,
    StateEvent,
)
from graphflow.schemas import Checkpoint
from graphflow.storage import (
    CheckpointStorage,
    FileCheckpointStorage,
    HttpCheckpointStorage,
    HttpStorageConfig,
    InMemoryCheckpointStorage,
)

__all__ = [
    "Graph",
    "CompiledGraph",
    "START",
    "END",
    "NodeContext",
    "Middleware",
    "GraphMiddlewareContext",
    "NodeMiddlewareContext",
    "StateMiddlewareContext",
    "RunStatus",
    "GraphEvent",
    "StateEvent",
    "NodeStartEvent",
    "NodeEndEvent",
    "NodeSuspenseEvent",
    "Checkpoint",
    "CheckpointStorage",
    "InMemoryCheckpointStorage",
    "FileCheckpointStorage",
    "HttpCheckpointStorage",
    "HttpStorageConfig",
    "SuspenseError",
    "CheckpointStorageError",
]
