"""Exceptions raised by the graph engine and its storage backends."""

from typing import Any


class SuspenseError(Exception):
    """
    Cooperative pause signal raised from a node body.

    Raised through ``NodeContext.suspense()``. The engine catches it per node,
    records the node as suspended and persists a checkpoint so a later call
    with the same run id resumes at that node.

    Headless ``CompiledGraph.execute()`` re-raises it to the caller once the
    checkpoint is saved; ``CompiledGraph.stream()`` ends quietly instead.
    """

    def __init__(self, data: Any = None):
        super().__init__("Suspense")
        self.data = data


class CheckpointStorageError(Exception):
    """A checkpoint backend failed to save, load or delete a checkpoint."""

    def __init__(self, message: str, run_id: str | None = None):
        super().__init__(message)
        self.run_id = run_id
