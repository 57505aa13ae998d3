"""
Checkpoint Store - Persists run checkpoints keyed by run id.

Every backend implements the same three coroutines. The engine awaits each
call before it proceeds and never retries a failed one: storage errors
abort the run exactly like node errors.

Backends:
- InMemoryCheckpointStorage: process-local dict (the default)
- FileCheckpointStorage: one JSON file per run id with atomic writes
- HttpCheckpointStorage: remote key-value store (see graphflow.storage.remote)
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote

from pydantic import ValidationError

from graphflow.schemas.checkpoint import Checkpoint
from graphflow.utils.io import atomic_write

logger = logging.getLogger(__name__)


@runtime_checkable
class CheckpointStorage(Protocol):
    """Storage contract used by the engine."""

    async def save(self, run_id: str, checkpoint: Checkpoint) -> None: ...

    async def load(self, run_id: str) -> Checkpoint | None: ...

    async def delete(self, run_id: str) -> None: ...


class InMemoryCheckpointStorage:
    """
    Ephemeral checkpoint storage.

    Checkpoints live only as long as this object. The state mapping and
    node lists are copied on save and load, but state values are stored by
    reference, so state may hold objects that cannot be copied or
    serialized (locks, clients, open files).
    """

    def __init__(self) -> None:
        self._store: dict[str, Checkpoint] = {}

    @staticmethod
    def _copy(checkpoint: Checkpoint) -> Checkpoint:
        return checkpoint.model_copy(
            update={
                "state": dict(checkpoint.state),
                "active": list(checkpoint.active),
                "suspended": list(checkpoint.suspended),
            }
        )

    async def save(self, run_id: str, checkpoint: Checkpoint) -> None:
        self._store[run_id] = self._copy(checkpoint)

    async def load(self, run_id: str) -> Checkpoint | None:
        checkpoint = self._store.get(run_id)
        return self._copy(checkpoint) if checkpoint is not None else None

    async def delete(self, run_id: str) -> None:
        self._store.pop(run_id, None)

    def __contains__(self, run_id: str) -> bool:
        return run_id in self._store

    def __len__(self) -> int:
        return len(self._store)


class FileCheckpointStorage:
    """
    Checkpoint storage backed by JSON files.

    Directory structure:
        {base_path}/
            {quoted_run_id}.json

    Run ids are percent-encoded into file names, so namespaced subgraph ids
    such as ``run-1:subgraph:child`` are safe on every platform.
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)

    def _path_for(self, run_id: str) -> Path:
        if not run_id:
            raise ValueError("run_id cannot be empty")
        return self.base_path / f"{quote(run_id, safe='')}.json"

    async def save(self, run_id: str, checkpoint: Checkpoint) -> None:
        """
        Atomically write the checkpoint for ``run_id``.

        Raises:
            OSError: If the file write fails
        """
        path = self._path_for(run_id)

        def _write() -> None:
            self.base_path.mkdir(parents=True, exist_ok=True)
            with atomic_write(path) as f:
                f.write(checkpoint.model_dump_json(indent=2))

        await asyncio.to_thread(_write)
        logger.debug(f"Saved checkpoint for {run_id}")

    async def load(self, run_id: str) -> Checkpoint | None:
        """
        Load the checkpoint for ``run_id``.

        Returns:
            Checkpoint, or None if missing or unreadable
        """
        path = self._path_for(run_id)

        def _read() -> Checkpoint | None:
            if not path.exists():
                return None
            try:
                return Checkpoint.model_validate_json(path.read_bytes().decode("utf-8"))
            except (UnicodeDecodeError, ValidationError) as e:
                logger.warning(f"Ignoring malformed checkpoint for {run_id}: {e}")
                return None

        return await asyncio.to_thread(_read)

    async def delete(self, run_id: str) -> None:
        path = self._path_for(run_id)

        def _delete() -> None:
            path.unlink(missing_ok=True)

        await asyncio.to_thread(_delete)
        logger.debug(f"Deleted checkpoint for {run_id}")

    async def exists(self, run_id: str) -> bool:
        path = self._path_for(run_id)
        return await asyncio.to_thread(path.exists)
