"""Checkpoint storage backends."""

from graphflow.storage.checkpoint_store import (
    CheckpointStorage,
    FileCheckpointStorage,
    InMemoryCheckpointStorage,
)
from graphflow.storage.remote import HttpCheckpointStorage, HttpStorageConfig

__all__ = [
    "CheckpointStorage",
    "InMemoryCheckpointStorage",
    "FileCheckpointStorage",
    "HttpCheckpointStorage",
    "HttpStorageConfig",
]
