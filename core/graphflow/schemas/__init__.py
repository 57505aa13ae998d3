"""Persisted data shapes."""

from graphflow.schemas.checkpoint import Checkpoint

__all__ = ["Checkpoint"]
