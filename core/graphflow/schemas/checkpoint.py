"""
Checkpoint Schema - Execution state snapshots for resumability.

A checkpoint captures the state of a run at a batch boundary together with
the frontier that still has to run:

- ``active``: nodes whose batch completed (or was carried over) and whose
  successors have not been scheduled yet, or the next batch to run.
- ``suspended``: nodes that raised a suspense signal and must be re-run
  first when the run resumes.

The two lists never overlap. A checkpoint is only worth resuming when at
least one of them is non-empty.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator


class Checkpoint(BaseModel):
    """Persisted state + frontier classification for one run id."""

    state: dict[str, Any] = Field(default_factory=dict)
    active: list[str] = Field(default_factory=list)
    suspended: list[str] = Field(default_factory=list)

    # Metadata
    updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    model_config = {"extra": "allow"}

    @model_validator(mode="after")
    def _check_disjoint(self) -> "Checkpoint":
        overlap = set(self.active) & set(self.suspended)
        if overlap:
            raise ValueError(f"Nodes cannot be both active and suspended: {sorted(overlap)}")
        return self

    @property
    def is_resumable(self) -> bool:
        """True if the checkpoint names at least one node to run."""
        return bool(self.active or self.suspended)

    @property
    def is_suspended(self) -> bool:
        return bool(self.suspended)

    @classmethod
    def create(
        cls,
        state: dict[str, Any],
        active: list[str],
        suspended: list[str] | None = None,
    ) -> "Checkpoint":
        """
        Create a checkpoint with a fresh timestamp.

        Args:
            state: Full state snapshot
            active: Node IDs of the active frontier
            suspended: Node IDs that suspended in the last batch

        Returns:
            New Checkpoint instance
        """
        suspended = list(suspended or [])
        return cls(
            state=dict(state),
            active=[node_id for node_id in active if node_id not in suspended],
            suspended=suspended,
        )
