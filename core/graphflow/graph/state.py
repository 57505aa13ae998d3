"""
State merge helpers.

State is a plain dict that is never mutated in place. Every update builds a
new dict from the old one and a partial, so a snapshot handed to a node body
stays consistent while sibling nodes keep merging.
"""

from collections.abc import Callable, Mapping
from typing import Any

State = dict[str, Any]
StateUpdate = Mapping[str, Any] | Callable[[Mapping[str, Any]], Mapping[str, Any]]
InitialState = Mapping[str, Any] | Callable[[State | None], Mapping[str, Any]]


def resolve_update(state: Mapping[str, Any], update: StateUpdate) -> dict[str, Any]:
    """Turn an update (partial or function of the state) into a partial."""
    partial = update(state) if callable(update) else update
    return dict(partial or {})


def apply_update(state: Mapping[str, Any], update: StateUpdate) -> State:
    """Return a new state with ``update`` merged in (last write wins per field)."""
    return merge_partial(state, resolve_update(state, update))


def merge_partial(state: Mapping[str, Any], partial: Mapping[str, Any] | None) -> State:
    return {**state, **(partial or {})}


def resolve_initial_state(initial: InitialState, existing: State | None) -> State:
    """
    Pick the starting state of an invocation.

    A resolver function always wins and receives the checkpoint state (or
    None on a fresh run). A literal mapping only applies to fresh runs: when
    a checkpoint exists its state is kept, so persisted progress is never
    silently discarded.
    """
    if callable(initial):
        return dict(initial(existing))
    if existing is not None:
        return dict(existing)
    return dict(initial)
