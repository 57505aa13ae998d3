"""
Node Protocol - The building blocks of a graph.

A node is either a plain function (sync or async) that receives a
``NodeContext``, or a binding to a complete child ``Graph`` that runs as a
nested engine. ``START`` and ``END`` are registered on every graph as
no-ops: ``START`` is the only node of a fresh run's first batch and ``END``
is never scheduled.

Node bodies talk to the engine only through their context:

    async def review(ctx: NodeContext) -> None:
        if not ctx.state().get("approved"):
            ctx.suspense({"reason": "awaiting approval"})
        await ctx.update({"status": "approved"})
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, NoReturn

from graphflow.errors import SuspenseError
from graphflow.graph.state import StateUpdate

if TYPE_CHECKING:
    from graphflow.graph.builder import Graph
    from graphflow.runtime.writer import EventWriter

START = "START"
END = "END"
BUILT_IN_NODES = frozenset({START, END})

NodeFn = Callable[["NodeContext"], Awaitable[None] | None]
SubgraphInput = Callable[[Mapping[str, Any]], Mapping[str, Any]]
SubgraphOutput = Callable[[Mapping[str, Any], Mapping[str, Any]], StateUpdate]


class NodeKind(StrEnum):
    FUNCTION = "function"
    SUBGRAPH = "subgraph"


@dataclass(frozen=True)
class SubgraphEntry:
    """
    Binding of a parent node to a child graph.

    Attributes:
        graph: The complete child graph definition
        input: Maps the parent state to the child's initial state
        output: Maps (child final state, parent state) to a parent update,
            either a partial or a function of the parent state
    """

    graph: Graph
    input: SubgraphInput
    output: SubgraphOutput


@dataclass(frozen=True)
class FunctionNode:
    id: str
    fn: NodeFn

    kind = NodeKind.FUNCTION

    @property
    def is_built_in(self) -> bool:
        return self.id in BUILT_IN_NODES


@dataclass(frozen=True)
class SubgraphNode:
    id: str
    entry: SubgraphEntry

    kind = NodeKind.SUBGRAPH

    @property
    def is_built_in(self) -> bool:
        return False


Node = FunctionNode | SubgraphNode


def noop(ctx: NodeContext) -> None:
    """Body of the built-in START and END nodes."""


@dataclass
class NodeContext:
    """
    Everything a node body can see of its run.

    Created once per node invocation. ``update()`` handles are tracked in
    ``pending`` and the engine settles them before the node counts as
    finished, so a body does not have to await its own updates.
    """

    run_id: str
    node_id: str
    writer: EventWriter
    _read_state: Callable[[], Mapping[str, Any]]
    _submit: Callable[[StateUpdate], asyncio.Future[None]]
    pending: list[asyncio.Future[None]] = field(default_factory=list)

    def state(self) -> Mapping[str, Any]:
        """Read-only view of the current state snapshot."""
        return MappingProxyType(self._read_state())

    def suspense(self, data: Any = None) -> NoReturn:
        """Pause the run at this node until it is resumed."""
        raise SuspenseError(data)

    def update(self, update: StateUpdate) -> asyncio.Future[None]:
        """
        Merge a partial update into the run state.

        The partial (or the function's result) is resolved against the state
        at call time. Awaiting the returned handle waits until the update has
        passed the state middleware chain and is merged.
        """
        handle = self._submit(update)
        self.pending.append(handle)
        return handle

    async def settle(self) -> None:
        """Wait for every update issued so far, including late ones."""
        settled = 0
        while settled < len(self.pending):
            batch = self.pending[settled:]
            settled = len(self.pending)
            await asyncio.gather(*batch)
