"""
Middleware - Onion-style interceptors around graph runs.

Four chains share one dispatch discipline: ``dispatch(i, ctx)`` calls
middleware ``i`` with a ``next`` bound to ``dispatch(i + 1, ctx)``, and the
terminal action once the list is exhausted. Middleware registered first is
outermost. A middleware that never calls ``next`` short-circuits everything
inside it.

Chains:
- graph: wraps one top-level execute()/stream() call (not subgraphs)
- node:  wraps every non built-in node body, subgraph nodes included
- state: wraps every update() and subgraph output merge; returns the
         partial that is actually merged
- event: wraps every structural event; not calling next drops the event

Example:
    async def audit(ctx: StateMiddlewareContext, next):
        partial = await next()
        logger.info(f"{ctx.node_id} wrote {sorted(partial)}")
        return partial

    graph.use(Middleware(state=audit))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from graphflow.graph.state import StateUpdate
from graphflow.runtime.events import GraphEvent
from graphflow.runtime.writer import EventWriter

C = TypeVar("C")
R = TypeVar("R")

Next = Callable[[], Awaitable[R]]


@dataclass
class GraphMiddlewareContext:
    """Context for graph middleware."""

    run_id: str
    state: Callable[[], Mapping[str, Any]]
    writer: EventWriter
    is_resume: bool


@dataclass
class NodeMiddlewareContext:
    """Context for node middleware."""

    run_id: str
    node_id: str
    state: Callable[[], Mapping[str, Any]]
    writer: EventWriter
    is_subgraph: bool = False


@dataclass
class StateMiddlewareContext:
    """
    Context for state middleware.

    ``update`` is the raw value passed to update() (partial or function);
    ``resolved_update`` is the partial it resolved to against
    ``current_state``. The terminal action returns ``resolved_update``.
    """

    run_id: str
    node_id: str | None
    current_state: Mapping[str, Any]
    update: StateUpdate
    resolved_update: dict[str, Any]


GraphMiddleware = Callable[[GraphMiddlewareContext, Next[None]], Awaitable[None]]
NodeMiddleware = Callable[[NodeMiddlewareContext, Next[None]], Awaitable[None]]
PartialUpdate = dict[str, Any] | None

StateMiddleware = Callable[
    [StateMiddlewareContext, Next[PartialUpdate]], Awaitable[PartialUpdate]
]
EventMiddleware = Callable[[GraphEvent, Callable[[], None]], None]


@dataclass(frozen=True)
class Middleware:
    """
    Descriptor registered with ``Graph.use()``.

    Any combination of the four hooks can be set; ``compile()`` splits them
    into per-kind chains, preserving registration order.
    """

    graph: GraphMiddleware | None = None
    node: NodeMiddleware | None = None
    state: StateMiddleware | None = None
    event: EventMiddleware | None = None


@dataclass(frozen=True)
class MiddlewareStack:
    """Per-kind ordered middleware lists produced at compile time."""

    graph: tuple[GraphMiddleware, ...] = ()
    node: tuple[NodeMiddleware, ...] = ()
    state: tuple[StateMiddleware, ...] = ()
    event: tuple[EventMiddleware, ...] = ()

    @classmethod
    def from_descriptors(cls, descriptors: Sequence[Middleware]) -> MiddlewareStack:
        return cls(
            graph=tuple(d.graph for d in descriptors if d.graph is not None),
            node=tuple(d.node for d in descriptors if d.node is not None),
            state=tuple(d.state for d in descriptors if d.state is not None),
            event=tuple(d.event for d in descriptors if d.event is not None),
        )

    def for_subgraph(self) -> MiddlewareStack:
        """Graph middleware is scoped to one top-level invocation."""
        return MiddlewareStack(graph=(), node=self.node, state=self.state, event=self.event)


@dataclass
class MiddlewareChain(Generic[C, R]):
    """Async onion chain around a terminal coroutine."""

    middlewares: Sequence[Callable[[C, Next[R]], Awaitable[R]]]
    terminal: Callable[[C], Awaitable[R]]

    async def dispatch(self, index: int, ctx: C) -> R:
        if index >= len(self.middlewares):
            return await self.terminal(ctx)

        async def next_() -> R:
            return await self.dispatch(index + 1, ctx)

        return await self.middlewares[index](ctx, next_)

    async def __call__(self, ctx: C) -> R:
        return await self.dispatch(0, ctx)


@dataclass
class EventChain:
    """Synchronous onion chain for structural events."""

    middlewares: Sequence[EventMiddleware]
    terminal: Callable[[GraphEvent], None]
    _dropped: int = field(default=0, init=False)

    def dispatch(self, index: int, event: GraphEvent) -> None:
        if index >= len(self.middlewares):
            self.terminal(event)
            return
        called = False

        def next_() -> None:
            nonlocal called
            called = True
            self.dispatch(index + 1, event)

        self.middlewares[index](event, next_)
        if not called:
            self._dropped += 1

    def __call__(self, event: GraphEvent) -> None:
        self.dispatch(0, event)

    @property
    def dropped(self) -> int:
        """Number of events a middleware chose not to forward."""
        return self._dropped


def compose(
    middlewares: Sequence[Callable[[C, Next[R]], Awaitable[R]]],
    terminal: Callable[[C], Awaitable[R]],
) -> MiddlewareChain[C, R]:
    """Build an async chain; call the result with a context to run it."""
    return MiddlewareChain(list(middlewares), terminal)
