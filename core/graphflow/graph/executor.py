"""
Graph Executor - Runs compiled graphs in batches.

The executor:
1. Loads the checkpoint of a run id (or starts fresh at START)
2. Re-runs suspended nodes first when resuming
3. Runs every frontier node of a batch concurrently and joins them
4. Computes the next frontier from the outgoing edges of the batch
5. Persists a checkpoint after every batch
6. Deletes the checkpoint once the frontier is empty

A node that raises a suspense signal does not abort its batch: its siblings
finish, the suspended set becomes the frontier to resume, and the loop halts.
Nested subgraph runs re-raise the signal instead so the enclosing node is
recorded as suspended too.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from graphflow.errors import SuspenseError
from graphflow.graph.edge import Edge
from graphflow.graph.middleware import (
    EventChain,
    GraphMiddlewareContext,
    MiddlewareStack,
    NodeMiddlewareContext,
    StateMiddlewareContext,
    compose,
)
from graphflow.graph.node import (
    END,
    START,
    Node,
    NodeContext,
    NodeKind,
    SubgraphNode,
)
from graphflow.graph.state import (
    InitialState,
    State,
    StateUpdate,
    merge_partial,
    resolve_initial_state,
    resolve_update,
)
from graphflow.observability.logging import reset_trace_context, set_trace_context
from graphflow.runtime.events import (
    GraphEvent,
    NodeEndEvent,
    NodeStartEvent,
    NodeSuspenseEvent,
    StateEvent,
)
from graphflow.runtime.writer import EventWriter, NullWriter, QueueWriter
from graphflow.schemas.checkpoint import Checkpoint
from graphflow.storage.checkpoint_store import CheckpointStorage

logger = logging.getLogger(__name__)

Emit = Callable[[GraphEvent], None]


class RunStatus(StrEnum):
    """Lifecycle of one invocation."""

    FRESH = "fresh"
    RESUMING = "resuming"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


class SuspenseMode(StrEnum):
    """What the loop does after persisting a suspended batch."""

    RETURN = "return"  # top-level: halt and hand back the context
    THROW = "throw"  # nested subgraph: re-raise to the parent node


_STATUS_ICONS = {
    RunStatus.RESUMING: "🔄",
    RunStatus.RUNNING: "🚀",
    RunStatus.SUSPENDED: "⏸",
    RunStatus.COMPLETED: "✓",
    RunStatus.FAILED: "❌",
}


@dataclass
class CompileOptions:
    """Options bound to a compiled graph."""

    storage: CheckpointStorage
    on_start: Callable[[Mapping[str, Any], EventWriter], Awaitable[None] | None] | None = None
    on_finish: Callable[[Mapping[str, Any] | None], Awaitable[None] | None] | None = None


@dataclass
class ExecutionContext:
    """
    Live state of one invocation.

    ``active`` is the next batch to run, or, while ``suspended`` is
    non-empty, the completed siblings of the suspended batch whose successors
    are still owed. Owned by a single loop.
    """

    run_id: str
    state: State
    writer: EventWriter
    emit: Emit
    active: list[Node] = field(default_factory=list)
    suspended: list[Node] = field(default_factory=list)
    resuming: bool = False
    first_time: bool = True
    status: RunStatus = RunStatus.FRESH

    def transition(self, status: RunStatus) -> None:
        if status == self.status:
            return
        icon = _STATUS_ICONS.get(status, "")
        log = logger.error if status == RunStatus.FAILED else logger.info
        log(f"{icon} Run '{self.run_id}': {self.status} → {status}", extra={"event": str(status)})
        self.status = status


def subgraph_run_id(parent_run_id: str, node_id: str) -> str:
    """Run id of a nested graph, namespaced under its parent run."""
    return f"{parent_run_id}:subgraph:{node_id}"


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


async def _resolved_update(ctx: StateMiddlewareContext) -> dict[str, Any]:
    return ctx.resolved_update


def _discard(event: GraphEvent) -> None:
    pass


class CompiledGraph:
    """
    Executes a graph definition.

    Created by ``Graph.compile()``; holds snapshots of the node and edge
    registries, so later changes to the builder do not leak in.
    """

    def __init__(
        self,
        nodes: dict[str, Node],
        edges: dict[str, tuple[Edge, ...]],
        middleware: MiddlewareStack,
        options: CompileOptions,
    ):
        self.nodes = nodes
        self.edges = edges
        self.middleware = middleware
        self.options = options
        self.storage = options.storage

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def execute(
        self,
        run_id: str,
        initial_state: InitialState,
        on_event: Emit | None = None,
    ) -> State:
        """
        Run headless until completion or suspension.

        Args:
            run_id: Checkpoint key; reusing it resumes the run
            initial_state: Literal state (ignored when resuming) or a
                resolver ``(checkpoint_state | None) -> state``
            on_event: Receives every structural event that passes the
                event middleware chain

        Returns:
            The final state

        Raises:
            SuspenseError: A node suspended; the checkpoint is saved
        """
        emit = self._compose_emit(on_event or _discard)
        context = await self._invoke(run_id, initial_state, emit, NullWriter())
        if context.status == RunStatus.SUSPENDED:
            raise SuspenseError(
                {
                    "type": "suspended",
                    "run_id": run_id,
                    "nodes": [node.id for node in context.suspended],
                }
            )
        return context.state

    async def stream(self, run_id: str, initial_state: InitialState) -> AsyncIterator[Any]:
        """
        Run and yield events as they are written.

        Yields structural events (``GraphEvent`` objects) and anything node
        bodies write or merge into ``ctx.writer``. Suspension ends the
        sequence quietly; node and storage errors are raised from the
        iterator once the queued events are consumed.
        """
        writer = QueueWriter()
        emit = self._compose_emit(writer.write)

        async def run() -> None:
            try:
                await self._invoke(run_id, initial_state, emit, writer)
            finally:
                await writer.close()

        task = asyncio.create_task(run())
        try:
            async for event in writer.events():
                yield event
            await task
        finally:
            if not task.done():
                task.cancel()
                writer.abort()

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def _invoke(
        self,
        run_id: str,
        initial_state: InitialState,
        emit: Emit,
        writer: EventWriter,
    ) -> ExecutionContext:
        token = set_trace_context(run_id=run_id)
        context: ExecutionContext | None = None
        try:
            context = await self._create_context(run_id, initial_state, emit, writer)
            if context.first_time and self.options.on_start is not None:
                await _maybe_await(self.options.on_start(context.state, writer))

            if self.middleware.graph:
                graph_ctx = GraphMiddlewareContext(
                    run_id=run_id,
                    state=lambda: MappingProxyType(context.state),
                    writer=writer,
                    is_resume=not context.first_time,
                )

                async def run_loop(_: GraphMiddlewareContext) -> None:
                    await self._run_loop(context, SuspenseMode.RETURN)

                await compose(self.middleware.graph, run_loop)(graph_ctx)
            else:
                await self._run_loop(context, SuspenseMode.RETURN)
        finally:
            try:
                if self.options.on_finish is not None:
                    # None when the checkpoint could not be loaded
                    state = context.state if context is not None else None
                    await _maybe_await(self.options.on_finish(state))
            finally:
                reset_trace_context(token)
        return context

    async def _execute_nested(
        self,
        run_id: str,
        initial_state: InitialState,
        writer: EventWriter,
        emit: Emit,
    ) -> State:
        """Run as a subgraph: no graph middleware, no callbacks, suspension raises."""
        context = await self._create_context(run_id, initial_state, emit, writer)
        await self._run_loop(context, SuspenseMode.THROW)
        return context.state

    def _compose_emit(self, terminal: Emit) -> Emit:
        return EventChain(list(self.middleware.event), terminal)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def _create_context(
        self,
        run_id: str,
        initial_state: InitialState,
        emit: Emit,
        writer: EventWriter,
    ) -> ExecutionContext:
        checkpoint = await self._load_checkpoint(run_id)

        if checkpoint is not None and checkpoint.is_resumable:
            context = ExecutionContext(
                run_id=run_id,
                state=resolve_initial_state(initial_state, checkpoint.state),
                writer=writer,
                emit=emit,
                active=self._resolve_node_ids(checkpoint.active),
                suspended=self._resolve_node_ids(checkpoint.suspended),
                resuming=checkpoint.is_suspended,
                first_time=False,
            )
            context.transition(RunStatus.RESUMING)
            if context.resuming:
                logger.info(
                    f"🔄 Resuming suspended nodes: {[node.id for node in context.suspended]}"
                )
        else:
            context = ExecutionContext(
                run_id=run_id,
                state=resolve_initial_state(initial_state, None),
                writer=writer,
                emit=emit,
                active=[self.nodes[START]],
            )

        emit(StateEvent(state=context.state))
        return context

    async def _load_checkpoint(self, run_id: str) -> Checkpoint | None:
        raw = await self.storage.load(run_id)
        if raw is None or isinstance(raw, Checkpoint):
            return raw
        try:
            return Checkpoint.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"⚠ Ignoring invalid checkpoint for run '{run_id}': {e}")
            return None

    async def _persist(self, context: ExecutionContext) -> None:
        await self.storage.save(
            context.run_id,
            Checkpoint.create(
                state=context.state,
                active=[node.id for node in context.active],
                suspended=[node.id for node in context.suspended],
            ),
        )

    def _resolve_node_ids(self, node_ids: list[str]) -> list[Node]:
        nodes = []
        for node_id in node_ids:
            node = self.nodes.get(node_id)
            if node is None:
                logger.warning(f"⚠ Checkpoint names unknown node '{node_id}', skipping")
                continue
            nodes.append(node)
        return nodes

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    async def _run_loop(self, context: ExecutionContext, mode: SuspenseMode) -> None:
        context.transition(RunStatus.RUNNING)
        try:
            if context.resuming:
                if not await self._run_batch(context, context.suspended, mode, resumed=True):
                    return

            while context.active:
                if not await self._run_batch(context, context.active, mode):
                    return

            await self.storage.delete(context.run_id)
            context.transition(RunStatus.COMPLETED)
        except SuspenseError:
            raise
        except Exception:
            context.transition(RunStatus.FAILED)
            raise

    async def _run_batch(
        self,
        context: ExecutionContext,
        batch: list[Node],
        mode: SuspenseMode,
        resumed: bool = False,
    ) -> bool:
        """Run one batch. Returns False if the loop must halt on suspension."""
        logger.debug(f"▶ Batch: {[node.id for node in batch]}")
        results = await asyncio.gather(*(self._execute_node(node, context) for node in batch))

        suspended = [node for node, did_suspend in zip(batch, results, strict=True) if did_suspend]
        completed = [node for node, did_suspend in zip(batch, results, strict=True) if not did_suspend]
        carried = context.active if resumed else []

        if suspended:
            context.active = carried + completed
            context.suspended = suspended
            context.resuming = True
            await self._persist(context)
            context.transition(RunStatus.SUSPENDED)
            if mode == SuspenseMode.THROW:
                raise SuspenseError({"type": "subgraph-suspended"})
            return False

        context.active = self._next_frontier(carried + completed, context.state)
        context.suspended = []
        context.resuming = False
        await self._persist(context)
        return True

    def _next_frontier(self, completed: list[Node], state: State) -> list[Node]:
        view = MappingProxyType(state)
        frontier: dict[str, Node] = {}
        for node in completed:
            for edge in self.edges.get(node.id, ()):
                target = self.nodes.get(edge.resolve(view))
                if target is None or target.id == END:
                    continue
                frontier.setdefault(target.id, target)
        return list(frontier.values())

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def _execute_node(self, node: Node, context: ExecutionContext) -> bool:
        """Run one node body. Returns True if it suspended."""
        # Each node runs in its own task, so this does not leak to siblings
        set_trace_context(run_id=context.run_id, node_id=node.id)
        context.emit(NodeStartEvent(node_id=node.id))
        start = time.perf_counter()
        node_ctx = self._create_node_context(context, node.id)

        if node.kind == NodeKind.SUBGRAPH:

            async def body() -> None:
                await self._execute_subgraph(node, context)

        else:

            async def body() -> None:
                await _maybe_await(node.fn(node_ctx))

        try:
            if node.is_built_in or not self.middleware.node:
                await body()
            else:
                node_mw_ctx = NodeMiddlewareContext(
                    run_id=context.run_id,
                    node_id=node.id,
                    state=lambda: MappingProxyType(context.state),
                    writer=context.writer,
                    is_subgraph=node.kind == NodeKind.SUBGRAPH,
                )

                async def terminal(_: NodeMiddlewareContext) -> None:
                    await body()

                await compose(self.middleware.node, terminal)(node_mw_ctx)
            await node_ctx.settle()
        except SuspenseError as e:
            # Updates issued before the signal belong to the suspended state
            await node_ctx.settle()
            logger.info(f"⏸ Node '{node.id}' suspended")
            context.emit(NodeSuspenseEvent(node_id=node.id, data=e.data))
            return True
        except Exception as e:
            logger.error(f"✗ Node '{node.id}' failed: {e}")
            raise

        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.debug(f"✓ Node '{node.id}' finished", extra={"latency_ms": latency_ms})
        context.emit(NodeEndEvent(node_id=node.id))
        return False

    def _create_node_context(self, context: ExecutionContext, node_id: str) -> NodeContext:
        def submit(update: StateUpdate) -> asyncio.Future[None]:
            current = context.state
            resolved = resolve_update(current, update)
            if not self.middleware.state:
                self._merge(context, resolved)
                done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
                done.set_result(None)
                return done
            return asyncio.ensure_future(
                self._apply_update(context, node_id, update, resolved, current)
            )

        return NodeContext(
            run_id=context.run_id,
            node_id=node_id,
            writer=context.writer,
            _read_state=lambda: context.state,
            _submit=submit,
        )

    async def _apply_update(
        self,
        context: ExecutionContext,
        node_id: str | None,
        update: StateUpdate,
        resolved: dict[str, Any],
        current: State,
    ) -> None:
        """
        Merge an update through the state middleware chain.

        ``current`` is the state ``update`` was resolved against, captured
        when update() was called rather than when this task runs.
        """
        partial: Mapping[str, Any] | None = resolved
        if self.middleware.state:
            state_ctx = StateMiddlewareContext(
                run_id=context.run_id,
                node_id=node_id,
                current_state=MappingProxyType(current),
                update=update,
                resolved_update=resolved,
            )
            partial = await compose(self.middleware.state, _resolved_update)(state_ctx)
            if partial is None:
                logger.debug(f"Update from '{node_id}' suppressed by state middleware")
                return
        self._merge(context, partial)

    def _merge(self, context: ExecutionContext, partial: Mapping[str, Any]) -> None:
        context.state = merge_partial(context.state, partial)
        context.emit(StateEvent(state=context.state))

    async def _execute_subgraph(self, node: SubgraphNode, context: ExecutionContext) -> None:
        entry = node.entry
        child = CompiledGraph(
            nodes=dict(entry.graph.nodes),
            edges=dict(entry.graph.edges),
            middleware=self.middleware.for_subgraph(),
            options=CompileOptions(storage=self.storage),
        )
        child_run_id = subgraph_run_id(context.run_id, node.id)
        logger.info(f"⑂ Entering subgraph '{node.id}' as run '{child_run_id}'")

        child_state = await child._execute_nested(
            child_run_id,
            dict(entry.input(MappingProxyType(context.state))),
            context.writer,
            context.emit,
        )

        parent_update = entry.output(
            MappingProxyType(child_state), MappingProxyType(context.state)
        )
        current = context.state
        resolved = resolve_update(current, parent_update)
        await self._apply_update(context, node.id, parent_update, resolved, current)
