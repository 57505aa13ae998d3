"""
Tests for CompiledGraph.stream() and the event writers.
"""

import asyncio

import pytest

from graphflow.graph.builder import Graph
from graphflow.graph.middleware import Middleware
from graphflow.graph.node import END, START
from graphflow.runtime.events import (
    NodeEndEvent,
    NodeStartEvent,
    NodeSuspenseEvent,
    StateEvent,
)
from graphflow.runtime.writer import NullWriter, QueueWriter
from graphflow.storage.checkpoint_store import InMemoryCheckpointStorage


@pytest.fixture
def storage():
    return InMemoryCheckpointStorage()


async def collect(stream) -> list:
    return [event async for event in stream]


# === EVENT SHAPES ===


def test_event_to_dict_shapes():
    assert StateEvent(state={"a": 1}).to_dict() == {"type": "data-state", "data": {"a": 1}}
    assert NodeStartEvent(node_id="n").to_dict() == {"type": "data-node-start", "data": "n"}
    assert NodeEndEvent(node_id="n").to_dict() == {"type": "data-node-end", "data": "n"}
    assert NodeSuspenseEvent(node_id="n", data={"why": "input"}).to_dict() == {
        "type": "data-node-suspense",
        "data": {"nodeId": "n", "data": {"why": "input"}},
    }


# === STREAM ===


@pytest.mark.asyncio
async def test_stream_yields_structural_and_user_events(storage):
    async def body(ctx):
        ctx.writer.write({"type": "data-progress", "data": 50})
        await ctx.update({"done": True})

    graph = Graph().node("work", body).edge(START, "work").edge("work", END)

    events = await collect(graph.compile(storage=storage).stream("run-1", {}))

    assert events == [
        StateEvent(state={}),
        NodeStartEvent(node_id=START),
        NodeEndEvent(node_id=START),
        NodeStartEvent(node_id="work"),
        {"type": "data-progress", "data": 50},
        StateEvent(state={"done": True}),
        NodeEndEvent(node_id="work"),
    ]


@pytest.mark.asyncio
async def test_stream_ends_quietly_on_suspension(storage):
    def ask(ctx):
        ctx.suspense({"prompt": "name?"})

    graph = Graph().node("ask", ask).edge(START, "ask")

    events = await collect(graph.compile(storage=storage).stream("run-1", {}))

    assert events[-1] == NodeSuspenseEvent(node_id="ask", data={"prompt": "name?"})
    assert (await storage.load("run-1")).suspended == ["ask"]


@pytest.mark.asyncio
async def test_stream_raises_node_errors_after_prior_events(storage):
    def boom(ctx):
        raise RuntimeError("boom")

    graph = Graph().node("boom", boom).edge(START, "boom")
    received = []

    with pytest.raises(RuntimeError, match="boom"):
        async for event in graph.compile(storage=storage).stream("run-1", {}):
            received.append(event)

    assert NodeStartEvent(node_id="boom") in received


@pytest.mark.asyncio
async def test_stream_merges_external_streams(storage):
    async def tokens():
        for token in ("hel", "lo"):
            await asyncio.sleep(0)
            yield {"type": "text-delta", "delta": token}

    def body(ctx):
        ctx.writer.merge(tokens())

    graph = Graph().node("talk", body).edge(START, "talk")

    events = await collect(graph.compile(storage=storage).stream("run-1", {}))

    deltas = [e["delta"] for e in events if isinstance(e, dict)]
    assert deltas == ["hel", "lo"]


@pytest.mark.asyncio
async def test_stream_applies_event_middleware(storage):
    def only_state(event, next):
        if isinstance(event, StateEvent):
            next()

    graph = (
        Graph()
        .node("work", lambda ctx: ctx.update({"x": 1}))
        .edge(START, "work")
        .use(Middleware(event=only_state))
    )

    events = await collect(graph.compile(storage=storage).stream("run-1", {}))

    assert events == [StateEvent(state={}), StateEvent(state={"x": 1})]


@pytest.mark.asyncio
async def test_graph_middleware_can_write_to_stream(storage):
    async def announce(ctx, next):
        ctx.writer.write({"type": "data-run", "data": ctx.run_id})
        await next()

    graph = Graph().node("work", lambda ctx: None).edge(START, "work").use(Middleware(graph=announce))

    events = await collect(graph.compile(storage=storage).stream("run-9", {}))

    assert {"type": "data-run", "data": "run-9"} in events


@pytest.mark.asyncio
async def test_on_start_receives_stream_writer(storage):
    def on_start(state, writer):
        writer.write({"type": "data-started"})

    graph = Graph().node("work", lambda ctx: None).edge(START, "work")

    events = await collect(graph.compile(storage=storage, on_start=on_start).stream("run-1", {}))

    assert events[0] == StateEvent(state={})
    assert events[1] == {"type": "data-started"}


# === WRITERS ===


@pytest.mark.asyncio
async def test_queue_writer_close_drains_merged_streams():
    writer = QueueWriter()

    async def source():
        for i in range(3):
            await asyncio.sleep(0)
            yield i

    writer.write("first")
    writer.merge(source())
    await writer.close()

    assert writer.closed
    assert await collect(writer.events()) == ["first", 0, 1, 2]


@pytest.mark.asyncio
async def test_queue_writer_raises_merged_stream_error():
    writer = QueueWriter()

    async def broken():
        yield "partial"
        raise ValueError("upstream failed")

    writer.merge(broken())
    await writer.close()

    received = []
    with pytest.raises(ValueError, match="upstream failed"):
        async for event in writer.events():
            received.append(event)
    assert received == ["partial"]


@pytest.mark.asyncio
async def test_queue_writer_drops_writes_after_close():
    writer = QueueWriter()
    await writer.close()

    writer.write("late")

    assert await collect(writer.events()) == []


def test_null_writer_discards_everything():
    writer = NullWriter()
    writer.write({"type": "anything"})
    writer.merge(object())
