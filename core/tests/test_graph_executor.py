"""
Tests for CompiledGraph batch execution.
Covers linear runs, fan-out/fan-in, routing and failure paths.
"""

import asyncio

import pytest

from graphflow.graph.builder import Graph
from graphflow.graph.executor import CompiledGraph
from graphflow.graph.node import END, START
from graphflow.runtime.events import NodeEndEvent, NodeStartEvent, StateEvent
from graphflow.storage.checkpoint_store import InMemoryCheckpointStorage


@pytest.fixture
def storage():
    return InMemoryCheckpointStorage()


def recorder(visits: list[str], node_id: str, update: dict | None = None):
    async def body(ctx):
        visits.append(node_id)
        if update:
            await ctx.update(update)

    return body


@pytest.mark.asyncio
async def test_linear_graph_runs_each_node_once(storage):
    visits = []
    graph = (
        Graph()
        .node("a", recorder(visits, "a", {"a": 1}))
        .node("b", recorder(visits, "b", {"b": 2}))
        .edge(START, "a")
        .edge("a", "b")
        .edge("b", END)
    )

    result = await graph.compile(storage=storage).execute("run-1", {})

    assert visits == ["a", "b"]
    assert result == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_structural_events_in_order(storage):
    events = []
    graph = Graph().node("a", recorder([], "a", {"x": 1})).edge(START, "a").edge("a", END)

    await graph.compile(storage=storage).execute("run-1", {}, on_event=events.append)

    assert events == [
        StateEvent(state={}),
        NodeStartEvent(node_id=START),
        NodeEndEvent(node_id=START),
        NodeStartEvent(node_id="a"),
        StateEvent(state={"x": 1}),
        NodeEndEvent(node_id="a"),
    ]
    # END is never scheduled
    assert NodeStartEvent(node_id=END) not in events


@pytest.mark.asyncio
async def test_fan_out_fan_in_runs_join_once(storage):
    visits = []

    async def slow_a(ctx):
        await asyncio.sleep(0.02)
        visits.append("a")
        await ctx.update({"a": "done"})

    async def fast_b(ctx):
        visits.append("b")
        await ctx.update({"b": "done"})

    seen_at_join = {}

    async def join(ctx):
        visits.append("join")
        seen_at_join.update(ctx.state())

    graph = (
        Graph()
        .node("fork", recorder(visits, "fork"))
        .node("a", slow_a)
        .node("b", fast_b)
        .node("join", join)
        .edge(START, "fork")
        .edge("fork", "a")
        .edge("fork", "b")
        .edge("a", "join")
        .edge("b", "join")
        .edge("join", END)
    )

    await graph.compile(storage=storage).execute("run-1", {})

    assert visits.count("a") == 1
    assert visits.count("b") == 1
    assert visits.count("join") == 1
    assert visits[-1] == "join"
    assert seen_at_join == {"a": "done", "b": "done"}


@pytest.mark.asyncio
async def test_concurrent_updates_are_not_lost(storage):
    def writer(key):
        async def body(ctx):
            await asyncio.sleep(0)
            await ctx.update({key: True})

        return body

    graph = Graph()
    for key in ("a", "b", "c"):
        graph.node(key, writer(key)).edge(START, key).edge(key, END)

    result = await graph.compile(storage=storage).execute("run-1", {})

    assert result == {"a": True, "b": True, "c": True}


@pytest.mark.asyncio
async def test_dynamic_edge_routes_on_merged_state(storage):
    visits = []
    graph = (
        Graph()
        .node("classify", recorder(visits, "classify", {"urgent": True}))
        .node("escalate", recorder(visits, "escalate"))
        .node("reply", recorder(visits, "reply"))
        .edge(START, "classify")
        .edge("classify", lambda state: "escalate" if state["urgent"] else "reply")
        .edge("escalate", END)
        .edge("reply", END)
    )

    await graph.compile(storage=storage).execute("run-1", {"urgent": False})

    assert visits == ["classify", "escalate"]


@pytest.mark.asyncio
async def test_edge_to_unknown_node_is_ignored(storage):
    visits = []
    graph = (
        Graph()
        .node("a", recorder(visits, "a"))
        .edge(START, "a")
        .edge("a", "missing")
    )

    await graph.compile(storage=storage).execute("run-1", {})

    assert visits == ["a"]
    assert await storage.load("run-1") is None


@pytest.mark.asyncio
async def test_sync_node_and_function_update(storage):
    def increment(ctx):
        ctx.update(lambda state: {"count": state["count"] + 1})

    graph = (
        Graph()
        .node("inc", increment)
        .node("inc_again", increment)
        .edge(START, "inc")
        .edge("inc", "inc_again")
        .edge("inc_again", END)
    )

    result = await graph.compile(storage=storage).execute("run-1", {"count": 0})

    assert result == {"count": 2}


@pytest.mark.asyncio
async def test_state_view_is_read_only(storage):
    errors = []

    def mutate(ctx):
        try:
            ctx.state()["x"] = 1
        except TypeError as e:
            errors.append(e)

    graph = Graph().node("mutate", mutate).edge(START, "mutate")

    result = await graph.compile(storage=storage).execute("run-1", {})

    assert len(errors) == 1
    assert result == {}


@pytest.mark.asyncio
async def test_node_context_exposes_run_and_node_ids(storage):
    seen = []

    def body(ctx):
        seen.append((ctx.run_id, ctx.node_id))

    graph = Graph().node("a", body).edge(START, "a")

    await graph.compile(storage=storage).execute("run-7", {})

    assert seen == [("run-7", "a")]


@pytest.mark.asyncio
async def test_unawaited_updates_settle_before_next_batch(storage):
    async def fire_and_forget(ctx):
        ctx.update({"first": 1})
        ctx.update(lambda state: {"second": state["first"] + 1})

    seen = {}

    def check(ctx):
        seen.update(ctx.state())

    graph = (
        Graph()
        .node("write", fire_and_forget)
        .node("check", check)
        .edge(START, "write")
        .edge("write", "check")
    )

    await graph.compile(storage=storage).execute("run-1", {})

    assert seen == {"first": 1, "second": 2}


@pytest.mark.asyncio
async def test_completed_run_deletes_checkpoint(storage):
    graph = Graph().node("a", recorder([], "a", {"x": 1})).edge(START, "a").edge("a", END)

    await graph.compile(storage=storage).execute("run-1", {})

    assert "run-1" not in storage
    assert len(storage) == 0


@pytest.mark.asyncio
async def test_node_failure_propagates_and_keeps_prior_checkpoint(storage):
    visits = []

    async def boom(ctx):
        visits.append("boom")
        raise RuntimeError("boom")

    graph = (
        Graph()
        .node("ok", recorder(visits, "ok", {"ok": True}))
        .node("boom", boom)
        .edge(START, "ok")
        .edge("ok", "boom")
    )

    with pytest.raises(RuntimeError, match="boom"):
        await graph.compile(storage=storage).execute("run-1", {})

    checkpoint = await storage.load("run-1")
    assert checkpoint is not None
    assert checkpoint.active == ["boom"]
    assert checkpoint.suspended == []
    assert checkpoint.state == {"ok": True}


@pytest.mark.asyncio
async def test_failed_run_retries_failed_batch_on_next_call(storage):
    attempts = {"count": 0}

    async def flaky(ctx):
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise RuntimeError("transient")
        await ctx.update({"flaky": "ok"})

    visits = []
    graph = (
        Graph()
        .node("prepare", recorder(visits, "prepare", {"prepared": True}))
        .node("flaky", flaky)
        .edge(START, "prepare")
        .edge("prepare", "flaky")
    )
    engine = graph.compile(storage=storage)

    with pytest.raises(RuntimeError):
        await engine.execute("run-1", {})
    result = await engine.execute("run-1", {})

    assert visits == ["prepare"]
    assert result == {"prepared": True, "flaky": "ok"}


def test_duplicate_node_id_raises():
    graph = Graph().node("a", lambda ctx: None)

    with pytest.raises(ValueError):
        graph.node("a", lambda ctx: None)
    with pytest.raises(ValueError):
        graph.node(START, lambda ctx: None)
    with pytest.raises(ValueError):
        graph.node(END, lambda ctx: None)


def test_builder_accessors_are_read_only():
    graph = Graph().node("a", lambda ctx: None).edge(START, "a")

    assert set(graph.nodes) == {START, END, "a"}
    assert [edge.target for edge in graph.edges[START]] == ["a"]
    with pytest.raises(TypeError):
        graph.nodes["b"] = None  # type: ignore[index]


@pytest.mark.asyncio
async def test_compile_is_repeatable():
    calls = []
    graph = Graph().node("a", recorder([], "a", {"x": 1})).edge(START, "a").edge("a", END)

    first = graph.compile(storage=InMemoryCheckpointStorage(), on_start=lambda s, w: calls.append("first"))
    second = graph.compile(storage=InMemoryCheckpointStorage(), on_start=lambda s, w: calls.append("second"))

    assert isinstance(first, CompiledGraph)
    assert first is not second
    assert await first.execute("run-1", {}) == await second.execute("run-1", {})
    assert calls == ["first", "second"]


@pytest.mark.asyncio
async def test_compile_snapshots_definition(storage):
    visits = []
    graph = Graph().node("a", recorder(visits, "a")).edge(START, "a")
    engine = graph.compile(storage=storage)

    graph.node("b", recorder(visits, "b")).edge("a", "b")
    await engine.execute("run-1", {})

    assert visits == ["a"]


@pytest.mark.asyncio
async def test_compile_defaults_to_in_memory_storage(monkeypatch):
    monkeypatch.delenv("GRAPHFLOW_CHECKPOINT_DIR", raising=False)
    monkeypatch.setattr("graphflow.config.get_graphflow_config", lambda: {})

    engine = Graph().compile()

    assert isinstance(engine.storage, InMemoryCheckpointStorage)
