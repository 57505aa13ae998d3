"""
Output sinks for graph runs.

- QueueWriter: backs ``CompiledGraph.stream()``; events are queued and
  consumed through ``events()`` until the writer is closed.
- NullWriter: backs headless ``CompiledGraph.execute()``; drops everything.

Node bodies receive the writer of their run as ``ctx.writer`` and can push
arbitrary events of their own next to the engine's structural events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_CLOSED = object()


@runtime_checkable
class EventWriter(Protocol):
    """Sink contract shared by the engine and node bodies."""

    def write(self, event: Any) -> None:
        """Push one event to the sink."""

    def merge(self, stream: AsyncIterable[Any]) -> None:
        """Splice an externally produced async stream into the sink."""


class NullWriter:
    """Writer that discards every event."""

    def write(self, event: Any) -> None:
        pass

    def merge(self, stream: AsyncIterable[Any]) -> None:
        pass


class QueueWriter:
    """
    Writer backed by an ``asyncio.Queue``.

    ``close()`` waits for every merged stream to drain before ending the
    sequence, so events spliced in by a node are never cut off. A merged
    stream that fails is logged and its error is raised by ``events()`` once
    the queue is drained.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._merge_tasks: list[asyncio.Task[None]] = []
        self._merge_errors: list[BaseException] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: Any) -> None:
        if self._closed:
            logger.warning(f"Dropping event written after close: {event!r}")
            return
        self._queue.put_nowait(event)

    def merge(self, stream: AsyncIterable[Any]) -> None:
        if self._closed:
            logger.warning("Ignoring stream merged after close")
            return
        self._merge_tasks.append(asyncio.create_task(self._pump(stream)))

    async def _pump(self, stream: AsyncIterable[Any]) -> None:
        try:
            async for event in stream:
                self._queue.put_nowait(event)
        except Exception as e:
            logger.error(f"Merged stream failed: {e}")
            self._merge_errors.append(e)

    async def close(self) -> None:
        """Wait for merged streams, then end the event sequence."""
        if self._closed:
            return
        # Merged streams may merge further streams while draining
        while self._merge_tasks:
            pending = self._merge_tasks
            self._merge_tasks = []
            await asyncio.gather(*pending)
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def abort(self) -> None:
        """Cancel merged streams and end the sequence without draining."""
        for task in self._merge_tasks:
            task.cancel()
        self._merge_tasks = []
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[Any]:
        """Yield queued events until the writer is closed."""
        while True:
            event = await self._queue.get()
            if event is _CLOSED:
                break
            yield event
        if self._merge_errors:
            raise self._merge_errors[0]
