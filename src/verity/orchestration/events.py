"""Typed lifecycle events and the channel the engine publishes them on.

Collaborators subscribe either with a plain callback, invoked synchronously
in publication order, or with an ``asyncio.Queue`` they drain themselves::

    channel = EventChannel()
    channel.subscribe(lambda event: print(event.kind))
    queue = channel.open_queue()
    engine = ExecutionEngine(events=channel)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar


if TYPE_CHECKING:
    from verity.models import ExecutionPlan, ExecutionState, TestResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifecycleEvent:
    kind: ClassVar[str] = "event"


@dataclass(frozen=True)
class ExecutionStarted(LifecycleEvent):
    kind: ClassVar[str] = "execution_started"

    execution_id: str
    suite_id: str
    plan: ExecutionPlan


@dataclass(frozen=True)
class TestCompleted(LifecycleEvent):
    kind: ClassVar[str] = "test_completed"
    __test__ = False  # Prevent pytest from collecting this as a test class

    result: TestResult
    state: ExecutionState


@dataclass(frozen=True)
class ProgressUpdated(LifecycleEvent):
    kind: ClassVar[str] = "progress_updated"

    state: ExecutionState


@dataclass(frozen=True)
class ExecutionCompleted(LifecycleEvent):
    kind: ClassVar[str] = "execution_completed"

    execution_id: str
    state: ExecutionState


@dataclass(frozen=True)
class ExecutionCancelled(LifecycleEvent):
    kind: ClassVar[str] = "execution_cancelled"

    execution_id: str
    state: ExecutionState


@dataclass(frozen=True)
class ExecutionErrored(LifecycleEvent):
    kind: ClassVar[str] = "execution_error"

    state: ExecutionState
    error: BaseException


Listener = Callable[[LifecycleEvent], None]

# Marks the end of a queue stream after `close()`.
_CLOSED = object()


class EventChannel:
    """Fan-out of lifecycle events to subscribers."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._queues: list[asyncio.Queue[LifecycleEvent | object]] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def open_queue(self, maxsize: int = 0) -> asyncio.Queue[LifecycleEvent | object]:
        """Subscribe with a queue that receives every subsequent event.

        When a bounded queue is full the event is dropped for that queue and a
        warning is logged; the engine never blocks on a slow consumer.
        """
        queue: asyncio.Queue[LifecycleEvent | object] = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def close_queue(self, queue: asyncio.Queue[LifecycleEvent | object]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)
            self._offer(queue, _CLOSED)

    async def stream(self, queue: asyncio.Queue[LifecycleEvent | object]) -> AsyncIterator[LifecycleEvent]:
        """Iterate events from ``queue`` until it is closed."""
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]

    def publish(self, event: LifecycleEvent) -> None:
        """Deliver ``event`` to every subscriber.

        A listener that raises is logged and skipped; it does not affect the
        other subscribers or the publisher.
        """
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Lifecycle listener %r failed on %s", listener, event.kind)
        for queue in list(self._queues):
            self._offer(queue, event)

    def close(self) -> None:
        """Terminate every queue stream."""
        for queue in list(self._queues):
            self.close_queue(queue)

    def _offer(self, queue: asyncio.Queue[LifecycleEvent | object], item: LifecycleEvent | object) -> None:
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Dropping %s event for a full subscriber queue", getattr(item, "kind", item))
