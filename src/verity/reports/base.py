"""Base reporter interface for lifecycle events."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

from verity.orchestration.events import (
    EventChannel,
    ExecutionCancelled,
    ExecutionCompleted,
    ExecutionErrored,
    ExecutionStarted,
    LifecycleEvent,
    TestCompleted,
)


if TYPE_CHECKING:
    from verity.models import ExecutionState


class Reporter(ABC):
    """Consumes engine events; subclasses render them somewhere."""

    def attach(self, channel: EventChannel) -> Callable[[], None]:
        """Subscribe to ``channel``; returns a function that detaches again."""
        return channel.subscribe(self.handle)

    def handle(self, event: LifecycleEvent) -> None:
        match event:
            case ExecutionStarted():
                self.on_execution_started(event)
            case TestCompleted():
                self.on_test_complete(event)
            case ExecutionCancelled():
                self.on_execution_cancelled(event.state)
            case ExecutionErrored():
                self.on_execution_error(event.state, event.error)
            case ExecutionCompleted():
                self.on_execution_complete(event.state)

    @abstractmethod
    def on_execution_started(self, event: ExecutionStarted) -> None: ...

    @abstractmethod
    def on_test_complete(self, event: TestCompleted) -> None: ...

    @abstractmethod
    def on_execution_complete(self, state: ExecutionState) -> None: ...

    def on_execution_cancelled(self, state: ExecutionState) -> None:
        return None

    def on_execution_error(self, state: ExecutionState, error: BaseException) -> None:
        return None
