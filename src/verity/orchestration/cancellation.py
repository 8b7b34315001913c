"""Cooperative cancellation shared between the engine, the executor and test bodies."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from verity.errors import OperationCancelled


class CancellationToken:
    """Read-only view of a :class:`CancellationSource`.

    Test bodies poll ``cancelled`` or await ``wait()``; only the owner of the
    source can trigger cancellation.
    """

    __slots__ = ("_source",)

    def __init__(self, source: CancellationSource) -> None:
        self._source = source

    @property
    def cancelled(self) -> bool:
        return self._source._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._source._reason

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""
        await self._source._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason or "cancelled")

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` on cancellation; returns a function that unregisters it.

        Runs immediately if the token is already cancelled.
        """
        if self.cancelled:
            callback()
            return lambda: None
        self._source._callbacks.append(callback)

        def unregister() -> None:
            try:
                self._source._callbacks.remove(callback)
            except ValueError:
                pass

        return unregister

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, reason={self.reason!r})"


class CancellationSource:
    """Owner side of a cancellation signal.

    A source created with a ``parent`` token is cancelled whenever the parent
    is; cancelling the child never affects the parent.
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []
        self.token = CancellationToken(self)
        self._unlink: Callable[[], None] | None = None
        if parent is not None:
            self._unlink = parent.register(lambda: self.cancel(parent.reason or "cancelled"))

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Request cancellation. Returns False if it was already requested."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return True

    def close(self) -> None:
        """Detach from the parent token."""
        if self._unlink is not None:
            self._unlink()
            self._unlink = None
