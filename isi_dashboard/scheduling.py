"""
isi_dashboard.scheduling — Cancellation tokens and the single-operation slot.

The scenario controller never runs more than one operation (debounce wait,
request, retry backoff) at a time. OperationSlot owns the one "current
operation" handle: starting a new operation first invalidates the previous
token and cancels its task, so a superseded operation can neither change
state nor have its late response accepted.

"Last request wins" is therefore a property of the slot, not a convention
each call site has to remember.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

Sleep = Callable[[float], Awaitable[None]]
"""Timer primitive. Seconds in, resumes after the delay. asyncio.sleep by default."""


class OperationCancelled(Exception):
    """Raised by CancellationToken.raise_if_cancelled() once superseded."""


class CancellationToken:
    """Cooperative cancellation flag for one operation."""

    __slots__ = ("generation", "_cancelled")

    def __init__(self, generation: int) -> None:
        self.generation = generation
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(f"operation {self.generation} superseded")

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"<CancellationToken {self.generation} {state}>"


class OperationSlot:
    """Holds the single current operation of its owner."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._token: CancellationToken | None = None
        self._task: asyncio.Task[Any] | None = None

    @property
    def token(self) -> CancellationToken | None:
        return self._token

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_current(self, token: CancellationToken) -> bool:
        return token is self._token and not token.cancelled

    def invalidate(self) -> None:
        """Cancel the current operation, if any. Idempotent."""
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def begin(self) -> CancellationToken:
        """Invalidate the current operation and hand out a fresh token."""
        self.invalidate()
        self._token = CancellationToken(next(self._counter))
        return self._token

    def start(
        self,
        factory: Callable[[CancellationToken], Coroutine[Any, Any, Any]],
    ) -> CancellationToken:
        """Begin a new operation and schedule `factory(token)` on the running loop."""
        token = self.begin()
        self._task = asyncio.get_running_loop().create_task(factory(token))
        return token

    async def wait(self) -> None:
        """Wait until the current operation, or any operation that replaced it, finishes."""
        while self._task is not None and not self._task.done():
            task = self._task
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                # A superseded task ends cancelled; anything else is our own cancellation.
                if not task.cancelled():
                    raise
