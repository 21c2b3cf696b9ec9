"""Composable cancellation scopes.

A CancellationScope is cancelled explicitly, by any of its parent scopes, or
by its own timeout, whichever comes first. Gateway calls derive a child scope
from the caller's run scope plus the request timeout, so navigating away and
a stalled provider abort a request the same way.

Example:
    run = CancellationScope()
    with CancellationScope(run, timeout=120) as scope:
        text = await scope.guard(client.post(...))
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from feedai.exceptions import RequestCancelled

T = TypeVar("T")

CancelCallback = Callable[[RequestCancelled], None]


class CancellationScope:
    def __init__(
        self,
        *parents: Optional["CancellationScope"],
        timeout: Optional[float] = None,
    ) -> None:
        self._reason: Optional[str] = None
        self._callbacks: dict[int, CancelCallback] = {}
        self._next_id = 0
        self._detach: list[Callable[[], None]] = []
        self._timer: Optional[asyncio.TimerHandle] = None

        for parent in parents:
            if parent is None:
                continue
            if parent.cancelled:
                self.cancel(parent.reason or "cancelled")
                break
            self._detach.append(parent.on_cancel(lambda exc: self.cancel(exc.reason)))

        if timeout is not None and not self.cancelled:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(timeout, self.cancel, f"timed out after {timeout:g}s")

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the scope. Calling it again is a no-op."""
        if self._reason is not None:
            return
        self._reason = reason
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        callbacks = list(self._callbacks.values())
        self._callbacks.clear()
        for callback in callbacks:
            callback(RequestCancelled(reason))

    def on_cancel(self, callback: CancelCallback) -> Callable[[], None]:
        """Register a callback fired once on cancellation; returns an unregister function."""
        if self.cancelled:
            callback(RequestCancelled(self._reason or "cancelled"))
            return lambda: None
        handle = self._next_id
        self._next_id += 1
        self._callbacks[handle] = callback
        return lambda: self._callbacks.pop(handle, None)

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise RequestCancelled(self._reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, aborting it with RequestCancelled if the scope fires first."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        unregister = self.on_cancel(lambda exc: task.cancel())
        try:
            return await task
        except asyncio.CancelledError:
            if self.cancelled and task.cancelled():
                raise RequestCancelled(self._reason or "cancelled") from None
            raise
        finally:
            unregister()

    def close(self) -> None:
        """Detach from parents and stop the timer without cancelling."""
        for detach in self._detach:
            detach()
        self._detach.clear()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __enter__(self) -> "CancellationScope":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
