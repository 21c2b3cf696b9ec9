"""Request Gate - Admission Control for AI Provider Calls

This module provides the semaphore that bounds how many requests to the AI
provider are in flight at once. Every feature (title batches, full-text
translation, summaries) goes through the same gate, so the provider never
sees more than ``limit`` concurrent calls from this process.

Unlike asyncio.Semaphore, the gate:
- admits waiters in strict FIFO order
- hands a released slot directly to the next waiter (``active`` stays
  incremented, so there is no window where a slot is free but ungranted)
- removes a waiter whose cancellation scope fires while queued, without
  charging it a slot

The process-wide gate is created lazily on first use and sized by
settings.ai_concurrency.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from feedai.config import get_settings
from feedai.services.cancellation import CancellationScope

logger = logging.getLogger(__name__)


class RequestGate:
    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.active = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self, scope: Optional[CancellationScope] = None) -> None:
        """Take one slot, waiting in FIFO order if the gate is full.

        Raises:
            RequestCancelled: If ``scope`` fires before a slot is granted.
                No slot is held in that case.
        """
        if scope is not None:
            scope.raise_if_cancelled()

        if self.active < self.limit and not self._waiters:
            self.active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)

        def _abort(exc: Exception) -> None:
            if not waiter.done():
                waiter.set_exception(exc)

        unregister = scope.on_cancel(_abort) if scope is not None else None
        try:
            await waiter
        except BaseException:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # Granted and cancelled in the same tick: pass the slot on.
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise
        finally:
            if unregister is not None:
                unregister()

    def release(self) -> None:
        """Return a slot, handing it to the oldest live waiter if there is one."""
        if self.active <= 0:
            raise RuntimeError("release() called more times than acquire()")
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self.active -= 1

    @asynccontextmanager
    async def slot(self, scope: Optional[CancellationScope] = None) -> AsyncIterator[None]:
        await self.acquire(scope)
        try:
            yield
        finally:
            self.release()


# Process-wide gate shared by every feature
_request_gate: Optional[RequestGate] = None


def get_request_gate() -> RequestGate:
    """Return the shared gate, creating it from settings.ai_concurrency on first use."""
    global _request_gate
    if _request_gate is None:
        _request_gate = RequestGate(get_settings().ai_concurrency)
        logger.info(f"Request gate initialized with limit {_request_gate.limit}")
    return _request_gate
