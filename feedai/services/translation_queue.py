"""Translation Queue - Batched Worker Pool for Title Translation

Tasks submitted by a list view go into one shared, deduplicated queue.
Up to ``concurrency`` workers drain it in batches of ``batch_size``; each
batch costs at most one provider call (see TitleTranslator), and each task's
result is delivered once, through its future and the optional ``on_result``
callback.

A pool has one *run* at a time. Switching lists calls ``reset()``, which
cancels the run's scope (aborting in-flight requests and queued gate
admissions), empties the queue and dedup set, cancels the futures of
undelivered tasks and starts a fresh run. Workers of the old run notice the
cancelled scope after their current call returns and exit without
delivering anything.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Iterable, Optional, Protocol, Sequence

from feedai.config import get_settings
from feedai.schemas.translation import TranslationResult, TranslationTask
from feedai.services.cancellation import CancellationScope

logger = logging.getLogger(__name__)

ResultCallback = Callable[[TranslationResult], None]


class BatchResolver(Protocol):
    def translate_batch(
        self,
        tasks: Sequence[TranslationTask],
        token: Optional[CancellationScope] = None,
    ) -> Awaitable[list[TranslationResult]]: ...


class TranslationWorkerPool:
    def __init__(
        self,
        resolver: BatchResolver,
        concurrency: Optional[int] = None,
        batch_size: Optional[int] = None,
        on_result: Optional[ResultCallback] = None,
        name: str = "titles",
    ) -> None:
        settings = get_settings()
        self.resolver = resolver
        self.concurrency = concurrency or settings.translation_workers
        self.batch_size = batch_size or settings.translation_batch_size
        self.on_result = on_result
        self.name = name

        self._queue: deque[TranslationTask] = deque()
        self._queued_ids: set[str] = set()
        self._futures: dict[str, asyncio.Future] = {}
        self._workers: set[asyncio.Task] = set()
        self._scope = CancellationScope()

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def active_workers(self) -> int:
        return len(self._workers)

    @property
    def scope(self) -> CancellationScope:
        return self._scope

    def is_queued(self, task_id: str) -> bool:
        return task_id in self._queued_ids

    def has_pending(self, task_id: str) -> bool:
        """True while the task is queued or its batch is in flight."""
        future = self._futures.get(task_id)
        return future is not None and not future.done()

    def submit(self, tasks: Iterable[TranslationTask]) -> list[asyncio.Future]:
        """Queue tasks not already waiting and top the workers up to the limit.

        Returns one future per submitted task. A task whose id is already
        queued or in flight shares the existing future.
        """
        loop = asyncio.get_running_loop()
        futures = []
        added = 0
        for task in tasks:
            future = self._futures.get(task.id)
            if future is None or future.done():
                future = loop.create_future()
                self._futures[task.id] = future
            futures.append(future)

            if task.id in self._queued_ids:
                continue
            self._queue.append(task)
            self._queued_ids.add(task.id)
            added += 1

        while len(self._workers) < self.concurrency and self._queue:
            self._start_worker()

        if added:
            logger.debug(
                f"[{self.name}] queued {added} tasks "
                f"(pending={len(self._queue)}, workers={len(self._workers)})"
            )
        return futures

    def reset(self) -> None:
        """Cancel the current run and start a new, empty one. Idempotent."""
        self._scope.cancel("run superseded")
        self._queue.clear()
        self._queued_ids.clear()
        for future in self._futures.values():
            if not future.done():
                future.cancel()
        self._futures.clear()
        # Old-run workers drop out of the count now; they exit on their own.
        self._workers = set()
        self._scope = CancellationScope()

    cancel = reset

    async def join(self) -> None:
        """Wait until the current run's workers have drained the queue."""
        while self._workers:
            await asyncio.gather(*list(self._workers), return_exceptions=True)

    async def shutdown(self) -> None:
        workers = list(self._workers)
        self.reset()
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    def _start_worker(self) -> None:
        scope = self._scope
        workers = self._workers
        worker = asyncio.create_task(self._worker(scope))
        workers.add(worker)
        worker.add_done_callback(workers.discard)

    async def _worker(self, scope: CancellationScope) -> None:
        while self._queue and not scope.cancelled:
            batch = [self._queue.popleft() for _ in range(min(self.batch_size, len(self._queue)))]
            for task in batch:
                self._queued_ids.discard(task.id)

            try:
                results = await self.resolver.translate_batch(batch, token=scope)
            except Exception as e:
                logger.exception(f"[{self.name}] batch of {len(batch)} failed unexpectedly")
                results = [
                    TranslationResult(
                        task_id=task.id,
                        translated_text=task.source_text,
                        failed=True,
                        error_message=str(e) or type(e).__name__,
                    )
                    for task in batch
                ]

            if scope.cancelled:
                return

            for result in results:
                self._deliver(result)

            # Let other workers and submitters run between batches
            await asyncio.sleep(0)

    def _deliver(self, result: TranslationResult) -> None:
        future = self._futures.get(result.task_id)
        if future is None or future.done():
            return
        if not self.is_queued(result.task_id):
            del self._futures[result.task_id]
        future.set_result(result)
        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception:
                logger.exception(f"[{self.name}] on_result callback failed for {result.task_id}")
