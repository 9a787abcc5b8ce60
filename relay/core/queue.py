"""FIFO job queues keyed by an arbitrary string (usually a customer id)."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger("relay.core.queue")

Job = Callable[[], Awaitable[None]]


class KeyedTaskQueue:
    """Runs jobs one at a time per key; different keys run concurrently.

    A worker task is started lazily for a key and exits once its queue is
    empty. A failing job is logged and the next job for the key still runs.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[Job]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}

    @property
    def active_keys(self) -> int:
        return len(self._workers)

    def submit(self, key: str, job: Job) -> None:
        self._queues.setdefault(key, deque()).append(job)
        if key not in self._workers:
            self._workers[key] = asyncio.get_running_loop().create_task(self._run(key))

    async def _run(self, key: str) -> None:
        queue = self._queues[key]
        try:
            while queue:
                job = queue.popleft()
                try:
                    await job()
                except Exception:  # noqa: BLE001
                    logger.exception("Job for %s failed", key)
        finally:
            self._workers.pop(key, None)
            if not queue:
                self._queues.pop(key, None)

    async def join(self) -> None:
        """Wait until every queued job has finished."""

        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def close(self) -> None:
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._queues.clear()
