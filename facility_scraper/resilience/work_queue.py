"""
Bounded work queue.
A fixed pool of asyncio workers draining a queue of zero-argument tasks.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from ..errors import FatalCrawlError

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[None]]


class BoundedWorkQueue:
    """
    Runs submitted tasks with at most `concurrency` in flight.

    A task that raises is logged and counted; it never stops the other
    tasks. A FatalCrawlError is the exception: the queue stops starting
    new tasks and join() re-raises it once in-flight tasks are done.
    """

    def __init__(self, concurrency: int, name: str = "crawl"):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency
        self.name = name
        self._queue: "asyncio.Queue[Task]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._closed = False
        self._active = 0
        self._max_active = 0
        self._fatal: Optional[FatalCrawlError] = None

        self.completed = 0
        self.errored = 0
        self.skipped = 0

    @property
    def in_flight(self) -> int:
        return self._active

    @property
    def max_in_flight(self) -> int:
        return self._max_active

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _start_workers(self):
        for index in range(self.concurrency):
            self._workers.append(
                asyncio.create_task(self._worker(), name=f"{self.name}-worker-{index}")
            )

    def submit(self, task: Task):
        """
        Queue a unit of work.

        Args:
            task: Zero-argument coroutine function
        """
        if self._closed:
            raise RuntimeError("Cannot submit to a closed work queue")
        if not self._workers:
            self._start_workers()
        self._queue.put_nowait(task)

    def abort(self, error: FatalCrawlError):
        """Stop starting queued tasks; join() will raise `error`."""
        if self._fatal is None:
            self._fatal = error

    async def _worker(self):
        while True:
            task = await self._queue.get()
            try:
                if self._fatal is not None:
                    self.skipped += 1
                    continue

                self._active += 1
                self._max_active = max(self._max_active, self._active)
                try:
                    await task()
                finally:
                    self._active -= 1
                self.completed += 1
            except FatalCrawlError as e:
                logger.error("Fatal error in %s queue, aborting remaining work: %s", self.name, e)
                self.errored += 1
                self.abort(e)
            except Exception:
                logger.exception("Task failed in %s queue", self.name)
                self.errored += 1
            finally:
                self._queue.task_done()

    async def join(self):
        """
        Wait until every submitted task has completed (or been skipped).

        Raises:
            FatalCrawlError: If a task aborted the run
        """
        await self._queue.join()
        await self.close()
        if self._fatal is not None:
            raise self._fatal

    async def close(self):
        """Stop the workers. Queued tasks that never started are dropped."""
        self._closed = True
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def __aenter__(self) -> "BoundedWorkQueue":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def get_stats(self) -> dict:
        return {
            'concurrency': self.concurrency,
            'completed': self.completed,
            'errored': self.errored,
            'skipped': self.skipped,
            'pending': self.pending,
            'max_in_flight': self._max_active,
        }
