import asyncio

import pytest

from facility_scraper.errors import StoreUnavailableError
from facility_scraper.resilience.work_queue import BoundedWorkQueue


class Tracker:
    def __init__(self):
        self.active = 0
        self.max_active = 0
        self.done = []

    def task(self, name, delay=0.01, error=None):
        async def run():
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                await asyncio.sleep(delay)
                if error is not None:
                    raise error
                self.done.append(name)
            finally:
                self.active -= 1
        return run


@pytest.mark.asyncio
async def test_never_exceeds_concurrency():
    tracker = Tracker()
    queue = BoundedWorkQueue(3)
    for i in range(10):
        queue.submit(tracker.task(i))

    await queue.join()

    assert tracker.max_active == 3
    assert queue.max_in_flight == 3
    assert sorted(tracker.done) == list(range(10))
    assert queue.completed == 10


@pytest.mark.asyncio
async def test_failing_task_does_not_affect_others():
    tracker = Tracker()
    queue = BoundedWorkQueue(2)
    queue.submit(tracker.task("a"))
    queue.submit(tracker.task("b", error=ValueError("boom")))
    queue.submit(tracker.task("c"))

    await queue.join()

    assert sorted(tracker.done) == ["a", "c"]
    assert queue.errored == 1
    assert queue.completed == 2


@pytest.mark.asyncio
async def test_fatal_error_stops_remaining_tasks():
    tracker = Tracker()
    queue = BoundedWorkQueue(1)
    queue.submit(tracker.task("a"))
    queue.submit(tracker.task("b", error=StoreUnavailableError("disk full")))
    for name in ("c", "d", "e"):
        queue.submit(tracker.task(name))

    with pytest.raises(StoreUnavailableError):
        await queue.join()

    assert tracker.done == ["a"]
    assert queue.skipped == 3


@pytest.mark.asyncio
async def test_join_without_tasks_returns():
    queue = BoundedWorkQueue(4)
    await queue.join()
    assert queue.get_stats()["completed"] == 0


@pytest.mark.asyncio
async def test_submit_after_close_raises():
    async with BoundedWorkQueue(2) as queue:
        queue.submit(Tracker().task("a"))
        await queue.join()

    with pytest.raises(RuntimeError):
        queue.submit(Tracker().task("b"))


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        BoundedWorkQueue(0)
