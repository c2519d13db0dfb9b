import asyncio

import pytest

from relaybot.dispatch import DispatchQueue, QueueClosedError


class GatedWorker:
    """Processing function that blocks until its item is released."""

    def __init__(self) -> None:
        self.gates = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.started = []

    def gate(self, item):
        return self.gates.setdefault(item, asyncio.Event())

    async def __call__(self, item):
        self.started.append(item)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.gate(item).wait()
        finally:
            self.in_flight -= 1
        if isinstance(item, str) and item.startswith("fail"):
            raise RuntimeError(item)
        return f"done:{item}"


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_exactly_n_in_flight_until_released_and_all_resolve():
    queue = DispatchQueue(concurrency=3)
    worker = GatedWorker()
    futures = [queue.enqueue(i, worker) for i in range(8)]
    await _settle()

    assert worker.in_flight == 3
    assert queue.stats()["pending"] == 5

    for i in range(8):
        worker.gate(i).set()
        await _settle()
        assert worker.in_flight <= 3

    results = await asyncio.gather(*futures)
    assert results == [f"done:{i}" for i in range(8)]
    assert worker.max_in_flight == 3
    # FIFO admission across the whole queue.
    assert worker.started == list(range(8))
    assert queue.stats()["completed"] == 8


@pytest.mark.asyncio
async def test_failure_rejects_only_its_own_future():
    queue = DispatchQueue(concurrency=2)
    worker = GatedWorker()
    ok1 = queue.enqueue("a", worker)
    bad = queue.enqueue("fail-b", worker)
    ok2 = queue.enqueue("c", worker)
    for item in ("a", "fail-b", "c"):
        worker.gate(item).set()

    assert await ok1 == "done:a"
    with pytest.raises(RuntimeError, match="fail-b"):
        await bad
    assert await ok2 == "done:c"
    assert queue.stats()["failed"] == 1


@pytest.mark.asyncio
async def test_same_key_items_never_overlap_and_keep_order():
    queue = DispatchQueue(concurrency=3)
    worker = GatedWorker()
    first = queue.enqueue("42-first", worker, key="42")
    second = queue.enqueue("42-second", worker, key="42")
    other = queue.enqueue("7-only", worker, key="7")
    await _settle()

    # The second message of conversation 42 waits; conversation 7 proceeds.
    assert worker.started == ["42-first", "7-only"]

    worker.gate("42-first").set()
    await first
    await _settle()
    assert worker.started == ["42-first", "7-only", "42-second"]

    worker.gate("42-second").set()
    worker.gate("7-only").set()
    assert await second == "done:42-second"
    assert await other == "done:7-only"


@pytest.mark.asyncio
async def test_close_cancels_pending_and_rejects_new_work():
    queue = DispatchQueue(concurrency=1)
    worker = GatedWorker()
    running = queue.enqueue("run", worker)
    waiting = queue.enqueue("wait", worker)
    await _settle()

    closing = asyncio.create_task(queue.close())
    await _settle()
    worker.gate("run").set()
    await closing

    assert await running == "done:run"
    assert waiting.cancelled()
    with pytest.raises(QueueClosedError):
        queue.enqueue("late", worker)


@pytest.mark.asyncio
async def test_join_waits_for_drain():
    queue = DispatchQueue(concurrency=2)
    worker = GatedWorker()
    queue.enqueue(1, worker)
    queue.enqueue(2, worker)
    joiner = asyncio.create_task(queue.join())
    await _settle()
    assert not joiner.done()

    worker.gate(1).set()
    worker.gate(2).set()
    await asyncio.wait_for(joiner, timeout=1)
    assert queue.stats()["in_flight"] == 0


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        DispatchQueue(concurrency=0)
