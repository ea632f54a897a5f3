"""In-memory task queue tests.

Verifies:
1. Tasks come out in FIFO order per queue
2. dequeue with a timeout returns None when nothing arrives
3. A task enqueued while a consumer waits is picked up
"""

from __future__ import annotations

import asyncio
import time

from sifapass.services.task_queue import WEBHOOK_QUEUE, InMemoryTaskQueue, TaskQueue


def test_fifo_per_queue() -> None:
    q = InMemoryTaskQueue()

    async def _go():
        for i in range(3):
            await q.enqueue(WEBHOOK_QUEUE, {"n": i})
        await q.enqueue("other", {"n": 99})
        assert await q.queue_length(WEBHOOK_QUEUE) == 3
        return [(await q.dequeue(WEBHOOK_QUEUE)).payload["n"] for _ in range(3)]

    assert asyncio.run(_go()) == [0, 1, 2]
    assert [t.payload for t in q.pending("other")] == [{"n": 99}]


def test_dequeue_times_out_with_none() -> None:
    q = InMemoryTaskQueue()
    start = time.monotonic()
    assert asyncio.run(q.dequeue(WEBHOOK_QUEUE, timeout=0.1)) is None
    assert time.monotonic() - start >= 0.1


def test_waiting_consumer_sees_late_task() -> None:
    q = InMemoryTaskQueue()

    async def _go():
        consumer = asyncio.create_task(q.dequeue(WEBHOOK_QUEUE, timeout=2))
        await asyncio.sleep(0.05)
        await q.enqueue(WEBHOOK_QUEUE, {"delivery_id": "d1"})
        return await consumer

    task = asyncio.run(_go())
    assert task is not None and task.payload == {"delivery_id": "d1"}
    assert task.queue == WEBHOOK_QUEUE


def test_in_memory_queue_satisfies_protocol() -> None:
    assert isinstance(InMemoryTaskQueue(), TaskQueue)
