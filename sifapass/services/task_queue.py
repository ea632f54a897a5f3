"""Background task queue using Redis lists.

Webhook deliveries are the queue's only producer today: ``publish``
persists a pending delivery row and enqueues its ID on the
``webhook_delivery`` queue, and the worker pool pops IDs and sends them.
Only the ID travels through Redis; the delivery row in the database is
the durable record, so a lost queue entry is recovered by the retry
sweep rather than lost for good.

Producer: LPUSH onto ``tasks:<queue>``.  Consumer: BRPOP from the same
key.  Head-in, tail-out gives FIFO order.  BRPOP blocks inside Redis
until a task arrives or the timeout expires, so idle workers do not
spin.
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from sifapass.core.metrics import QUEUE_DEPTH
from sifapass.db.redis import redis_pool

WEBHOOK_QUEUE = "webhook_delivery"

_POLL_INTERVAL = 0.05


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:      unique identifier for tracking and logging
    queue:   which queue the task belongs to (e.g. "webhook_delivery")
    payload: JSON-serializable data the handler needs
    """

    id: str
    queue: str
    payload: dict


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: float = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-process queue for dev and tests.

    ``dequeue`` polls until the timeout instead of waiting on an
    asyncio primitive, so one queue can be shared by tests that each run
    their own event loop.
    """

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}
        self._lock = threading.Lock()

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        with self._lock:
            pending = self._queues.setdefault(queue, [])
            pending.append(task)
            QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def dequeue(self, queue: str, timeout: float = 0) -> Task | None:
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                pending = self._queues.get(queue, [])
                if pending:
                    task = pending.pop(0)
                    QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
                    return task
            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(_POLL_INTERVAL)

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))

    def pending(self, queue: str) -> list[Task]:
        """Test helper: tasks still waiting, oldest first."""
        return list(self._queues.get(queue, []))

    def clear(self) -> None:
        with self._lock:
            self._queues.clear()


class RedisTaskQueue:
    """Redis-backed task queue using LPUSH/BRPOP."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        task_json = json.dumps(
            {"id": task.id, "queue": task.queue, "payload": task.payload}
        )
        depth = await self._redis.lpush(f"{self._PREFIX}{queue}", task_json)
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return task

    async def dequeue(self, queue: str, timeout: float = 5) -> Task | None:
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        return Task(**json.loads(task_json))

    async def queue_length(self, queue: str) -> int:
        length = await self._redis.llen(f"{self._PREFIX}{queue}")
        QUEUE_DEPTH.labels(queue_name=queue).set(length)
        return length


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
