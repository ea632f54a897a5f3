from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from sifapass.core.errors import Conflict, NotFound
from sifapass.models.event import Event


class EventRepo(Protocol):
    async def add(self, event: Event) -> None: ...
    async def get(self, event_id: UUID) -> Event | None: ...
    async def code_exists(self, tenant_id: UUID, event_code: str) -> bool: ...
    async def add_participant(self, event_id: UUID, participant_id: UUID) -> Event: ...


class InMemoryEventRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Event] = {}
        self._lock = threading.Lock()

    async def add(self, event: Event) -> None:
        with self._lock:
            if event.event_code is not None and any(
                e.tenant_id == event.tenant_id and e.event_code == event.event_code
                for e in self._by_id.values()
            ):
                raise Conflict(f"Event code {event.event_code} is already in use")
            self._by_id[event.id] = event

    async def get(self, event_id: UUID) -> Event | None:
        return self._by_id.get(event_id)

    async def code_exists(self, tenant_id: UUID, event_code: str) -> bool:
        return any(
            e.tenant_id == tenant_id and e.event_code == event_code
            for e in self._by_id.values()
        )

    async def add_participant(self, event_id: UUID, participant_id: UUID) -> Event:
        """Register a participant; registering twice is a no-op."""
        with self._lock:
            e = self._by_id.get(event_id)
            if e is None:
                raise NotFound("Event not found")
            if participant_id in e.participant_ids:
                return e
            updated = replace(e, participant_ids=e.participant_ids + (participant_id,))
            self._by_id[event_id] = updated
            return updated

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
