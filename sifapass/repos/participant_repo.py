from __future__ import annotations

import threading
from typing import Protocol
from uuid import UUID

from sifapass.core.errors import Conflict
from sifapass.models.participant import Participant


class ParticipantRepo(Protocol):
    async def add(self, participant: Participant) -> None: ...
    async def get(self, participant_id: UUID) -> Participant | None: ...
    async def get_by_email(self, email: str) -> Participant | None: ...


class InMemoryParticipantRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Participant] = {}
        self._by_email: dict[str, Participant] = {}
        self._lock = threading.Lock()

    async def add(self, participant: Participant) -> None:
        with self._lock:
            if participant.email in self._by_email:
                raise Conflict("A participant with this email already exists")
            self._by_id[participant.id] = participant
            self._by_email[participant.email] = participant

    async def get(self, participant_id: UUID) -> Participant | None:
        return self._by_id.get(participant_id)

    async def get_by_email(self, email: str) -> Participant | None:
        return self._by_email.get(email.strip().lower())

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
            self._by_email.clear()
