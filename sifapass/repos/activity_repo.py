from __future__ import annotations

import threading
from datetime import datetime
from typing import Protocol

from sifapass.models.activity import ActivityEntry, ActivityFilter
from sifapass.models.page import Page


class ActivityRepo(Protocol):
    async def add(self, entry: ActivityEntry) -> None: ...
    async def query(
        self, flt: ActivityFilter, limit: int, offset: int
    ) -> Page[ActivityEntry]: ...
    async def delete_older_than(self, cutoff: datetime) -> int: ...


def _matches(e: ActivityEntry, flt: ActivityFilter) -> bool:
    if flt.tenant_id is not None and e.tenant_id != flt.tenant_id:
        return False
    if flt.kind is not None and e.kind != flt.kind:
        return False
    if flt.credential_id is not None and e.credential_id != flt.credential_id:
        return False
    return True


class InMemoryActivityRepo:
    """Append-only list of entries; only the janitor removes anything."""

    def __init__(self) -> None:
        self._entries: list[ActivityEntry] = []
        self._lock = threading.Lock()

    async def add(self, entry: ActivityEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    async def query(
        self, flt: ActivityFilter, limit: int, offset: int
    ) -> Page[ActivityEntry]:
        with self._lock:
            matching = [e for e in reversed(self._entries) if _matches(e, flt)]
        return Page(
            items=matching[offset : offset + limit],
            total=len(matching),
            limit=limit,
            offset=offset,
        )

    async def delete_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.created_at >= cutoff]
            return before - len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
