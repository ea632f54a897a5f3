from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from sifapass.core.errors import ValidationFailed
from sifapass.models.activity import ActivityFilter
from sifapass.repos.activity_repo import InMemoryActivityRepo
from sifapass.services.activity_log import ActivityLog


class _BrokenRepo(InMemoryActivityRepo):
    async def add(self, entry) -> None:
        raise RuntimeError("database is down")


def test_record_and_query_newest_first() -> None:
    log = ActivityLog(InMemoryActivityRepo())
    tenant_id = uuid.uuid4()
    asyncio.run(log.record("credential_issued", "admin", {"n": 1}, tenant_id=tenant_id))
    asyncio.run(log.record("credential_verified", "10.0.0.1", {"n": 2}, tenant_id=tenant_id))
    page = asyncio.run(log.query(ActivityFilter(tenant_id=tenant_id)))
    assert page.total == 2
    assert [e.details["n"] for e in page.items] == [2, 1]


def test_missing_actor_recorded_as_anonymous() -> None:
    repo = InMemoryActivityRepo()
    asyncio.run(ActivityLog(repo).record("credential_verified", None))
    page = asyncio.run(repo.query(ActivityFilter(), 10, 0))
    assert page.items[0].actor == "anonymous"


def test_query_filters_by_kind_and_credential() -> None:
    log = ActivityLog(InMemoryActivityRepo())
    cid = uuid.uuid4()
    asyncio.run(log.record("credential_issued", "a", credential_id=cid))
    asyncio.run(log.record("credential_downloaded", "a", credential_id=cid))
    asyncio.run(log.record("credential_issued", "a", credential_id=uuid.uuid4()))
    page = asyncio.run(log.query(ActivityFilter(kind="credential_issued", credential_id=cid)))
    assert page.total == 1


def test_query_rejects_unknown_kind() -> None:
    with pytest.raises(ValidationFailed):
        asyncio.run(ActivityLog(InMemoryActivityRepo()).query(ActivityFilter(kind="nope")))


def test_record_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    log = ActivityLog(_BrokenRepo())
    with caplog.at_level(logging.ERROR, logger="sifapass.services.activity_log"):
        asyncio.run(log.record("credential_issued", "admin"))
    assert "Failed to record activity" in caplog.text


def test_reap_removes_entries_past_retention() -> None:
    repo = InMemoryActivityRepo()
    log = ActivityLog(repo)
    asyncio.run(log.record("credential_issued", "admin"))
    now = datetime.now(timezone.utc)
    assert asyncio.run(log.reap(90, now)) == 0
    assert asyncio.run(log.reap(90, now + timedelta(days=91))) == 1
    assert asyncio.run(repo.query(ActivityFilter(), 10, 0)).total == 0


class _SlowRepo(InMemoryActivityRepo):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def add(self, entry) -> None:
        await self.release.wait()
        await super().add(entry)


def test_deferred_record_returns_before_write_and_flush_persists() -> None:
    async def scenario() -> tuple[int, int, int]:
        repo = _SlowRepo()
        log = ActivityLog(repo, deferred=True)
        await asyncio.wait_for(log.record("credential_verified", "10.0.0.1"), timeout=1)
        before = (await repo.query(ActivityFilter(), 10, 0)).total
        repo.release.set()
        flushed = await log.flush()
        after = (await repo.query(ActivityFilter(), 10, 0)).total
        return before, flushed, after

    assert asyncio.run(scenario()) == (0, 1, 1)


def test_deferred_write_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    async def scenario() -> None:
        log = ActivityLog(_BrokenRepo(), deferred=True)
        await log.record("credential_issued", "admin")
        await log.flush()
        assert await log.flush() == 0

    with caplog.at_level(logging.ERROR, logger="sifapass.services.activity_log"):
        asyncio.run(scenario())
    assert "Failed to record activity" in caplog.text
