from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from sifapass.models.activity import ActivityEntry
from sifapass.models.principal import Principal
from sifapass.services import container
from sifapass.services.issuance import IssueRequest
from tests.conftest import create_test_event, create_test_participant, create_test_tenant


def _issued():
    tenant = create_test_tenant()
    participant = create_test_participant(tenant)
    event = create_test_event(tenant, participants=[participant])
    principal = Principal(user_id="admin@example.test", tenant_id=tenant.id, roles=frozenset())
    req = IssueRequest(participant_id=participant.id, event_id=event.id, title="T", type="award")
    return asyncio.run(container.coordinator.issue(req, principal))


def _force_generating(c, age: timedelta):
    repo = container.credential_repo
    stuck = replace(c, status="generating", updated_at=datetime.now(timezone.utc) - age)
    repo._by_id[c.id] = stuck
    return stuck


def test_sweep_marks_old_generating_records_failed() -> None:
    c = _force_generating(_issued(), timedelta(minutes=20))
    swept = asyncio.run(container.janitor.sweep_stuck())
    assert swept == 1
    stored = asyncio.run(container.credential_repo.get(c.id))
    assert stored is not None
    assert stored.status == "failed"
    assert stored.error_code == "DeadlineExceeded"
    assert stored.error_detail is not None and stored.error_detail["retriable"] is True


def test_sweep_leaves_recent_generating_alone() -> None:
    c = _force_generating(_issued(), timedelta(minutes=1))
    assert asyncio.run(container.janitor.sweep_stuck()) == 0
    stored = asyncio.run(container.credential_repo.get(c.id))
    assert stored is not None and stored.status == "generating"


def test_run_once_reports_every_job() -> None:
    _force_generating(_issued(), timedelta(hours=1))
    old = replace(
        ActivityEntry.new(kind="credential_verified", actor="1.2.3.4"),
        created_at=datetime.now(timezone.utc) - timedelta(days=100),
    )
    asyncio.run(container.activity_repo.add(old))

    results = asyncio.run(container.janitor.run_once())
    assert results == {
        "stuck_generating": 1,
        "activity": 1,
        "webhook_deliveries": 0,
        "webhook_retries": 0,
    }


def test_run_once_keeps_going_when_a_job_fails(monkeypatch) -> None:
    async def _broken(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(container.activity_log, "reap", _broken)
    _force_generating(_issued(), timedelta(hours=1))
    results = asyncio.run(container.janitor.run_once())
    assert results["activity"] == 0
    assert results["stuck_generating"] == 1


def test_run_stops_when_event_is_set() -> None:
    async def _run():
        stop = asyncio.Event()
        stop.set()
        await asyncio.wait_for(container.janitor.run(stop, interval=0.01), timeout=2)

    asyncio.run(_run())
