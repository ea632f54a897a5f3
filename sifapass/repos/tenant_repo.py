from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sifapass.models.tenant import BILLING_PERIOD, UNLIMITED, Tenant, Usage


class TenantRepo(Protocol):
    async def get(self, tenant_id: UUID) -> Tenant | None: ...
    async def add(self, tenant: Tenant) -> None: ...
    async def save(self, tenant: Tenant) -> None: ...
    async def roll_period(self, tenant_id: UUID, now: datetime) -> Tenant | None: ...
    async def deduct_credit(self, tenant_id: UUID) -> int | None: ...
    async def increment_usage(
        self, tenant_id: UUID, counter: str, limit: int
    ) -> int | None: ...


def _bump(usage: Usage, counter: str) -> Usage:
    return replace(usage, **{counter: usage.get(counter) + 1})


class InMemoryTenantRepo:
    """Tenant store for dev and tests.

    Every mutation happens under one lock, so a check and its increment
    are observed together by concurrent admissions.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, Tenant] = {}
        self._lock = threading.Lock()

    async def get(self, tenant_id: UUID) -> Tenant | None:
        return self._by_id.get(tenant_id)

    async def add(self, tenant: Tenant) -> None:
        with self._lock:
            if tenant.id in self._by_id:
                raise ValueError("tenant already exists")
            self._by_id[tenant.id] = tenant

    async def save(self, tenant: Tenant) -> None:
        with self._lock:
            self._by_id[tenant.id] = tenant

    async def roll_period(self, tenant_id: UUID, now: datetime) -> Tenant | None:
        """Start a new billing period if the current one has ended."""
        with self._lock:
            t = self._by_id.get(tenant_id)
            if t is None:
                return None
            if t.period_end is not None and t.period_end <= now:
                t = replace(
                    t,
                    period_start=now,
                    period_end=now + BILLING_PERIOD,
                    usage=Usage(),
                )
                self._by_id[tenant_id] = t
            return t

    async def deduct_credit(self, tenant_id: UUID) -> int | None:
        """Take one credit and count one issued credential.

        Returns the remaining balance, or None when no credit was left.
        """
        with self._lock:
            t = self._by_id.get(tenant_id)
            if t is None or t.credits < 1:
                return None
            updated = replace(
                t,
                credits=t.credits - 1,
                usage=_bump(t.usage, "credentials_issued"),
                lifetime_usage=_bump(t.lifetime_usage, "credentials_issued"),
            )
            self._by_id[tenant_id] = updated
            return updated.credits

    async def increment_usage(
        self, tenant_id: UUID, counter: str, limit: int
    ) -> int | None:
        """Advance a period counter if it is still below ``limit``.

        Returns the new counter value, or None when the ceiling was hit.
        """
        with self._lock:
            t = self._by_id.get(tenant_id)
            if t is None:
                return None
            current = t.usage.get(counter)
            if limit != UNLIMITED and current >= limit:
                return None
            updated = replace(
                t,
                usage=_bump(t.usage, counter),
                lifetime_usage=_bump(t.lifetime_usage, counter),
            )
            self._by_id[tenant_id] = updated
            return updated.usage.get(counter)

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
