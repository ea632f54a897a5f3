"""Per-tenant admission control for billable operations.

    admit(tenant_id, kind) -> Admission(ok, reason, deducted, remaining)

kind is one of ``credential-issue``, ``event-create``, ``participant-add``.

PREPAID CREDITS
  Only ``credential-issue`` is metered.  One credit is taken and the
  issued counters advance in a single atomic repository call; at zero
  credits the answer is InsufficientCredits.  Other kinds pass freely.

SUBSCRIPTION
  The subscription must be active or trialing (SubscriptionInactive
  otherwise).  A period whose end has passed is rolled over first, which
  resets the period counters.  The relevant counter is then advanced
  only while it is below the plan ceiling (-1 = unlimited), again in one
  atomic call; at the ceiling the answer is LimitReached.

UNCONFIGURED
  A tenant with no billing mode gets BillingNotConfigured.

The gate never raises for a refusal; callers turn ``reason`` into the
matching error with ``error_for_code``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sifapass.core.errors import InvalidReference, ValidationFailed
from sifapass.core.metrics import QUOTA_REJECTIONS
from sifapass.models.tenant import COUNTER_FOR_KIND, UNLIMITED
from sifapass.repos.tenant_repo import TenantRepo

logger = logging.getLogger(__name__)

ADMISSION_KINDS = tuple(COUNTER_FOR_KIND)
ACTIVE_STATUSES = ("active", "trialing")


@dataclass(frozen=True, slots=True)
class Admission:
    """ok: admitted.  reason: error code when refused.

    deducted: credits taken (prepaid) or counter slots consumed.
    remaining: credits or slots left afterwards; None means unlimited.
    """

    ok: bool
    reason: str | None = None
    deducted: int = 0
    remaining: int | None = None


class QuotaGate:
    def __init__(self, tenants: TenantRepo) -> None:
        self._tenants = tenants

    async def admit(self, tenant_id: UUID, kind: str) -> Admission:
        if kind not in ADMISSION_KINDS:
            raise ValidationFailed(f"Unknown admission kind {kind!r}")
        tenant = await self._tenants.get(tenant_id)
        if tenant is None:
            raise InvalidReference("Tenant not found")

        if tenant.billing_mode == "prepaid-credits":
            if kind != "credential-issue":
                return Admission(ok=True, remaining=tenant.credits)
            remaining = await self._tenants.deduct_credit(tenant_id)
            if remaining is None:
                return self._refuse(tenant_id, kind, "InsufficientCredits", remaining=0)
            return Admission(ok=True, deducted=1, remaining=remaining)

        if tenant.billing_mode == "subscription":
            if tenant.subscription_status not in ACTIVE_STATUSES:
                return self._refuse(tenant_id, kind, "SubscriptionInactive")
            tenant = await self._tenants.roll_period(
                tenant_id, datetime.now(timezone.utc)
            ) or tenant
            limit = tenant.limit_for(kind)
            counter = COUNTER_FOR_KIND[kind]
            used = await self._tenants.increment_usage(tenant_id, counter, limit)
            if used is None:
                return self._refuse(tenant_id, kind, "LimitReached", remaining=0)
            remaining = None if limit == UNLIMITED else limit - used
            return Admission(ok=True, deducted=1, remaining=remaining)

        return self._refuse(tenant_id, kind, "BillingNotConfigured")

    def _refuse(
        self,
        tenant_id: UUID,
        kind: str,
        reason: str,
        remaining: int | None = None,
    ) -> Admission:
        QUOTA_REJECTIONS.labels(reason=reason).inc()
        logger.info(
            "Admission refused tenant=%s kind=%s reason=%s", tenant_id, kind, reason
        )
        return Admission(ok=False, reason=reason, remaining=remaining)
