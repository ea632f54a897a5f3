"""Process-wide collaborators, built once at import.

Same conditional pattern as the cache and task queue singletons:

  DATABASE_URL set    -> Pg* repositories on the async session factory
  DATABASE_URL unset  -> in-memory repositories (dev and tests)
  CLOUDINARY_URL set  -> CloudinaryObjectStore
  CLOUDINARY_URL unset -> InMemoryObjectStore

Routers and the worker import the objects below; nothing else constructs
repositories or services.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sifapass.core.config import SETTINGS
from sifapass.db.engine import async_session_factory
from sifapass.repos.activity_repo import ActivityRepo, InMemoryActivityRepo
from sifapass.repos.credential_repo import CredentialRepo, InMemoryCredentialRepo
from sifapass.repos.event_repo import EventRepo, InMemoryEventRepo
from sifapass.repos.participant_repo import InMemoryParticipantRepo, ParticipantRepo
from sifapass.repos.template_repo import InMemoryTemplateRepo, TemplateRepo
from sifapass.repos.tenant_repo import InMemoryTenantRepo, TenantRepo
from sifapass.repos.webhook_repo import InMemoryWebhookRepo, WebhookRepo
from sifapass.services.activity_log import ActivityLog
from sifapass.services.batch import BatchIssuer
from sifapass.services.cache import cache_service
from sifapass.services.issuance import IssuanceCoordinator
from sifapass.services.janitor import Janitor
from sifapass.services.object_store import (
    CloudinaryObjectStore,
    InMemoryObjectStore,
    ObjectStore,
    configure_cloudinary,
)
from sifapass.services.quota_gate import QuotaGate
from sifapass.services.renderer import AssetFetcher, Renderer
from sifapass.services.task_queue import task_queue
from sifapass.services.verification import VerificationService
from sifapass.services.webhook_fanout import (
    WebhookDispatcher,
    WebhookFanout,
    WebhookWorkerPool,
)

logger = logging.getLogger(__name__)

if async_session_factory is not None:
    from sifapass.repos.pg_activity_repo import PgActivityRepo
    from sifapass.repos.pg_credential_repo import PgCredentialRepo
    from sifapass.repos.pg_event_repo import PgEventRepo
    from sifapass.repos.pg_participant_repo import PgParticipantRepo
    from sifapass.repos.pg_template_repo import PgTemplateRepo
    from sifapass.repos.pg_tenant_repo import PgTenantRepo
    from sifapass.repos.pg_webhook_repo import PgWebhookRepo

    tenant_repo: TenantRepo = PgTenantRepo(async_session_factory)
    participant_repo: ParticipantRepo = PgParticipantRepo(async_session_factory)
    event_repo: EventRepo = PgEventRepo(async_session_factory)
    template_repo: TemplateRepo = PgTemplateRepo(async_session_factory)
    credential_repo: CredentialRepo = PgCredentialRepo(async_session_factory)
    activity_repo: ActivityRepo = PgActivityRepo(async_session_factory)
    webhook_repo: WebhookRepo = PgWebhookRepo(async_session_factory)
else:
    tenant_repo = InMemoryTenantRepo()
    participant_repo = InMemoryParticipantRepo()
    event_repo = InMemoryEventRepo()
    template_repo = InMemoryTemplateRepo()
    credential_repo = InMemoryCredentialRepo()
    activity_repo = InMemoryActivityRepo()
    webhook_repo = InMemoryWebhookRepo()

if SETTINGS.cloudinary_url:
    configure_cloudinary(SETTINGS.cloudinary_url)
    object_store: ObjectStore = CloudinaryObjectStore()
else:
    object_store = InMemoryObjectStore()

asset_fetcher = AssetFetcher()
renderer = Renderer(asset_fetcher)
quota_gate = QuotaGate(tenant_repo)
activity_log = ActivityLog(activity_repo, deferred=SETTINGS.activity_deferred)

webhook_fanout = WebhookFanout(webhook_repo, task_queue)
webhook_dispatcher = WebhookDispatcher(webhook_repo)
webhook_pool = WebhookWorkerPool(
    webhook_dispatcher,
    task_queue,
    workers=SETTINGS.webhook_workers,
    per_tenant=SETTINGS.webhook_tenant_concurrency,
)

verification_service = VerificationService(
    credential_repo,
    participant_repo,
    event_repo,
    activity_log,
    webhook_fanout,
    cache_service,
)

coordinator = IssuanceCoordinator(
    credentials=credential_repo,
    participants=participant_repo,
    events=event_repo,
    templates=template_repo,
    gate=quota_gate,
    renderer=renderer,
    store=object_store,
    activity=activity_log,
    fanout=webhook_fanout,
    verification=verification_service,
    public_base_url=SETTINGS.public_base_url,
    storage_folder=SETTINGS.storage_folder,
    deadline_seconds=SETTINGS.issue_deadline_seconds,
    stuck_after=timedelta(minutes=SETTINGS.stuck_generating_minutes),
)

batch_issuer = BatchIssuer(
    coordinator, event_repo, concurrency=SETTINGS.batch_concurrency
)

janitor = Janitor(
    credentials=credential_repo,
    activity=activity_log,
    webhooks=webhook_repo,
    queue=task_queue,
    fanout=webhook_fanout,
    stuck_after=timedelta(minutes=SETTINGS.stuck_generating_minutes),
    activity_retention_days=SETTINGS.activity_retention_days,
    webhook_retention_days=SETTINGS.webhook_retention_days,
)

logger.debug(
    "Container ready: repos=%s store=%s",
    "postgres" if async_session_factory is not None else "memory",
    type(object_store).__name__,
)
