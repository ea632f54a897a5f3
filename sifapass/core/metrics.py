"""Prometheus metric inventory.

All metrics are defined here and imported by the modules that own the
behaviour.  Prometheus scrapes them from GET /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Issuance pipeline
# ---------------------------------------------------------------------------

CREDENTIALS_ISSUED = Counter(
    "credentials_issued_total",
    "Issuance attempts by credential type and final status",
    ["type", "outcome"],  # outcome: issued|failed|timeout
)

RENDER_DURATION = Histogram(
    "credential_render_duration_seconds",
    "Time spent rendering one artifact",
    ["format"],
    # Rendering is CPU-bound; large canvases with remote assets take seconds.
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

STORAGE_UPLOADS = Counter(
    "object_store_uploads_total",
    "Object store uploads by result",
    ["result"],  # ok|retry|failed
)

QUOTA_REJECTIONS = Counter(
    "quota_rejections_total",
    "Admissions refused by the quota gate",
    ["reason"],
)

VERIFICATIONS = Counter(
    "credential_verifications_total",
    "Public verification lookups by outcome",
    ["outcome"],  # valid|revoked|not_found
)

# ---------------------------------------------------------------------------
# Webhooks and background work
# ---------------------------------------------------------------------------

WEBHOOK_DELIVERIES = Counter(
    "webhook_deliveries_total",
    "Webhook delivery attempts by outcome",
    ["outcome"],  # success|retry|failed
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)

JANITOR_REAPED = Counter(
    "janitor_reaped_total",
    "Records removed or failed by periodic janitors",
    ["job"],  # activity|webhook_deliveries|stuck_generating
)

# ---------------------------------------------------------------------------
# Shared infrastructure
# ---------------------------------------------------------------------------

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "tenant" or "ip"
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
