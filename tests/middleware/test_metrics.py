"""Tests for Prometheus metrics middleware.

prometheus-client keeps one global registry and counters never reset, so
every assertion is on the delta between a reading before and after.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _get_sample("http_request_duration_seconds_count", labels) - before >= 1


def test_credential_ids_collapse_to_route_template(client: TestClient) -> None:
    """A request for one credential is labelled with the route, not the ID."""
    labels = {
        "method": "GET",
        "endpoint": "/credentials/{credential_id}",
        "status_code": "401",
    }
    before = _get_sample("http_requests_total", labels)
    client.get("/credentials/8d6f0c57-8f59-4a57-9e0e-2a8f7d2b0c11")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "credentials_issued_total" in resp.text
    assert "webhook_deliveries_total" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before
