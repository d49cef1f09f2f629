"""Tests for observability features: metrics, health checks, and request tracing."""

from __future__ import annotations

import logging

from backend.app.logging_config import add_app_context, add_request_id
from backend.app.metrics import normalize_endpoint
from backend.app.settings import settings
from backend.app.utils import RequestIDLogFilter, get_request_id, request_id_ctx

# ==============================================================================
# PROMETHEUS METRICS TESTS
# ==============================================================================


class TestPrometheusMetrics:
    """Test Prometheus metrics endpoint and tracking."""

    def test_metrics_endpoint_returns_prometheus_format(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")

        content = response.text
        assert "# HELP" in content
        assert "# TYPE" in content
        assert "cavens_assistant_info" in content

    def test_http_metrics_tracked(self, client):
        client.get("/health")
        client.get("/v1/chat/suggestions")

        content = client.get("/metrics").text
        assert 'endpoint="/v1/chat/suggestions"' in content
        assert "http_request_duration_seconds" in content
        # /metrics is not tracked by itself
        assert 'endpoint="/metrics"' not in content

    def test_endpoint_normalization(self):
        assert normalize_endpoint("/v1/clubs/65f1c0ffee0123456789abcd") == "/v1/clubs/{id}"
        assert normalize_endpoint("/v1/events/12345") == "/v1/events/{id}"
        assert normalize_endpoint("/v1/chat") == "/v1/chat"
        assert normalize_endpoint("/v1/chat/suggestions") == "/v1/chat/suggestions"
        assert normalize_endpoint("/v1/orders/abc123def456ghi789xyz") == "/v1/orders/{id}"


# ==============================================================================
# HEALTH CHECK TESTS
# ==============================================================================


class TestHealthCheck:
    """Missing optional keys degrade answers but keep the service healthy."""

    def test_health_endpoint_structure(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "cavens-assistant"
        assert data["version"] == "0.1.0"
        assert set(data["checks"]) == {"store", "llm", "geo", "sentry"}

    def test_store_check_counts_documents(self, client):
        store = client.get("/health").json()["checks"]["store"]
        assert store["status"] == "ok"
        assert store["approved_clubs"] == 4
        assert store["events"] == 5
        assert "storage_path" in store

    def test_unconfigured_collaborators_are_reported(self, client):
        checks = client.get("/health").json()["checks"]
        assert checks["llm"]["status"] == "disabled"
        assert checks["geo"] == {"status": "fallback", "method": "haversine"}
        assert checks["sentry"]["status"] == "disabled"

    def test_configured_llm_reports_model(self, client):
        settings.OPENROUTER_API_KEY = "sk-test"
        checks = client.get("/health").json()["checks"]
        assert checks["llm"] == {
            "status": "ok",
            "model": settings.CHAT_MODEL,
            "base_url": settings.LLM_API_BASE,
        }

    def test_invalid_sentry_dsn_degrades(self, client):
        settings.SENTRY_DSN = "not-a-dsn"
        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "degraded"


# ==============================================================================
# REQUEST ID TRACING TESTS
# ==============================================================================


class TestRequestIDTracing:
    """Test request ID tracing middleware."""

    def test_request_id_generated_if_not_provided(self, client):
        request_id = client.get("/health").headers["X-Request-ID"]
        assert len(request_id) == 36
        assert request_id.count("-") == 4

    def test_request_id_preserved_from_header(self, client):
        response = client.get("/v1/chat/suggestions", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"

    def test_error_responses_have_request_id(self, client):
        response = client.get("/nonexistent-endpoint")
        assert response.status_code == 404
        assert "X-Request-ID" in response.headers

    def test_request_id_context_reaches_logs(self):
        token = request_id_ctx.set("ctx-42")
        try:
            assert get_request_id() == "ctx-42"
            record = logging.LogRecord("chat", logging.INFO, __file__, 1, "msg", None, None)
            assert RequestIDLogFilter().filter(record)
            assert record.request_id == "ctx-42"
            event = add_request_id(None, "info", {"event": "chat"})
            assert event["request_id"] == "ctx-42"
        finally:
            request_id_ctx.reset(token)

    def test_app_context_is_added(self):
        event = add_app_context(None, "info", {"event": "chat"})
        assert event["service"] == "cavens-assistant"
        assert event["version"] == "0.1.0"


class TestSecurityHeaders:
    def test_security_headers_present(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Frame-Options" in response.headers
