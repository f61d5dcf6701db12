"""Unit tests for the application-level endpoints and request middleware."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from flowhub.app.dependencies import get_lifecycle
from flowhub.app.main import app
from flowhub.app.middleware.logging import _normalize_path
from flowhub.core.errors import InstanceNotFoundError
from flowhub.services.lifecycle import LifecycleManager


class TestHealth:
    """Tests for /health."""

    def test_degraded_before_startup(self) -> None:
        """Without the lifespan nothing is initialized, so the app is degraded."""
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["services"] == {
            "database": "not initialized",
            "runtime": "not initialized",
        }


class TestMetricsEndpoint:
    """Tests for /metrics."""

    def test_prometheus_text(self) -> None:
        """The scrape endpoint renders the flowhub series."""
        response = TestClient(app).get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "flowhub_http_requests_total" in response.text


class TestLoggingMiddleware:
    """Tests for request metrics."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/api/v1/instances/01HX", "/api/v1/instances/:id"),
            ("/api/v1/instances/01HX:start", "/api/v1/instances/:id:start"),
            ("/api/v1/instances/01HX/logs", "/api/v1/instances/:id/logs"),
            ("/api/v1/events/instances/01HX/logs", "/api/v1/events/instances/:id/logs"),
            ("/api/v1/ports/5601", "/api/v1/ports/:port"),
            ("/api/v1/instances", "/api/v1/instances"),
        ],
    )
    def test_normalize_path(self, path: str, expected: str) -> None:
        """Instance ids and ports collapse into placeholders."""
        assert _normalize_path(path) == expected

    def test_request_counted_by_route(self) -> None:
        """Each request increments the counter for its normalized route and status."""
        lifecycle = AsyncMock(spec=LifecycleManager)
        lifecycle.get.side_effect = InstanceNotFoundError("missing")
        app.dependency_overrides[get_lifecycle] = lambda: lifecycle
        labels = {"method": "GET", "endpoint": "/api/v1/instances/:id", "status": "404"}
        before = REGISTRY.get_sample_value("flowhub_http_requests_total", labels) or 0.0

        try:
            response = TestClient(app).get("/api/v1/instances/missing")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 404
        after = REGISTRY.get_sample_value("flowhub_http_requests_total", labels)
        assert after == before + 1

    def test_probes_not_counted(self) -> None:
        """Health probes are not recorded."""
        labels = {"method": "GET", "endpoint": "/health", "status": "200"}

        TestClient(app).get("/health")

        assert REGISTRY.get_sample_value("flowhub_http_requests_total", labels) is None
