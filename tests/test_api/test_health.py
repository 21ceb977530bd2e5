"""Tests for health check and metrics endpoints."""

from __future__ import annotations

from src.config import get_settings


class TestHealthEndpoints:
    """Tests for /health and /health/detailed endpoints."""

    def test_health_basic(self, test_client) -> None:
        """Test GET /health returns 200 with status=healthy."""
        response = test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"

    def test_health_detailed_structure(self, test_client) -> None:
        """Test GET /health/detailed returns expected structure."""
        response = test_client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["active_calls"] == 0
        assert data["max_calls"] == 10

    def test_health_detailed_checks_services(self, test_client) -> None:
        """Test /health/detailed reports provider configuration."""
        response = test_client.get("/health/detailed")

        checks = response.json()["checks"]
        assert checks["call_services"] == "ok"
        assert checks["groq"] == "configured"
        assert checks["deepgram"] == "configured"
        assert checks["elevenlabs"] == "missing"
        assert checks["plivo"] == "missing"
        assert checks["stt_provider"] == "deepgram"
        assert checks["tts_provider"] == "elevenlabs"
        assert checks["edge_tts_fallback"] == "enabled"
        assert "stt_relay" not in checks


class TestHealthDegraded:
    """Tests for degraded health scenarios."""

    def test_relay_without_url(self, test_client, settings_factory) -> None:
        """Test selecting the relay without a URL reports degraded."""
        relay_settings = settings_factory(stt_provider="relay")
        test_client.app.dependency_overrides[get_settings] = lambda: relay_settings

        data = test_client.get("/health/detailed").json()

        assert data["status"] == "degraded"
        assert data["checks"]["stt_relay"] == "missing"

    def test_services_missing(self, test_client) -> None:
        """Test missing call services report degraded but basic health stays up."""
        services = test_client.app.state.services
        test_client.app.state.services = None
        try:
            data = test_client.get("/health/detailed").json()
            basic = test_client.get("/health")
        finally:
            test_client.app.state.services = services

        assert data["status"] == "degraded"
        assert data["checks"]["call_services"].startswith("error")
        assert basic.json()["status"] == "healthy"


class TestMetricsEndpoint:
    """Tests for /metrics."""

    def test_metrics_exposition(self, test_client) -> None:
        """Test metrics are served in Prometheus text format."""
        response = test_client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "rehearsal_active_calls" in response.text
