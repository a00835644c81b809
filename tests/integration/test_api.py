"""Integration tests for the REST API against a scripted health probe."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import FakeProbe
from inferencemesh.config import Settings, get_settings
from inferencemesh.main import create_app
from inferencemesh.shared.providers.types import ProviderMetricsSample

OPENAI_URL = "https://api.openai.test/v1"
COHERE_URL = "https://api.cohere.test/v1"


@pytest.fixture
def settings() -> Settings:
    return get_settings(
        app_env="development",
        health_check_interval=3600,
        recovery_check_interval=3600,
        discovery_interval=3600,
        provider_endpoints={
            "openai": {
                "base_url": OPENAI_URL,
                "authentication": {"type": "bearer", "token": "sk-test"},
            },
            "cohere": {"base_url": COHERE_URL},
        },
    )


@pytest.fixture
def probe() -> FakeProbe:
    probe = FakeProbe()
    probe.models[OPENAI_URL] = {
        "data": [{"id": "gpt-4o", "capabilities": ["vision"], "context_window": 128000}]
    }
    probe.set_default(COHERE_URL, FakeProbe.fail("HTTP 500: Internal Server Error"))
    return probe


@pytest.fixture
def client(settings, probe):
    app = create_app(settings, probe=probe)
    with TestClient(app) as c:
        yield c


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
class TestHealthEndpoints:
    def test_health_check(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["services"]["discovery"] == "running"
        assert data["services"]["providers"] == "1/1 available"

    def test_request_id_echoed(self, client):
        response = client.get("/api/v1/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_prometheus_metrics(self, client):
        client.get("/api/v1/health")
        response = client.get("/api/v1/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "provider_health_status" in response.text

    def test_probe_closed_on_shutdown(self, settings, probe):
        with TestClient(create_app(settings, probe=probe)):
            pass
        assert probe.closed


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
class TestProviderEndpoints:
    def test_list_providers(self, client):
        response = client.get("/api/v1/providers")
        assert response.status_code == 200
        providers = response.json()
        assert [p["id"] for p in providers] == ["openai"]
        openai = providers[0]
        assert openai["name"] == "OpenAI"
        assert openai["models"] == ["gpt-4o"]
        assert openai["features"]["vision"] is True
        assert openai["limits"]["context_window"] == 128000
        assert openai["health"]["status"] == "healthy"
        assert openai["discovery_source"] == "api-discovery"

    def test_get_provider_includes_history(self, client):
        response = client.get("/api/v1/providers/openai")
        assert response.status_code == 200
        history = response.json()["health_history"]
        assert len(history) == 1
        assert history[0]["status"] == "healthy"

    def test_unknown_provider_404(self, client):
        response = client.get("/api/v1/providers/nobody")
        assert response.status_code == 404

    def test_filter_by_health(self, client):
        healthy = client.get("/api/v1/providers/health/healthy").json()
        assert [p["id"] for p in healthy] == ["openai"]
        assert client.get("/api/v1/providers/health/unhealthy").json() == []

    def test_filter_by_bad_health_value(self, client):
        assert client.get("/api/v1/providers/health/sleepy").status_code == 422

    def test_filter_by_capability(self, client):
        vision = client.get("/api/v1/providers/capability/vision").json()
        assert [p["id"] for p in vision] == ["openai"]
        assert client.get("/api/v1/providers/capability/multimodal").json() == []

    def test_discover_unconfigured_provider_404(self, client):
        response = client.post("/api/v1/providers/mistral/discover")
        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "CONFIGURATION_ERROR"
        assert "mistral" in body["message"]

    def test_discover_unreachable_provider_503(self, client):
        response = client.post("/api/v1/providers/cohere/discover")
        assert response.status_code == 503

    def test_discover_after_recovery(self, client, probe):
        probe.set_default(COHERE_URL, FakeProbe.ok())
        response = client.post("/api/v1/providers/cohere/discover")
        assert response.status_code == 200
        assert response.json()["name"] == "Cohere"
        assert {p["id"] for p in client.get("/api/v1/providers").json()} == {"openai", "cohere"}


# ═══════════════════════════════════════════════════════════════
#  Metrics and errors
# ═══════════════════════════════════════════════════════════════
class TestMetricsEndpoints:
    def test_empty_metrics(self, client):
        assert client.get("/api/v1/providers/metrics").json() == {}
        assert client.get("/api/v1/providers/metrics/openai/gpt-4o").status_code == 404

    def test_aggregated_metrics(self, client):
        metrics = client.app.state.container.metrics
        metrics.collect_metrics(ProviderMetricsSample(provider="openai", model="gpt-4o", response_time_ms=1000))
        metrics.collect_metrics(ProviderMetricsSample(provider="openai", model="gpt-4o", response_time_ms=2000))

        response = client.get("/api/v1/providers/metrics/openai/gpt-4o")
        assert response.status_code == 200
        data = response.json()
        assert data["avg_response_time_ms"] == 1500
        assert data["total_requests"] == 2
        assert set(client.get("/api/v1/providers/metrics").json()) == {"openai:gpt-4o"}


class TestErrorEndpoints:
    def test_statistics(self, client):
        response = client.get("/api/v1/errors/statistics")
        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"by_pattern", "recent_patterns", "recommendations"}
        assert "RATE_LIMIT" in data["by_pattern"]

    def test_likelihood(self, client):
        response = client.get("/api/v1/errors/likelihood/RATE_LIMIT")
        assert response.status_code == 200
        data = response.json()
        assert data["pattern"] == "RATE_LIMIT"
        assert data["likelihood"] == "low"

    def test_likelihood_unknown_pattern(self, client):
        assert client.get("/api/v1/errors/likelihood/SOLAR_FLARE").status_code == 422
