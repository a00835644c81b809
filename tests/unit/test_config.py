"""Tests for settings loading and validation."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from inferencemesh.config import Settings, get_settings
from inferencemesh.dependencies import build_discovery_config, build_metrics_config, build_retry_policy
from inferencemesh.domain.enums import AuthType, RetryStrategy


class TestDefaults:
    def test_discovery_defaults(self):
        settings = get_settings()
        assert settings.health_check_interval == 30.0
        assert settings.health_check_timeout == 5.0
        assert settings.unhealthy_threshold == 3
        assert settings.recovery_check_interval == 60.0
        assert settings.discovery_interval == 300.0
        assert settings.capability_detection_enabled is True
        assert settings.max_concurrent_health_checks == 5
        assert settings.health_check_backoff == 60.0
        assert settings.enable_service_mesh is False

    def test_log_level_upper_cased(self):
        assert get_settings(log_level="debug").log_level == "DEBUG"


class TestProviderEndpoints:
    def test_camel_case_entries(self):
        settings = get_settings(
            provider_endpoints={
                "openai": {
                    "baseUrl": "https://api.openai.test/v1/",
                    "healthEndpoint": "https://status.openai.test/health",
                    "authentication": {"type": "bearer", "token": "sk-1"},
                }
            }
        )
        endpoint = settings.endpoint_table()["openai"]
        assert endpoint.base_url == "https://api.openai.test/v1"
        assert endpoint.health_url == "https://status.openai.test/health"
        assert endpoint.models_url == "https://api.openai.test/v1/models"
        assert endpoint.authentication.type == AuthType.BEARER
        assert endpoint.authentication.headers() == {"Authorization": "Bearer sk-1"}

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv(
            "PROVIDER_ENDPOINTS",
            json.dumps({"anthropic": {"base_url": "https://api.anthropic.test"}}),
        )
        monkeypatch.setenv("UNHEALTHY_THRESHOLD", "5")
        settings = Settings()
        assert settings.unhealthy_threshold == 5
        assert settings.endpoint_table()["anthropic"].base_url == "https://api.anthropic.test"

    def test_rejects_non_http_base_url(self):
        with pytest.raises(ValidationError):
            get_settings(provider_endpoints={"bad": {"base_url": "ftp://files.test"}})


class TestValidation:
    @pytest.mark.parametrize(
        "field, value",
        [
            ("health_check_interval", 0),
            ("health_check_timeout", -1),
            ("unhealthy_threshold", 0),
            ("max_concurrent_health_checks", 0),
            ("health_check_backoff", -5),
            ("degraded_success_rate", 1.5),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            get_settings(**{field: value})

    def test_service_mesh_needs_endpoint(self):
        with pytest.raises(ValidationError):
            get_settings(enable_service_mesh=True)
        settings = get_settings(enable_service_mesh=True, service_mesh_endpoint="https://mesh.test/registry")
        assert settings.enable_service_mesh


class TestTranslation:
    def test_discovery_config(self):
        settings = get_settings(
            unhealthy_threshold=2,
            provider_endpoints={"openai": {"base_url": "https://api.openai.test"}},
        )
        config = build_discovery_config(settings)
        assert config.unhealthy_threshold == 2
        assert config.service_mesh_endpoint is None
        assert set(config.provider_endpoints) == {"openai"}

    def test_metrics_thresholds_only_when_set(self):
        assert build_metrics_config(get_settings()).quality_thresholds is None
        config = build_metrics_config(get_settings(metrics_min_coherence=0.4))
        assert config.quality_thresholds.coherence == 0.4

    def test_retry_policy(self):
        policy = build_retry_policy(get_settings(retry_max_retries=1, retry_strategy="linear"))
        assert policy.max_retries == 1
        assert policy.strategy == RetryStrategy.LINEAR
