"""inferencemesh — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from inferencemesh.domain.entities import AuthConfig, ProviderEndpoint
from inferencemesh.domain.enums import AuthType, RetryStrategy


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


# ═══════════════════════════════════════════════════════════════
#  Endpoint table entries
# ═══════════════════════════════════════════════════════════════
class AuthSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: AuthType = AuthType.NONE
    token: str | None = Field(default=None, validation_alias=AliasChoices("token", "apiKey", "api_key"))


class ProviderEndpointSettings(BaseModel):
    """One entry of ``provider_endpoints`` or of a service-mesh registry.

    Accepts snake_case or camelCase keys.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    base_url: str = Field(validation_alias=AliasChoices("base_url", "baseUrl"))
    health_endpoint: str = Field(default="", validation_alias=AliasChoices("health_endpoint", "healthEndpoint"))
    models_endpoint: str = Field(default="", validation_alias=AliasChoices("models_endpoint", "modelsEndpoint"))
    authentication: AuthSettings = Field(default_factory=AuthSettings)

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with 'http://' or 'https://'")
        return v.rstrip("/")

    def to_endpoint(self) -> ProviderEndpoint:
        return ProviderEndpoint(
            base_url=self.base_url,
            health_endpoint=self.health_endpoint,
            models_endpoint=self.models_endpoint,
            authentication=AuthConfig(
                type=self.authentication.type,
                token=self.authentication.token,
            ),
        )


# ═══════════════════════════════════════════════════════════════
#  Settings
# ═══════════════════════════════════════════════════════════════
class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "inferencemesh"
    app_env: Environment = Environment.DEVELOPMENT
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ── Discovery & health ───────────────────────────────────
    health_check_interval: float = 30.0
    health_check_timeout: float = 5.0
    unhealthy_threshold: int = 3
    recovery_check_interval: float = 60.0
    recovery_success_threshold: int = 2
    degraded_success_rate: float = 0.9
    degraded_latency_ms: float = 2000.0
    discovery_interval: float = 300.0
    capability_detection_enabled: bool = True
    max_concurrent_health_checks: int = 5
    health_check_backoff: float = 60.0
    health_history_limit: int = 100
    enable_service_mesh: bool = False
    service_mesh_endpoint: str = ""
    provider_endpoints: dict[str, ProviderEndpointSettings] = Field(default_factory=dict)

    # ── Metrics aggregation ──────────────────────────────────
    metrics_enabled: bool = True
    metrics_persist: bool = False
    metrics_aggregation_window: float = 300.0
    metrics_min_coherence: float = 0.0
    metrics_min_relevance: float = 0.0
    metrics_min_completeness: float = 0.0

    # ── Retry defaults ───────────────────────────────────────
    retry_max_retries: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    error_stats_window: float = 3600.0

    # ── Observability ────────────────────────────────────────
    prometheus_enabled: bool = True

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator(
        "health_check_interval",
        "health_check_timeout",
        "recovery_check_interval",
        "discovery_interval",
        "metrics_aggregation_window",
        "error_stats_window",
    )
    @classmethod
    def _positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("intervals must be positive")
        return v

    @field_validator("health_check_backoff", "retry_initial_delay", "retry_max_delay")
    @classmethod
    def _non_negative_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delays must not be negative")
        return v

    @field_validator("unhealthy_threshold", "recovery_success_threshold", "max_concurrent_health_checks")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("degraded_success_rate")
    @classmethod
    def _validate_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("degraded_success_rate must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def _guard_service_mesh(self) -> Settings:
        """Service mesh discovery needs a registry URL."""
        if self.enable_service_mesh and not self.service_mesh_endpoint:
            raise ValueError("service_mesh_endpoint must be set when enable_service_mesh is true")
        return self

    def endpoint_table(self) -> dict[str, ProviderEndpoint]:
        return {pid: cfg.to_endpoint() for pid, cfg in self.provider_endpoints.items()}


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
