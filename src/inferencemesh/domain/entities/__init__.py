"""Domain entities — the provider registry's records.

Providers are mutable only through the discovery service; everything handed
out to callers is a deep copy (see ``Provider.snapshot``).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from inferencemesh.domain.enums import (
    AuthType,
    Capability,
    CostTier,
    DiscoverySource,
    HealthStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
#  Endpoint configuration
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class AuthConfig:
    type: AuthType = AuthType.NONE
    token: str | None = None

    def headers(self) -> dict[str, str]:
        """HTTP headers carrying the credential, if any."""
        if not self.token:
            return {}
        if self.type == AuthType.BEARER:
            return {"Authorization": f"Bearer {self.token}"}
        if self.type == AuthType.API_KEY:
            return {"X-API-Key": self.token}
        return {}


@dataclass(frozen=True)
class ProviderEndpoint:
    """Where and how to reach a provider.

    Attributes:
        base_url:         API root (e.g. "https://api.openai.com/v1").
        health_endpoint:  Absolute URL probed by health checks; falls back
                          to ``{base_url}/health`` when empty.
        models_endpoint:  Absolute URL listing models; falls back to
                          ``{base_url}/models`` when empty.
        authentication:   Credential attached to every probe.
    """

    base_url: str
    health_endpoint: str = ""
    models_endpoint: str = ""
    authentication: AuthConfig = field(default_factory=AuthConfig)

    @property
    def health_url(self) -> str:
        return self.health_endpoint or f"{self.base_url.rstrip('/')}/health"

    @property
    def models_url(self) -> str:
        return self.models_endpoint or f"{self.base_url.rstrip('/')}/models"


# ═══════════════════════════════════════════════════════════════
#  Capabilities
# ═══════════════════════════════════════════════════════════════
@dataclass
class FeatureSet:
    streaming: bool = False
    function_calling: bool = False
    vision: bool = False
    code_generation: bool = False
    reasoning: bool = False
    multimodal: bool = False

    def supports(self, capability: Capability) -> bool:
        return bool(getattr(self, capability.value))


@dataclass
class ProviderLimits:
    max_tokens: int = 4096
    max_requests_per_minute: int = 60
    max_requests_per_day: int = 1000
    context_window: int = 4096


@dataclass
class ProviderPricing:
    """Cost per token, in USD."""

    input_token_cost: float = 0.0001
    output_token_cost: float = 0.0002

    @property
    def average_cost(self) -> float:
        return (self.input_token_cost + self.output_token_cost) / 2


@dataclass
class ProviderCapabilities:
    supported_models: list[str] = field(default_factory=list)
    features: FeatureSet = field(default_factory=FeatureSet)
    limits: ProviderLimits = field(default_factory=ProviderLimits)
    pricing: ProviderPricing = field(default_factory=ProviderPricing)


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
@dataclass
class Health:
    """Current health of a provider as seen by the last evaluated check."""

    status: HealthStatus = HealthStatus.HEALTHY
    success_rate: float = 1.0
    average_latency_ms: float = 0.0
    last_health_check: datetime = field(default_factory=_utcnow)
    consecutive_failures: int = 0


@dataclass
class HealthHistoryEntry:
    timestamp: datetime
    status: HealthStatus
    response_time_ms: float
    error: str | None = None
    details: dict[str, Any] | None = None


# ═══════════════════════════════════════════════════════════════
#  Provider
# ═══════════════════════════════════════════════════════════════
@dataclass
class Provider:
    """A configured or discovered backend capable of serving inference."""

    id: str
    name: str
    endpoint: ProviderEndpoint
    capabilities: ProviderCapabilities = field(default_factory=ProviderCapabilities)
    cost_tier: CostTier = CostTier.STANDARD
    discovery_source: DiscoverySource = DiscoverySource.MANUAL
    discovered_at: datetime = field(default_factory=_utcnow)
    last_updated: datetime = field(default_factory=_utcnow)
    health: Health = field(default_factory=Health)
    health_history: list[HealthHistoryEntry] = field(default_factory=list)

    @property
    def models(self) -> list[str]:
        return list(self.capabilities.supported_models)

    def snapshot(self) -> Provider:
        """Deep copy safe to hand to readers."""
        return copy.deepcopy(self)
