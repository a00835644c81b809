"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs adapt registry snapshots and metric aggregates to JSON.  They live in
the application layer because they are *not* domain objects.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from inferencemesh.domain.entities import Health, Provider
from inferencemesh.shared.providers.types import AggregatedMetrics, ErrorLikelihood


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
class ProviderHealthResponse(BaseModel):
    status: str
    success_rate: float
    average_latency_ms: float
    last_health_check: datetime
    consecutive_failures: int

    @classmethod
    def from_domain(cls, health: Health) -> ProviderHealthResponse:
        return cls(
            status=health.status.value,
            success_rate=health.success_rate,
            average_latency_ms=health.average_latency_ms,
            last_health_check=health.last_health_check,
            consecutive_failures=health.consecutive_failures,
        )


class HealthHistoryResponse(BaseModel):
    timestamp: datetime
    status: str
    response_time_ms: float
    error: str | None = None


class ProviderResponse(BaseModel):
    id: str
    name: str
    base_url: str
    models: list[str]
    features: dict[str, bool]
    limits: dict[str, int]
    pricing: dict[str, float]
    cost_tier: str
    discovery_source: str
    discovered_at: datetime
    last_updated: datetime
    health: ProviderHealthResponse
    health_history: list[HealthHistoryResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, provider: Provider, *, history: bool = False) -> ProviderResponse:
        caps = provider.capabilities
        return cls(
            id=provider.id,
            name=provider.name,
            base_url=provider.endpoint.base_url,
            models=list(caps.supported_models),
            features=dict(vars(caps.features)),
            limits=dict(vars(caps.limits)),
            pricing={
                "input_token_cost": caps.pricing.input_token_cost,
                "output_token_cost": caps.pricing.output_token_cost,
            },
            cost_tier=provider.cost_tier.value,
            discovery_source=provider.discovery_source.value,
            discovered_at=provider.discovered_at,
            last_updated=provider.last_updated,
            health=ProviderHealthResponse.from_domain(provider.health),
            health_history=[
                HealthHistoryResponse(
                    timestamp=e.timestamp,
                    status=e.status.value,
                    response_time_ms=e.response_time_ms,
                    error=e.error,
                )
                for e in provider.health_history
            ]
            if history
            else [],
        )


# ═══════════════════════════════════════════════════════════════
#  Metrics
# ═══════════════════════════════════════════════════════════════
class AggregatedMetricsResponse(BaseModel):
    provider: str
    model: str
    avg_response_time_ms: float
    avg_throughput: float
    avg_latency_ms: float
    avg_efficiency: float
    avg_token_usage: dict[str, float]
    quality_scores: dict[str, float]
    total_requests: int
    last_updated: datetime

    @classmethod
    def from_domain(cls, m: AggregatedMetrics) -> AggregatedMetricsResponse:
        return cls(
            provider=m.provider,
            model=m.model,
            avg_response_time_ms=m.avg_response_time_ms,
            avg_throughput=m.avg_throughput,
            avg_latency_ms=m.avg_latency_ms,
            avg_efficiency=m.avg_efficiency,
            avg_token_usage={
                "prompt": m.avg_token_usage.prompt,
                "completion": m.avg_token_usage.completion,
                "total": m.avg_token_usage.total,
            },
            quality_scores={
                "coherence": m.quality_scores.coherence,
                "relevance": m.quality_scores.relevance,
                "completeness": m.quality_scores.completeness,
            },
            total_requests=m.total_requests,
            last_updated=m.last_updated,
        )


# ═══════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════
class ErrorLikelihoodResponse(BaseModel):
    pattern: str
    likelihood: str
    recent_occurrences: int
    average_interval_s: float | None = None

    @classmethod
    def from_domain(cls, pattern: str, result: ErrorLikelihood) -> ErrorLikelihoodResponse:
        return cls(
            pattern=pattern,
            likelihood=result.likelihood.value,
            recent_occurrences=result.recent_occurrences,
            average_interval_s=result.average_interval_s,
        )


class ErrorStatisticsResponse(BaseModel):
    by_pattern: dict[str, int]
    recent_patterns: list[dict[str, Any]]
    recommendations: list[str]
