"""Core types for provider discovery, error recovery and metrics."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Mapping, TypeVar

from inferencemesh.domain.entities import Health, ProviderEndpoint
from inferencemesh.domain.enums import (
    ErrorPattern,
    ErrorSeverity,
    HealthStatus,
    Likelihood,
    RetryStrategy,
)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
#  Discovery
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class DiscoveryConfig:
    """Static configuration for the discovery service.

    Attributes:
        health_check_interval:      Seconds between checks of a reachable provider.
        health_check_timeout:       Per-probe timeout in seconds.
        unhealthy_threshold:        Consecutive failures before a provider is unhealthy.
        recovery_check_interval:    Seconds between checks of an unhealthy provider.
        recovery_success_threshold: Consecutive successes needed to leave unhealthy.
        degraded_success_rate:      Remote success rate below which a provider is degraded.
        degraded_latency_ms:        Remote average latency above which a provider is degraded.
        discovery_interval:         Seconds between discovery passes.
        capability_detection_enabled: Query the models endpoint for capabilities.
        max_concurrent_health_checks: Process-wide cap on in-flight probes.
        health_check_backoff:       Extra delay in seconds after a failed check.
        enable_service_mesh:        Pull extra endpoints from a registry.
        service_mesh_endpoint:      Registry URL used when the mesh is enabled.
        provider_endpoints:         Configured endpoints keyed by provider id.
        health_history_limit:       Max history entries kept per provider.
    """

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
    enable_service_mesh: bool = False
    service_mesh_endpoint: str | None = None
    provider_endpoints: Mapping[str, ProviderEndpoint] = field(default_factory=dict)
    health_history_limit: int = 100


@dataclass
class ProbeResult:
    """Outcome of a single health probe."""

    ok: bool
    response_time_ms: float
    status_code: int | None = None
    payload: dict[str, Any] | None = None
    error: str | None = None
    exception: BaseException | None = None


@dataclass(frozen=True)
class HealthTransition:
    """Result of feeding one check outcome into a health tracker."""

    previous: HealthStatus
    current: HealthStatus
    health: Health
    ok: bool = True
    recovered: bool = False
    became_unavailable: bool = False

    @property
    def changed(self) -> bool:
        return self.previous != self.current


# ═══════════════════════════════════════════════════════════════
#  Error classification
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ErrorClassification:
    """Policy decision for one failure."""

    pattern: ErrorPattern
    is_retryable: bool
    is_transient: bool
    requires_user_action: bool
    suggested_wait_s: float
    severity: ErrorSeverity
    user_message: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorLikelihood:
    likelihood: Likelihood
    recent_occurrences: int
    average_interval_s: float | None = None


# ═══════════════════════════════════════════════════════════════
#  Retry
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class RetryPolicy:
    """How ``RetryEngine.execute_with_retry`` paces attempts.

    ``timeout_s`` bounds the whole run (attempts plus waits).  ``abort`` is
    an ``asyncio.Event`` the caller sets to stop immediately.  With
    ``respect_suggested_wait`` the wait is never shorter than the
    classification's suggested wait (still capped at ``max_delay_s``).
    """

    max_retries: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    timeout_s: float | None = None
    abort: asyncio.Event | None = None
    respect_suggested_wait: bool = False


@dataclass
class RetryResult(Generic[T]):
    success: bool
    result: T | None = None
    error: BaseException | None = None
    classification: ErrorClassification | None = None
    attempts: int = 0
    total_delay_s: float = 0.0
    aborted: bool = False


# ═══════════════════════════════════════════════════════════════
#  Metrics
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class TokenUsage:
    prompt: float = 0
    completion: float = 0
    total: float = 0


@dataclass(frozen=True)
class QualityScores:
    coherence: float = 0.0
    relevance: float = 0.0
    completeness: float = 0.0


@dataclass(frozen=True)
class PerformanceStats:
    throughput: float = 0.0  # tokens/s
    latency_ms: float = 0.0
    efficiency: float = 0.0


@dataclass(frozen=True)
class SafetyInfo:
    ratings: dict[str, Any] = field(default_factory=dict)
    blocked: bool = False


@dataclass(frozen=True)
class ProviderMetricsSample:
    """One completed model call as reported by the caller."""

    provider: str
    model: str
    response_time_ms: float
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    quality: QualityScores = field(default_factory=QualityScores)
    performance: PerformanceStats = field(default_factory=PerformanceStats)
    safety: SafetyInfo | None = None
    captured_at: datetime = field(default_factory=_utcnow)

    @property
    def bucket_key(self) -> str:
        return f"{self.provider}:{self.model}"


@dataclass
class AggregatedMetrics:
    """Read-only means over the live window of one ``provider:model`` bucket."""

    provider: str
    model: str
    avg_response_time_ms: float
    avg_throughput: float
    avg_latency_ms: float
    avg_efficiency: float
    avg_token_usage: TokenUsage
    quality_scores: QualityScores
    total_requests: int
    last_updated: datetime
