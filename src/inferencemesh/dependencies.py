"""Dependency injection container — wires adapters to ports.

``build_container`` constructs every long-lived component once from
``Settings``; the application lifespan owns the result on ``app.state`` and
FastAPI's ``Depends()`` factories below read from it.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from inferencemesh.adapters.outbound.event_bus import InProcessEventBus
from inferencemesh.adapters.outbound.probe import HttpHealthProbe
from inferencemesh.config import Settings
from inferencemesh.domain.events import EVENT_TYPES
from inferencemesh.ports.outbound import HealthProbePort
from inferencemesh.shared.providers.classifier import ErrorClassifier
from inferencemesh.shared.providers.discovery import ProviderDiscoveryService
from inferencemesh.shared.providers.metrics import MetricsConfig, ProviderMetricsCollector
from inferencemesh.shared.providers.recovery import RetryEngine
from inferencemesh.shared.providers.types import DiscoveryConfig, QualityScores, RetryPolicy


# ── Config translation ───────────────────────────────────────
def build_discovery_config(settings: Settings) -> DiscoveryConfig:
    return DiscoveryConfig(
        health_check_interval=settings.health_check_interval,
        health_check_timeout=settings.health_check_timeout,
        unhealthy_threshold=settings.unhealthy_threshold,
        recovery_check_interval=settings.recovery_check_interval,
        recovery_success_threshold=settings.recovery_success_threshold,
        degraded_success_rate=settings.degraded_success_rate,
        degraded_latency_ms=settings.degraded_latency_ms,
        discovery_interval=settings.discovery_interval,
        capability_detection_enabled=settings.capability_detection_enabled,
        max_concurrent_health_checks=settings.max_concurrent_health_checks,
        health_check_backoff=settings.health_check_backoff,
        enable_service_mesh=settings.enable_service_mesh,
        service_mesh_endpoint=settings.service_mesh_endpoint or None,
        provider_endpoints=settings.endpoint_table(),
        health_history_limit=settings.health_history_limit,
    )


def build_metrics_config(settings: Settings) -> MetricsConfig:
    thresholds = QualityScores(
        coherence=settings.metrics_min_coherence,
        relevance=settings.metrics_min_relevance,
        completeness=settings.metrics_min_completeness,
    )
    return MetricsConfig(
        enabled=settings.metrics_enabled,
        persist_metrics=settings.metrics_persist,
        aggregation_window_s=settings.metrics_aggregation_window,
        quality_thresholds=thresholds if any(vars(thresholds).values()) else None,
    )


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.retry_max_retries,
        initial_delay_s=settings.retry_initial_delay,
        max_delay_s=settings.retry_max_delay,
        strategy=settings.retry_strategy,
    )


# ── Container ────────────────────────────────────────────────
@dataclass
class Container:
    settings: Settings
    event_bus: InProcessEventBus
    probe: HealthProbePort
    classifier: ErrorClassifier
    metrics: ProviderMetricsCollector
    retry_engine: RetryEngine
    discovery: ProviderDiscoveryService

    async def start(self) -> None:
        await self.metrics.start()
        await self.discovery.start()

    async def close(self) -> None:
        await self.discovery.stop()
        await self.metrics.destroy()
        await self.probe.close()


def build_container(settings: Settings, *, probe: HealthProbePort | None = None) -> Container:
    """Construct every component once; ``probe`` lets tests swap the HTTP adapter."""
    event_bus = InProcessEventBus(allowed_events=EVENT_TYPES)
    probe = probe or HttpHealthProbe()
    classifier = ErrorClassifier(stats_window_s=settings.error_stats_window)
    metrics = ProviderMetricsCollector(build_metrics_config(settings))
    retry_engine = RetryEngine(
        classifier,
        metrics=metrics,
        default_policy=build_retry_policy(settings),
    )
    discovery = ProviderDiscoveryService(
        build_discovery_config(settings),
        probe=probe,
        event_bus=event_bus,
    )
    return Container(
        settings=settings,
        event_bus=event_bus,
        probe=probe,
        classifier=classifier,
        metrics=metrics,
        retry_engine=retry_engine,
        discovery=discovery,
    )


# ── Request-scoped accessors ─────────────────────────────────
def get_container(request: Request) -> Container:
    return request.app.state.container


def get_discovery_service(request: Request) -> ProviderDiscoveryService:
    return get_container(request).discovery


def get_metrics_collector(request: Request) -> ProviderMetricsCollector:
    return get_container(request).metrics


def get_error_classifier(request: Request) -> ErrorClassifier:
    return get_container(request).classifier
