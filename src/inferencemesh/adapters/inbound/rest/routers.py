"""Health, Providers, Metrics, Errors — REST routers."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from inferencemesh import __version__
from inferencemesh.application.dtos import (
    AggregatedMetricsResponse,
    ErrorLikelihoodResponse,
    ErrorStatisticsResponse,
    HealthResponse,
    ProviderResponse,
)
from inferencemesh.dependencies import (
    get_container,
    get_discovery_service,
    get_error_classifier,
    get_metrics_collector,
)
from inferencemesh.domain.enums import Capability, ErrorPattern, HealthStatus
from inferencemesh.shared.providers.classifier import ErrorClassifier
from inferencemesh.shared.providers.discovery import ProviderDiscoveryService
from inferencemesh.shared.providers.metrics import ProviderMetricsCollector


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    container = get_container(request)
    discovery = container.discovery
    providers = discovery.get_discovered_providers()
    unhealthy = sum(1 for p in providers.values() if p.health.status == HealthStatus.UNHEALTHY)
    return HealthResponse(
        status="ok" if discovery.running else "starting",
        version=__version__,
        environment=container.settings.app_env.value,
        services={
            "discovery": "running" if discovery.running else "stopped",
            "metrics": "running" if container.metrics.running else "idle",
            "providers": f"{len(providers) - unhealthy}/{len(providers)} available",
        },
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Providers"])


@providers_router.get("", response_model=list[ProviderResponse])
async def list_providers(
    discovery: ProviderDiscoveryService = Depends(get_discovery_service),
) -> list[ProviderResponse]:
    return [ProviderResponse.from_domain(p) for p in discovery.get_discovered_providers().values()]


@providers_router.get("/metrics", response_model=dict[str, AggregatedMetricsResponse])
async def all_provider_metrics(
    metrics: ProviderMetricsCollector = Depends(get_metrics_collector),
) -> dict[str, AggregatedMetricsResponse]:
    return {
        key: AggregatedMetricsResponse.from_domain(m)
        for key, m in metrics.get_all_provider_metrics().items()
    }


@providers_router.get("/metrics/{provider}/{model:path}", response_model=AggregatedMetricsResponse)
async def provider_model_metrics(
    provider: str,
    model: str,
    metrics: ProviderMetricsCollector = Depends(get_metrics_collector),
) -> AggregatedMetricsResponse:
    aggregated = metrics.get_aggregated_metrics(provider, model)
    if aggregated is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No metrics for {provider}:{model}",
        )
    return AggregatedMetricsResponse.from_domain(aggregated)


@providers_router.get("/health/{health_status}", response_model=list[ProviderResponse])
async def providers_by_health(
    health_status: HealthStatus,
    discovery: ProviderDiscoveryService = Depends(get_discovery_service),
) -> list[ProviderResponse]:
    return [ProviderResponse.from_domain(p) for p in discovery.get_providers_by_health(health_status)]


@providers_router.get("/capability/{capability}", response_model=list[ProviderResponse])
async def providers_by_capability(
    capability: Capability,
    discovery: ProviderDiscoveryService = Depends(get_discovery_service),
) -> list[ProviderResponse]:
    return [ProviderResponse.from_domain(p) for p in discovery.get_providers_by_capability(capability)]


@providers_router.get("/{provider_id}", response_model=ProviderResponse)
async def get_provider(
    provider_id: str,
    discovery: ProviderDiscoveryService = Depends(get_discovery_service),
) -> ProviderResponse:
    provider = discovery.get_provider(provider_id)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider not found: {provider_id}",
        )
    return ProviderResponse.from_domain(provider, history=True)


@providers_router.post("/{provider_id}/discover", response_model=ProviderResponse)
async def discover_provider(
    provider_id: str,
    discovery: ProviderDiscoveryService = Depends(get_discovery_service),
) -> ProviderResponse:
    """Probe a configured endpoint now. Unconfigured ids map to 404."""
    provider = await discovery.discover_provider(provider_id)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Provider {provider_id} failed its health check",
        )
    return ProviderResponse.from_domain(provider, history=True)


# ═══════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════
errors_router = APIRouter(prefix="/errors", tags=["Errors"])


@errors_router.get("/statistics", response_model=ErrorStatisticsResponse)
async def error_statistics(
    classifier: ErrorClassifier = Depends(get_error_classifier),
) -> ErrorStatisticsResponse:
    return ErrorStatisticsResponse(**classifier.get_error_statistics())


@errors_router.get("/likelihood/{pattern}", response_model=ErrorLikelihoodResponse)
async def error_likelihood(
    pattern: ErrorPattern,
    classifier: ErrorClassifier = Depends(get_error_classifier),
) -> ErrorLikelihoodResponse:
    return ErrorLikelihoodResponse.from_domain(pattern.value, classifier.predict_error_likelihood(pattern))
