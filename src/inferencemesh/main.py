"""ASGI entry-point for the provider discovery service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from inferencemesh import __version__
from inferencemesh.adapters.inbound.rest.routers import (
    errors_router,
    health_router,
    providers_router,
)
from inferencemesh.config import Settings, get_settings
from inferencemesh.dependencies import build_container
from inferencemesh.ports.outbound import HealthProbePort
from inferencemesh.shared.errors import register_exception_handlers
from inferencemesh.shared.middleware import (
    LoggingMiddleware,
    MetricsMiddleware,
    RequestIdMiddleware,
)
from inferencemesh.shared.observability import configure_logging

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the discovery service with the app and tear it down on exit."""
    settings: Settings = app.state.settings
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.is_production,
    )
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        providers=len(settings.provider_endpoints),
    )

    container = build_container(settings, probe=app.state.probe)
    app.state.container = container
    await container.start()

    yield

    await container.close()
    logger.info("application_shutdown")


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    # Starlette wraps in reverse order: the last one added runs first
    origins = settings.cors_origins
    wildcard = "*" in origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if wildcard else origins,
        allow_origin_regex=".*" if wildcard else None,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    if settings.prometheus_enabled:
        app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)


def create_app(settings: Settings | None = None, *, probe: HealthProbePort | None = None) -> FastAPI:
    """Build the discovery API.

    ``probe`` replaces the HTTP health probe; tests pass a scripted one.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="inferencemesh",
        description=(
            "Provider discovery, health monitoring and error recovery for "
            "interchangeable inference backends."
        ),
        version=__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.probe = probe

    _install_middleware(app, settings)
    register_exception_handlers(app)

    for router in (health_router, providers_router, errors_router):
        app.include_router(router, prefix=API_PREFIX)

    return app


app = create_app()
