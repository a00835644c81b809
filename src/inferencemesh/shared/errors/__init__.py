"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from inferencemesh.domain.exceptions import (
    ConfigurationError,
    DomainError,
    OperationAbortedError,
    ProviderNotConfiguredError,
    RecoveryFailedError,
)

logger = structlog.get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(ProviderNotConfiguredError)
    async def handle_not_configured(request: Request, exc: ProviderNotConfiguredError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=404,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration(request: Request, exc: ConfigurationError) -> ORJSONResponse:
        logger.error("configuration_error_http", message=exc.message)
        return ORJSONResponse(
            status_code=500,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(RecoveryFailedError)
    async def handle_recovery(request: Request, exc: RecoveryFailedError) -> ORJSONResponse:
        logger.error(
            "recovery_failed_http",
            pattern=exc.classification.pattern.value if exc.classification else None,
        )
        return ORJSONResponse(
            status_code=502,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(OperationAbortedError)
    async def handle_aborted(request: Request, exc: OperationAbortedError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=408,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=400,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
