"""Structured logging setup."""

from __future__ import annotations

import logging
import sys

import structlog

from inferencemesh.domain.enums import ErrorSeverity

_SEVERITY_LEVELS: dict[ErrorSeverity, str] = {
    ErrorSeverity.LOW: "debug",
    ErrorSeverity.MEDIUM: "info",
    ErrorSeverity.HIGH: "warning",
    ErrorSeverity.CRITICAL: "error",
}


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    JSON output in production, coloured console output otherwise.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)


def log_method_for(severity: ErrorSeverity) -> str:
    """Name of the logger method matching an error severity."""
    return _SEVERITY_LEVELS.get(severity, "warning")


__all__ = ["configure_logging", "log_method_for"]
