"""Prometheus metrics for provider discovery, recovery and the HTTP surface."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Provider health ──────────────────────────────────────────
PROVIDER_HEALTH_CHECKS = Counter(
    "provider_health_checks_total",
    "Provider health checks performed",
    ["provider", "outcome"],  # success / failure
)

PROVIDER_HEALTH_CHECK_DURATION = Histogram(
    "provider_health_check_duration_seconds",
    "Provider health check round-trip time",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

PROVIDER_HEALTH_STATUS = Gauge(
    "provider_health_status",
    "1 for the provider's current health status, 0 otherwise",
    ["provider", "status"],
)

PROVIDER_EVENTS = Counter(
    "provider_events_total",
    "Provider lifecycle events published",
    ["event"],
)

# ── Error recovery ───────────────────────────────────────────
RETRY_ATTEMPTS = Counter(
    "retry_attempts_total",
    "Operation attempts made by the retry engine",
    ["outcome"],  # success / failure / aborted
)

CLASSIFIED_ERRORS = Counter(
    "classified_errors_total",
    "Errors classified, by pattern",
    ["pattern"],
)

FALLBACK_INVOCATIONS = Counter(
    "fallback_invocations_total",
    "Fallback operations invoked after retries were exhausted",
    ["outcome"],
)
