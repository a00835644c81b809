"""Error classification and rolling error statistics.

``classify`` is a pure function: it looks at a structured status code first,
then at the ``ErrorKind`` tag (or the Python built-in exception type), then
at the message text, and maps the resulting ``ErrorPattern`` through a fixed
policy table.  ``ErrorClassifier`` wraps it and records every classification
into ``ErrorStatistics`` for likelihood prediction.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import Counter, deque
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, NamedTuple

import httpx
import structlog

from inferencemesh.domain.enums import ErrorKind, ErrorPattern, ErrorSeverity, Likelihood
from inferencemesh.domain.exceptions import ProviderCallError
from inferencemesh.shared.observability.metrics import CLASSIFIED_ERRORS
from inferencemesh.shared.providers.types import ErrorClassification, ErrorLikelihood

logger = structlog.get_logger(__name__)

DEFAULT_RATE_LIMIT_WAIT_S = 60.0


class _Policy(NamedTuple):
    retryable: bool
    transient: bool
    user_action: bool
    wait_s: float
    severity: ErrorSeverity
    user_message: str


_POLICIES: dict[ErrorPattern, _Policy] = {
    ErrorPattern.RATE_LIMIT: _Policy(
        True, True, False, DEFAULT_RATE_LIMIT_WAIT_S, ErrorSeverity.MEDIUM,
        "Too many requests. Please wait a moment and try again.",
    ),
    ErrorPattern.SERVER_ERROR: _Policy(
        True, True, False, 5.0, ErrorSeverity.HIGH,
        "AI service is temporarily unavailable. Trying backup service...",
    ),
    ErrorPattern.MODEL_OVERLOADED: _Policy(
        True, True, False, 30.0, ErrorSeverity.MEDIUM,
        "AI model is busy. Switching to alternative model...",
    ),
    ErrorPattern.TIMEOUT: _Policy(
        True, True, False, 10.0, ErrorSeverity.MEDIUM,
        "The request took too long. Please try again.",
    ),
    ErrorPattern.NETWORK_ERROR: _Policy(
        True, True, False, 3.0, ErrorSeverity.HIGH,
        "Unable to connect to AI service. Retrying...",
    ),
    ErrorPattern.NO_OBJECT_GENERATED: _Policy(
        True, True, False, 2.0, ErrorSeverity.MEDIUM,
        "Unable to generate the requested format. Trying alternative approach...",
    ),
    ErrorPattern.AUTHENTICATION: _Policy(
        False, False, True, 0.0, ErrorSeverity.CRITICAL,
        "Authentication error. Please check your credentials.",
    ),
    ErrorPattern.INVALID_ARGUMENT: _Policy(
        False, False, True, 0.0, ErrorSeverity.MEDIUM,
        "Unable to process your request. Please check your input and try again.",
    ),
    ErrorPattern.NO_SUCH_MODEL: _Policy(
        False, False, True, 0.0, ErrorSeverity.HIGH,
        "The requested model is not available. Please select a different model.",
    ),
    ErrorPattern.NO_SUCH_PROVIDER: _Policy(
        False, False, True, 0.0, ErrorSeverity.HIGH,
        "The requested AI provider is not available.",
    ),
    ErrorPattern.INVALID_TOOL_INPUT: _Policy(
        False, False, True, 0.0, ErrorSeverity.MEDIUM,
        "A tool received invalid input. Please rephrase your request.",
    ),
    ErrorPattern.UNKNOWN: _Policy(
        False, False, False, 0.0, ErrorSeverity.MEDIUM,
        "An unexpected error occurred. Please try again.",
    ),
}

_KIND_PATTERNS: dict[ErrorKind, ErrorPattern] = {
    ErrorKind.NO_OBJECT_GENERATED: ErrorPattern.NO_OBJECT_GENERATED,
    ErrorKind.INVALID_ARGUMENT: ErrorPattern.INVALID_ARGUMENT,
    ErrorKind.NO_SUCH_MODEL: ErrorPattern.NO_SUCH_MODEL,
    ErrorKind.NO_SUCH_PROVIDER: ErrorPattern.NO_SUCH_PROVIDER,
    ErrorKind.INVALID_TOOL_INPUT: ErrorPattern.INVALID_TOOL_INPUT,
    ErrorKind.TIMEOUT: ErrorPattern.TIMEOUT,
    ErrorKind.NETWORK: ErrorPattern.NETWORK_ERROR,
}

# Checked in order; first hit wins.
_MESSAGE_HINTS: tuple[tuple[tuple[str, ...], ErrorPattern], ...] = (
    (("timeout", "timed out"), ErrorPattern.TIMEOUT),
    (("rate limit",), ErrorPattern.RATE_LIMIT),
    (("network", "connection", "econnrefused"), ErrorPattern.NETWORK_ERROR),
    (("overloaded", "capacity"), ErrorPattern.MODEL_OVERLOADED),
)


# ═══════════════════════════════════════════════════════════════
#  Pure classification
# ═══════════════════════════════════════════════════════════════
def classify(error: BaseException) -> ErrorClassification:
    """Map an exception to its pattern and retry policy."""
    status_code = _status_code(error)
    retry_after = _retry_after(error)

    pattern = _pattern_from_status(status_code)
    if pattern is None:
        pattern = _pattern_from_kind(error)
    if pattern is None:
        pattern = _pattern_from_message(str(error))
    if pattern is None:
        pattern = ErrorPattern.UNKNOWN

    policy = _POLICIES[pattern]
    wait_s = policy.wait_s
    if pattern == ErrorPattern.RATE_LIMIT and retry_after is not None:
        wait_s = retry_after

    metadata: dict[str, Any] = {"error_name": type(error).__name__}
    if status_code is not None:
        metadata["status_code"] = status_code
    if retry_after is not None:
        metadata["retry_after_s"] = retry_after
    if isinstance(error, ProviderCallError):
        metadata["kind"] = error.kind.value
        if error.provider:
            metadata["provider"] = error.provider
        if error.model:
            metadata["model"] = error.model

    return ErrorClassification(
        pattern=pattern,
        is_retryable=policy.retryable,
        is_transient=policy.transient,
        requires_user_action=policy.user_action,
        suggested_wait_s=max(0.0, wait_s),
        severity=policy.severity,
        user_message=policy.user_message,
        metadata=metadata,
    )


def _status_code(error: BaseException) -> int | None:
    if isinstance(error, ProviderCallError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def _retry_after(error: BaseException) -> float | None:
    if isinstance(error, ProviderCallError) and error.retry_after is not None:
        return float(error.retry_after)
    if isinstance(error, httpx.HTTPStatusError):
        return parse_retry_after(error.response.headers.get("Retry-After"))
    return None


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header given as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def _pattern_from_status(status_code: int | None) -> ErrorPattern | None:
    if status_code is None:
        return None
    if status_code == 429:
        return ErrorPattern.RATE_LIMIT
    if status_code in (401, 403):
        return ErrorPattern.AUTHENTICATION
    if status_code == 503:
        return ErrorPattern.MODEL_OVERLOADED
    if status_code >= 500:
        return ErrorPattern.SERVER_ERROR
    if status_code == 408:
        return ErrorPattern.TIMEOUT
    return None


def _pattern_from_kind(error: BaseException) -> ErrorPattern | None:
    if isinstance(error, ProviderCallError):
        return _KIND_PATTERNS.get(error.kind)
    # httpx.TimeoutException is a TransportError, so timeouts go first.
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorPattern.TIMEOUT
    if isinstance(error, (ConnectionError, httpx.TransportError)):
        return ErrorPattern.NETWORK_ERROR
    return None


def _pattern_from_message(message: str) -> ErrorPattern | None:
    text = message.lower()
    for needles, pattern in _MESSAGE_HINTS:
        if any(n in text for n in needles):
            return pattern
    return None


# ═══════════════════════════════════════════════════════════════
#  Rolling statistics
# ═══════════════════════════════════════════════════════════════
class ErrorStatistics:
    """Thread-safe per-pattern occurrence counters over a sliding window."""

    def __init__(
        self,
        *,
        window_s: float = 3600.0,
        max_samples_per_pattern: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window_s
        self._max_samples = max_samples_per_pattern
        self._clock = clock
        self._counts: Counter[ErrorPattern] = Counter()
        self._times: dict[ErrorPattern, deque[float]] = {}
        self._lock = threading.Lock()

    def record(self, pattern: ErrorPattern) -> None:
        with self._lock:
            self._counts[pattern] += 1
            times = self._times.setdefault(pattern, deque(maxlen=self._max_samples))
            times.append(self._clock())
            self._evict(times)

    def recent(self, pattern: ErrorPattern) -> list[float]:
        with self._lock:
            times = self._times.get(pattern)
            if not times:
                return []
            self._evict(times)
            return list(times)

    def predict_error_likelihood(self, pattern: ErrorPattern) -> ErrorLikelihood:
        times = self.recent(pattern)
        count = len(times)
        if count >= 5:
            likelihood = Likelihood.HIGH
        elif count >= 2:
            likelihood = Likelihood.MEDIUM
        else:
            likelihood = Likelihood.LOW

        average_interval = None
        if count >= 2:
            intervals = [b - a for a, b in zip(times, times[1:])]
            average_interval = sum(intervals) / len(intervals)

        return ErrorLikelihood(
            likelihood=likelihood,
            recent_occurrences=count,
            average_interval_s=average_interval,
        )

    def get_error_statistics(self) -> dict[str, Any]:
        """All-time counts, recent per-minute rates and recommendations."""
        with self._lock:
            by_pattern = {p.value: self._counts.get(p, 0) for p in ErrorPattern}
            recent: list[dict[str, Any]] = []
            window_minutes = max(self._window / 60.0, 1e-9)
            for pattern, times in self._times.items():
                self._evict(times)
                if times:
                    recent.append(
                        {
                            "pattern": pattern.value,
                            "count": len(times),
                            "rate": len(times) / window_minutes,
                        }
                    )
        recent.sort(key=lambda r: r["rate"], reverse=True)
        return {
            "by_pattern": by_pattern,
            "recent_patterns": recent,
            "recommendations": _recommendations(recent),
        }

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._times.clear()

    def _evict(self, times: deque[float]) -> None:
        """Drop timestamps outside the window (caller holds lock)."""
        cutoff = self._clock() - self._window
        while times and times[0] < cutoff:
            times.popleft()


def _recommendations(recent: list[dict[str, Any]]) -> list[str]:
    out: list[str] = []
    for entry in recent:
        pattern, count, rate = entry["pattern"], entry["count"], entry["rate"]
        if pattern == ErrorPattern.RATE_LIMIT.value and rate > 0.5:
            out.append("Implement request throttling to avoid rate limits")
        if pattern == ErrorPattern.TIMEOUT.value and count > 5:
            out.append("Consider increasing timeout values or optimizing requests")
        if pattern == ErrorPattern.NETWORK_ERROR.value and count > 3:
            out.append("Check network connectivity and implement offline fallbacks")
        if pattern == ErrorPattern.MODEL_OVERLOADED.value and rate > 0.2:
            out.append("Consider using alternative models during peak times")
        if pattern == ErrorPattern.INVALID_ARGUMENT.value and count > 2:
            out.append("Review input validation and provide clearer error messages")
    return out


# ═══════════════════════════════════════════════════════════════
#  Classifier
# ═══════════════════════════════════════════════════════════════
class ErrorClassifier:
    """Classifies errors and keeps rolling statistics about them."""

    def __init__(self, *, stats_window_s: float = 3600.0, statistics: ErrorStatistics | None = None) -> None:
        self._stats = statistics or ErrorStatistics(window_s=stats_window_s)

    @property
    def statistics(self) -> ErrorStatistics:
        return self._stats

    def classify(self, error: BaseException) -> ErrorClassification:
        result = classify(error)
        self._stats.record(result.pattern)
        CLASSIFIED_ERRORS.labels(pattern=result.pattern.value).inc()
        logger.debug(
            "error_classified",
            pattern=result.pattern.value,
            retryable=result.is_retryable,
            error_name=result.metadata.get("error_name"),
        )
        return result

    def predict_error_likelihood(self, pattern: ErrorPattern) -> ErrorLikelihood:
        return self._stats.predict_error_likelihood(pattern)

    def get_error_statistics(self) -> dict[str, Any]:
        return self._stats.get_error_statistics()
