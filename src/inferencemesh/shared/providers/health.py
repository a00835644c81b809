"""Health state machine for a single discovered provider.

Tracks consecutive failures and recovery successes, folds the remote health
payload into a healthy/degraded signal, and keeps a bounded check history.
Every ``record_*`` call returns a ``HealthTransition`` so the caller decides
which lifecycle events to publish.
"""

from __future__ import annotations

import copy
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any

from inferencemesh.domain.entities import Health, HealthHistoryEntry
from inferencemesh.domain.enums import HealthStatus
from inferencemesh.shared.providers.types import HealthTransition


class ProviderHealthTracker:
    """Thread-safe per-provider health state machine."""

    def __init__(
        self,
        provider_id: str,
        *,
        unhealthy_threshold: int = 3,
        recovery_success_threshold: int = 2,
        degraded_success_rate: float = 0.9,
        degraded_latency_ms: float = 2000.0,
        history_limit: int = 100,
        initial: Health | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._unhealthy_thr = max(1, unhealthy_threshold)
        self._recovery_thr = max(1, recovery_success_threshold)
        self._degraded_rate = degraded_success_rate
        self._degraded_latency = degraded_latency_ms

        self._health = self._normalise(initial) if initial is not None else Health()
        self._history: deque[HealthHistoryEntry] = deque(maxlen=history_limit)
        self._recovery_successes = 0
        self._lock = threading.Lock()

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def _normalise(self, initial: Health) -> Health:
        """Make a caller-supplied health agree with the failure threshold.

        Unhealthy holds exactly when ``consecutive_failures`` has reached the
        threshold: an unhealthy status lifts the count to the threshold, and a
        count at the threshold forces the status to unhealthy.
        """
        health = copy.copy(initial)
        health.consecutive_failures = max(0, health.consecutive_failures)
        health.success_rate = min(1.0, max(0.0, health.success_rate))
        if health.status == HealthStatus.UNHEALTHY:
            health.consecutive_failures = max(health.consecutive_failures, self._unhealthy_thr)
        elif health.consecutive_failures >= self._unhealthy_thr:
            health.status = HealthStatus.UNHEALTHY
        return health

    # ── Recording ────────────────────────────────────────────
    def record_success(
        self,
        latency_ms: float,
        *,
        payload: dict[str, Any] | None = None,
    ) -> HealthTransition:
        """Fold a successful check into the state machine."""
        degraded = self.is_degraded(payload)
        with self._lock:
            previous = self._health.status
            recovered = False

            if previous == HealthStatus.UNHEALTHY:
                self._recovery_successes += 1
                if self._recovery_successes >= self._recovery_thr:
                    self._health.status = HealthStatus.DEGRADED if degraded else HealthStatus.HEALTHY
                    self._health.consecutive_failures = 0
                    self._recovery_successes = 0
                    recovered = True
            else:
                self._health.consecutive_failures = 0
                self._health.status = HealthStatus.DEGRADED if degraded else HealthStatus.HEALTHY

            self._health.success_rate = _remote_success_rate(payload)
            self._append(latency_ms, error=None, details=payload)
            return HealthTransition(
                previous=previous,
                current=self._health.status,
                health=copy.copy(self._health),
                recovered=recovered,
            )

    def record_failure(self, error: str, latency_ms: float = 0.0) -> HealthTransition:
        """Fold a failed check into the state machine."""
        with self._lock:
            previous = self._health.status
            self._health.consecutive_failures += 1
            self._recovery_successes = 0
            self._health.success_rate = 0.0

            became_unavailable = False
            if (
                previous != HealthStatus.UNHEALTHY
                and self._health.consecutive_failures >= self._unhealthy_thr
            ):
                self._health.status = HealthStatus.UNHEALTHY
                became_unavailable = True

            self._append(latency_ms, error=error, details=None)
            return HealthTransition(
                previous=previous,
                current=self._health.status,
                health=copy.copy(self._health),
                ok=False,
                became_unavailable=became_unavailable,
            )

    # ── Observation ──────────────────────────────────────────
    @property
    def status(self) -> HealthStatus:
        return self._health.status

    @property
    def consecutive_failures(self) -> int:
        return self._health.consecutive_failures

    @property
    def recovery_successes(self) -> int:
        return self._recovery_successes

    @property
    def health(self) -> Health:
        with self._lock:
            return copy.copy(self._health)

    @property
    def history(self) -> list[HealthHistoryEntry]:
        with self._lock:
            return list(self._history)

    def is_degraded(self, payload: dict[str, Any] | None) -> bool:
        """True when a remote health payload reports degradation."""
        if not payload:
            return False
        if str(payload.get("status", "")).lower() == HealthStatus.DEGRADED.value:
            return True
        rate = payload.get("successRate")
        if _is_number(rate) and rate < self._degraded_rate:
            return True
        latency = payload.get("averageLatency")
        if _is_number(latency) and latency > self._degraded_latency:
            return True
        return False

    # ── Internals ────────────────────────────────────────────
    def _append(self, latency_ms: float, *, error: str | None, details: dict[str, Any] | None) -> None:
        """Record a history entry and refresh derived fields (caller holds lock)."""
        now = datetime.now(timezone.utc)
        self._history.append(
            HealthHistoryEntry(
                timestamp=now,
                status=self._health.status,
                response_time_ms=latency_ms,
                error=error,
                details=details,
            )
        )
        successful = [e.response_time_ms for e in self._history if e.error is None]
        self._health.average_latency_ms = (
            float(f"{sum(successful) / len(successful):.2f}") if successful else 0.0
        )
        self._health.last_health_check = now


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _remote_success_rate(payload: dict[str, Any] | None) -> float:
    rate = (payload or {}).get("successRate")
    if _is_number(rate):
        return min(max(float(rate), 0.0), 1.0)
    return 1.0
