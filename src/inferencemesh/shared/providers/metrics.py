"""Rolling per-provider/per-model performance and quality metrics.

Samples are bucketed by ``"<provider>:<model>"`` and averaged on read over
the live aggregation window.  Aged-out samples are pruned on the next write
to their bucket and ignored on read.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog

from inferencemesh.shared.providers.types import (
    AggregatedMetrics,
    ProviderMetricsSample,
    QualityScores,
    TokenUsage,
)

logger = structlog.get_logger(__name__)

MetricsSink = Callable[[dict[str, AggregatedMetrics]], Any]


@dataclass(frozen=True)
class MetricsConfig:
    """Collector configuration.

    Attributes:
        enabled:              When False every ``collect_metrics`` is a no-op.
        persist_metrics:      Run the background aggregation loop.
        aggregation_window_s: Sample lifetime and background tick, in seconds.
        quality_thresholds:   Scores below these are logged as warnings.
    """

    enabled: bool = True
    persist_metrics: bool = False
    aggregation_window_s: float = 300.0
    quality_thresholds: QualityScores | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderMetricsCollector:
    """Thread-safe sliding-window metrics aggregator."""

    def __init__(
        self,
        config: MetricsConfig | None = None,
        *,
        sink: MetricsSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or MetricsConfig()
        self._sink = sink
        self._clock = clock
        self._buckets: dict[str, list[ProviderMetricsSample]] = {}
        self._lock = threading.Lock()
        self._task: asyncio.Task[None] | None = None

    @property
    def config(self) -> MetricsConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Recording ────────────────────────────────────────────
    def collect_metrics(self, sample: ProviderMetricsSample) -> None:
        if not self._config.enabled:
            return
        key = sample.bucket_key
        with self._lock:
            bucket = self._buckets.setdefault(key, [])
            bucket.append(sample)
            cutoff = self._cutoff()
            self._buckets[key] = [s for s in bucket if s.captured_at >= cutoff]
        self._check_quality(sample)

    # ── Queries ──────────────────────────────────────────────
    def get_aggregated_metrics(self, provider: str, model: str) -> AggregatedMetrics | None:
        with self._lock:
            live = self._live(f"{provider}:{model}")
        if not live:
            return None
        return _aggregate(provider, model, live)

    def get_all_provider_metrics(self) -> dict[str, AggregatedMetrics]:
        snapshot: dict[str, AggregatedMetrics] = {}
        with self._lock:
            keys = list(self._buckets)
            buckets = {key: self._live(key) for key in keys}
        for key, live in buckets.items():
            if live:
                snapshot[key] = _aggregate(live[0].provider, live[0].model, live)
        return snapshot

    # ── Background aggregation ───────────────────────────────
    async def start(self) -> None:
        """Launch the aggregation loop when persistence is enabled."""
        if self.running:
            return
        if not (self._config.enabled and self._config.persist_metrics):
            return
        if self._config.aggregation_window_s <= 0:
            return
        self._task = asyncio.create_task(self._aggregation_loop(), name="metrics-aggregation")
        logger.info("metrics_aggregation_started", window_s=self._config.aggregation_window_s)

    async def destroy(self) -> None:
        """Stop the aggregation loop; safe to call more than once."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("metrics_aggregation_stopped")

    async def _aggregation_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.aggregation_window_s)
            await self.flush()

    async def flush(self) -> dict[str, AggregatedMetrics]:
        """Log a full snapshot and hand it to the sink."""
        snapshot = self.get_all_provider_metrics()
        logger.info(
            "metrics_aggregated",
            buckets=len(snapshot),
            total_requests=sum(m.total_requests for m in snapshot.values()),
        )
        if self._sink is not None:
            try:
                result = self._sink(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("metrics_sink_failed")
        return snapshot

    # ── Internals ────────────────────────────────────────────
    def _cutoff(self) -> datetime:
        return self._clock() - timedelta(seconds=self._config.aggregation_window_s)

    def _live(self, key: str) -> list[ProviderMetricsSample]:
        """Samples still inside the window; drops empty buckets (caller holds lock)."""
        bucket = self._buckets.get(key)
        if not bucket:
            self._buckets.pop(key, None)
            return []
        cutoff = self._cutoff()
        live = [s for s in bucket if s.captured_at >= cutoff]
        if not live:
            del self._buckets[key]
        return live

    def _check_quality(self, sample: ProviderMetricsSample) -> None:
        thresholds = self._config.quality_thresholds
        if thresholds is None:
            return
        below = {
            name: getattr(sample.quality, name)
            for name in ("coherence", "relevance", "completeness")
            if getattr(sample.quality, name) < getattr(thresholds, name)
        }
        if below:
            logger.warning(
                "metrics_quality_below_threshold",
                provider=sample.provider,
                model=sample.model,
                **below,
            )


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _aggregate(provider: str, model: str, samples: list[ProviderMetricsSample]) -> AggregatedMetrics:
    return AggregatedMetrics(
        provider=provider,
        model=model,
        avg_response_time_ms=_mean([s.response_time_ms for s in samples]),
        avg_throughput=_mean([s.performance.throughput for s in samples]),
        avg_latency_ms=_mean([s.performance.latency_ms for s in samples]),
        avg_efficiency=_mean([s.performance.efficiency for s in samples]),
        avg_token_usage=TokenUsage(
            prompt=_mean([s.token_usage.prompt for s in samples]),
            completion=_mean([s.token_usage.completion for s in samples]),
            total=_mean([s.token_usage.total for s in samples]),
        ),
        quality_scores=QualityScores(
            coherence=_mean([s.quality.coherence for s in samples]),
            relevance=_mean([s.quality.relevance for s in samples]),
            completeness=_mean([s.quality.completeness for s in samples]),
        ),
        total_requests=len(samples),
        last_updated=max(s.captured_at for s in samples),
    )
