"""Tests for the sliding-window provider metrics collector."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from structlog.testing import capture_logs

from inferencemesh.shared.providers.metrics import MetricsConfig, ProviderMetricsCollector
from inferencemesh.shared.providers.types import (
    PerformanceStats,
    ProviderMetricsSample,
    QualityScores,
    TokenUsage,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _sample(response_time_ms: float, *, at: datetime = T0, **kwargs) -> ProviderMetricsSample:
    kwargs.setdefault("provider", "openai")
    kwargs.setdefault("model", "gpt-4o")
    return ProviderMetricsSample(response_time_ms=response_time_ms, captured_at=at, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def collector(clock) -> ProviderMetricsCollector:
    return ProviderMetricsCollector(MetricsConfig(aggregation_window_s=300), clock=clock)


# ═══════════════════════════════════════════════════════════════
#  Aggregation
# ═══════════════════════════════════════════════════════════════
class TestAggregation:
    def test_mean_of_samples(self, collector):
        collector.collect_metrics(_sample(1000))
        collector.collect_metrics(_sample(2000))
        m = collector.get_aggregated_metrics("openai", "gpt-4o")
        assert m.avg_response_time_ms == 1500
        assert m.total_requests == 2

    def test_averages_every_dimension(self, collector):
        collector.collect_metrics(
            _sample(
                100,
                token_usage=TokenUsage(prompt=10, completion=20, total=30),
                quality=QualityScores(coherence=0.8, relevance=0.6, completeness=1.0),
                performance=PerformanceStats(throughput=50, latency_ms=90, efficiency=0.5),
            )
        )
        collector.collect_metrics(
            _sample(
                300,
                token_usage=TokenUsage(prompt=30, completion=40, total=70),
                quality=QualityScores(coherence=0.6, relevance=0.8, completeness=0.0),
                performance=PerformanceStats(throughput=150, latency_ms=110, efficiency=1.5),
            )
        )
        m = collector.get_aggregated_metrics("openai", "gpt-4o")
        assert m.avg_token_usage == TokenUsage(prompt=20, completion=30, total=50)
        assert m.quality_scores.coherence == pytest.approx(0.7)
        assert m.quality_scores.relevance == pytest.approx(0.7)
        assert m.quality_scores.completeness == pytest.approx(0.5)
        assert m.avg_throughput == 100
        assert m.avg_latency_ms == 100
        assert m.avg_efficiency == 1.0

    def test_unknown_bucket_is_none(self, collector):
        assert collector.get_aggregated_metrics("openai", "missing") is None

    def test_buckets_are_separate(self, collector):
        collector.collect_metrics(_sample(100))
        collector.collect_metrics(_sample(500, model="gpt-4o-mini"))
        collector.collect_metrics(_sample(900, provider="anthropic", model="claude"))
        everything = collector.get_all_provider_metrics()
        assert set(everything) == {"openai:gpt-4o", "openai:gpt-4o-mini", "anthropic:claude"}
        assert everything["anthropic:claude"].avg_response_time_ms == 900

    def test_last_updated_is_newest_sample(self, collector, clock):
        collector.collect_metrics(_sample(100, at=T0))
        clock.advance(10)
        collector.collect_metrics(_sample(100, at=clock.now))
        m = collector.get_aggregated_metrics("openai", "gpt-4o")
        assert m.last_updated == T0 + timedelta(seconds=10)


# ═══════════════════════════════════════════════════════════════
#  Window
# ═══════════════════════════════════════════════════════════════
class TestWindow:
    def test_old_samples_ignored_on_read(self, collector, clock):
        collector.collect_metrics(_sample(1000))
        clock.advance(301)
        assert collector.get_aggregated_metrics("openai", "gpt-4o") is None
        assert collector.get_all_provider_metrics() == {}

    def test_old_samples_pruned_on_write(self, collector, clock):
        collector.collect_metrics(_sample(1000))
        clock.advance(301)
        collector.collect_metrics(_sample(3000, at=clock.now))
        m = collector.get_aggregated_metrics("openai", "gpt-4o")
        assert m.total_requests == 1
        assert m.avg_response_time_ms == 3000


# ═══════════════════════════════════════════════════════════════
#  Configuration
# ═══════════════════════════════════════════════════════════════
class TestConfig:
    def test_disabled_is_noop(self, clock):
        collector = ProviderMetricsCollector(MetricsConfig(enabled=False), clock=clock)
        collector.collect_metrics(_sample(1000))
        assert collector.get_aggregated_metrics("openai", "gpt-4o") is None

    def test_quality_below_threshold_is_logged(self, clock):
        collector = ProviderMetricsCollector(
            MetricsConfig(quality_thresholds=QualityScores(coherence=0.5, relevance=0.5, completeness=0.5)),
            clock=clock,
        )
        with capture_logs() as logs:
            collector.collect_metrics(
                _sample(100, quality=QualityScores(coherence=0.2, relevance=0.9, completeness=0.9))
            )
        warnings = [e for e in logs if e["event"] == "metrics_quality_below_threshold"]
        assert len(warnings) == 1
        assert warnings[0]["coherence"] == 0.2
        assert "relevance" not in warnings[0]

    def test_quality_above_threshold_is_quiet(self, clock):
        collector = ProviderMetricsCollector(
            MetricsConfig(quality_thresholds=QualityScores(coherence=0.5)),
            clock=clock,
        )
        with capture_logs() as logs:
            collector.collect_metrics(_sample(100, quality=QualityScores(coherence=0.9)))
        assert not [e for e in logs if e["event"] == "metrics_quality_below_threshold"]


# ═══════════════════════════════════════════════════════════════
#  Background aggregation
# ═══════════════════════════════════════════════════════════════
class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_start_without_persistence_is_noop(self, collector):
        await collector.start()
        assert not collector.running
        await collector.destroy()

    @pytest.mark.asyncio
    async def test_loop_flushes_to_sink_and_stops(self, clock):
        snapshots: list[dict] = []
        collector = ProviderMetricsCollector(
            MetricsConfig(persist_metrics=True, aggregation_window_s=0.02),
            sink=snapshots.append,
            clock=clock,
        )
        collector.collect_metrics(_sample(100))

        await collector.start()
        await collector.start()
        assert collector.running
        await asyncio.sleep(0.1)
        await collector.destroy()
        await collector.destroy()

        assert not collector.running
        assert snapshots
        assert snapshots[0]["openai:gpt-4o"].total_requests == 1

        count = len(snapshots)
        await asyncio.sleep(0.05)
        assert len(snapshots) == count

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_stop_flush(self, clock):
        def broken(snapshot):
            raise RuntimeError("disk full")

        collector = ProviderMetricsCollector(MetricsConfig(), sink=broken, clock=clock)
        collector.collect_metrics(_sample(100))
        snapshot = await collector.flush()
        assert snapshot["openai:gpt-4o"].total_requests == 1
