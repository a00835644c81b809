"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import os
import sys
from collections import defaultdict
from typing import Any

import pytest

# Add src to path so imports work
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from inferencemesh.domain.entities import AuthConfig, Provider, ProviderEndpoint
from inferencemesh.domain.enums import AuthType, DiscoverySource
from inferencemesh.ports.outbound import HealthProbePort
from inferencemesh.shared.providers.types import ProbeResult


class FakeProbe(HealthProbePort):
    """Scripted ``HealthProbePort``: queued results per base URL, then a default."""

    def __init__(self, *, delay_s: float = 0.0) -> None:
        self.delay_s = delay_s
        self.queued: dict[str, list[ProbeResult]] = defaultdict(list)
        self.defaults: dict[str, ProbeResult] = {}
        self.models: dict[str, Any] = {}
        self.models_error: Exception | None = None
        self.registry: dict[str, ProviderEndpoint] = {}
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    # ── Scripting helpers ────────────────────────────────────
    @staticmethod
    def ok(latency_ms: float = 10.0, payload: dict[str, Any] | None = None) -> ProbeResult:
        return ProbeResult(ok=True, response_time_ms=latency_ms, status_code=200, payload=payload)

    @staticmethod
    def fail(
        error: str = "HTTP 503: Service Unavailable",
        exception: BaseException | None = None,
        latency_ms: float = 5.0,
    ) -> ProbeResult:
        return ProbeResult(ok=False, response_time_ms=latency_ms, error=error, exception=exception)

    def script(self, base_url: str, *results: ProbeResult) -> None:
        self.queued[base_url].extend(results)

    def set_default(self, base_url: str, result: ProbeResult) -> None:
        self.defaults[base_url] = result

    # ── HealthProbePort ──────────────────────────────────────
    async def probe(self, endpoint: ProviderEndpoint, *, timeout_s: float) -> ProbeResult:
        self.calls.append(endpoint.base_url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
        finally:
            self.in_flight -= 1
        queue = self.queued.get(endpoint.base_url)
        if queue:
            return queue.pop(0)
        return self.defaults.get(endpoint.base_url, self.ok())

    async def fetch_models(self, endpoint: ProviderEndpoint, *, timeout_s: float) -> Any:
        if self.models_error is not None:
            raise self.models_error
        return self.models.get(endpoint.base_url, {"data": []})

    async def fetch_registry(self, url: str, *, timeout_s: float) -> dict[str, ProviderEndpoint]:
        return dict(self.registry)

    async def close(self) -> None:
        self.closed = True


def make_endpoint(name: str, *, token: str | None = None) -> ProviderEndpoint:
    return ProviderEndpoint(
        base_url=f"https://{name}.example.test/v1",
        authentication=AuthConfig(type=AuthType.BEARER, token=token) if token else AuthConfig(),
    )


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def endpoints() -> dict[str, ProviderEndpoint]:
    return {
        "openai": make_endpoint("openai", token="sk-test"),
        "anthropic": make_endpoint("anthropic"),
    }


@pytest.fixture
def manual_provider() -> Provider:
    return Provider(
        id="local-llm",
        name="Local LLM",
        endpoint=make_endpoint("local-llm"),
        discovery_source=DiscoverySource.MANUAL,
    )
