"""Provider discovery and health monitoring.

Owns the provider registry.  Providers enter it through discovery passes over
the configured endpoint table (optionally extended by a service-mesh
registry) or through manual registration, and leave it only through
deregistration.  Each registered provider gets its own cancellable asyncio
health loop; probes across all providers share one semaphore.

Events for a provider are published while that provider's check lock is
held, so subscribers see them in the order its checks resolved.
"""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable

import structlog

from inferencemesh.domain.entities import Provider, ProviderCapabilities, ProviderEndpoint
from inferencemesh.domain.enums import Capability, DiscoverySource, HealthStatus
from inferencemesh.domain.events import (
    EVENT_TYPES,
    DiscoveryCompleteEvent,
    DiscoveryErrorEvent,
    DomainEvent,
    ProviderDiscoveredEvent,
    ProviderHealthChangedEvent,
    ProviderRecoveredEvent,
    ProviderUnavailableEvent,
    ProviderUpdatedEvent,
)
from inferencemesh.domain.exceptions import DiscoveryFailedError, ProviderNotConfiguredError
from inferencemesh.ports.outbound import EventBusPort, HealthProbePort
from inferencemesh.shared.observability import log_method_for
from inferencemesh.shared.observability.metrics import (
    PROVIDER_HEALTH_CHECK_DURATION,
    PROVIDER_HEALTH_CHECKS,
    PROVIDER_HEALTH_STATUS,
)
from inferencemesh.shared.providers.capabilities import (
    capabilities_from_models,
    detected_defaults,
    determine_cost_tier,
    display_name,
    minimal_capabilities,
)
from inferencemesh.shared.providers.classifier import classify
from inferencemesh.shared.providers.health import ProviderHealthTracker
from inferencemesh.shared.providers.types import DiscoveryConfig, HealthTransition, ProbeResult

logger = structlog.get_logger(__name__)

DEREGISTERED_REASON = "manually deregistered"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderDiscoveryService:
    """Discovers providers, monitors their health and publishes lifecycle events.

    Usage::

        service = ProviderDiscoveryService(config, probe=HttpHealthProbe(), event_bus=bus)
        service.on("provider:unavailable", handle_outage)
        await service.start()
        ...
        await service.stop()
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        *,
        probe: HealthProbePort,
        event_bus: EventBusPort,
    ) -> None:
        self._config = config
        self._probe = probe
        self._bus = event_bus

        self._endpoints: dict[str, ProviderEndpoint] = dict(config.provider_endpoints)
        self._sources: dict[str, DiscoverySource] = {
            pid: DiscoverySource.API_DISCOVERY for pid in self._endpoints
        }
        self._providers: dict[str, Provider] = {}
        self._trackers: dict[str, ProviderHealthTracker] = {}
        self._lock = threading.Lock()

        self._semaphore = asyncio.Semaphore(max(1, config.max_concurrent_health_checks))
        self._check_locks: dict[str, asyncio.Lock] = {}
        self._health_tasks: dict[str, asyncio.Task[None]] = {}
        self._discovery_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def config(self) -> DiscoveryConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    @property
    def configured_provider_ids(self) -> list[str]:
        return list(self._endpoints)

    # ── Lifecycle ────────────────────────────────────────────
    async def start(self) -> None:
        """Run the initial discovery pass and schedule the background loops."""
        if self._running:
            return
        self._running = True
        logger.info(
            "provider_discovery_starting",
            configured=len(self._endpoints),
            service_mesh=self._config.enable_service_mesh,
        )

        await self._discovery_pass()
        if not self._running:
            # stop() ran during the initial pass
            logger.info("provider_discovery_start_aborted")
            return

        with self._lock:
            pids = list(self._providers)
        for pid in pids:
            self._start_monitoring(pid)
        if self._discovery_task is None:
            self._discovery_task = asyncio.create_task(self._discovery_loop(), name="provider-discovery")
        logger.info("provider_discovery_started", providers=len(pids))

    async def stop(self) -> None:
        """Cancel every scheduled task and wait for them; idempotent."""
        self._running = False
        tasks = list(self._health_tasks.values())
        self._health_tasks.clear()
        if self._discovery_task is not None:
            tasks.append(self._discovery_task)
            self._discovery_task = None
        if not tasks:
            return
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)
        logger.info("provider_discovery_stopped", cancelled=len(tasks))

    # ── Discovery ────────────────────────────────────────────
    async def discover_provider(self, provider_id: str) -> Provider | None:
        """Probe a configured endpoint once and admit or refresh the provider.

        Raises:
            ProviderNotConfiguredError: ``provider_id`` has no endpoint entry.
        """
        endpoint = self._endpoints.get(provider_id)
        if endpoint is None:
            raise ProviderNotConfiguredError(provider_id)

        log = logger.bind(provider=provider_id)
        result = await self._run_probe(provider_id, endpoint)
        if not result.ok:
            log.warning("provider_initial_health_check_failed", error=result.error)
            return None

        capabilities = await self._detect_capabilities(provider_id, endpoint)

        async with self._check_lock(provider_id):
            with self._lock:
                existing = self._providers.get(provider_id)
            if existing is not None:
                return await self._refresh_capabilities(provider_id, capabilities)

            tracker = self._new_tracker(provider_id)
            tracker.record_success(result.response_time_ms, payload=result.payload)
            now = _utcnow()
            provider = Provider(
                id=provider_id,
                name=display_name(provider_id),
                endpoint=endpoint,
                capabilities=capabilities,
                cost_tier=determine_cost_tier(capabilities),
                discovery_source=self._sources.get(provider_id, DiscoverySource.API_DISCOVERY),
                discovered_at=now,
                last_updated=now,
                health=tracker.health,
                health_history=tracker.history,
            )
            with self._lock:
                self._providers[provider_id] = provider
                self._trackers[provider_id] = tracker
                snapshot = provider.snapshot()
            self._set_status_gauge(provider_id, snapshot.health.status)
            log.info(
                "provider_discovered",
                status=snapshot.health.status.value,
                models=len(snapshot.capabilities.supported_models),
                cost_tier=snapshot.cost_tier.value,
            )
            await self._publish(ProviderDiscoveredEvent(provider=snapshot))

        if self._running:
            self._start_monitoring(provider_id)
        return snapshot

    async def _discovery_pass(self) -> None:
        if self._config.enable_service_mesh:
            await self._refresh_service_mesh()

        pids = list(self._endpoints)
        results = await asyncio.gather(
            *(self._discover_or_refresh(pid) for pid in pids),
            return_exceptions=True,
        )
        for pid, result in zip(pids, results):
            if isinstance(result, Exception):
                logger.error("provider_discovery_failed", provider=pid, error=str(result))
                await self._publish(DiscoveryErrorEvent(error=result, provider_id=pid))

        providers = tuple(self.get_discovered_providers().values())
        if pids and not providers:
            error = DiscoveryFailedError(f"No provider reachable out of {len(pids)} configured")
            logger.warning("provider_discovery_empty", configured=len(pids))
            await self._publish(DiscoveryErrorEvent(error=error))
        logger.info("provider_discovery_complete", providers=len(providers), configured=len(pids))
        await self._publish(DiscoveryCompleteEvent(providers=providers))

    async def _discover_or_refresh(self, provider_id: str) -> Provider | None:
        with self._lock:
            known = provider_id in self._providers
        if not known:
            return await self.discover_provider(provider_id)
        if not self._config.capability_detection_enabled:
            return None
        capabilities = await self._detect_capabilities(provider_id, self._endpoints[provider_id])
        async with self._check_lock(provider_id):
            return await self._refresh_capabilities(provider_id, capabilities)

    async def _refresh_capabilities(
        self, provider_id: str, capabilities: ProviderCapabilities
    ) -> Provider | None:
        """Store re-detected capabilities; publish when they changed (caller holds check lock)."""
        with self._lock:
            provider = self._providers.get(provider_id)
            if provider is None:
                return None
            if provider.capabilities == capabilities:
                return provider.snapshot()
            provider.capabilities = capabilities
            provider.cost_tier = determine_cost_tier(capabilities)
            provider.last_updated = _utcnow()
            snapshot = provider.snapshot()
        logger.info("provider_capabilities_updated", provider=provider_id)
        await self._publish(ProviderUpdatedEvent(provider=snapshot))
        return snapshot

    async def _refresh_service_mesh(self) -> None:
        url = self._config.service_mesh_endpoint
        if not url:
            return
        try:
            table = await self._probe.fetch_registry(url, timeout_s=self._config.health_check_timeout)
        except Exception as exc:
            logger.warning("service_mesh_fetch_failed", url=url, error=str(exc))
            await self._publish(DiscoveryErrorEvent(error=exc))
            return
        added = [pid for pid in table if pid not in self._endpoints]
        for pid in added:
            self._endpoints[pid] = table[pid]
            self._sources[pid] = DiscoverySource.SERVICE_MESH
        if added:
            logger.info("service_mesh_endpoints_added", providers=added)

    async def _detect_capabilities(
        self, provider_id: str, endpoint: ProviderEndpoint
    ) -> ProviderCapabilities:
        if not self._config.capability_detection_enabled:
            return minimal_capabilities()
        try:
            payload = await self._probe.fetch_models(endpoint, timeout_s=self._config.health_check_timeout)
        except Exception as exc:
            logger.warning("capability_detection_failed", provider=provider_id, error=str(exc))
            return detected_defaults()
        return capabilities_from_models(payload)

    async def _discovery_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.discovery_interval)
            try:
                await self._discovery_pass()
            except Exception as exc:
                logger.exception("provider_discovery_pass_failed")
                await self._publish(DiscoveryErrorEvent(error=exc))

    # ── Manual registration ──────────────────────────────────
    async def register_provider(self, provider: Provider) -> Provider:
        """Add or replace a provider outside of discovery."""
        record = provider.snapshot()
        tracker = self._new_tracker(record.id, initial=record.health)
        record.health = tracker.health
        async with self._check_lock(record.id):
            with self._lock:
                replaced = record.id in self._providers
                record.last_updated = _utcnow()
                self._providers[record.id] = record
                self._trackers[record.id] = tracker
                snapshot = record.snapshot()
            self._set_status_gauge(record.id, snapshot.health.status)
            logger.info("provider_registered", provider=record.id, replaced=replaced)
            if replaced:
                await self._publish(ProviderUpdatedEvent(provider=snapshot))
            else:
                await self._publish(ProviderDiscoveredEvent(provider=snapshot))
        if self._running:
            self._start_monitoring(record.id)
        return snapshot

    async def deregister_provider(self, provider_id: str) -> bool:
        """Remove a provider and stop monitoring it. Returns False when unknown."""
        await self._stop_monitoring(provider_id)
        with self._lock:
            removed = self._providers.pop(provider_id, None)
            self._trackers.pop(provider_id, None)
        if removed is None:
            return False
        for status in HealthStatus:
            PROVIDER_HEALTH_STATUS.labels(provider=provider_id, status=status.value).set(0)
        logger.info("provider_deregistered", provider=provider_id)
        await self._publish(ProviderUnavailableEvent(provider_id=provider_id, reason=DEREGISTERED_REASON))
        return True

    # ── Health checks ────────────────────────────────────────
    async def check_provider_health(self, provider_id: str) -> HealthTransition | None:
        """Run one health check now. Returns None for unknown providers."""
        async with self._check_lock(provider_id):
            with self._lock:
                provider = self._providers.get(provider_id)
                tracker = self._trackers.get(provider_id)
            if provider is None or tracker is None:
                return None

            result = await self._run_probe(provider_id, provider.endpoint)
            log = logger.bind(provider=provider_id)

            if result.ok:
                transition = tracker.record_success(result.response_time_ms, payload=result.payload)
                PROVIDER_HEALTH_CHECKS.labels(provider=provider_id, outcome="success").inc()
            else:
                error = result.exception or RuntimeError(result.error or "Health check failed")
                classification = classify(error)
                transition = tracker.record_failure(result.error or "Health check failed", result.response_time_ms)
                PROVIDER_HEALTH_CHECKS.labels(provider=provider_id, outcome="failure").inc()
                getattr(log, log_method_for(classification.severity))(
                    "provider_health_check_failed",
                    error=result.error,
                    pattern=classification.pattern.value,
                    consecutive_failures=transition.health.consecutive_failures,
                )

            with self._lock:
                if self._providers.get(provider_id) is not provider:
                    return transition
                provider.health = transition.health
                provider.health_history = tracker.history
                provider.last_updated = _utcnow()
            self._set_status_gauge(provider_id, transition.current)

            if transition.changed:
                log.info(
                    "provider_health_changed",
                    previous=transition.previous.value,
                    current=transition.current.value,
                )
                await self._publish(ProviderHealthChangedEvent(provider_id=provider_id, health=transition.health))
                if transition.recovered:
                    await self._publish(ProviderRecoveredEvent(provider_id=provider_id))
                elif transition.became_unavailable:
                    await self._publish(
                        ProviderUnavailableEvent(
                            provider_id=provider_id,
                            reason=result.error or "Health check failed",
                        )
                    )
            return transition

    async def _run_probe(self, provider_id: str, endpoint: ProviderEndpoint) -> ProbeResult:
        """One bounded probe under the global concurrency limit."""
        timeout = self._config.health_check_timeout
        async with self._semaphore:
            start = time.perf_counter()
            try:
                result = await asyncio.wait_for(
                    self._probe.probe(endpoint, timeout_s=timeout),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                result = ProbeResult(
                    ok=False,
                    response_time_ms=(time.perf_counter() - start) * 1000,
                    error=f"Health check timed out after {timeout}s",
                    exception=exc,
                )
            PROVIDER_HEALTH_CHECK_DURATION.labels(provider=provider_id).observe(time.perf_counter() - start)
        return result

    def _start_monitoring(self, provider_id: str) -> None:
        if not self._running:
            return
        existing = self._health_tasks.get(provider_id)
        if existing is not None and not existing.done():
            return
        self._health_tasks[provider_id] = asyncio.create_task(
            self._monitor(provider_id), name=f"health-check:{provider_id}"
        )

    async def _stop_monitoring(self, provider_id: str) -> None:
        task = self._health_tasks.pop(provider_id, None)
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _monitor(self, provider_id: str) -> None:
        delay = self._config.health_check_interval
        while True:
            await asyncio.sleep(delay)
            try:
                transition = await self.check_provider_health(provider_id)
            except Exception as exc:
                logger.exception("provider_health_check_crashed", provider=provider_id)
                await self._publish(DiscoveryErrorEvent(error=exc, provider_id=provider_id))
                transition = None
            with self._lock:
                if provider_id not in self._providers:
                    return
            delay = self._next_delay(transition)

    def _next_delay(self, transition: HealthTransition | None) -> float:
        if transition is None:
            return self._config.health_check_interval + self._config.health_check_backoff
        base = (
            self._config.recovery_check_interval
            if transition.current == HealthStatus.UNHEALTHY
            else self._config.health_check_interval
        )
        if not transition.ok:
            base += self._config.health_check_backoff
        return base

    # ── Queries ──────────────────────────────────────────────
    def get_discovered_providers(self) -> dict[str, Provider]:
        with self._lock:
            return {pid: p.snapshot() for pid, p in self._providers.items()}

    def get_provider(self, provider_id: str) -> Provider | None:
        with self._lock:
            provider = self._providers.get(provider_id)
            return provider.snapshot() if provider is not None else None

    def get_providers_by_health(self, status: HealthStatus) -> list[Provider]:
        with self._lock:
            return [p.snapshot() for p in self._providers.values() if p.health.status == status]

    def get_providers_by_capability(self, capability: Capability) -> list[Provider]:
        with self._lock:
            return [
                p.snapshot()
                for p in self._providers.values()
                if p.capabilities.features.supports(capability)
            ]

    # ── Subscriptions ────────────────────────────────────────
    def on(self, event: str, handler: Callable[[DomainEvent], Any]) -> None:
        if event not in EVENT_TYPES:
            raise ValueError(f"Unknown event: {event}")
        self._bus.subscribe(event, handler)

    def off(self, event: str, handler: Callable[[DomainEvent], Any]) -> None:
        if event not in EVENT_TYPES:
            raise ValueError(f"Unknown event: {event}")
        self._bus.unsubscribe(event, handler)

    # ── Internals ────────────────────────────────────────────
    def _new_tracker(self, provider_id: str, **kwargs: Any) -> ProviderHealthTracker:
        return ProviderHealthTracker(
            provider_id,
            unhealthy_threshold=self._config.unhealthy_threshold,
            recovery_success_threshold=self._config.recovery_success_threshold,
            degraded_success_rate=self._config.degraded_success_rate,
            degraded_latency_ms=self._config.degraded_latency_ms,
            history_limit=self._config.health_history_limit,
            **kwargs,
        )

    def _check_lock(self, provider_id: str) -> asyncio.Lock:
        lock = self._check_locks.get(provider_id)
        if lock is None:
            lock = self._check_locks[provider_id] = asyncio.Lock()
        return lock

    @staticmethod
    def _set_status_gauge(provider_id: str, current: HealthStatus) -> None:
        for status in HealthStatus:
            PROVIDER_HEALTH_STATUS.labels(provider=provider_id, status=status.value).set(
                1 if status == current else 0
            )

    async def _publish(self, event: DomainEvent) -> None:
        await self._bus.publish(event)
