"""Tests for the in-process event bus."""

from __future__ import annotations

import pytest

from inferencemesh.adapters.outbound.event_bus import InProcessEventBus
from inferencemesh.domain.events import (
    EVENT_TYPES,
    PROVIDER_RECOVERED,
    PROVIDER_UNAVAILABLE,
    ProviderRecoveredEvent,
    ProviderUnavailableEvent,
)


@pytest.fixture
def bus() -> InProcessEventBus:
    return InProcessEventBus(allowed_events=EVENT_TYPES)


class TestEventBus:
    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self, bus):
        seen: list[str] = []

        def sync_handler(event):
            seen.append(f"sync:{event.provider_id}")

        async def async_handler(event):
            seen.append(f"async:{event.provider_id}")

        bus.subscribe(PROVIDER_RECOVERED, sync_handler)
        bus.subscribe(PROVIDER_RECOVERED, async_handler)
        await bus.publish(ProviderRecoveredEvent(provider_id="openai"))

        assert sorted(seen) == ["async:openai", "sync:openai"]
        assert bus.handler_count(PROVIDER_RECOVERED) == 2

    @pytest.mark.asyncio
    async def test_only_matching_handlers_run(self, bus):
        seen: list = []
        bus.subscribe(PROVIDER_UNAVAILABLE, seen.append)
        await bus.publish(ProviderRecoveredEvent(provider_id="openai"))
        assert seen == []

        await bus.publish(ProviderUnavailableEvent(provider_id="openai", reason="down"))
        assert len(seen) == 1
        assert seen[0].reason == "down"

    @pytest.mark.asyncio
    async def test_handler_errors_are_isolated(self, bus):
        seen: list = []

        async def broken(event):
            raise RuntimeError("subscriber bug")

        bus.subscribe(PROVIDER_RECOVERED, broken)
        bus.subscribe(PROVIDER_RECOVERED, seen.append)
        await bus.publish(ProviderRecoveredEvent(provider_id="openai"))
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus):
        seen: list = []
        bus.subscribe(PROVIDER_RECOVERED, seen.append)
        bus.unsubscribe(PROVIDER_RECOVERED, seen.append)
        bus.unsubscribe(PROVIDER_RECOVERED, seen.append)
        await bus.publish(ProviderRecoveredEvent(provider_id="openai"))
        assert seen == []
        assert bus.handler_count(PROVIDER_RECOVERED) == 0

    def test_unknown_event_name_rejected(self, bus):
        with pytest.raises(ValueError, match="Unknown event"):
            bus.subscribe("provider:vanished", print)

    def test_unrestricted_bus_accepts_any_name(self):
        bus = InProcessEventBus()
        bus.subscribe("custom:event", print)
        assert bus.handler_count("custom:event") == 1

    def test_events_carry_wire_names(self):
        assert ProviderRecoveredEvent(provider_id="x").event_type == "provider:recovered"
        assert ProviderUnavailableEvent(provider_id="x").event_type == "provider:unavailable"
