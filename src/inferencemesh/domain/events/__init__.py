"""Provider lifecycle events.

Events are published *after* the registry has been updated so that
subscribers observe a consistent state.  ``event_type`` carries the exact
wire name subscribers register for.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from inferencemesh.domain.entities import Health, Provider


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


PROVIDER_DISCOVERED = "provider:discovered"
PROVIDER_UPDATED = "provider:updated"
PROVIDER_HEALTH_CHANGED = "provider:health:changed"
PROVIDER_UNAVAILABLE = "provider:unavailable"
PROVIDER_RECOVERED = "provider:recovered"
DISCOVERY_ERROR = "discovery:error"
DISCOVERY_COMPLETE = "discovery:complete"

EVENT_TYPES: frozenset[str] = frozenset(
    {
        PROVIDER_DISCOVERED,
        PROVIDER_UPDATED,
        PROVIDER_HEALTH_CHANGED,
        PROVIDER_UNAVAILABLE,
        PROVIDER_RECOVERED,
        DISCOVERY_ERROR,
        DISCOVERY_COMPLETE,
    }
)


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base class for all domain events."""

    event_type: str = "DOMAIN_EVENT"
    occurred_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


# ── Registry events ──────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class ProviderDiscoveredEvent(DomainEvent):
    event_type: str = PROVIDER_DISCOVERED
    provider: Provider | None = None


@dataclass(frozen=True, slots=True)
class ProviderUpdatedEvent(DomainEvent):
    event_type: str = PROVIDER_UPDATED
    provider: Provider | None = None


# ── Health events ────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class ProviderHealthChangedEvent(DomainEvent):
    event_type: str = PROVIDER_HEALTH_CHANGED
    provider_id: str = ""
    health: Health | None = None


@dataclass(frozen=True, slots=True)
class ProviderUnavailableEvent(DomainEvent):
    event_type: str = PROVIDER_UNAVAILABLE
    provider_id: str = ""
    reason: str = ""


@dataclass(frozen=True, slots=True)
class ProviderRecoveredEvent(DomainEvent):
    event_type: str = PROVIDER_RECOVERED
    provider_id: str = ""


# ── Discovery pass events ────────────────────────────────────
@dataclass(frozen=True, slots=True)
class DiscoveryErrorEvent(DomainEvent):
    event_type: str = DISCOVERY_ERROR
    error: Exception | None = None
    provider_id: str | None = None


@dataclass(frozen=True, slots=True)
class DiscoveryCompleteEvent(DomainEvent):
    event_type: str = DISCOVERY_COMPLETE
    providers: tuple[Provider, ...] = ()
