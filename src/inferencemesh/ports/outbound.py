"""Outbound ports — interfaces that infrastructure adapters must implement.

The discovery service depends only on these abstractions, never on a
concrete HTTP client or message broker.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

from inferencemesh.domain.entities import ProviderEndpoint
from inferencemesh.domain.events import DomainEvent

if TYPE_CHECKING:
    from inferencemesh.shared.providers.types import ProbeResult


# ═══════════════════════════════════════════════════════════════
#  Provider probing
# ═══════════════════════════════════════════════════════════════
class HealthProbePort(ABC):
    """Talks to provider health, models and registry endpoints."""

    @abstractmethod
    async def probe(self, endpoint: ProviderEndpoint, *, timeout_s: float) -> ProbeResult:
        """GET the health endpoint; never raises for remote failures."""
        ...

    @abstractmethod
    async def fetch_models(self, endpoint: ProviderEndpoint, *, timeout_s: float) -> Any: ...

    @abstractmethod
    async def fetch_registry(self, url: str, *, timeout_s: float) -> dict[str, ProviderEndpoint]: ...

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════
#  Event bus port
# ═══════════════════════════════════════════════════════════════
class EventBusPort(ABC):
    """Publish/subscribe for provider lifecycle events."""

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None: ...

    @abstractmethod
    def subscribe(self, event_type: str, handler: Callable[[DomainEvent], Any]) -> None: ...

    @abstractmethod
    def unsubscribe(self, event_type: str, handler: Callable[[DomainEvent], Any]) -> None: ...
