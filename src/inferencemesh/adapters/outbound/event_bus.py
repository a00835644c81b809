"""In-process event bus for provider lifecycle events.

Handlers may be plain callables or coroutine functions.  ``publish`` awaits
every handler before returning so that events for one provider are observed
in the order they were published; handler failures are logged and never
reach the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable

import structlog

from inferencemesh.domain.events import DomainEvent
from inferencemesh.ports.outbound import EventBusPort
from inferencemesh.shared.observability.metrics import PROVIDER_EVENTS

logger = structlog.get_logger(__name__)

EventHandler = Callable[[DomainEvent], Any]


class InProcessEventBus(EventBusPort):
    """Async in-memory event bus with fan-out to multiple subscribers."""

    def __init__(self, *, allowed_events: frozenset[str] | None = None) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._allowed = allowed_events

    async def publish(self, event: DomainEvent) -> None:
        PROVIDER_EVENTS.labels(event=event.event_type).inc()
        handlers = list(self._handlers.get(event.event_type, []))
        if not handlers:
            logger.debug("event_no_handlers", event_type=event.event_type)
            return

        logger.debug(
            "event_published",
            event_type=event.event_type,
            handler_count=len(handlers),
        )

        results = await asyncio.gather(
            *(self._invoke(h, event) for h in handlers),
            return_exceptions=True,
        )
        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(
                    "event_handler_error",
                    event_type=event.event_type,
                    handler_index=i,
                    error=str(result),
                )

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._validate(event_type)
        self._handlers[event_type].append(handler)
        logger.debug("event_handler_registered", event_type=event_type)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        self._validate(event_type)
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            logger.debug("event_handler_removed", event_type=event_type)

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    @staticmethod
    async def _invoke(handler: EventHandler, event: DomainEvent) -> None:
        result = handler(event)
        if inspect.isawaitable(result):
            await result

    def _validate(self, event_type: str) -> None:
        if self._allowed is not None and event_type not in self._allowed:
            raise ValueError(f"Unknown event: {event_type}")
