"""In-memory event bus implementation.

Handlers run synchronously in the publisher's thread and transaction, in
subscription order.  A handler subscribed to a base event class also
receives its subclasses.
"""

from __future__ import annotations

from typing import Dict, List, Type

import structlog

from shared.domain.bus import IEventBus, IEventHandler
from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)


class InMemoryEventBus(IEventBus):
    """Simple in-process event bus."""

    def __init__(self) -> None:
        self._handlers: Dict[Type[DomainEvent], List[IEventHandler]] = {}

    def subscribe(self, event_class: Type[DomainEvent], handler: IEventHandler) -> None:
        handlers = self._handlers.setdefault(event_class, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(
        self, event_class: Type[DomainEvent], handler: IEventHandler
    ) -> None:
        handlers = self._handlers.get(event_class, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event_class: Type[DomainEvent]) -> List[IEventHandler]:
        handlers: List[IEventHandler] = []
        for klass in event_class.__mro__:
            handlers.extend(self._handlers.get(klass, []))
        return handlers

    def publish(self, event: DomainEvent) -> None:
        handlers = self.handlers_for(type(event))
        logger.debug(
            "event.published",
            event_name=event.event_name,
            aggregate_id=str(event.aggregate_id),
            handler_count=len(handlers),
        )
        for handler in handlers:
            handler.handle(event)


# Global bus instance (singleton)

event_bus = InMemoryEventBus()
