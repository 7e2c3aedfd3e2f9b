"""
In-process publish/subscribe for cancellation lifecycle events.

The bus is an ordinary object created by the composition root and handed to
publishers and subscribers. Nothing is persisted: if the process stops in
the middle of ``publish``, subscriber calls that have not run yet are lost.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

from cancellation.domain import CancellationEvent, CancellationEventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[CancellationEvent], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: Dict[CancellationEventType, List[EventHandler]] = {}

    def subscribe(
        self, event_type: CancellationEventType, handler: EventHandler
    ) -> None:
        """Add a handler for an event type. Re-subscribing is a no-op."""
        handlers = self._subscribers.setdefault(event_type, [])
        if any(h is handler or h == handler for h in handlers):
            return
        handlers.append(handler)
        logger.debug(
            "Event handler subscribed",
            extra={
                "event_type": event_type.value,
                "handler": getattr(handler, "__qualname__", repr(handler)),
                "subscriber_count": len(handlers),
            },
        )

    def unsubscribe(
        self, event_type: CancellationEventType, handler: EventHandler
    ) -> bool:
        """Remove a handler. Returns False if it was not subscribed."""
        handlers = self._subscribers.get(event_type, [])
        for index, existing in enumerate(handlers):
            if existing is handler or existing == handler:
                del handlers[index]
                if not handlers:
                    del self._subscribers[event_type]
                return True
        return False

    async def publish(self, event: CancellationEvent) -> None:
        """
        Run every handler for the event's type concurrently.

        A failing handler is logged and does not affect the other handlers
        or the publisher.
        """
        handlers = list(self._subscribers.get(event.type, []))
        logger.info(
            "Publishing event",
            extra={
                "event_type": event.type.value,
                "correlation_id": event.correlation_id,
                "order_id": event.order_id,
                "product_id": event.product_id,
                "subscriber_count": len(handlers),
            },
        )
        if not handlers:
            return

        results = await asyncio.gather(
            *(handler(event) for handler in handlers),
            return_exceptions=True,
        )
        for handler, outcome in zip(handlers, results):
            if isinstance(outcome, Exception):
                logger.error(
                    "Event handler failed",
                    extra={
                        "event_type": event.type.value,
                        "correlation_id": event.correlation_id,
                        "handler": getattr(
                            handler, "__qualname__", repr(handler)
                        ),
                        "error": str(outcome),
                        "error_type": type(outcome).__name__,
                    },
                )

    def subscriber_count(self, event_type: CancellationEventType) -> int:
        return len(self._subscribers.get(event_type, []))

    def subscribed_event_types(self) -> List[CancellationEventType]:
        return [t for t, handlers in self._subscribers.items() if handlers]

    def clear(self) -> None:
        self._subscribers.clear()
