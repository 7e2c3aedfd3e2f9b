"""
Memory implementation of WebhookEventRepository.

Each operation reads and replaces a record without awaiting in between, so
``claim`` and ``update_delivery_status`` are atomic with respect to other
tasks on the same event loop.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from cancellation.domain import utc_now
from webhooks.domain import (
    TERMINAL_STATUSES,
    DeliveryStats,
    WebhookDeliveryStatus,
    WebhookEvent,
)
from webhooks.repositories import WebhookEventRepository

logger = logging.getLogger(__name__)


class MemoryWebhookEventRepository(WebhookEventRepository):
    def __init__(self) -> None:
        logger.debug("Initializing MemoryWebhookEventRepository")
        self._events: Dict[str, WebhookEvent] = {}

    async def create(self, event: WebhookEvent) -> WebhookEvent:
        if event.id in self._events:
            raise ValueError(f"Webhook event {event.id} already exists")
        self._events[event.id] = event
        return event

    async def get(self, event_id: str) -> Optional[WebhookEvent]:
        return self._events.get(event_id)

    async def find_pending(
        self, now: datetime, limit: Optional[int] = None
    ) -> List[WebhookEvent]:
        due = sorted(
            (e for e in self._events.values() if e.is_due(now)),
            key=lambda e: e.created_at,
        )
        return due if limit is None else due[:limit]

    async def find_failed(
        self, limit: Optional[int] = None
    ) -> List[WebhookEvent]:
        failed = sorted(
            (
                e
                for e in self._events.values()
                if e.status is WebhookDeliveryStatus.FAILED
            ),
            key=lambda e: e.created_at,
        )
        return failed if limit is None else failed[:limit]

    async def claim(
        self, event_id: str, lease_until: datetime, now: datetime
    ) -> Optional[WebhookEvent]:
        event = self._events.get(event_id)
        if event is None or not event.is_due(now):
            return None
        claimed = event.model_copy(update={"next_attempt_at": lease_until})
        self._events[event_id] = claimed
        return claimed

    async def update_delivery_status(
        self,
        event_id: str,
        status: WebhookDeliveryStatus,
        error_message: Optional[str] = None,
        attempted: bool = True,
        next_attempt_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[WebhookEvent]:
        event = self._events.get(event_id)
        if event is None:
            return None
        now = now or utc_now()
        update: Dict[str, Any] = {
            "status": status,
            "error_message": error_message,
            "next_attempt_at": next_attempt_at,
        }
        if attempted:
            update["attempts"] = event.attempts + 1
            update["last_attempt_at"] = now
        if status is WebhookDeliveryStatus.DELIVERED:
            update["delivered_at"] = now
        updated = event.model_copy(update=update)
        self._events[event_id] = updated
        logger.debug(
            "MemoryWebhookEventRepository: Delivery status updated",
            extra={
                "webhook_event_id": event_id,
                "status": status.value,
                "attempts": updated.attempts,
            },
        )
        return updated

    async def find_by_correlation_id(
        self, correlation_id: str
    ) -> List[WebhookEvent]:
        return [
            e
            for e in self._events.values()
            if e.correlation_id == correlation_id
        ]

    async def aggregate_stats(
        self, webhook_id: Optional[str] = None
    ) -> DeliveryStats:
        counts = Counter(
            e.status
            for e in self._events.values()
            if webhook_id is None or e.webhook_id == webhook_id
        )
        return DeliveryStats.from_counts(dict(counts))

    async def delete_older_than(self, cutoff: datetime, limit: int) -> int:
        doomed = [
            e.id
            for e in self._events.values()
            if e.status in TERMINAL_STATUSES and e.created_at < cutoff
        ][:limit]
        for event_id in doomed:
            del self._events[event_id]
        return len(doomed)
