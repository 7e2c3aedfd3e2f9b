"""
Minio implementation of WebhookEventRepository.

Delivery records are JSON objects in the ``webhook-events`` bucket. MinIO
offers no conditional put through this client, so ``claim`` is a
read-check-write: it is atomic within one worker process but two workers
sweeping the same bucket can both claim a record. Run one sweep worker per
bucket.
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
from webhooks.repos.minio.client import MinioClient, MinioJsonRepositoryMixin
from webhooks.repositories import WebhookEventRepository

logger = logging.getLogger(__name__)


class MinioWebhookEventRepository(
    MinioJsonRepositoryMixin, WebhookEventRepository
):
    def __init__(
        self, client: MinioClient, bucket_name: str = "webhook-events"
    ):
        logger.debug(
            "Initializing MinioWebhookEventRepository",
            extra={"bucket_name": bucket_name},
        )
        self.client = client
        self.bucket_name = bucket_name
        self.ensure_bucket_exists(bucket_name)

    def _all(self) -> List[WebhookEvent]:
        events = self.list_json_objects(self.bucket_name, WebhookEvent)
        return sorted(events, key=lambda e: e.created_at)

    async def create(self, event: WebhookEvent) -> WebhookEvent:
        self.put_json_object(self.bucket_name, event.id, event)
        logger.debug(
            "MinioWebhookEventRepository: Event stored",
            extra={
                "webhook_event_id": event.id,
                "webhook_id": event.webhook_id,
                "correlation_id": event.correlation_id,
            },
        )
        return event

    async def get(self, event_id: str) -> Optional[WebhookEvent]:
        return self.get_json_object(self.bucket_name, event_id, WebhookEvent)

    async def find_pending(
        self, now: datetime, limit: Optional[int] = None
    ) -> List[WebhookEvent]:
        due = [e for e in self._all() if e.is_due(now)]
        return due if limit is None else due[:limit]

    async def find_failed(
        self, limit: Optional[int] = None
    ) -> List[WebhookEvent]:
        failed = [
            e for e in self._all() if e.status is WebhookDeliveryStatus.FAILED
        ]
        return failed if limit is None else failed[:limit]

    async def claim(
        self, event_id: str, lease_until: datetime, now: datetime
    ) -> Optional[WebhookEvent]:
        event = await self.get(event_id)
        if event is None or not event.is_due(now):
            return None
        claimed = event.model_copy(update={"next_attempt_at": lease_until})
        self.put_json_object(self.bucket_name, event_id, claimed)
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
        event = await self.get(event_id)
        if event is None:
            logger.warning(
                "MinioWebhookEventRepository: Cannot update missing event",
                extra={"webhook_event_id": event_id},
            )
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
        self.put_json_object(self.bucket_name, event_id, updated)
        logger.info(
            "MinioWebhookEventRepository: Delivery status updated",
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
        return [e for e in self._all() if e.correlation_id == correlation_id]

    async def aggregate_stats(
        self, webhook_id: Optional[str] = None
    ) -> DeliveryStats:
        counts = Counter(
            e.status
            for e in self._all()
            if webhook_id is None or e.webhook_id == webhook_id
        )
        return DeliveryStats.from_counts(dict(counts))

    async def delete_older_than(self, cutoff: datetime, limit: int) -> int:
        doomed = [
            e.id
            for e in self._all()
            if e.status in TERMINAL_STATUSES and e.created_at < cutoff
        ][:limit]
        for event_id in doomed:
            self.remove_json_object(self.bucket_name, event_id)
        if doomed:
            logger.info(
                "MinioWebhookEventRepository: Old events deleted",
                extra={"deleted": len(doomed), "cutoff": cutoff.isoformat()},
            )
        return len(doomed)
