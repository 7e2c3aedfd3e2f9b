"""
Fan-out of lifecycle events to webhook subscriptions and delivery of the
resulting records.

Retries are pull based. A failed attempt stores ``next_attempt_at`` using
the webhook's exponential backoff, and the record is attempted again by the
next sweep that runs after that time: either the sweep triggered by the
next dispatched event or the periodic ``WebhookSweepWorkflow``.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from cancellation.domain import (
    CancellationEvent,
    CancellationEventType,
    utc_now,
)
from cancellation.errors import ProviderFailure
from cancellation.events import EventBus
from cancellation.settings import Settings
from util.validation import ensure_repository_protocol
from webhooks.domain import (
    DeliveryStats,
    Webhook,
    WebhookDeliveryStatus,
    WebhookEvent,
)
from webhooks.repositories import (
    DeliverySweep,
    WebhookClient,
    WebhookEventRepository,
    WebhookRepository,
)
from webhooks.signing import (
    build_delivery_body,
    build_delivery_headers,
    serialize_event,
)

logger = logging.getLogger(__name__)

MAX_ERROR_BODY_CHARS = 200


class WebhookDispatcher(DeliverySweep):
    def __init__(
        self,
        webhook_repo: WebhookRepository,
        event_repo: WebhookEventRepository,
        client: WebhookClient,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.webhook_repo = ensure_repository_protocol(
            webhook_repo, WebhookRepository  # type: ignore[type-abstract]
        )
        self.event_repo = ensure_repository_protocol(
            event_repo, WebhookEventRepository  # type: ignore[type-abstract]
        )
        self.client = ensure_repository_protocol(
            client, WebhookClient  # type: ignore[type-abstract]
        )
        self.settings = settings or Settings()
        self.clock = clock

    def attach(self, event_bus: EventBus) -> None:
        """Subscribe to every lifecycle event type on the bus."""
        for event_type in CancellationEventType:
            event_bus.subscribe(event_type, self.dispatch_event)

    def detach(self, event_bus: EventBus) -> None:
        for event_type in CancellationEventType:
            event_bus.unsubscribe(event_type, self.dispatch_event)

    async def dispatch_event(
        self, event: CancellationEvent
    ) -> List[WebhookEvent]:
        """
        Queue the event for every active subscriber, then run a sweep.

        Returns:
            The delivery records created for this event
        """
        webhooks = await self.webhook_repo.find_active_by_event(event.type)
        if not webhooks:
            logger.debug(
                "No webhooks subscribed to event",
                extra={
                    "event_type": event.type.value,
                    "correlation_id": event.correlation_id,
                },
            )
            return []

        payload = serialize_event(event)
        created = []
        for webhook in webhooks:
            created.append(
                await self.event_repo.create(
                    WebhookEvent(
                        id=str(uuid.uuid4()),
                        webhook_id=webhook.id,
                        event_type=event.type,
                        payload=payload,
                        correlation_id=event.correlation_id,
                        created_at=self.clock(),
                    )
                )
            )

        logger.info(
            "Event queued for webhook delivery",
            extra={
                "event_type": event.type.value,
                "correlation_id": event.correlation_id,
                "webhook_count": len(created),
            },
        )
        await self.process_pending_events()
        return created

    async def process_pending_events(self) -> int:
        """Attempt every due record, ``webhook_batch_size`` at a time."""
        due = await self.event_repo.find_pending(self.clock())
        if not due:
            return 0
        await self._process_in_batches(due)
        return len(due)

    async def retry_failed_events(self) -> int:
        """
        Re-queue failed records whose webhook is active and which have
        attempts left, then attempt them.
        """
        failed = await self.event_repo.find_failed()
        requeued: List[WebhookEvent] = []
        for event in failed:
            webhook = await self.webhook_repo.get(event.webhook_id)
            if webhook is None or not webhook.is_active:
                continue
            if event.attempts >= webhook.retry_config.max_retries:
                continue
            updated = await self.event_repo.update_delivery_status(
                event.id,
                WebhookDeliveryStatus.RETRYING,
                error_message=event.error_message,
                attempted=False,
                now=self.clock(),
            )
            if updated is not None:
                requeued.append(updated)

        if requeued:
            logger.info(
                "Failed webhook events re-queued",
                extra={"count": len(requeued)},
            )
            await self._process_in_batches(requeued)
        return len(requeued)

    async def cleanup_old_events(self, days: Optional[int] = None) -> int:
        """Delete delivered and failed records older than ``days``."""
        if days is None:
            days = self.settings.webhook_event_retention_days
        cutoff = self.clock() - timedelta(days=days)
        batch_size = self.settings.webhook_cleanup_batch_size

        total = 0
        while True:
            deleted = await self.event_repo.delete_older_than(
                cutoff, batch_size
            )
            total += deleted
            if deleted < batch_size:
                break

        logger.info(
            "Old webhook events cleaned up",
            extra={
                "retention_days": days,
                "cutoff": cutoff.isoformat(),
                "deleted": total,
            },
        )
        return total

    async def get_delivery_stats(
        self, webhook_id: Optional[str] = None
    ) -> DeliveryStats:
        return await self.event_repo.aggregate_stats(webhook_id)

    async def get_deliveries_for_correlation_id(
        self, correlation_id: str
    ) -> List[WebhookEvent]:
        return await self.event_repo.find_by_correlation_id(correlation_id)

    async def _process_in_batches(
        self, events: Sequence[WebhookEvent]
    ) -> None:
        batch_size = self.settings.webhook_batch_size
        for start in range(0, len(events), batch_size):
            batch = events[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(self._process_event(e) for e in batch),
                return_exceptions=True,
            )
            for event, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(
                        "Webhook event processing failed",
                        extra={
                            "webhook_event_id": event.id,
                            "webhook_id": event.webhook_id,
                            "error": str(outcome),
                            "error_type": type(outcome).__name__,
                        },
                    )

    async def _process_event(self, event: WebhookEvent) -> None:
        now = self.clock()
        claimed = await self.event_repo.claim(
            event.id,
            now + timedelta(seconds=self.settings.webhook_lease_seconds),
            now,
        )
        if claimed is None:
            logger.debug(
                "Webhook event not claimable, skipping",
                extra={"webhook_event_id": event.id},
            )
            return

        webhook = await self.webhook_repo.get(claimed.webhook_id)
        if webhook is None or not webhook.is_active:
            await self._fail_without_attempt(
                claimed,
                (
                    "Webhook not found"
                    if webhook is None
                    else "Webhook is inactive"
                ),
            )
            return
        if claimed.attempts >= webhook.retry_config.max_retries:
            await self._fail_without_attempt(
                claimed, "Maximum retry attempts exceeded"
            )
            return

        error_message = await self._deliver(webhook, claimed)
        attempts = claimed.attempts + 1
        finished_at = self.clock()

        if error_message is None:
            await self.event_repo.update_delivery_status(
                claimed.id, WebhookDeliveryStatus.DELIVERED, now=finished_at
            )
            logger.info(
                "Webhook delivered",
                extra={
                    "webhook_event_id": claimed.id,
                    "webhook_id": webhook.id,
                    "event_type": claimed.event_type.value,
                    "correlation_id": claimed.correlation_id,
                    "attempts": attempts,
                },
            )
            return

        exhausted = attempts >= webhook.retry_config.max_retries
        next_attempt_at = (
            None
            if exhausted
            else finished_at + webhook.retry_config.delay_after(attempts)
        )
        await self.event_repo.update_delivery_status(
            claimed.id,
            (
                WebhookDeliveryStatus.FAILED
                if exhausted
                else WebhookDeliveryStatus.RETRYING
            ),
            error_message=error_message,
            next_attempt_at=next_attempt_at,
            now=finished_at,
        )
        logger.warning(
            "Webhook delivery attempt failed",
            extra={
                "webhook_event_id": claimed.id,
                "webhook_id": webhook.id,
                "correlation_id": claimed.correlation_id,
                "attempts": attempts,
                "max_retries": webhook.retry_config.max_retries,
                "exhausted": exhausted,
                "next_attempt_at": (
                    next_attempt_at.isoformat() if next_attempt_at else None
                ),
                "error": error_message,
            },
        )

    async def _deliver(
        self, webhook: Webhook, event: WebhookEvent
    ) -> Optional[str]:
        """POST one record. Returns None on 2xx, the error text otherwise."""
        body = build_delivery_body(event.payload, webhook.secret, self.clock())
        headers = build_delivery_headers(
            webhook,
            event.event_type.value,
            event.correlation_id,
            self.settings.webhook_user_agent,
        )
        try:
            response = await self.client.post(
                webhook.url,
                body,
                headers,
                self.settings.webhook_delivery_timeout_ms / 1000,
            )
        except ProviderFailure as e:
            return str(e)
        except Exception as e:
            logger.error(
                "Unexpected webhook delivery error",
                extra={
                    "webhook_event_id": event.id,
                    "webhook_id": webhook.id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return str(e) or type(e).__name__

        if response.is_success:
            return None
        if response.body:
            return (
                f"HTTP {response.status_code}: "
                f"{response.body[:MAX_ERROR_BODY_CHARS]}"
            )
        return f"HTTP {response.status_code}"

    async def _fail_without_attempt(
        self, event: WebhookEvent, reason: str
    ) -> None:
        await self.event_repo.update_delivery_status(
            event.id,
            WebhookDeliveryStatus.FAILED,
            error_message=reason,
            attempted=False,
            now=self.clock(),
        )
        logger.warning(
            "Webhook event failed without delivery",
            extra={
                "webhook_event_id": event.id,
                "webhook_id": event.webhook_id,
                "reason": reason,
            },
        )
