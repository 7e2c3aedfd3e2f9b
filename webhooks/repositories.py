"""
Repository, client and service interfaces for webhook delivery.

Delivery records move through ``pending -> retrying* -> delivered|failed``.
A record is only deliverable while ``next_attempt_at`` is unset or in the
past; a sweep takes a lease on a record by claiming it, which pushes
``next_attempt_at`` into the future so that a concurrent sweep skips it.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from cancellation.domain import CancellationEventType
from webhooks.domain import (
    DeliveryResponse,
    DeliveryStats,
    Webhook,
    WebhookDeliveryStatus,
    WebhookEvent,
    WebhookStats,
)


@runtime_checkable
class WebhookRepository(Protocol):
    """Persistence of webhook subscriptions."""

    async def create(self, webhook: Webhook) -> Webhook:
        """Store a new subscription.

        Raises:
            ValueError: If the id is already taken
        """
        ...

    async def get(self, webhook_id: str) -> Optional[Webhook]:
        """Retrieve a subscription by id, or None."""
        ...

    async def update(self, webhook: Webhook) -> Webhook:
        """Replace a stored subscription.

        Raises:
            ValueError: If no subscription has this id
        """
        ...

    async def delete(self, webhook_id: str) -> bool:
        """Delete a subscription. Returns False if it did not exist."""
        ...

    async def find_active_by_event(
        self, event_type: CancellationEventType
    ) -> List[Webhook]:
        """Active subscriptions whose event list includes ``event_type``."""
        ...

    async def find_active(self) -> List[Webhook]:
        ...

    async def find_by_creator(self, created_by: str) -> List[Webhook]:
        ...

    async def find_all(self) -> List[Webhook]:
        ...

    async def name_exists(
        self, name: str, exclude_id: Optional[str] = None
    ) -> bool:
        """Whether another subscription already uses ``name``."""
        ...

    async def stats(self) -> WebhookStats:
        ...


@runtime_checkable
class WebhookEventRepository(Protocol):
    """Persistence of delivery records."""

    async def create(self, event: WebhookEvent) -> WebhookEvent:
        ...

    async def get(self, event_id: str) -> Optional[WebhookEvent]:
        ...

    async def find_pending(
        self, now: datetime, limit: Optional[int] = None
    ) -> List[WebhookEvent]:
        """Pending or retrying records that are due at ``now``.

        Returns:
            Records ordered by creation time, oldest first
        """
        ...

    async def find_failed(
        self, limit: Optional[int] = None
    ) -> List[WebhookEvent]:
        """Records in ``failed`` status, oldest first."""
        ...

    async def claim(
        self, event_id: str, lease_until: datetime, now: datetime
    ) -> Optional[WebhookEvent]:
        """Take a delivery lease on a record.

        Succeeds only if the record is pending or retrying and due at
        ``now``; sets ``next_attempt_at`` to ``lease_until``.

        Returns:
            The claimed record, or None if it is not deliverable right now

        Implementation Notes:

        - Must be a single compare-and-set on status and next_attempt_at
        """
        ...

    async def update_delivery_status(
        self,
        event_id: str,
        status: WebhookDeliveryStatus,
        error_message: Optional[str] = None,
        attempted: bool = True,
        next_attempt_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[WebhookEvent]:
        """Record the outcome of a delivery attempt.

        Args:
            event_id: Record to update
            status: New status
            error_message: Error of the attempt, cleared when None
            attempted: Whether an outbound call was made. When True,
                ``attempts`` is incremented and ``last_attempt_at`` set.
            next_attempt_at: Earliest time of the next attempt
            now: Timestamp to record, defaults to the current time

        Returns:
            The updated record, or None if it does not exist
        """
        ...

    async def find_by_correlation_id(
        self, correlation_id: str
    ) -> List[WebhookEvent]:
        ...

    async def aggregate_stats(
        self, webhook_id: Optional[str] = None
    ) -> DeliveryStats:
        """Counts per status, optionally for one webhook."""
        ...

    async def delete_older_than(self, cutoff: datetime, limit: int) -> int:
        """Delete up to ``limit`` delivered or failed records created
        before ``cutoff``. Returns the number deleted."""
        ...


@runtime_checkable
class WebhookClient(Protocol):
    """Outbound HTTP for webhook deliveries."""

    async def post(
        self,
        url: str,
        body: Dict[str, Any],
        headers: Dict[str, str],
        timeout_seconds: float,
    ) -> DeliveryResponse:
        """POST a JSON body.

        Returns:
            The response status and (truncated) body for any HTTP status

        Raises:
            ProviderFailure: On timeouts and network errors
        """
        ...


@runtime_checkable
class DeliverySweep(Protocol):
    """Periodic delivery maintenance, run from the sweep workflow."""

    async def process_pending_events(self) -> int:
        """Attempt every due record. Returns how many were handled."""
        ...

    async def retry_failed_events(self) -> int:
        """Re-queue and attempt failed records that still have attempts
        left. Returns how many were re-queued."""
        ...

    async def cleanup_old_events(self, days: int) -> int:
        """Delete finished records older than ``days``. Returns the count."""
        ...
