"""
Domain models for webhook subscriptions and delivery records.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cancellation.domain import CancellationEventType, utc_now


class WebhookDeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETRYING = "retrying"


DELIVERABLE_STATUSES = frozenset(
    {WebhookDeliveryStatus.PENDING, WebhookDeliveryStatus.RETRYING}
)
TERMINAL_STATUSES = frozenset(
    {WebhookDeliveryStatus.DELIVERED, WebhookDeliveryStatus.FAILED}
)


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_delay: int = Field(default=5000, ge=0, description="milliseconds")
    backoff_multiplier: float = Field(default=2.0, ge=1, le=10)

    def delay_after(self, attempts: int) -> timedelta:
        """Wait before the next attempt once ``attempts`` have failed."""
        exponent = max(attempts - 1, 0)
        return timedelta(
            milliseconds=self.retry_delay * self.backoff_multiplier**exponent
        )


class Webhook(BaseModel):
    id: str
    name: str
    url: str
    events: List[CancellationEventType]
    headers: Dict[str, str] = Field(default_factory=dict)
    secret: Optional[str] = None
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    is_active: bool = True
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def subscribes_to(self, event_type: CancellationEventType) -> bool:
        return event_type in self.events


class WebhookEvent(BaseModel):
    """One event queued for delivery to one webhook"""

    id: str
    webhook_id: str
    event_type: CancellationEventType
    payload: Dict[str, Any]
    status: WebhookDeliveryStatus = WebhookDeliveryStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    last_attempt_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    error_message: Optional[str] = None
    correlation_id: str
    created_at: datetime = Field(default_factory=utc_now)
    # Not deliverable before this instant: backoff after a failed attempt,
    # or the lease taken by the sweep that is currently delivering it.
    next_attempt_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        return self.status in DELIVERABLE_STATUSES and (
            self.next_attempt_at is None or self.next_attempt_at <= now
        )


class CreateWebhookRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    url: str
    events: List[CancellationEventType]
    headers: Dict[str, str] = Field(default_factory=dict)
    secret: Optional[str] = None
    retry_config: Optional[RetryConfig] = None
    is_active: bool = True

    @field_validator("name", "url")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class UpdateWebhookRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    url: Optional[str] = None
    events: Optional[List[CancellationEventType]] = None
    headers: Optional[Dict[str, str]] = None
    secret: Optional[str] = None
    retry_config: Optional[RetryConfig] = None
    is_active: Optional[bool] = None


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status_code: int
    body: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class WebhookTestResult(BaseModel):
    success: bool
    status_code: Optional[int] = None
    response_time_ms: int
    error_message: Optional[str] = None


class DeliveryStats(BaseModel):
    total: int = 0
    pending: int = 0
    delivered: int = 0
    failed: int = 0
    retrying: int = 0
    success_rate: float = 0.0

    @classmethod
    def from_counts(
        cls, counts: Dict[WebhookDeliveryStatus, int]
    ) -> "DeliveryStats":
        total = sum(counts.values())
        delivered = counts.get(WebhookDeliveryStatus.DELIVERED, 0)
        return cls(
            total=total,
            pending=counts.get(WebhookDeliveryStatus.PENDING, 0),
            delivered=delivered,
            failed=counts.get(WebhookDeliveryStatus.FAILED, 0),
            retrying=counts.get(WebhookDeliveryStatus.RETRYING, 0),
            success_rate=(
                round(delivered / total * 100, 2) if total else 0.0
            ),
        )


class WebhookStats(BaseModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    by_event: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_webhooks(cls, webhooks: List[Webhook]) -> "WebhookStats":
        by_event: Dict[str, int] = {}
        for webhook in webhooks:
            for event_type in webhook.events:
                key = event_type.value
                by_event[key] = by_event.get(key, 0) + 1
        active = sum(1 for w in webhooks if w.is_active)
        return cls(
            total=len(webhooks),
            active=active,
            inactive=len(webhooks) - active,
            by_event=by_event,
        )
