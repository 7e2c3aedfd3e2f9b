"""
Shared fixtures for webhook tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from cancellation.domain import CancellationEventType
from cancellation.errors import ProviderFailure
from webhooks.domain import DeliveryResponse, RetryConfig, Webhook

START = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingWebhookClient:
    """
    WebhookClient double returning scripted responses.

    ``responses`` items are a status code, a ``DeliveryResponse`` or a
    ``ProviderFailure``; the last item repeats once the script runs out.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses) or [200]
        self.requests: List[Dict[str, Any]] = []

    async def post(
        self,
        url: str,
        body: Dict[str, Any],
        headers: Dict[str, str],
        timeout_seconds: float,
    ) -> DeliveryResponse:
        self.requests.append(
            {
                "url": url,
                "body": body,
                "headers": headers,
                "timeout_seconds": timeout_seconds,
            }
        )
        outcome = (
            self.responses.pop(0)
            if len(self.responses) > 1
            else self.responses[0]
        )
        if isinstance(outcome, ProviderFailure):
            raise outcome
        if isinstance(outcome, DeliveryResponse):
            return outcome
        return DeliveryResponse(status_code=outcome)


def make_webhook(
    webhook_id: str = "wh-1",
    events: Optional[List[CancellationEventType]] = None,
    secret: Optional[str] = "0123456789abcdef",
    max_retries: int = 3,
    **overrides: Any,
) -> Webhook:
    values: Dict[str, Any] = {
        "id": webhook_id,
        "name": f"hook {webhook_id}",
        "url": f"https://hooks.example.com/{webhook_id}",
        "events": events or list(CancellationEventType),
        "secret": secret,
        "retry_config": RetryConfig(
            max_retries=max_retries, retry_delay=1000, backoff_multiplier=2
        ),
        "created_by": "ops",
        "created_at": START,
        "updated_at": START,
    }
    values.update(overrides)
    return Webhook(**values)


@pytest.fixture
def clock() -> Clock:
    return Clock()
