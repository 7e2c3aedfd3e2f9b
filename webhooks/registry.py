"""
Webhook subscription management.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError

from cancellation.domain import CancellationEventType, utc_now
from cancellation.errors import NotFound, ProviderFailure, ValidationFailure
from cancellation.settings import Settings
from util.validation import ensure_repository_protocol
from webhooks.domain import (
    CreateWebhookRequest,
    RetryConfig,
    UpdateWebhookRequest,
    Webhook,
    WebhookStats,
    WebhookTestResult,
)
from webhooks.repositories import WebhookClient, WebhookRepository
from webhooks.signing import (
    build_delivery_body,
    build_delivery_headers,
    epoch_millis,
)

logger = logging.getLogger(__name__)


class WebhookRegistry:
    """
    CRUD for webhook subscriptions with validation.

    Validation failures raise ``ValidationFailure`` and unknown ids raise
    ``NotFound``; both come from ``cancellation.errors``.
    """

    def __init__(
        self,
        webhook_repo: WebhookRepository,
        client: WebhookClient,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.webhook_repo = ensure_repository_protocol(
            webhook_repo, WebhookRepository  # type: ignore[type-abstract]
        )
        self.client = ensure_repository_protocol(
            client, WebhookClient  # type: ignore[type-abstract]
        )
        self.settings = settings or Settings()
        self.clock = clock

    async def register(
        self,
        request: Union[CreateWebhookRequest, Dict[str, Any]],
        created_by: str,
    ) -> Webhook:
        request = _parse(CreateWebhookRequest, request)
        self._validate_url(request.url)
        self._validate_events(request.events)
        self._validate_secret(request.secret)
        self._validate_headers(request.headers)
        if await self.webhook_repo.name_exists(request.name):
            raise ValidationFailure("Webhook name already exists")

        now = self.clock()
        webhook = Webhook(
            id=str(uuid.uuid4()),
            name=request.name,
            url=request.url,
            events=list(dict.fromkeys(request.events)),
            headers=request.headers,
            secret=request.secret,
            retry_config=request.retry_config or self._default_retry_config(),
            is_active=request.is_active,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        await self.webhook_repo.create(webhook)
        logger.info(
            "Webhook registered",
            extra={
                "webhook_id": webhook.id,
                "webhook_name": webhook.name,
                "events": [e.value for e in webhook.events],
                "created_by": created_by,
                "signed": webhook.secret is not None,
            },
        )
        return webhook

    async def get(self, webhook_id: str) -> Webhook:
        webhook = await self.webhook_repo.get(webhook_id)
        if webhook is None:
            raise NotFound("Webhook not found", "WEBHOOK_NOT_FOUND")
        return webhook

    async def list(
        self, created_by: Optional[str] = None, active_only: bool = False
    ) -> List[Webhook]:
        if created_by is not None:
            webhooks = await self.webhook_repo.find_by_creator(created_by)
            if active_only:
                webhooks = [w for w in webhooks if w.is_active]
            return webhooks
        if active_only:
            return await self.webhook_repo.find_active()
        return await self.webhook_repo.find_all()

    async def update(
        self,
        webhook_id: str,
        changes: Union[UpdateWebhookRequest, Dict[str, Any]],
    ) -> Webhook:
        changes = _parse(UpdateWebhookRequest, changes)
        webhook = await self.get(webhook_id)
        # An explicit null only means something for the secret (remove it)
        update = {
            key: value
            for key, value in changes.model_dump(exclude_unset=True).items()
            if value is not None or key == "secret"
        }

        if changes.url is not None:
            self._validate_url(changes.url.strip())
            update["url"] = changes.url.strip()
        if changes.events is not None:
            self._validate_events(changes.events)
            update["events"] = list(dict.fromkeys(changes.events))
        if "secret" in update:
            self._validate_secret(changes.secret)
        if changes.headers is not None:
            self._validate_headers(changes.headers)
        if changes.name is not None:
            update["name"] = changes.name.strip()
            if await self.webhook_repo.name_exists(
                update["name"], exclude_id=webhook_id
            ):
                raise ValidationFailure("Webhook name already exists")
        if changes.retry_config is not None:
            update["retry_config"] = changes.retry_config

        update["updated_at"] = self.clock()
        updated = await self.webhook_repo.update(
            webhook.model_copy(update=update)
        )
        logger.info(
            "Webhook updated",
            extra={"webhook_id": webhook_id, "fields": sorted(update)},
        )
        return updated

    async def set_active(self, webhook_id: str, is_active: bool) -> Webhook:
        return await self.update(webhook_id, {"is_active": is_active})

    async def delete(self, webhook_id: str) -> None:
        if not await self.webhook_repo.delete(webhook_id):
            raise NotFound("Webhook not found", "WEBHOOK_NOT_FOUND")
        logger.info("Webhook deleted", extra={"webhook_id": webhook_id})

    async def find_by_event(
        self, event_type: CancellationEventType
    ) -> List[Webhook]:
        return await self.webhook_repo.find_active_by_event(event_type)

    async def stats(self) -> WebhookStats:
        return await self.webhook_repo.stats()

    async def test_webhook(self, webhook_id: str) -> WebhookTestResult:
        """
        Send a synthetic signed ``cancellation.started`` event.

        Delivery records are not touched. Unknown or inactive webhooks
        raise; delivery problems are reported on the result.
        """
        webhook = await self.get(webhook_id)
        if not webhook.is_active:
            raise ValidationFailure("Webhook is inactive", "WEBHOOK_INACTIVE")

        now = self.clock()
        correlation_id = f"test-{epoch_millis(now)}"
        payload = {
            "type": CancellationEventType.CANCELLATION_STARTED.value,
            "data": {
                "test": True,
                "message": "This is a test webhook delivery",
                "webhook_id": webhook.id,
            },
            "timestamp": now.isoformat(),
            "correlationId": correlation_id,
        }
        headers = build_delivery_headers(
            webhook,
            CancellationEventType.CANCELLATION_STARTED.value,
            correlation_id,
            self.settings.webhook_user_agent,
        )
        headers["X-Test-Event"] = "true"

        started = time.monotonic()
        try:
            response = await self.client.post(
                webhook.url,
                build_delivery_body(payload, webhook.secret, now),
                headers,
                self.settings.webhook_delivery_timeout_ms / 1000,
            )
        except ProviderFailure as e:
            return WebhookTestResult(
                success=False,
                response_time_ms=_elapsed_ms(started),
                error_message=str(e),
            )

        result = WebhookTestResult(
            success=response.is_success,
            status_code=response.status_code,
            response_time_ms=_elapsed_ms(started),
            error_message=(
                None
                if response.is_success
                else f"HTTP {response.status_code}"
            ),
        )
        logger.info(
            "Webhook test delivery finished",
            extra={
                "webhook_id": webhook.id,
                "success": result.success,
                "status_code": result.status_code,
                "response_time_ms": result.response_time_ms,
            },
        )
        return result

    def _default_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.settings.webhook_max_retries,
            retry_delay=self.settings.webhook_retry_delay_ms,
            backoff_multiplier=self.settings.webhook_backoff_multiplier,
        )

    def _validate_url(self, url: str) -> None:
        if len(url) > self.settings.webhook_max_url_length:
            raise ValidationFailure(
                f"Webhook URL cannot exceed "
                f"{self.settings.webhook_max_url_length} characters"
            )
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            raise ValidationFailure("Invalid webhook URL format")
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise ValidationFailure("Invalid webhook URL format")

    def _validate_events(self, events: List[CancellationEventType]) -> None:
        if not events:
            raise ValidationFailure("At least one event must be specified")
        if len(set(events)) > self.settings.webhook_max_events:
            raise ValidationFailure(
                f"A webhook can subscribe to at most "
                f"{self.settings.webhook_max_events} events"
            )

    def _validate_secret(self, secret: Optional[str]) -> None:
        minimum = self.settings.webhook_min_secret_length
        if secret is not None and len(secret) < minimum:
            raise ValidationFailure(
                f"Webhook secret must be at least {minimum} characters"
            )

    def _validate_headers(self, headers: Dict[str, str]) -> None:
        if len(headers) > self.settings.webhook_max_headers:
            raise ValidationFailure(
                f"A webhook can define at most "
                f"{self.settings.webhook_max_headers} custom headers"
            )
        limit = self.settings.webhook_max_header_value_length
        for name, value in headers.items():
            if len(value) > limit:
                raise ValidationFailure(
                    f"Header '{name}' value cannot exceed {limit} characters"
                )


def _parse(model: Any, value: Any) -> Any:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise ValidationFailure(
            "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
        ) from e


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
