"""
Memory implementation of WebhookRepository.
"""

import logging
from typing import Dict, List, Optional

from cancellation.domain import CancellationEventType
from webhooks.domain import Webhook, WebhookStats
from webhooks.repositories import WebhookRepository

logger = logging.getLogger(__name__)


class MemoryWebhookRepository(WebhookRepository):
    """Subscriptions kept in a dictionary keyed by webhook id."""

    def __init__(self) -> None:
        logger.debug("Initializing MemoryWebhookRepository")
        self._webhooks: Dict[str, Webhook] = {}

    async def create(self, webhook: Webhook) -> Webhook:
        if webhook.id in self._webhooks:
            raise ValueError(f"Webhook {webhook.id} already exists")
        self._webhooks[webhook.id] = webhook
        logger.debug(
            "MemoryWebhookRepository: Webhook stored",
            extra={"webhook_id": webhook.id, "webhook_name": webhook.name},
        )
        return webhook

    async def get(self, webhook_id: str) -> Optional[Webhook]:
        return self._webhooks.get(webhook_id)

    async def update(self, webhook: Webhook) -> Webhook:
        if webhook.id not in self._webhooks:
            raise ValueError(f"Webhook {webhook.id} does not exist")
        self._webhooks[webhook.id] = webhook
        return webhook

    async def delete(self, webhook_id: str) -> bool:
        return self._webhooks.pop(webhook_id, None) is not None

    async def find_active_by_event(
        self, event_type: CancellationEventType
    ) -> List[Webhook]:
        return [
            w
            for w in self._webhooks.values()
            if w.is_active and w.subscribes_to(event_type)
        ]

    async def find_active(self) -> List[Webhook]:
        return [w for w in self._webhooks.values() if w.is_active]

    async def find_by_creator(self, created_by: str) -> List[Webhook]:
        return [
            w for w in self._webhooks.values() if w.created_by == created_by
        ]

    async def find_all(self) -> List[Webhook]:
        return list(self._webhooks.values())

    async def name_exists(
        self, name: str, exclude_id: Optional[str] = None
    ) -> bool:
        return any(
            w.name == name and w.id != exclude_id
            for w in self._webhooks.values()
        )

    async def stats(self) -> WebhookStats:
        return WebhookStats.from_webhooks(list(self._webhooks.values()))
