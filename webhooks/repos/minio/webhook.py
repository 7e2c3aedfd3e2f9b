"""
Minio implementation of WebhookRepository.

Each subscription is a JSON object in the ``webhooks`` bucket. Queries scan
the bucket; subscription counts are small.
"""

import logging
from typing import List, Optional

from cancellation.domain import CancellationEventType
from webhooks.domain import Webhook, WebhookStats
from webhooks.repos.minio.client import MinioClient, MinioJsonRepositoryMixin
from webhooks.repositories import WebhookRepository

logger = logging.getLogger(__name__)


class MinioWebhookRepository(MinioJsonRepositoryMixin, WebhookRepository):
    def __init__(self, client: MinioClient, bucket_name: str = "webhooks"):
        logger.debug(
            "Initializing MinioWebhookRepository",
            extra={"bucket_name": bucket_name},
        )
        self.client = client
        self.bucket_name = bucket_name
        self.ensure_bucket_exists(bucket_name)

    async def create(self, webhook: Webhook) -> Webhook:
        if await self.get(webhook.id) is not None:
            raise ValueError(f"Webhook {webhook.id} already exists")
        self.put_json_object(self.bucket_name, webhook.id, webhook)
        logger.info(
            "MinioWebhookRepository: Webhook stored",
            extra={"webhook_id": webhook.id, "webhook_name": webhook.name},
        )
        return webhook

    async def get(self, webhook_id: str) -> Optional[Webhook]:
        return self.get_json_object(self.bucket_name, webhook_id, Webhook)

    async def update(self, webhook: Webhook) -> Webhook:
        if await self.get(webhook.id) is None:
            raise ValueError(f"Webhook {webhook.id} does not exist")
        self.put_json_object(self.bucket_name, webhook.id, webhook)
        return webhook

    async def delete(self, webhook_id: str) -> bool:
        if await self.get(webhook_id) is None:
            return False
        self.remove_json_object(self.bucket_name, webhook_id)
        return True

    async def find_active_by_event(
        self, event_type: CancellationEventType
    ) -> List[Webhook]:
        return [
            w
            for w in await self.find_all()
            if w.is_active and w.subscribes_to(event_type)
        ]

    async def find_active(self) -> List[Webhook]:
        return [w for w in await self.find_all() if w.is_active]

    async def find_by_creator(self, created_by: str) -> List[Webhook]:
        return [
            w for w in await self.find_all() if w.created_by == created_by
        ]

    async def find_all(self) -> List[Webhook]:
        webhooks = self.list_json_objects(self.bucket_name, Webhook)
        return sorted(webhooks, key=lambda w: w.created_at)

    async def name_exists(
        self, name: str, exclude_id: Optional[str] = None
    ) -> bool:
        webhooks = await self.find_all()
        return any(w.name == name and w.id != exclude_id for w in webhooks)

    async def stats(self) -> WebhookStats:
        return WebhookStats.from_webhooks(await self.find_all())
