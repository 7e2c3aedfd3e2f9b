"""
Composition root wiring the cancellation use case to webhook delivery.

One ``EventBus`` is shared by the orchestrator (publisher) and the webhook
dispatcher (subscriber). Repositories default to the memory
implementations; pass real ones to run against other storage.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from cancellation.commands import CommandDependencies, CommandFactory
from cancellation.events import EventBus
from cancellation.invoker import CommandExecutionOptions, CommandInvoker
from cancellation.policy import PolicyEngine
from cancellation.repos.http.dragonpass import HttpDragonPassGateway
from cancellation.repos.memory.cancellation_record import (
    MemoryCancellationRecordRepository,
)
from cancellation.repos.memory.order import MemoryOrderRepository
from cancellation.repos.memory.product import MemoryProductRepository
from cancellation.repositories import (
    CancellationRecordRepository,
    DragonPassGateway,
    OrderRepository,
    ProductRepository,
)
from cancellation.settings import Settings
from cancellation.usecase import CancellationOrchestrator
from webhooks.dispatcher import WebhookDispatcher
from webhooks.registry import WebhookRegistry
from webhooks.repos.http.client import HttpxWebhookClient
from webhooks.repos.memory.webhook import MemoryWebhookRepository
from webhooks.repos.memory.webhook_event import MemoryWebhookEventRepository
from webhooks.repositories import (
    WebhookClient,
    WebhookEventRepository,
    WebhookRepository,
)

logger = logging.getLogger(__name__)


class DependencyContainer:
    """
    Dependency container with singleton lifecycle management.

    Collaborators passed to the constructor are used as-is; anything not
    passed is created on first use.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        order_repo: Optional[OrderRepository] = None,
        product_repo: Optional[ProductRepository] = None,
        record_repo: Optional[CancellationRecordRepository] = None,
        dragonpass_gateway: Optional[DragonPassGateway] = None,
        webhook_repo: Optional[WebhookRepository] = None,
        webhook_event_repo: Optional[WebhookEventRepository] = None,
        webhook_client: Optional[WebhookClient] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._instances: Dict[str, Any] = {}
        overrides = {
            "order_repo": order_repo,
            "product_repo": product_repo,
            "record_repo": record_repo,
            "dragonpass_gateway": dragonpass_gateway,
            "webhook_repo": webhook_repo,
            "webhook_event_repo": webhook_event_repo,
            "webhook_client": webhook_client,
        }
        for key, value in overrides.items():
            if value is not None:
                self._instances[key] = value

    async def get_or_create(
        self, key: str, factory: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Get or create a singleton instance."""
        if key not in self._instances:
            self._instances[key] = await factory()
        return self._instances[key]

    async def get_event_bus(self) -> EventBus:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "event_bus", self._create_event_bus
        )

    async def get_order_repo(self) -> OrderRepository:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "order_repo", self._create_order_repo
        )

    async def get_product_repo(self) -> ProductRepository:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "product_repo", self._create_product_repo
        )

    async def get_record_repo(self) -> CancellationRecordRepository:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "record_repo", self._create_record_repo
        )

    async def get_dragonpass_gateway(self) -> DragonPassGateway:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "dragonpass_gateway", self._create_dragonpass_gateway
        )

    async def get_webhook_repo(self) -> WebhookRepository:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "webhook_repo", self._create_webhook_repo
        )

    async def get_webhook_event_repo(self) -> WebhookEventRepository:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "webhook_event_repo", self._create_webhook_event_repo
        )

    async def get_webhook_client(self) -> WebhookClient:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "webhook_client", self._create_webhook_client
        )

    async def get_orchestrator(self) -> CancellationOrchestrator:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "orchestrator", self._create_orchestrator
        )

    async def get_webhook_dispatcher(self) -> WebhookDispatcher:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "webhook_dispatcher", self._create_webhook_dispatcher
        )

    async def get_webhook_registry(self) -> WebhookRegistry:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "webhook_registry", self._create_webhook_registry
        )

    async def _create_event_bus(self) -> EventBus:
        return EventBus()

    async def _create_order_repo(self) -> OrderRepository:
        return MemoryOrderRepository()

    async def _create_product_repo(self) -> ProductRepository:
        return MemoryProductRepository()

    async def _create_record_repo(self) -> CancellationRecordRepository:
        return MemoryCancellationRecordRepository()

    async def _create_dragonpass_gateway(self) -> DragonPassGateway:
        logger.debug(
            "Creating DragonPass gateway",
            extra={"base_url": self.settings.dragonpass_base_url},
        )
        return HttpDragonPassGateway(
            self.settings.dragonpass_base_url,
            api_key=self.settings.dragonpass_api_key,
            timeout_seconds=self.settings.dragonpass_timeout_seconds,
        )

    async def _create_webhook_repo(self) -> WebhookRepository:
        return MemoryWebhookRepository()

    async def _create_webhook_event_repo(self) -> WebhookEventRepository:
        return MemoryWebhookEventRepository()

    async def _create_webhook_client(self) -> WebhookClient:
        return HttpxWebhookClient()

    async def _create_orchestrator(self) -> CancellationOrchestrator:
        product_repo = await self.get_product_repo()
        policy_engine = PolicyEngine()
        options = CommandExecutionOptions(
            max_retries=self.settings.command_max_retries,
            retry_delay_ms=self.settings.command_retry_delay_ms,
            timeout_ms=self.settings.command_timeout_ms,
        )
        command_factory = CommandFactory(
            CommandDependencies(
                product_repo=product_repo,
                dragonpass_gateway=await self.get_dragonpass_gateway(),
                policy_engine=policy_engine,
            )
        )
        # The dispatcher must be listening before the first event
        await self.get_webhook_dispatcher()
        return CancellationOrchestrator(
            order_repo=await self.get_order_repo(),
            product_repo=product_repo,
            record_repo=await self.get_record_repo(),
            event_bus=await self.get_event_bus(),
            command_factory=command_factory,
            invoker=CommandInvoker(options),
            policy_engine=policy_engine,
        )

    async def _create_webhook_dispatcher(self) -> WebhookDispatcher:
        dispatcher = WebhookDispatcher(
            webhook_repo=await self.get_webhook_repo(),
            event_repo=await self.get_webhook_event_repo(),
            client=await self.get_webhook_client(),
            settings=self.settings,
        )
        dispatcher.attach(await self.get_event_bus())
        logger.info(
            "Webhook dispatcher attached to event bus",
            extra={"app_env": self.settings.app_env},
        )
        return dispatcher

    async def _create_webhook_registry(self) -> WebhookRegistry:
        return WebhookRegistry(
            webhook_repo=await self.get_webhook_repo(),
            client=await self.get_webhook_client(),
            settings=self.settings,
        )
