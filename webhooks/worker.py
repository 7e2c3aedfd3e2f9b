"""
Temporal worker hosting the webhook sweep workflow and its activities.
"""

import asyncio
import logging
import os

from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.service import RPCError
from temporalio.worker import Worker

from cancellation.settings import Settings
from webhooks.activities import TemporalWebhookDispatcher
from webhooks.repos.http.client import HttpxWebhookClient
from webhooks.repos.minio.client import create_minio_client
from webhooks.repos.minio.webhook import MinioWebhookRepository
from webhooks.repos.minio.webhook_event import MinioWebhookEventRepository
from webhooks.workflow import WebhookSweepWorkflow

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure logging based on environment variables"""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_format = os.environ.get(
        "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        print(f"Invalid log level: {log_level}, defaulting to INFO")
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=log_format, force=True)
    logger.info(
        "Logging configured",
        extra={"log_level": log_level, "numeric_level": numeric_level},
    )


async def get_temporal_client_with_retries(
    endpoint: str, attempts: int = 10, delay: int = 5
) -> Client:
    """Attempt to connect to Temporal with retries."""
    for attempt in range(1, attempts + 1):
        try:
            client = await Client.connect(
                endpoint,
                data_converter=pydantic_data_converter,
                namespace="default",
            )
            logger.info(
                "Successfully connected to Temporal",
                extra={"endpoint": endpoint, "attempt": attempt},
            )
            return client
        except RPCError as e:
            logger.warning(
                "Failed to connect to Temporal",
                extra={
                    "endpoint": endpoint,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error": str(e),
                    "retry_in_seconds": delay,
                },
            )
            if attempt == attempts:
                logger.error(
                    "All connection attempts to Temporal failed",
                    extra={"endpoint": endpoint, "total_attempts": attempts},
                )
                raise
            await asyncio.sleep(delay)

    raise RuntimeError("Failed to connect to Temporal after all attempts")


def build_sweep_dispatcher(settings: Settings) -> TemporalWebhookDispatcher:
    minio_client = create_minio_client(settings)
    return TemporalWebhookDispatcher(
        webhook_repo=MinioWebhookRepository(minio_client),
        event_repo=MinioWebhookEventRepository(minio_client),
        client=HttpxWebhookClient(),
        settings=settings,
    )


async def run_worker() -> None:
    """Run the Temporal worker"""
    setup_logging()
    settings = Settings.from_env()

    client = await get_temporal_client_with_retries(
        settings.temporal_endpoint
    )
    dispatcher = build_sweep_dispatcher(settings)
    activities = [
        dispatcher.process_pending_events,
        dispatcher.retry_failed_events,
        dispatcher.cleanup_old_events,
    ]

    logger.info(
        "Creating Temporal worker",
        extra={
            "task_queue": settings.temporal_task_queue,
            "activity_count": len(activities),
            "app_env": settings.app_env,
        },
    )
    worker = Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=[WebhookSweepWorkflow],
        activities=activities,
    )
    await worker.run()


if __name__ == "__main__":
    asyncio.run(run_worker())
