"""
Runtime configuration read from environment variables.

Defaults suit local development. ``APP_ENV=production`` switches the
webhook retry and retention defaults to the production values; explicit
environment variables still win over either set of defaults.
"""

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

PRODUCTION_DEFAULTS = {
    "WEBHOOK_MAX_RETRIES": "5",
    "WEBHOOK_RETRY_DELAY_MS": "3000",
    "WEBHOOK_EVENT_RETENTION_DAYS": "90",
}


class Settings(BaseModel):
    app_env: str = "development"

    # Command invoker
    command_max_retries: int = Field(default=3, ge=1)
    command_retry_delay_ms: int = Field(default=1000, ge=0)
    command_timeout_ms: int = Field(default=30000, gt=0)

    # DragonPass
    dragonpass_base_url: str = "http://localhost:3001"
    dragonpass_api_key: Optional[str] = None
    dragonpass_timeout_seconds: float = Field(default=10.0, gt=0)

    # Webhook delivery
    webhook_delivery_timeout_ms: int = Field(default=10000, gt=0)
    webhook_batch_size: int = Field(default=5, ge=1)
    webhook_user_agent: str = "Ancillary-Cancellations-Webhook-Dispatcher/1.0"
    webhook_max_retries: int = Field(default=3, ge=1)
    webhook_retry_delay_ms: int = Field(default=5000, ge=0)
    webhook_backoff_multiplier: float = Field(default=2.0, ge=1)
    webhook_lease_seconds: int = Field(default=60, gt=0)

    # Webhook registry limits
    webhook_min_secret_length: int = Field(default=16, ge=1)
    webhook_max_url_length: int = 2048
    webhook_max_headers: int = 20
    webhook_max_header_value_length: int = 1024
    webhook_max_events: int = 10

    # Cleanup
    webhook_event_retention_days: int = Field(default=30, ge=1)
    webhook_cleanup_batch_size: int = Field(default=1000, ge=1)

    # Sweep workflow
    sweep_interval_seconds: int = Field(default=30, gt=0)
    sweep_cleanup_every: int = Field(default=120, ge=1)
    sweep_iterations_per_run: int = Field(default=500, ge=1)

    # Infrastructure
    temporal_endpoint: str = "temporal:7233"
    temporal_task_queue: str = "webhook-delivery-queue"
    minio_endpoint: str = "minio:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_secure: bool = False

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "Settings":
        env = dict(os.environ if environ is None else environ)
        app_env = env.get("APP_ENV", "development").lower()
        if app_env == "production":
            for key, value in PRODUCTION_DEFAULTS.items():
                env.setdefault(key, value)

        values = {"app_env": app_env}
        for name in cls.model_fields:
            if name == "app_env":
                continue
            raw = env.get(name.upper())
            if raw is not None:
                values[name] = raw

        settings = cls.model_validate(values)
        logger.debug(
            "Settings loaded",
            extra={
                "app_env": settings.app_env,
                "webhook_max_retries": settings.webhook_max_retries,
                "webhook_event_retention_days": (
                    settings.webhook_event_retention_days
                ),
            },
        )
        return settings
