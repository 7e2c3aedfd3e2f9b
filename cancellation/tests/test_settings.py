"""
Tests for environment-driven Settings.
"""

import pytest
from pydantic import ValidationError

from cancellation.settings import Settings


class TestSettingsFromEnv:
    def test_development_defaults(self) -> None:
        settings = Settings.from_env({})

        assert settings.app_env == "development"
        assert settings.is_production is False
        assert settings.webhook_max_retries == 3
        assert settings.webhook_retry_delay_ms == 5000
        assert settings.webhook_event_retention_days == 30
        assert settings.webhook_batch_size == 5
        assert settings.webhook_delivery_timeout_ms == 10000

    def test_production_switches_webhook_defaults(self) -> None:
        settings = Settings.from_env({"APP_ENV": "Production"})

        assert settings.is_production is True
        assert settings.webhook_max_retries == 5
        assert settings.webhook_retry_delay_ms == 3000
        assert settings.webhook_event_retention_days == 90

    def test_explicit_variables_win_over_production_defaults(self) -> None:
        settings = Settings.from_env(
            {"APP_ENV": "production", "WEBHOOK_MAX_RETRIES": "7"}
        )

        assert settings.webhook_max_retries == 7
        assert settings.webhook_retry_delay_ms == 3000

    def test_values_are_parsed_from_strings(self) -> None:
        settings = Settings.from_env(
            {
                "COMMAND_TIMEOUT_MS": "5000",
                "MINIO_SECURE": "true",
                "WEBHOOK_BACKOFF_MULTIPLIER": "1.5",
                "TEMPORAL_ENDPOINT": "localhost:7233",
            }
        )

        assert settings.command_timeout_ms == 5000
        assert settings.minio_secure is True
        assert settings.webhook_backoff_multiplier == 1.5
        assert settings.temporal_endpoint == "localhost:7233"

    def test_invalid_value_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings.from_env({"WEBHOOK_BATCH_SIZE": "0"})

    def test_reads_process_environment_by_default(self, monkeypatch) -> None:
        url = "https://api.dragonpass.test"
        monkeypatch.setenv("DRAGONPASS_BASE_URL", url)

        assert Settings.from_env().dragonpass_base_url == url
