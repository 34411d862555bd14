"""
Unit tests for settings validation and log redaction.
"""

import json
import logging

import pytest

from infrastructure.config.settings import Settings
from infrastructure.logging_config import JSONFormatter, SensitiveDataFilter


def _settings(**overrides) -> Settings:
    values = {
        "environment": "production",
        "razorpay_key_id": "rzp_live_abcdef123456",
        "razorpay_key_secret": "secret",
        "razorpay_webhook_secret": "whsec",
    }
    values.update(overrides)
    return Settings(**values)


class TestSettings:
    def test_postgres_url_is_normalised(self):
        settings = Settings(database_url="postgres://u:p@db:5432/billing")
        assert settings.database_url == "postgresql+asyncpg://u:p@db:5432/billing"

    def test_cors_origins_list(self):
        settings = Settings(cors_origins="https://a.example/, https://b.example")
        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]

    def test_complete_production_config_passes(self):
        _settings().validate_production_secrets()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"razorpay_key_secret": None},
            {"razorpay_webhook_secret": None},
            {"webhook_signature_bypass": True},
            {"database_echo": True},
        ],
    )
    def test_unsafe_production_config_is_refused(self, overrides):
        with pytest.raises(ValueError):
            _settings(**overrides).validate_production_secrets()

    def test_development_allows_missing_secrets(self):
        Settings(
            environment="development",
            razorpay_key_id=None,
            razorpay_key_secret=None,
            razorpay_webhook_secret=None,
            webhook_signature_bypass=True,
        ).validate_production_secrets()

    def test_event_order_guard_defaults_off(self):
        assert Settings().enforce_event_order is False


class TestLogRedaction:
    def _record(self, msg: str, *args) -> logging.LogRecord:
        return logging.LogRecord("billing", logging.INFO, __file__, 1, msg, args, None)

    def test_key_secret_is_redacted(self):
        record = self._record("config key_secret=abc123 loaded")
        SensitiveDataFilter().filter(record)
        assert "abc123" not in record.getMessage()

    def test_signature_argument_is_redacted(self):
        record = self._record("header %s", "signature: " + "ab" * 32)
        SensitiveDataFilter().filter(record)
        assert "ab" * 32 not in record.getMessage()

    def test_api_key_id_is_redacted(self):
        record = self._record("using rzp_test_AbCdEf123456")
        SensitiveDataFilter().filter(record)
        assert record.getMessage() == "using rzp_test_[REDACTED]"

    def test_json_formatter_carries_extras(self):
        record = self._record("applied")
        record.subscription_id = "sub_1"
        record.event = "subscription.activated"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "applied"
        assert entry["subscription_id"] == "sub_1"
        assert entry["event"] == "subscription.activated"
