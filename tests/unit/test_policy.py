"""
HOMEBASE - Settings & Policy Unit Tests
========================================
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from homebase.config import Settings
from homebase.security.policy import MonitoringPolicy, SessionPolicy

SECRET = "x" * 32


def make_settings(**overrides) -> Settings:
    values = {"database_url": "sqlite+aiosqlite:///:memory:", "auth_jwt_secret": SECRET}
    values.update(overrides)
    return Settings(**values)


class TestSettings:
    def test_postgres_url_gets_async_driver(self):
        settings = make_settings(database_url="postgresql://u:p@localhost/homebase")
        assert settings.database_url == "postgresql+asyncpg://u:p@localhost/homebase"

    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(auth_jwt_secret="short")

    def test_unordered_thresholds_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(risk_threshold_medium=80, risk_threshold_high=70)

    def test_empty_optional_urls_become_none(self):
        settings = make_settings(redis_url="", alert_webhook_url="  ")
        assert settings.redis_url is None
        assert settings.alert_webhook_url is None

    def test_wildcard_cors_rejected(self):
        settings = make_settings(cors_origins="*")
        with pytest.raises(ValueError, match="Wildcard"):
            settings.cors_origins

    def test_cors_origins_parsed(self):
        settings = make_settings(cors_origins="https://a.example.com, https://b.example.com")
        assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]


class TestSessionPolicy:
    def test_defaults(self):
        policy = SessionPolicy()
        assert policy.session_duration == timedelta(days=7)
        assert policy.inactivity_timeout == timedelta(minutes=30)
        assert policy.enforce_single_session is True

    def test_from_settings(self):
        policy = SessionPolicy.from_settings(make_settings(
            session_duration_hours=12,
            session_inactivity_minutes=5,
            enforce_single_session=False,
            offline_token_days=3,
        ))
        assert policy.session_duration == timedelta(hours=12)
        assert policy.inactivity_timeout == timedelta(minutes=5)
        assert policy.enforce_single_session is False
        assert policy.offline_token_duration == timedelta(days=3)


class TestMonitoringPolicy:
    def test_incident_threshold_is_high_bucket(self):
        assert MonitoringPolicy().incident_threshold == 70

    def test_from_settings(self):
        policy = MonitoringPolicy.from_settings(make_settings(
            risk_threshold_high=75,
            auto_block_enabled=False,
            failed_login_alert_threshold=20,
            suspicious_ip_account_threshold=8,
        ))
        assert policy.incident_threshold == 75
        assert policy.auto_block_enabled is False
        assert policy.failed_login_alert_threshold == 20
        assert policy.brute_force_threshold == 20
        assert policy.multi_account_threshold == 8
