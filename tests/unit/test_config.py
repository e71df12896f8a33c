"""
Unit tests for settings and small helpers.
"""

from datetime import datetime, timedelta, timezone

from balin.config import Settings, get_settings
from balin.constants import DEFAULT_LOCK_MAX_AGE_SECONDS, DEFAULT_MAX_ATTEMPTS, DEFAULT_PRIORITY
from balin.utils import as_timedelta, new_worker_id, to_utc_naive, utc_now


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        """Queue defaults match the documented policy."""
        monkeypatch.delenv("BALIN_DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)

        assert settings.database_url.startswith("sqlite+aiosqlite:///")
        assert settings.default_priority == DEFAULT_PRIORITY == 99
        assert settings.default_max_attempts == DEFAULT_MAX_ATTEMPTS == 3
        assert settings.lock_max_age_seconds == DEFAULT_LOCK_MAX_AGE_SECONDS == 3600
        assert settings.worker_imports == []

    def test_env_prefix(self, monkeypatch):
        """BALIN_* environment variables override defaults."""
        monkeypatch.setenv("BALIN_DATABASE_URL", "postgresql+asyncpg://u:p@db/queue")
        monkeypatch.setenv("BALIN_WORKER_CONCURRENCY", "4")
        monkeypatch.setenv("BALIN_LOCK_MAX_AGE_SECONDS", "120")

        settings = Settings(_env_file=None)

        assert settings.database_url == "postgresql+asyncpg://u:p@db/queue"
        assert settings.worker_concurrency == 4
        assert settings.lock_max_age_seconds == 120

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestUtils:
    """Tests for clock and identity helpers."""

    def test_utc_now_is_naive(self):
        assert utc_now().tzinfo is None

    def test_to_utc_naive_converts_aware(self):
        aware = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_utc_naive(aware) == datetime(2024, 1, 1, 12, 0)

    def test_to_utc_naive_keeps_naive(self):
        naive = datetime(2024, 1, 1, 12, 0)
        assert to_utc_naive(naive) is naive

    def test_as_timedelta(self):
        assert as_timedelta(90) == timedelta(seconds=90)
        assert as_timedelta(timedelta(minutes=5)) == timedelta(minutes=5)

    def test_new_worker_id_is_unique(self):
        first = new_worker_id()
        second = new_worker_id()
        assert first != second
        assert new_worker_id("box").startswith("box-")
