"""Unit tests for configuration module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from gmail_thread_sync.config import Settings, get_settings


class TestSettings:
    """Test suite for Settings class."""

    def test_default_settings(self) -> None:
        """Test that default settings are properly initialized."""
        settings = Settings(_env_file=None)

        assert settings.gmail_api_base_url == "https://gmail.googleapis.com/gmail/v1"
        assert settings.gmail_user_id == "me"
        assert settings.max_retries == 3
        assert settings.retry_base_delay == 1.0
        assert settings.retry_jitter_factor == 0.2
        assert settings.fetch_strategy == "incremental"
        assert settings.cache_write_strategy == "update"
        assert settings.sync_label_ids == ["INBOX"]
        assert settings.cache_db_path == Path("mail_cache.sqlite3")
        assert settings.log_level == "INFO"
        assert settings.debug is False

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading settings from environment variables."""
        monkeypatch.setenv("MAIL_SYNC_FETCH_STRATEGY", "accumulate")
        monkeypatch.setenv("MAIL_SYNC_CACHE_DB_PATH", "/tmp/threads.sqlite3")
        monkeypatch.setenv("MAIL_SYNC_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("MAIL_SYNC_DEBUG", "true")
        monkeypatch.setenv("MAIL_SYNC_SYNC_LABEL_IDS", '["INBOX", "IMPORTANT"]')

        # Clear the cache to ensure fresh settings
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.fetch_strategy == "accumulate"
        assert settings.cache_db_path == Path("/tmp/threads.sqlite3")
        assert settings.log_level == "DEBUG"
        assert settings.debug is True
        assert settings.sync_label_ids == ["INBOX", "IMPORTANT"]

        # Clean up
        get_settings.cache_clear()

    def test_invalid_strategy_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, fetch_strategy="everything")

        with pytest.raises(ValidationError):
            Settings(_env_file=None, cache_write_strategy="merge")

    def test_invalid_jitter_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, retry_jitter_factor=1.5)

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        # Clean up
        get_settings.cache_clear()
