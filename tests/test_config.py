"""Tests for Settings."""

import pytest

from hrsync.config import Settings


class TestSettings:
    """SUT: Settings"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("STORE_BACKEND", raising=False)
        settings = Settings(_env_file=None)
        assert settings.port == 7790
        assert settings.queue_max_retries == 3
        assert settings.deletion_window_days == 30
        assert settings.get_store_backend() == "duckdb"

    def test_from_environment(self, monkeypatch):
        """Environment variables should override defaults, case-insensitively."""
        monkeypatch.setenv("STORE_BACKEND", " MongoDB ")
        monkeypatch.setenv("QUEUE_MAX_RETRIES", "5")
        settings = Settings(_env_file=None)
        assert settings.get_store_backend() == "mongodb"
        assert settings.queue_max_retries == 5

    def test_unknown_backend(self):
        """get_store_backend() should reject unknown backends."""
        settings = Settings(_env_file=None, store_backend="cosmos")
        with pytest.raises(ValueError):
            settings.get_store_backend()
