"""Tests for remindsync.config and data-dir resolution."""

from pathlib import Path

import pytest

from remindsync.config import Settings, get_settings
from remindsync.utils import get_remindsync_home


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)  # no stray .env
        settings = Settings()
        assert settings.db_filename == "remindsync.db"
        assert settings.max_sync_attempts == 3
        assert settings.connectivity_timeout == 5.0
        assert settings.supabase_url is None

    def test_env_prefix(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("REMINDSYNC_SUPABASE_URL", "https://proj.supabase.co")
        monkeypatch.setenv("REMINDSYNC_MAX_SYNC_ATTEMPTS", "5")
        monkeypatch.setenv("REMINDSYNC_DATA_DIR", str(tmp_path / "d"))

        settings = Settings()

        assert settings.supabase_url == "https://proj.supabase.co"
        assert settings.max_sync_attempts == 5
        assert settings.db_path == tmp_path / "d" / "remindsync.db"

    def test_env_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("REMINDSYNC_LOG_LEVEL=DEBUG\nUNRELATED=1\n")
        assert Settings().log_level == "DEBUG"

    def test_health_url_derived_from_supabase(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        settings = Settings(supabase_url="https://proj.supabase.co/")
        assert settings.resolved_health_url == "https://proj.supabase.co/rest/v1/"
        assert Settings(health_url="https://h/health").resolved_health_url == "https://h/health"
        assert Settings().resolved_health_url is None

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestDataDir:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("REMINDSYNC_DATA_DIR", str(tmp_path))
        assert get_remindsync_home() == tmp_path

    def test_default_home(self, monkeypatch):
        monkeypatch.delenv("REMINDSYNC_DATA_DIR", raising=False)
        assert get_remindsync_home() == Path.home() / ".remindsync"
