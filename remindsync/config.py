"""Configuration settings for remindsync."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

from remindsync.types import MAX_SYNC_ATTEMPTS
from remindsync.utils import get_remindsync_home


class Settings(BaseSettings):
    """Settings loaded from ``REMINDSYNC_*`` environment variables or ``.env``."""

    # Local storage
    data_dir: Path | None = None  # Defaults to $REMINDSYNC_DATA_DIR or ~/.remindsync
    db_filename: str = "remindsync.db"

    # Supabase
    supabase_url: str | None = None
    supabase_key: str | None = None  # Publishable (anon) key

    # Connectivity
    health_url: str | None = None  # Defaults to {supabase_url}/rest/v1/
    connectivity_timeout: float = 5.0

    # Sync
    max_sync_attempts: int = MAX_SYNC_ATTEMPTS

    log_level: str = "INFO"

    class Config:
        env_prefix = "REMINDSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    @property
    def resolved_data_dir(self) -> Path:
        return Path(self.data_dir).expanduser() if self.data_dir else get_remindsync_home()

    @property
    def db_path(self) -> Path:
        return self.resolved_data_dir / self.db_filename

    @property
    def resolved_health_url(self) -> str | None:
        if self.health_url:
            return self.health_url
        if self.supabase_url:
            return f"{self.supabase_url.rstrip('/')}/rest/v1/"
        return None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
