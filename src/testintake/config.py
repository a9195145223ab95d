"""Application configuration via environment variables."""

from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    database_url: str = "sqlite+aiosqlite:///./testintake.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8787
    cors_origins: str = "*"
    environment: str = "development"

    # Object storage settings
    storage_bucket: str = "patient-portal-files"
    storage_region: str = "us-east-1"
    storage_endpoint_url: str | None = None
    storage_access_key_id: str | None = None
    storage_secret_access_key: str | None = None

    # Upload settings
    upload_url_expiry_seconds: int = 3600
    download_url_expiry_seconds: int = 900
    max_upload_bytes: int = 100 * 1024 * 1024
    upload_intent_rate_limit_per_minute: int = 30

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    DEFAULT_BUCKETS: ClassVar[set[str]] = {"patient-portal-files", ""}

    def validate_production(self) -> None:
        """Raise if running in production with development-only storage settings."""
        if self.environment != "production":
            return
        if self.database_url.startswith("sqlite"):
            raise RuntimeError(
                "DATABASE_URL must point at a server database in production, "
                "not SQLite."
            )
        if self.storage_bucket in self.DEFAULT_BUCKETS:
            raise RuntimeError(
                "STORAGE_BUCKET must be set explicitly in production."
            )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
