from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Travel Desk"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "postgresql+asyncpg://travel_desk:travel_desk@db:5432/travel_desk"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8000"]
    log_level: str = "INFO"

    # Sender recorded on automated audit entries.
    system_identity: str = "system"
    system_display_name: str = "Travel Desk System"

    # Whether the manager skipped by a POC "on behalf of" creation is told about it.
    notify_manager_on_behalf: bool = False
    # Redirects every notification to one mailbox (staging/testing).
    notification_override_recipient: str | None = None
    notification_queue_size: int = 1000

    # Attempts for append-only writes and human id allocation under contention.
    write_retry_attempts: int = Field(default=3, ge=1)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings | None) -> None:
    """Replace the cached settings (tests, or None to reload from env)."""
    global _settings
    _settings = settings
