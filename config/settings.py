"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ChatIdList = Annotated[list[int], NoDecode]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telegram
    telegram_bot_token: str | None = Field(None, description="Telegram bot token")

    # Emby account provisioning
    emby_url: str | None = Field(None, description="Emby server base URL")
    emby_token: str | None = Field(None, description="Emby API key")
    emby_copy_from_user_id: str | None = Field(
        None, description="Template Emby user whose policy new accounts copy"
    )

    # Metadata catalogs
    tmdb_access_token: str | None = Field(None, description="TMDB v4 read access token")
    bgm_access_token: str | None = Field(None, description="BGM.TV access token")
    catalog_language: str = Field(default="zh-CN", description="Language requested from TMDB")

    # Audiences and access lists
    webhook_notify_chats: ChatIdList = Field(
        default_factory=list, description="Chats that receive library arrival announcements"
    )
    admin_chat_ids: ChatIdList = Field(
        default_factory=list, description="Telegram ids always treated as administrators"
    )
    disabled_users: ChatIdList = Field(
        default_factory=list, description="Telegram ids refused every command"
    )

    # Database Configuration
    database_path: Path = Field(
        default=Path("nyamedia.db"), description="Path to the SQLite database"
    )

    @property
    def resolved_database_path(self) -> Path:
        """Get the database path, handling empty env var case."""
        if not str(self.database_path) or str(self.database_path) == ".":
            return Path("nyamedia.db")
        return self.database_path

    # Application Configuration
    host: str = Field(default="0.0.0.0", description="Host to bind the server to")
    port: int = Field(default=8000, description="Port to run the server on")
    log_level: str = Field(default="INFO", description="Logging level")
    admin_token: str | None = Field(None, description="Bearer token for /admin endpoints")

    # Timeouts and pacing
    external_timeout: float = Field(
        default=10.0, description="Timeout in seconds for every outbound call"
    )
    catalog_rate_limit: int = Field(
        default=40, description="Max metadata API requests per minute"
    )
    catalog_max_concurrent: int = Field(
        default=4, description="Max concurrent metadata API requests"
    )
    catalog_cache_ttl: int = Field(
        default=3600, description="TTL in seconds for cached metadata lookups"
    )
    catalog_cache_maxsize: int = Field(default=512, description="Maximum cached metadata entries")
    metadata_batch_delay: float = Field(
        default=0.5, description="Delay in seconds between calls in a metadata batch fetch"
    )
    transient_message_ttl: float = Field(
        default=5.0, description="Seconds before transient group messages are deleted"
    )

    # Feature Flags
    enable_telemetry: bool = Field(default=True, description="Enable PostHog telemetry")

    # PostHog Configuration
    posthog_api_key: str | None = Field(None, description="PostHog API key for telemetry")
    posthog_host: str = Field(default="https://us.i.posthog.com", description="PostHog host URL")

    # Sentry Configuration
    sentry_dsn: str | None = Field(None, description="Sentry DSN for error tracking")

    # Application Metadata
    app_name: str = Field(default="NyaMedia-Bot", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("webhook_notify_chats", "admin_chat_ids", "disabled_users", mode="before")
    @classmethod
    def _split_chat_ids(cls, value):
        """Accept "1,2,3" from the environment as well as real lists."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                value = value.strip("[]")
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def emby_configured(self) -> bool:
        return bool(self.emby_url and self.emby_token)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
