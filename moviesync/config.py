"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from moviesync.services.scheduler import parse_interval


class Settings(BaseSettings):
    """MovieSync application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/moviesync.db"

    # Server
    cors_origins: list[str] = Field(default_factory=list)
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Admin API
    admin_api_token: str = ""

    # Elasticsearch
    elasticsearch_url: str = "http://localhost:9200"
    elasticsearch_username: str = ""
    elasticsearch_password: str = ""
    elasticsearch_verify_certs: bool = True
    elasticsearch_request_timeout: int = Field(default=30, ge=1)
    elasticsearch_index_prefix: str = ""

    # Sync engine
    sync_enabled: bool = True
    sync_batch_size: int = Field(default=100, ge=1)
    sync_enable_scheduled: bool = True
    sync_interval: str = "every 2 hours"
    sync_auto: bool = False
    sync_batch_delay_seconds: float = Field(default=0.1, ge=0)
    sync_episode_delay_seconds: float = Field(default=0.05, ge=0)
    sync_fallback_window_days: int = Field(default=7, ge=1)

    @field_validator("sync_interval")
    @classmethod
    def _check_sync_interval(cls, value: str) -> str:
        parse_interval(value)
        return value

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if len(self.admin_api_token) < 32:
            violations.append(
                "ADMIN_API_TOKEN must be set to a high-entropy value (>=32 chars)"
            )
        if self.elasticsearch_username and not self.elasticsearch_password:
            violations.append("ELASTICSEARCH_PASSWORD is required when a username is set")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
