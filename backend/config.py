"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_VERSION = "0.1.0"


class Settings(BaseSettings):
    """Hub application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    secret_key: str = "change-me-in-production"
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/hub.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)

    # Auth
    access_token_expire_minutes: int = Field(default=60, ge=1)
    auth_login_max_failures: int = Field(default=5, ge=1)
    auth_rate_limit_window_seconds: int = Field(default=300, ge=1)
    allow_anonymous_sync: bool = False

    # Admin bootstrap
    admin_username: str = "admin"
    admin_password: str = "admin"

    # GitHub
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    github_max_file_size: int = Field(default=100 * 1024, ge=1)
    github_fetch_delay_seconds: float = Field(default=0.05, ge=0)
    github_timeout_seconds: float = Field(default=30.0, gt=0)

    # Sync
    sync_error_message_cap: int = Field(default=10, ge=1)
    sync_max_file_size: int = Field(default=10 * 1024 * 1024, ge=1)
    sync_recent_log_limit: int = Field(default=5, ge=1)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            violations.append(
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars)"
            )
        if self.admin_password == "admin" or len(self.admin_password) < 12:
            violations.append("ADMIN_PASSWORD must be overridden with a strong value (>=12 chars)")
        if self.allow_anonymous_sync:
            violations.append("ALLOW_ANONYMOUS_SYNC must not be enabled in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
