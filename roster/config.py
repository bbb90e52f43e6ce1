"""Configuration loading for the Roster membership system.

This module provides centralized configuration management:
- Load settings from environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from roster.core.eligibility import MEMBERSHIP_WINDOW_DAYS


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Store configuration
    store_sqlite_path: str = Field(
        default="./data/roster.db",
        description="SQLite database file path",
    )

    # Membership policy
    membership_window_days: int = Field(
        default=MEMBERSHIP_WINDOW_DAYS,
        description="Days a payment keeps a membership active (inclusive)",
    )

    # Reconciliation
    reconcile_interval_seconds: int = Field(
        default=3600,
        description="Interval between reconciliation passes in daemon mode",
    )
    reconcile_max_concurrency: int = Field(
        default=4,
        description="Number of clients evaluated concurrently per pass",
    )
    reconcile_client_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for evaluating a single client",
    )
    directory_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for loading the client directory into the identity index",
    )

    # Notification configuration
    notification_backend: Literal["stdout", "markdown"] = Field(
        default="stdout",
        description="Status change notification backend type",
    )
    notification_output_dir: str = Field(
        default="./notifications",
        description="Output directory for markdown audit files",
    )

    # Squarespace configuration
    squarespace_api_url: str = Field(
        default="https://api.squarespace.com/1.0",
        description="Squarespace API base URL",
    )
    squarespace_api_key: str = Field(
        default="",
        description="Squarespace Commerce API key for historical import",
    )
    squarespace_webhook_secret: str = Field(
        default="",
        description="Shared secret for verifying Squarespace-Signature headers",
    )
    squarespace_timeout_seconds: float = Field(
        default=30.0,
        description="HTTP timeout for Squarespace API requests",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Run mode
    run_mode: Literal["daemon", "cli", "webhook"] = Field(
        default="daemon",
        description="Run mode",
    )

    # Webhook configuration
    webhook_host: str = Field(
        default="0.0.0.0",
        description="Host to listen on for webhook server",
    )
    webhook_port: int = Field(
        default=8080,
        description="Port to listen on for webhook server",
    )
    webhook_api_key: str = Field(
        default="",
        description="API key for webhook authentication (required for production)",
    )
    webhook_require_auth: bool = Field(
        default=False,
        description="Require API key authentication for webhook endpoints",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose output",
    )

    @field_validator("membership_window_days")
    @classmethod
    def validate_window_days(cls, v: int) -> int:
        """Ensure the membership window is non-negative (0 = same day only)."""
        if v < 0:
            raise ValueError("membership_window_days must be non-negative")
        return v

    @field_validator("reconcile_interval_seconds")
    @classmethod
    def validate_reconcile_interval(cls, v: int) -> int:
        """Ensure reconcile interval is positive."""
        if v <= 0:
            raise ValueError("reconcile_interval_seconds must be positive")
        return v

    @field_validator("reconcile_max_concurrency")
    @classmethod
    def validate_max_concurrency(cls, v: int) -> int:
        """Ensure at least one reconcile worker."""
        if v <= 0:
            raise ValueError("reconcile_max_concurrency must be positive")
        return v

    @field_validator(
        "reconcile_client_timeout_seconds",
        "directory_timeout_seconds",
        "squarespace_timeout_seconds",
    )
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        """Ensure timeouts are positive."""
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("webhook_port")
    @classmethod
    def validate_webhook_port(cls, v: int) -> int:
        """Ensure webhook port is in valid range."""
        if v <= 0 or v > 65535:
            raise ValueError("webhook_port must be between 1 and 65535")
        return v


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
