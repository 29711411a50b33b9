"""Configuration overrides using pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Engine settings from environment variables.

    All settings can be overridden via environment variables with the prefix
    INTERACTION_ENGINE_. For example, to shorten the visible set TTL, use
    INTERACTION_ENGINE_VISIBLE_TTL_SECONDS=60.
    """

    model_config = SettingsConfigDict(
        env_prefix="INTERACTION_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Visibility
    visible_capacity: int | None = None
    visible_ttl_seconds: float | None = None
    short_log_threshold: int | None = None

    # Composer
    max_images_per_message: int | None = None

    # Commands
    orphan_capacity: int | None = None
    orphan_ttl_seconds: float | None = None
    shell_integration_disabled: bool | None = None

    # Auto-approval
    auto_approval_enabled: bool | None = None
    write_delay_ms: int | None = None
