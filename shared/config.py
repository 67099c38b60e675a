"""
Type-safe configuration for the AI router using Pydantic Settings.

This module provides a centralized, type-safe configuration system
that loads from environment variables and .env files.

Usage:
    from shared.config import config

    interval = config.replicate_poll_interval_seconds
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RouterConfig(BaseSettings):
    """
    Central configuration for the AI execution router.

    Values here are the last link of every credential fallback chain: a
    project or user integration always wins over the environment.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ============================================================================
    # OpenAI-compatible providers
    # ============================================================================

    openai_api_key: Optional[str] = Field(default=None, description="Fallback OpenAI API key")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI-compatible API base URL")
    openai_default_model: str = Field(default="gpt-4o-mini", description="Model used when the node does not pick one")

    # ============================================================================
    # Google (Gemini / AI Studio)
    # ============================================================================

    gemini_api_key: Optional[str] = Field(default=None, description="Fallback Gemini API key")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com",
        description="Generative Language API base URL",
    )
    gemini_default_model: str = Field(default="gemini-2.5-flash", description="Default Gemini model")
    google_ai_studio_default_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Default model for Google AI Studio jobs",
    )

    # ============================================================================
    # Replicate
    # ============================================================================

    replicate_api_token: Optional[str] = Field(default=None, description="Fallback Replicate API token")
    replicate_api_base_url: str = Field(default="https://api.replicate.com", description="Replicate API base URL")
    replicate_poll_interval_ms: int = Field(default=2000, ge=1, description="Delay between prediction polls")
    replicate_poll_timeout_ms: int = Field(
        default=600_000,
        ge=1,
        description="Wall-clock budget for a prediction, measured from the first poll",
    )

    # ============================================================================
    # Midjourney relay
    # ============================================================================

    midjourney_relay_url: str = Field(default="https://relay.mindworkflow.com", description="Midjourney relay base URL")
    midjourney_poll_interval_seconds: float = Field(default=5.0, gt=0, description="Delay between relay polls")
    midjourney_main_max_attempts: int = Field(default=60, ge=1, description="Poll attempts for the main imagine job")
    midjourney_upscale_max_attempts: int = Field(default=30, ge=1, description="Poll attempts for each upscale job")
    midjourney_upscale_count: int = Field(default=4, ge=1, le=4, description="Number of upscale variants requested")

    # ============================================================================
    # Assets & HTTP
    # ============================================================================

    app_base_url: str = Field(default="http://localhost:4400", description="Public base URL used to absolutize asset paths")
    uploads_dir: str = Field(default="uploads", description="Local directory that backs /uploads asset URLs")
    http_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout applied to every provider request")

    # ============================================================================
    # Runtime behaviour
    # ============================================================================

    stub_fallback_enabled: bool = Field(
        default=True,
        description="If True, providers without credentials fall back to the offline stub generator instead of failing",
    )
    log_level: str = Field(default="INFO", description="Log level for router loggers")

    @property
    def replicate_poll_interval_seconds(self) -> float:
        """Replicate poll interval in seconds."""
        return self.replicate_poll_interval_ms / 1000.0

    @property
    def replicate_poll_timeout_seconds(self) -> float:
        """Replicate wall-clock timeout in seconds."""
        return self.replicate_poll_timeout_ms / 1000.0

    @property
    def is_openai_configured(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def is_replicate_configured(self) -> bool:
        return bool(self.replicate_api_token)


# ============================================================================
# Global Config Instance
# ============================================================================

config = RouterConfig()
