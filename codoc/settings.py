"""Application settings using pydantic-settings.

Loads configuration from environment variables with .env file support.
"""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,  # Allow both field name and alias
    )

    # Environment
    environment: Literal["development", "staging", "production", "testing"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Backend API
    api_base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the Codoc backend API",
        validation_alias=AliasChoices("api_base_url", "codoc_api_base_url", "vite_api_base_url"),
    )
    api_token: SecretStr | None = Field(
        default=None,
        description="Static bearer token used by the CLI credential supplier",
        validation_alias=AliasChoices("api_token", "codoc_api_token"),
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout in seconds for ordinary (non-stream) requests",
    )

    # Streaming
    stream_flush_interval: float = Field(
        default=1 / 60,
        gt=0,
        le=1.0,
        description="Seconds between token flushes (one UI mutation per tick)",
    )
    max_input_length: int = Field(default=500, ge=1)

    # User-facing messages
    stream_failed_message: str = "The request failed. Please try again."
    rate_limit_default_message: str = "You have exceeded the request limit."
    rate_limit_retry_message: str = Field(
        default="Too many requests. Please try again in {seconds} seconds.",
        description="Stream rate-limit message; {seconds} is replaced with the wait time",
    )
    intro_message: str = (
        "Hi! I'm Codoc.\n"
        "Let's break this problem into four steps and complete the summary card.\n"
        "Step 1 is the problem background.\n"
        "Tell me what situation the problem describes.\n"
        "(Try to pin down who, what, and how much.)"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return Settings()
