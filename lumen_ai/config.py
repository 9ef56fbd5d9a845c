"""
Lumen AI Configuration Module

This module manages application settings and environment variables using
pydantic-settings for type-safe configuration management.

Environment variables are loaded from .env file or system environment.
Provider API keys found here act as fallbacks for keys saved through the
secret store. All sensitive values use SecretStr to prevent accidental logging.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal
import logging
import sys

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pydantic Settings automatically reads from:
    1. Environment variables
    2. .env file in working directory
    3. Default values defined here

    API keys use SecretStr to prevent accidental exposure in logs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    openai_api_key: SecretStr | None = Field(
        default=None, description="Fallback OpenAI API key"
    )

    anthropic_api_key: SecretStr | None = Field(
        default=None, description="Fallback Anthropic API key"
    )

    xai_api_key: SecretStr | None = Field(
        default=None, description="Fallback xAI API key"
    )

    openrouter_api_key: SecretStr | None = Field(
        default=None, description="Fallback OpenRouter API key"
    )

    openclaw_api_key: SecretStr | None = Field(
        default=None, description="Optional bearer token for the OpenClaw gateway"
    )

    openclaw_base_url: str = Field(
        default="http://127.0.0.1:18789/v1/chat/completions",
        description="OpenClaw gateway URL (root or full chat completions path)",
    )

    openclaw_agent_id: str | None = Field(
        default=None, description="Agent id sent as x-openclaw-agent-id"
    )

    data_dir: Path = Field(
        default=Path(".lumen"),
        description="Directory holding the settings and secrets files",
    )

    max_concurrent_streams: int = Field(
        default=2, ge=1, description="Streams allowed to run at the same time"
    )

    request_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Wall-clock limit for one running request"
    )

    connect_timeout_seconds: float = Field(
        default=10.0, gt=0, description="TCP connect timeout for provider calls"
    )

    retry_max_attempts: int = Field(
        default=3, ge=1, description="Attempts per request including the first"
    )

    retry_base_delay_seconds: float = Field(
        default=1.0, ge=0, description="Backoff before the second attempt"
    )

    retry_max_delay_seconds: float = Field(
        default=4.0, ge=0, description="Upper bound on a single backoff delay"
    )

    budget_warning_ratio: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Fraction of the monthly budget that raises a warning",
    )

    default_temperature: float = Field(
        default=0.4,
        ge=0.0,
        le=2.0,
        description="Sampling temperature when a request does not set one",
    )

    anthropic_version: str = Field(
        default="2023-06-01", description="Value of the anthropic-version header"
    )

    anthropic_default_max_tokens: int = Field(
        default=512, gt=0, description="max_tokens sent to Anthropic when unset"
    )

    openrouter_referer: str = Field(
        default="https://lumen.local", description="HTTP-Referer sent to OpenRouter"
    )

    openrouter_title: str = Field(
        default="Lumen", description="X-Title sent to OpenRouter"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Application log level"
    )

    host: str = Field(default="127.0.0.1", description="Server bind host")

    port: int = Field(default=8000, description="Server bind port")

    debug: bool = Field(default=False, description="Enable debug mode")

    @field_validator("retry_max_delay_seconds")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        """Ensure the backoff cap is not below the base delay."""
        base = info.data.get("retry_base_delay_seconds")
        if base is not None and v < base:
            raise ValueError("retry_max_delay_seconds must be >= retry_base_delay_seconds")
        return v

    def env_api_key(self, provider: str) -> str | None:
        """
        Look up the environment fallback key for a provider.

        Args:
            provider: Provider name (e.g. 'openai')

        Returns:
            The key as plain text, or None when unset or blank
        """
        secret = getattr(self, f"{provider}_api_key", None)
        if secret is None:
            return None
        value = secret.get_secret_value().strip()
        return value or None


@lru_cache
def get_settings() -> Settings:
    """
    Returns cached settings instance.

    Using lru_cache ensures settings are loaded once and reused,
    avoiding repeated file reads and environment parsing.

    Returns:
        Settings: The application settings singleton.
    """
    return Settings()


def configure_logging(settings: Settings) -> None:
    """
    Configure application logging based on settings.

    Sets up timestamped logging on stdout and reduces noise
    from third-party HTTP libraries.

    Args:
        settings: The application settings instance.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
