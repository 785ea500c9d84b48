from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model: str = "gpt-4o-mini"
    openai_api_key: str | None = None
    openai_base_url: str | None = "https://api.openai.com/v1"
    max_tokens: int = 4096
    temperature: float = 0.7
    request_timeout_seconds: float = 120.0
    history_limit: int = 20

    # Context delivery
    strategy: Literal["single", "streaming", "auto"] = "auto"
    max_tokens_per_message: int = Field(default=30000, gt=0)
    token_estimation_ratio: float = Field(default=3.0, gt=0)
    include_context_summary: bool = True
    inter_part_delay_seconds: float = Field(default=1.0, ge=0)

    cors_origins: str = "*"

    redis_url: str | None = None
    context_ttl_seconds: int = 86400  # 24 hours

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
