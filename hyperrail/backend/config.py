"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start — create a .env file in your project root:
    SOURCE_URL=https://graph.irail.be/sncb/connections
    SOURCE_TIMEOUT_SECONDS=5
    LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Upstream raw source
    SOURCE_URL: str = "https://graph.irail.be/sncb/connections"
    SOURCE_TIMEOUT_SECONDS: float = 10.0
    SOURCE_DEFAULT_TTL_SECONDS: int = 60   # used when upstream sends no cache headers

    # Aggregation
    COMBINED_CACHE_TTL_SECONDS: int = 120
    MAX_LIMIT_PAGES: int = 144             # one day of 600s pages
    MAX_WINDOW_SECONDS: int = 86_400
    MAX_LIMIT_RESULTS: int = 5_000
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("SOURCE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        return v.upper()


settings = Settings()
