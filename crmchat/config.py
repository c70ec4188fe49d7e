"""Application configuration loaded from environment variables."""

from __future__ import annotations

import functools

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """CRM chat backend settings.

    Required fields must be set via environment variables (or ``.env`` file).
    Optional fields have sensible defaults.
    """

    # Required
    gemini_api_key: str
    airtable_api_key: str
    airtable_base_id: str

    # Optional with defaults
    database_url: str = "sqlite:///crmchat.db"
    cors_origins: str = "http://localhost:3000"
    model_id: str = "gemini-2.5-flash"
    airtable_api_url: str = "https://api.airtable.com/v0"
    airtable_timeout_seconds: float = 15.0
    schema_cache_ttl_seconds: float = 300.0
    max_steps: int = 5
    session_duration_days: int = 7

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@functools.lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance (singleton)."""
    return Settings()
