"""
config.py
=========
Centralized settings for the Customer Intelligence service.

Values come from environment variables (case-insensitive) or a local `.env`
file, parsed and validated by pydantic-settings.

Env Vars
--------
- DATABASE_URL           : SQLAlchemy URL for the SQL repositories (default: local SQLite file)
- ECHO_SQL               : "true" to enable SQL echo (debug), default off
- STORAGE_BACKEND        : "memory" (default) or "sql"
- SEED_ON_START          : "true" to seed demo companies on startup
- API_KEY                : when set, API routes require a matching X-API-Key header
- MAX_BATCH_COMPANIES    : company ids accepted per batch score request (default 50)
- MAX_BATCH_EVENTS       : events accepted per batch ingestion request (default 100)
- LOG_LEVEL              : root log level (default INFO)
- DEFAULT_LICENSED_SEATS : licensed seats assumed when none were set (default 10)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    database_url: str = "sqlite:///./customer_intel.db"
    echo_sql: bool = False
    storage_backend: Literal["memory", "sql"] = "memory"
    seed_on_start: bool = False

    api_key: Optional[str] = None

    max_batch_companies: int = 50
    max_batch_events: int = 100

    log_level: str = "INFO"

    # Seat licensing is owned by an external system; until it reports a
    # value we assume the smallest standard plan.
    default_licensed_seats: int = 10


@lru_cache()
def get_settings() -> Settings:
    """
    Return the cached Settings instance.

    Tests that tweak the environment should call `get_settings.cache_clear()`.
    """
    return Settings()
