from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables and an optional .env file.

    Values here are process-wide defaults; components that need them build
    their own validated config objects from these (see
    ``txn_history.transactions.config``).
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects log rendering."""

    DEBUG: bool = True
    """Enable debug logging."""

    # DB
    DATABASE_URL: Optional[str] = None
    """Database URL for the preference store. If None, uses a local SQLite file."""

    # Transaction history
    HISTORY_PAGE_SIZE: int = 20
    """Number of transactions requested per page."""

    HISTORY_CACHE_TTL_MINUTES: int = 30
    """Minutes before a cached list is considered stale."""

    DISPLAY_TIMEZONE: str = "UTC"
    """IANA timezone used when rendering "next window" clock times."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()
