"""
Transaction history configuration.

Defines page size, cache lifetime, the circle-list request marker and
the preference key under which poll checkpoints are persisted.
"""

from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from txn_history.core.config import get_settings


class HistoryConfig(BaseModel):
    """Main transaction history configuration."""

    # Pagination
    page_size: int = Field(
        default=20, ge=1, le=200, description="Transactions requested per page"
    )

    # Invalidation
    cache_ttl_minutes: int = Field(
        default=30, ge=1, description="Minutes before a cached list is stale"
    )

    # Requests
    circle_marker: dict[str, str] = Field(
        default_factory=lambda: {"upiCircle": "Y"},
        description="Request filter used for the circle list instead of the active filter",
    )
    lite_filter_value: str = Field(
        default="Y", description="Value sent with the lite-account filter"
    )

    # Events
    refresh_events: list[str] = Field(
        default_factory=lambda: [
            "SENT",
            "APPROVED",
            "DECLINED",
            "FAILED",
            "DIRECT_PAY_FAILED",
            "DIRECT_PAY_SENT",
        ],
        min_length=1,
        description="Payment event tags that force a reload of the main list",
    )

    # Status polling
    checkpoint_preference_key: str = Field(
        default="reqChkTxnParams",
        description="Preference key holding the JSON-encoded checkpoint records",
    )
    display_timezone: str = Field(
        default="UTC", description="Timezone for rendering next-window clock times"
    )

    @field_validator("display_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    def get_cache_ttl_timedelta(self) -> timedelta:
        """Get cache lifetime as timedelta."""
        return timedelta(minutes=self.cache_ttl_minutes)

    def get_display_zone(self) -> ZoneInfo:
        return ZoneInfo(self.display_timezone)


def get_history_config() -> HistoryConfig:
    """Build the history configuration from process settings."""
    settings = get_settings()
    return HistoryConfig(
        page_size=settings.HISTORY_PAGE_SIZE,
        cache_ttl_minutes=settings.HISTORY_CACHE_TTL_MINUTES,
        display_timezone=settings.DISPLAY_TIMEZONE,
    )
