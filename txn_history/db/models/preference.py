"""Preference model: string key/value pairs persisted per device profile."""

from datetime import datetime, timezone
from sqlalchemy import String, Text, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from txn_history.db.base import Base


class Preference(Base):
    """
    Stores a single user preference.

    Values are opaque strings; callers own the encoding (the poll
    checkpoint list, for example, is stored as a JSON document).
    """

    __tablename__ = "preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    key: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Preference key (e.g., 'reqChkTxnParams')",
    )
    value: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Preference value, stored verbatim",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Preference(key={self.key}, length={len(self.value or '')})>"
