"""
Key-value preference stores.

The status-poll rate limiter persists its checkpoint records through
this interface. Values are opaque strings.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from txn_history.db.unit_of_work import UnitOfWork

logger = structlog.get_logger(__name__)


class PreferenceStore(ABC):
    """Asynchronous string key-value store."""

    @abstractmethod
    async def get(self, key: str, default: str) -> str:
        """Return the value stored under ``key`` or ``default``."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""


class InMemoryPreferenceStore(PreferenceStore):
    """Process-local store, used in tests and as the controller default."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.values: dict[str, str] = dict(initial or {})
        self.writes = 0

    async def get(self, key: str, default: str) -> str:
        return self.values.get(key, default)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value
        self.writes += 1


class DatabasePreferenceStore(PreferenceStore):
    """
    Preference store backed by the ``preferences`` table.

    Each call runs in its own unit of work so a write is committed before
    the call returns.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        """
        Args:
            session_factory: Session factory to use instead of the module default
        """
        self.session_factory = session_factory

    async def get(self, key: str, default: str) -> str:
        async with UnitOfWork(session_factory=self.session_factory) as uow:
            return await uow.preferences.get_value(key, default)

    async def set(self, key: str, value: str) -> None:
        async with UnitOfWork(session_factory=self.session_factory) as uow:
            await uow.preferences.set_value(key, value)
            await uow.commit()
        logger.debug("preferences.saved", key=key, size=len(value))
