"""Transaction scope around the preference repository."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from txn_history.db import base
from txn_history.db.models import Preference
from txn_history.db.repositories import PreferenceRepository


class UnitOfWork:
    """
    Opens (or borrows) one session and exposes repositories bound to it.

    An owned session is committed on clean exit and rolled back on error.
    A borrowed session is only rolled back on error; committing it is
    left to whoever passed it in.

        async with UnitOfWork() as uow:
            await uow.preferences.set_value("reqChkTxnParams", "[]")
    """

    preferences: PreferenceRepository

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self._session = session
        self._factory = session_factory
        self._owns_session = session is None

    async def __aenter__(self) -> "UnitOfWork":
        if self._session is None:
            self._session = (self._factory or base.AsyncSessionLocal)()
        self.preferences = PreferenceRepository(Preference, self._session)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                await self.rollback()
            elif self._owns_session:
                await self.commit()
        finally:
            if self._owns_session:
                await self._session.close()
                self._session = None

    async def commit(self):
        if self._session is not None:
            await self._session.commit()

    async def rollback(self):
        if self._session is not None:
            await self._session.rollback()
