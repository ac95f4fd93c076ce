"""Generic async repository shared by the persistence layer."""

from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession

from txn_history.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """
    Row-level access for one mapped model.

    Statements run in the session handed in by the unit of work and are
    flushed, never committed; the unit of work decides when to commit.
    """

    def __init__(self, model: Type[ModelT], session: AsyncSession):
        self.model = model
        self.session = session

    async def create(self, **values: Any) -> ModelT:
        """Insert a row and return it with server defaults loaded."""
        row = self.model(**values)
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return row

    async def get_by_id(self, row_id: int) -> Optional[ModelT]:
        return await self.find_one(id=row_id)

    async def find_one(self, **criteria: Any) -> Optional[ModelT]:
        """
        Fetch the single row whose columns equal ``criteria``.

        Returns:
            The row, or None when nothing matches
        """
        stmt = select(self.model).filter_by(**criteria)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def update(self, row_id: int, **values: Any) -> Optional[ModelT]:
        """Apply ``values`` to one row and return it reloaded (None if missing)."""
        stmt = sa_update(self.model).filter_by(id=row_id).values(**values)
        await self.session.execute(stmt)
        await self.session.flush()
        row = await self.get_by_id(row_id)
        if row is not None:
            await self.session.refresh(row)
        return row
