"""Preference repository with key-based access."""

from typing import Optional

from txn_history.db.models.preference import Preference
from txn_history.db.repository import BaseRepository


class PreferenceRepository(BaseRepository[Preference]):
    """Repository for Preference model."""

    async def get_by_key(self, key: str) -> Optional[Preference]:
        return await self.find_one(key=key)

    async def get_value(self, key: str, default: str) -> str:
        """
        Get a stored preference value.

        Args:
            key: Preference key
            default: Returned when the key has never been set

        Returns:
            The stored string or ``default``
        """
        preference = await self.get_by_key(key)
        if preference is None:
            return default
        return preference.value

    async def set_value(self, key: str, value: str) -> Preference:
        """
        Set a preference value (create or update).

        Args:
            key: Preference key
            value: String value, stored verbatim

        Returns:
            The created or updated Preference instance
        """
        existing = await self.get_by_key(key)
        if existing:
            updated = await self.update(existing.id, value=value)
            assert updated is not None, "Update should return the updated preference"
            return updated
        return await self.create(key=key, value=value)
