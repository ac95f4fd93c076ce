"""Persistence of status-poll checkpoint records."""

from __future__ import annotations

from typing import Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from txn_history.transactions.errors import PollFailure
from txn_history.transactions.models import PollCheckpointRecord
from txn_history.transactions.preferences import PreferenceStore

logger = structlog.get_logger(__name__)

_records_adapter = TypeAdapter(list[PollCheckpointRecord])


class CheckpointStore:
    """
    Keyed access to the checkpoint records held under one preference key.

    Records are stored as a JSON list, newest first. Records are never
    deleted here.
    """

    def __init__(self, preferences: PreferenceStore, key: str = "reqChkTxnParams"):
        self.preferences = preferences
        self.key = key

    async def load(self) -> dict[str, PollCheckpointRecord]:
        """
        Read every record.

        Raises:
            PollFailure: The stored value is not a valid record list
        """
        raw = await self.preferences.get(self.key, "[]")
        try:
            records = _records_adapter.validate_json(raw or "[]")
        except ValidationError as e:
            logger.error("checkpoints.decode_failed", key=self.key, error=str(e))
            raise PollFailure("Stored checkpoint records are unreadable", payload=raw) from e
        return {record.transaction_id: record for record in records}

    async def get(self, transaction_id: str) -> Optional[PollCheckpointRecord]:
        records = await self.load()
        return records.get(transaction_id)

    async def put(self, record: PollCheckpointRecord) -> None:
        """Insert ``record`` at the front, or replace it in place if it exists."""
        records = await self.load()
        if record.transaction_id in records:
            records[record.transaction_id] = record
            ordered = list(records.values())
        else:
            ordered = [record, *records.values()]

        await self.preferences.set(
            self.key, _records_adapter.dump_json(ordered).decode("utf-8")
        )
        logger.debug(
            "checkpoints.saved",
            transaction_id=record.transaction_id,
            current_count=record.current_count,
            max_count=record.max_count,
            exhausted=record.exhausted,
        )
