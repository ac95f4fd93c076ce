"""
Invalidation and refresh triggering.

Decides when a list is due for a reload (never loaded, last fetch
failed, or older than the cache TTL), serialises fetches per list, and
turns payment events into reloads of the main list.
"""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterable, Awaitable, Callable, Iterable, Optional

import structlog

from txn_history.transactions.config import HistoryConfig
from txn_history.transactions.events import EventTag, PaymentEventBus
from txn_history.transactions.models import ListId, PageStatus
from txn_history.transactions.store import CacheStore, Clock, utc_now

logger = structlog.get_logger(__name__)

ListOperation = Callable[[ListId], Awaitable[None]]


class RefreshTrigger:
    """
    Refresh policy plus the per-list fetch gate.

    At most one fetch runs per list. A forced refresh that arrives while
    a fetch is in flight is remembered and runs once that fetch settles;
    several such requests coalesce into one reload.
    """

    def __init__(
        self,
        store: CacheStore,
        reload: ListOperation,
        config: HistoryConfig,
        clock: Optional[Clock] = None,
        event_sources: Iterable[AsyncIterable[EventTag]] = (),
    ):
        """
        Args:
            store: Cache whose state decides staleness
            reload: Coroutine that resets the list's cursor and fetches page one
            config: History configuration (TTL)
            clock: Returns the current aware datetime
            event_sources: Payment event streams that force a main-list reload
        """
        self.store = store
        self.reload = reload
        self.config = config
        self._clock = clock or utc_now
        self._busy: set[ListId] = set()
        self._pending: set[ListId] = set()
        self.events = PaymentEventBus(
            event_sources, self._on_payment_event, recognised=config.refresh_events
        )

    def should_refresh(self, list_id: ListId) -> bool:
        """True when the list is unresolved, failed last time, or expired."""
        if self.store.get_snapshot(list_id).status == PageStatus.UNRESOLVED:
            return True
        if self.store.has_error(list_id):
            return True
        return self.has_expired(list_id)

    def has_expired(self, list_id: ListId, now: Optional[datetime] = None) -> bool:
        last = self.store.last_fetched_at(list_id)
        if last is None:
            return True
        now = now or self._clock()
        return now - last >= self.config.get_cache_ttl_timedelta()

    def is_busy(self, list_id: ListId) -> bool:
        return list_id in self._busy

    def has_pending(self, list_id: ListId) -> bool:
        return list_id in self._pending

    async def force_refresh(self, list_id: ListId) -> bool:
        """
        Reload ``list_id`` from the first page.

        Returns:
            True if the reload ran now, False if it was queued behind an
            in-flight fetch
        """
        if list_id in self._busy:
            self._pending.add(list_id)
            logger.info("refresh.queued", list_id=list_id.value)
            return False
        await self._run(list_id, self.reload)
        return True

    async def run_exclusive(self, list_id: ListId, operation: ListOperation) -> bool:
        """
        Run ``operation`` unless a fetch is already in flight for the list.

        Returns:
            False if rejected because the list was busy
        """
        if list_id in self._busy:
            logger.debug("refresh.rejected_busy", list_id=list_id.value)
            return False
        await self._run(list_id, operation)
        return True

    async def _run(self, list_id: ListId, operation: ListOperation) -> None:
        self._busy.add(list_id)
        try:
            await operation(list_id)
            while list_id in self._pending:
                self._pending.discard(list_id)
                logger.info("refresh.running_queued", list_id=list_id.value)
                await self.reload(list_id)
        finally:
            self._busy.discard(list_id)

    def ensure_subscribed(self) -> None:
        """Start listening for payment events (idempotent)."""
        self.events.subscribe()

    async def close(self) -> None:
        await self.events.close()

    async def _on_payment_event(self, event: str) -> None:
        logger.info("refresh.payment_event", payment_event=event)
        await self.force_refresh(ListId.MAIN)
