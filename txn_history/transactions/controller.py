"""
Transaction history controller.

Ties the cache, pagination, refresh policy and status-poll limiter into
the object the history screen talks to. One instance per session; call
``close`` (or use it as an async context manager) when the session ends.
"""

from __future__ import annotations

import uuid
from typing import AsyncIterable, Callable, Iterable, Optional

import structlog

from txn_history.core.logging import bind_session_context, clear_session_context

from txn_history.transactions.checkpoints import CheckpointStore
from txn_history.transactions.classification import is_cash_deposit_pending
from txn_history.transactions.clients.base import BaseTransactionClient
from txn_history.transactions.config import HistoryConfig, get_history_config
from txn_history.transactions.errors import TransactionHistoryError, Translate
from txn_history.transactions.events import EventTag
from txn_history.transactions.messages import (
    LoggingNotifier,
    MessageCatalog,
    MessageFormatter,
    Notifier,
)
from txn_history.transactions.models import (
    CachedPage,
    FilterState,
    ListId,
    PagePayload,
    PaginationCursor,
    PollOutcome,
    Transaction,
    TxnStatus,
)
from txn_history.transactions.pagination import ExclusionPredicate, PaginationEngine
from txn_history.transactions.preferences import InMemoryPreferenceStore, PreferenceStore
from txn_history.transactions.refresh import RefreshTrigger
from txn_history.transactions.status_poll import StatusPollRateLimiter
from txn_history.transactions.store import CacheStore, Clock, Subscriber, Subscription, utc_now

logger = structlog.get_logger(__name__)

DetailSubscriber = Callable[[Transaction], None]


class TransactionHistory:
    """
    Cached, paginated transaction lists plus rate-limited status polling.

    Both lists (main and circle) are cached independently. Only the main
    list honours the active filter and date mode; the circle list is
    always requested with the fixed circle marker.

    List failures never raise from the public methods: they are published
    as ``FAILED`` pages. Poll failures come back as ``FAILED`` outcomes.
    """

    def __init__(
        self,
        client: BaseTransactionClient,
        preferences: Optional[PreferenceStore] = None,
        notifier: Optional[Notifier] = None,
        formatter: Optional[MessageFormatter] = None,
        event_sources: Iterable[AsyncIterable[EventTag]] = (),
        config: Optional[HistoryConfig] = None,
        clock: Optional[Clock] = None,
        exclude: ExclusionPredicate = is_cash_deposit_pending,
        translate: Optional[Translate] = None,
        session_id: Optional[str] = None,
    ):
        """
        Args:
            client: Transaction transport
            preferences: Store for poll checkpoints (defaults to in-memory)
            notifier: Receives poll notifications (defaults to the log)
            formatter: Renders message keys (defaults to the English catalog)
            event_sources: Payment event streams that force a main-list reload
            config: History configuration (defaults to process settings)
            clock: Returns the current aware datetime
            exclude: Predicate for transactions that must never be listed
            translate: Error-code lookup (defaults to the formatter's catalog)
            session_id: Bound to every log line until ``close`` (random if omitted)
        """
        self.config = config or get_history_config()
        self.client = client
        self._clock = clock or utc_now
        self.formatter = formatter or MessageCatalog()
        if translate is None:
            translate = getattr(self.formatter, "translate", None)

        self.store = CacheStore(self._clock)
        self.pagination = PaginationEngine(client, self.config, exclude, translate)
        self.filters = FilterState()
        self._cursors: dict[ListId, PaginationCursor] = {
            list_id: self.pagination.new_cursor() for list_id in ListId
        }
        self._generations: dict[ListId, int] = {list_id: 0 for list_id in ListId}

        self.refresher = RefreshTrigger(
            self.store, self._reload, self.config, self._clock, event_sources
        )
        self.checkpoints = CheckpointStore(
            preferences or InMemoryPreferenceStore(), self.config.checkpoint_preference_key
        )
        self.poller = StatusPollRateLimiter(
            client,
            self.checkpoints,
            notifier or LoggingNotifier(),
            self.formatter,
            self.config,
            self._clock,
            on_refreshed=self._refresh_main,
            translate=translate,
        )
        self._detail_subscribers: list[DetailSubscriber] = []
        self._closed = False

        self.session_id = session_id or uuid.uuid4().hex
        bind_session_context(self.session_id)
        logger.info(
            "history.initialized",
            source=client.get_source_name(),
            page_size=self.config.page_size,
            cache_ttl_minutes=self.config.cache_ttl_minutes,
        )

    async def __aenter__(self) -> "TransactionHistory":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # -- lists -------------------------------------------------------------

    async def get_list(self, list_id: ListId) -> CachedPage:
        """
        Current page set for ``list_id``, reloading it first when due.

        A list with a fetch already in flight is returned as is.
        """
        self.refresher.ensure_subscribed()
        if self.refresher.should_refresh(list_id) and not self.refresher.is_busy(list_id):
            await self.refresher.force_refresh(list_id)
        return self.store.get_snapshot(list_id)

    async def load_more(self, list_id: ListId) -> bool:
        """
        Fetch and append the next page.

        No-op unless the list is resolved, has more pages and is idle.

        Returns:
            True if a page request was issued
        """
        self.refresher.ensure_subscribed()
        snapshot = self.store.get_snapshot(list_id)
        if not snapshot.is_resolved or snapshot.payload is None or not snapshot.payload.has_more:
            logger.debug(
                "history.load_more_skipped",
                list_id=list_id.value,
                status=snapshot.status.value,
            )
            return False
        return await self.refresher.run_exclusive(list_id, self._load_next_page)

    async def refresh(self, list_id: ListId) -> None:
        """Reload ``list_id`` from its first page."""
        self.refresher.ensure_subscribed()
        await self.refresher.force_refresh(list_id)

    def should_refresh(self, list_id: ListId) -> bool:
        return self.refresher.should_refresh(list_id)

    def subscribe(self, list_id: ListId, callback: Subscriber) -> Subscription:
        return self.store.subscribe(list_id, callback)

    def cursor_offset(self, list_id: ListId) -> int:
        return self._cursors[list_id].offset

    # -- filters -----------------------------------------------------------

    async def set_filter(self, criteria: dict[str, str]) -> None:
        self.filters.criteria = dict(criteria)
        await self._filters_changed()

    async def set_date_mode(self, criteria: dict[str, str]) -> None:
        self.filters.date_mode = dict(criteria)
        await self._filters_changed()

    async def clear_filter(self) -> None:
        await self.set_filter({})

    async def clear_date_mode(self) -> None:
        await self.set_date_mode({})

    async def clear_all(self) -> None:
        """Clear filter and date mode with a single reload."""
        self.filters.criteria = {}
        self.filters.date_mode = {}
        await self._filters_changed()

    async def filter_by_vpa(self, vpa: str) -> None:
        await self.set_filter({"vpa": vpa})

    async def filter_by_lite(self, flag: Optional[str] = None) -> None:
        await self.set_filter({"upiLite": flag or self.config.lite_filter_value})

    def is_filter_applied(self) -> bool:
        return bool(self.filters.criteria)

    def is_date_mode_applied(self) -> bool:
        return bool(self.filters.date_mode)

    def applied_filter(self) -> dict[str, str]:
        return dict(self.filters.criteria)

    def applied_date_mode(self) -> dict[str, str]:
        return dict(self.filters.date_mode)

    # -- status polling ----------------------------------------------------

    async def poll_status(
        self, transaction: Transaction, checkpoint1_seconds: Optional[int] = None
    ) -> PollOutcome:
        """
        Rate-limited live status check for one transaction.

        ``checkpoint1_seconds`` defaults to the value the server sent with
        the main list, or 0 when the list has not been loaded.
        """
        if checkpoint1_seconds is None:
            payload = self.store.get_snapshot(ListId.MAIN).payload
            checkpoint1_seconds = 0
            if payload is not None and payload.checkpoint1_seconds is not None:
                checkpoint1_seconds = payload.checkpoint1_seconds
        return await self.poller.poll_status(transaction, checkpoint1_seconds)

    # -- transaction details -----------------------------------------------

    def subscribe_details(self, callback: DetailSubscriber) -> Callable[[], None]:
        """
        Receive every transaction fetched by ``fetch_transaction_details``.

        Returns:
            A function that removes the subscription
        """
        self._detail_subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._detail_subscribers:
                self._detail_subscribers.remove(callback)

        return unsubscribe

    async def fetch_transaction_details(
        self, transaction_id: str, sync: bool = True
    ) -> Optional[Transaction]:
        """
        Fetch one transaction's live details and reload the main list.

        With ``sync`` false nothing is fetched. The refreshed transaction is
        handed to detail subscribers before the main list reload starts.
        Failures are logged and return None.
        """
        if not sync:
            return None
        try:
            refreshed = await self.client.refresh_transaction(
                transaction_id, self.pagination.translate
            )
        except TransactionHistoryError as e:
            logger.warning(
                "history.details_failed",
                transaction_id=transaction_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        for callback in list(self._detail_subscribers):
            try:
                callback(refreshed)
            except Exception as e:
                logger.error(
                    "history.details_subscriber_failed",
                    transaction_id=transaction_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        await self._refresh_main()
        return refreshed

    async def pending_bills(self) -> PagePayload:
        """
        First page of pending transactions, independent of the cached lists.

        Raises:
            NetworkError: Transport failed or returned a malformed page
            ServiceError: The page carried an application error
        """
        filters = FilterState(criteria={"status": TxnStatus.PENDING.value})
        return await self.pagination.fetch_page(
            ListId.MAIN, filters, self.pagination.new_cursor()
        )

    async def close(self) -> None:
        """End the session: stop listening for payment events."""
        if self._closed:
            return
        self._closed = True
        await self.refresher.close()
        logger.info("history.closed")
        clear_session_context()

    # -- internals ---------------------------------------------------------

    async def _filters_changed(self) -> None:
        self.refresher.ensure_subscribed()
        self._cursors[ListId.MAIN].reset()
        self._generations[ListId.MAIN] += 1
        logger.info(
            "history.filters_changed",
            criteria=self.filters.criteria,
            date_mode=self.filters.date_mode,
        )
        await self.refresher.force_refresh(ListId.MAIN)

    async def _refresh_main(self) -> None:
        await self.refresher.force_refresh(ListId.MAIN)

    def _is_stale(self, list_id: ListId, generation: int, filters: FilterState) -> bool:
        """A response is stale once its list was reset or its filter replaced."""
        if self._generations[list_id] != generation:
            return True
        return list_id == ListId.MAIN and self.filters != filters

    async def _reload(self, list_id: ListId) -> None:
        cursor = self._cursors[list_id]
        cursor.reset()
        generation = self._generations[list_id]
        filters = self.filters.copy()

        if self.store.get_snapshot(list_id).is_resolved:
            self.store.publish_loading(list_id)

        logger.info("history.refresh.started", list_id=list_id.value, filter=filters.as_request())
        await self._fetch_and_publish(
            list_id, generation, filters, PaginationCursor(0, cursor.page_size), None
        )

    async def _load_next_page(self, list_id: ListId) -> None:
        cursor = self._cursors[list_id]
        generation = self._generations[list_id]
        filters = self.filters.copy()
        existing = self.store.get_snapshot(list_id).payload
        request = PaginationCursor(cursor.next_offset(), cursor.page_size)

        logger.info("history.load_more.started", list_id=list_id.value, offset=request.offset)
        if await self._fetch_and_publish(list_id, generation, filters, request, existing):
            cursor.offset = request.offset

    async def _fetch_and_publish(
        self,
        list_id: ListId,
        generation: int,
        filters: FilterState,
        request: PaginationCursor,
        existing: Optional[PagePayload],
    ) -> bool:
        try:
            payload = await self.pagination.fetch_page(list_id, filters, request, existing)
        except TransactionHistoryError as e:
            if self._is_stale(list_id, generation, filters):
                logger.info("history.stale_failure_discarded", list_id=list_id.value)
                return False
            self.store.publish(list_id, CachedPage.failed(e, self._clock()))
            return False

        if self._is_stale(list_id, generation, filters):
            logger.info(
                "history.stale_response_discarded",
                list_id=list_id.value,
                offset=request.offset,
            )
            return False

        self.store.publish(list_id, CachedPage.resolved(payload, self._clock()))
        return True
