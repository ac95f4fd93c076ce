"""
Observable cache of the current page set per list.

Each list has one current-value slot and an ordered list of subscriber
callbacks. ``publish`` replaces the slot and fans the new page out to
every subscriber synchronously, in registration order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from txn_history.transactions.models import CachedPage, ListId, PageStatus

logger = structlog.get_logger(__name__)

Subscriber = Callable[[CachedPage], None]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Subscription:
    """Handle returned by ``CacheStore.subscribe``; call to unsubscribe."""

    def __init__(self, store: "CacheStore", list_id: ListId, callback: Subscriber):
        self._store = store
        self._list_id = list_id
        self._callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._store._remove(self._list_id, self._callback)

    __call__ = unsubscribe


class CacheStore:
    """
    Holds the latest page per list and broadcasts changes.

    Also tracks, per list, whether the last transition was a failure and
    when the last successful fetch landed; the refresh trigger reads both.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now
        self._pages: dict[ListId, CachedPage] = {}
        self._subscribers: dict[ListId, list[Subscriber]] = {lid: [] for lid in ListId}
        self._errored: dict[ListId, bool] = {lid: False for lid in ListId}
        self._last_success: dict[ListId, Optional[datetime]] = {lid: None for lid in ListId}

    def get_snapshot(self, list_id: ListId) -> CachedPage:
        """Current page for ``list_id`` (UNRESOLVED before the first fetch)."""
        return self._pages.get(list_id, CachedPage.unresolved())

    def publish(self, list_id: ListId, page: CachedPage) -> None:
        """
        Replace the page for ``list_id`` and notify subscribers.

        Never raises: a subscriber that fails is logged and skipped.
        """
        self._pages[list_id] = page

        if page.status == PageStatus.FAILED:
            self._errored[list_id] = True
            logger.warning(
                "cache.failed",
                list_id=list_id.value,
                error=str(page.error),
                error_type=type(page.error).__name__,
            )
        elif page.status == PageStatus.RESOLVED:
            self._errored[list_id] = False
            self._last_success[list_id] = page.fetched_at or self._clock()

        logger.debug(
            "cache.published",
            list_id=list_id.value,
            status=page.status.value,
            items=len(page.payload.items) if page.payload else 0,
            subscribers=len(self._subscribers[list_id]),
        )

        for callback in list(self._subscribers[list_id]):
            try:
                callback(page)
            except Exception as e:
                logger.error(
                    "cache.subscriber_failed",
                    list_id=list_id.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def publish_loading(self, list_id: ListId) -> None:
        """Publish a shimmer page that keeps the prior totals."""
        prior = self.get_snapshot(list_id).payload
        self.publish(list_id, CachedPage.loading(prior, self._clock()))

    def subscribe(self, list_id: ListId, callback: Subscriber) -> Subscription:
        self._subscribers[list_id].append(callback)
        return Subscription(self, list_id, callback)

    def has_error(self, list_id: ListId) -> bool:
        return self._errored[list_id]

    def last_fetched_at(self, list_id: ListId) -> Optional[datetime]:
        """Time of the last successful fetch for ``list_id``."""
        return self._last_success[list_id]

    def subscriber_count(self, list_id: ListId) -> int:
        return len(self._subscribers[list_id])

    def _remove(self, list_id: ListId, callback: Subscriber) -> None:
        try:
            self._subscribers[list_id].remove(callback)
        except ValueError:
            pass
