"""
Offset pagination over the transaction transport.

Each request asks for exactly one page at the cursor's offset. A first
page replaces whatever was cached; later pages are appended to it.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import structlog

from txn_history.transactions.classification import is_cash_deposit_pending
from txn_history.transactions.clients.base import BaseTransactionClient
from txn_history.transactions.config import HistoryConfig
from txn_history.transactions.errors import Translate, classify_error
from txn_history.transactions.models import (
    FilterState,
    ListId,
    PagePayload,
    PaginationCursor,
    Transaction,
    TransactionPage,
)

logger = structlog.get_logger(__name__)

ExclusionPredicate = Callable[[Transaction], bool]


class PaginationEngine:
    """
    Fetches pages and merges them into the cached payload.

    Items matching ``exclude`` are dropped from every page, first or not.
    """

    def __init__(
        self,
        client: BaseTransactionClient,
        config: HistoryConfig,
        exclude: ExclusionPredicate = is_cash_deposit_pending,
        translate: Optional[Translate] = None,
    ):
        self.client = client
        self.config = config
        self.exclude = exclude
        self.translate = translate

    @property
    def page_size(self) -> int:
        return self.config.page_size

    def new_cursor(self) -> PaginationCursor:
        return PaginationCursor(offset=0, page_size=self.page_size)

    def has_next_page(self, total_count: int, offset: int) -> bool:
        """More pages exist after the page requested at ``offset``."""
        return offset + self.page_size < total_count

    def request_filter(self, list_id: ListId, filter_state: FilterState) -> dict[str, str]:
        """Circle requests always carry the fixed marker, never the active filter."""
        if list_id == ListId.CIRCLE:
            return dict(self.config.circle_marker)
        return filter_state.as_request()

    async def fetch_page(
        self,
        list_id: ListId,
        filter_state: FilterState,
        cursor: PaginationCursor,
        existing: Optional[PagePayload] = None,
    ) -> PagePayload:
        """
        Fetch the page at ``cursor.offset`` and merge it.

        Args:
            list_id: List being fetched
            filter_state: Filter active when the request was issued
            cursor: Cursor whose offset this request uses
            existing: Cached payload to append to (ignored at offset 0)

        Returns:
            The new payload for the list

        Raises:
            NetworkError: Transport failed or returned a malformed page
            ServiceError: The page carried an application error
        """
        request_filter = self.request_filter(list_id, filter_state)
        api_start = time.time()

        logger.debug(
            "pagination.request",
            list_id=list_id.value,
            offset=cursor.offset,
            limit=self.page_size,
            filter=request_filter,
        )

        try:
            page = await self.client.fetch_transaction_page(
                request_filter, self.page_size, cursor.offset
            )
        except Exception as e:
            error = classify_error(e, self.translate)
            logger.warning(
                "pagination.transport_failed",
                list_id=list_id.value,
                offset=cursor.offset,
                error=str(error),
                error_type=type(error).__name__,
                latency_seconds=time.time() - api_start,
            )
            raise error from e

        if page.error is not None:
            error = classify_error(page.error, self.translate)
            logger.warning(
                "pagination.service_error",
                list_id=list_id.value,
                offset=cursor.offset,
                error_code=error.error_code,
                error=str(error),
            )
            raise error

        payload = self.merge(page, cursor.offset, existing)

        logger.info(
            "pagination.page_fetched",
            list_id=list_id.value,
            offset=cursor.offset,
            received=len(page.items),
            cached=len(payload.items),
            total_count=page.total_count,
            has_more=payload.has_more,
            latency_seconds=time.time() - api_start,
        )
        return payload

    def merge(
        self,
        page: TransactionPage,
        offset: int,
        existing: Optional[PagePayload] = None,
    ) -> PagePayload:
        """
        Build the payload that results from applying ``page``.

        ``has_more`` is computed from the offset this page was requested at.
        A reported total below what is already cached ends pagination but
        never truncates cached items.
        """
        if offset == 0 or existing is None:
            base_items: list[Transaction] = []
        else:
            base_items = list(existing.items)

        seen = {item.id for item in base_items}
        excluded = 0
        for item in page.items:
            if self.exclude(item):
                excluded += 1
                continue
            if item.id in seen:
                logger.debug("pagination.duplicate_skipped", transaction_id=item.id)
                continue
            seen.add(item.id)
            base_items.append(item)

        if excluded:
            logger.debug("pagination.excluded", count=excluded, offset=offset)

        has_more = self.has_next_page(page.total_count, offset)
        if page.total_count <= len(base_items):
            has_more = False

        checkpoint1 = page.checkpoint1_seconds
        if checkpoint1 is None and existing is not None and offset > 0:
            checkpoint1 = existing.checkpoint1_seconds

        return PagePayload(
            items=tuple(base_items),
            total_count=page.total_count,
            has_more=has_more,
            auxiliary_totals=dict(page.auxiliary_totals),
            checkpoint1_seconds=checkpoint1,
        )
