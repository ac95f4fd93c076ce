"""
Checkpoint-gated status polling for a single transaction.

A caller may ask for a pending transaction's live status. Whether the
request reaches the server depends on the transaction's age, the
caller's role and the counters persisted from earlier polls:

* an exhausted transaction is never fetched again;
* a young transaction (within the first checkpoint) is blocked unless
  the caller is a PRIMARY or SECONDARY payer;
* the first allowed poll creates the persisted record;
* later polls are allowed after the second checkpoint, or before it
  while attempts remain;
* otherwise the caller is told when the next window opens.

Every fetched status is classified into a user-facing outcome and, when
the outcome warrants it, sent to the notifier.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

import structlog

from txn_history.transactions.checkpoints import CheckpointStore
from txn_history.transactions.clients.base import BaseTransactionClient
from txn_history.transactions.config import HistoryConfig
from txn_history.transactions.errors import Translate
from txn_history.transactions.messages import (
    MessageCatalog,
    MessageFormatter,
    MessageKey,
    Notifier,
    format_time_12hr,
    pluralize,
)
from txn_history.transactions.models import (
    PayerRole,
    PollCheckpointRecord,
    PollOutcome,
    PollOutcomeKind,
    Transaction,
    TxnStatus,
    ensure_aware,
    is_terminal_status,
)
from txn_history.transactions.store import Clock, utc_now

logger = structlog.get_logger(__name__)

RefreshCallback = Callable[[], Awaitable[Any]]

INFO = "info"
ERROR = "error"

_PAYER_ROLES = {PayerRole.PRIMARY.value, PayerRole.SECONDARY.value}


class StatusPollRateLimiter:
    """Decides, performs and classifies status polls."""

    def __init__(
        self,
        client: BaseTransactionClient,
        checkpoints: CheckpointStore,
        notifier: Notifier,
        formatter: Optional[MessageFormatter] = None,
        config: Optional[HistoryConfig] = None,
        clock: Optional[Clock] = None,
        on_refreshed: Optional[RefreshCallback] = None,
        translate: Optional[Translate] = None,
    ):
        """
        Args:
            client: Transport used for status fetches
            checkpoints: Persisted per-transaction counters
            notifier: Receives info/error notifications
            formatter: Renders message keys (defaults to the English catalog)
            config: History configuration (display timezone)
            clock: Returns the current aware datetime
            on_refreshed: Awaited after every successful fetch
            translate: Error-code lookup used when classifying service errors
        """
        self.client = client
        self.checkpoints = checkpoints
        self.notifier = notifier
        self.formatter = formatter or MessageCatalog()
        self.config = config or HistoryConfig()
        self._clock = clock or utc_now
        self.on_refreshed = on_refreshed
        self.translate = translate
        self._in_flight: set[str] = set()

    async def poll_status(
        self, transaction: Transaction, checkpoint1_seconds: int
    ) -> PollOutcome:
        """
        Poll ``transaction``'s status if the rate limits allow it.

        Never raises for transport or storage failures; those become a
        ``FAILED`` outcome and leave the persisted record untouched.
        """
        if transaction.id in self._in_flight:
            logger.info("poll.rejected_in_progress", transaction_id=transaction.id)
            return PollOutcome(kind=PollOutcomeKind.IN_PROGRESS)

        self._in_flight.add(transaction.id)
        try:
            outcome = await self._poll(transaction, checkpoint1_seconds)
        finally:
            self._in_flight.discard(transaction.id)

        logger.info(
            "poll.completed",
            transaction_id=transaction.id,
            outcome=outcome.kind.value,
            fetched=outcome.fetched,
        )
        self._notify(outcome)
        return outcome

    async def _poll(self, transaction: Transaction, checkpoint1_seconds: int) -> PollOutcome:
        now = self._clock()
        elapsed = (now - ensure_aware(transaction.created_at)).total_seconds()

        if transaction.is_poll_exhausted:
            return self._outcome(PollOutcomeKind.LIMIT_EXCEEDED, INFO, MessageKey.LIMIT_EXCEEDED)

        if transaction.role not in _PAYER_ROLES and elapsed <= checkpoint1_seconds:
            return self._outcome(
                PollOutcomeKind.BLOCKED,
                INFO,
                MessageKey.BLOCKED,
                checkpoint1=checkpoint1_seconds,
            )

        try:
            record = await self.checkpoints.get(transaction.id)
        except Exception as e:
            return self._failed(transaction.id, "load", e)

        if record is None:
            return await self._first_refresh(transaction)

        if record.exhausted:
            return self._outcome(PollOutcomeKind.LIMIT_EXCEEDED, ERROR, MessageKey.LIMIT_EXCEEDED)

        # 0 means the server never sent a second window; keep count gating.
        if record.second_checkpoint_seconds and elapsed >= record.second_checkpoint_seconds:
            return await self._refresh_recorded(transaction, record, MessageKey.AFTER_WINDOW)

        if record.current_count < record.max_count:
            return await self._refresh_recorded(transaction, record, MessageKey.WITHIN_WINDOW)

        formatted_time = self._next_window(
            record.last_refreshed_at, record.second_checkpoint_seconds
        )
        if not is_terminal_status(transaction.status):
            return self._outcome(
                PollOutcomeKind.ATTEMPTS_EXCEEDED,
                ERROR,
                MessageKey.ATTEMPTS_EXCEEDED,
                formatted_time=formatted_time,
                refresh_done=f"{record.current_count}/{record.max_count}",
            )

        return self._outcome(
            PollOutcomeKind.TRY_LATER,
            INFO,
            MessageKey.TRY_LATER,
            formatted_time=formatted_time,
        )

    async def _first_refresh(self, transaction: Transaction) -> PollOutcome:
        try:
            refreshed = await self.client.refresh_transaction(transaction.id, self.translate)
            params = refreshed.req_chk_txn_params
            second_checkpoint = (params.check_point2 if params else None) or 0
            if params is not None and params.has_counts():
                record = PollCheckpointRecord(
                    transaction_id=transaction.id,
                    current_count=min(params.current_count, params.max_count),
                    max_count=params.max_count,
                    second_checkpoint_seconds=second_checkpoint,
                    exhausted=refreshed.is_poll_exhausted,
                    last_refreshed_at=ensure_aware(refreshed.created_at),
                )
                await self.checkpoints.put(record)
            else:
                logger.info("poll.no_counters", transaction_id=transaction.id)
        except Exception as e:
            return self._failed(transaction.id, "first_refresh", e)

        formatted_time = self._next_window(refreshed.created_at, second_checkpoint)
        outcome = self._classify(
            refreshed,
            current_count=params.current_count if params else None,
            max_count=params.max_count if params else None,
            variant=MessageKey.WITHIN_WINDOW,
            formatted_time=formatted_time,
        )
        await self._refreshed()
        return outcome

    async def _refresh_recorded(
        self, transaction: Transaction, record: PollCheckpointRecord, variant: str
    ) -> PollOutcome:
        try:
            refreshed = await self.client.refresh_transaction(transaction.id, self.translate)
            updated = record.advanced(refreshed.req_chk_txn_params, refreshed.is_poll_exhausted)
            await self.checkpoints.put(updated)
        except Exception as e:
            return self._failed(transaction.id, "refresh", e)

        formatted_time = self._next_window(
            updated.last_refreshed_at, updated.second_checkpoint_seconds
        )
        outcome = self._classify(
            refreshed,
            current_count=updated.current_count,
            max_count=updated.max_count,
            variant=variant,
            formatted_time=formatted_time,
        )
        await self._refreshed()
        return outcome

    def _classify(
        self,
        refreshed: Transaction,
        current_count: Optional[int],
        max_count: Optional[int],
        variant: str,
        formatted_time: str,
    ) -> PollOutcome:
        """Map a freshly fetched transaction to an outcome; first match wins."""
        params = refreshed.req_chk_txn_params
        counters_missing = params is None or (
            params.current_count is None and params.max_count is None
        )
        exhausted = refreshed.is_poll_exhausted
        status = refreshed.status

        if status == TxnStatus.DELEGATE_INITIATED.value and counters_missing:
            if refreshed.role == PayerRole.PRIMARY.value:
                return self._outcome(
                    PollOutcomeKind.DELEGATE_PRIMARY,
                    ERROR,
                    MessageKey.DELEGATE_PRIMARY,
                    transaction=refreshed,
                )
            if refreshed.role == PayerRole.SECONDARY.value:
                return self._outcome(
                    PollOutcomeKind.DELEGATE_SECONDARY,
                    ERROR,
                    MessageKey.DELEGATE_SECONDARY,
                    transaction=refreshed,
                    name=refreshed.payer_info.name or "",
                )

        if exhausted and status != TxnStatus.SUCCESS.value:
            return self._outcome(
                PollOutcomeKind.LIMIT_EXCEEDED,
                ERROR,
                MessageKey.LIMIT_EXCEEDED,
                transaction=refreshed,
            )

        if not exhausted and not is_terminal_status(status) and max_count is not None:
            current = current_count or 0
            refresh_done = f"{current}/{max_count}"
            if current == max_count:
                return self._outcome(
                    PollOutcomeKind.ATTEMPTS_EXCEEDED,
                    ERROR,
                    MessageKey.ATTEMPTS_EXCEEDED,
                    transaction=refreshed,
                    formatted_time=formatted_time,
                    refresh_done=refresh_done,
                )
            remaining = max_count - current
            return self._outcome(
                PollOutcomeKind.ATTEMPTS_LEFT,
                INFO,
                variant,
                transaction=refreshed,
                remaining_count=remaining,
                plural=pluralize(remaining),
                formatted_time=formatted_time,
                refresh_done=refresh_done,
            )

        return PollOutcome(
            kind=PollOutcomeKind.STATUS_UPDATED, transaction=refreshed, fetched=True
        )

    def _outcome(
        self,
        kind: PollOutcomeKind,
        severity: str,
        message_key: str,
        transaction: Optional[Transaction] = None,
        **params: Any,
    ) -> PollOutcome:
        return PollOutcome(
            kind=kind,
            severity=severity,
            message_key=message_key,
            message=self.formatter(message_key, **params),
            params=params,
            transaction=transaction,
            fetched=transaction is not None,
        )

    def _failed(self, transaction_id: str, stage: str, error: Exception) -> PollOutcome:
        logger.error(
            "poll.failed",
            transaction_id=transaction_id,
            stage=stage,
            error=str(error),
            error_type=type(error).__name__,
        )
        return self._outcome(PollOutcomeKind.FAILED, ERROR, MessageKey.SOMETHING_WRONG)

    def _next_window(self, anchor: datetime, second_checkpoint_seconds: int) -> str:
        moment = ensure_aware(anchor) + timedelta(seconds=second_checkpoint_seconds)
        return format_time_12hr(moment.astimezone(self.config.get_display_zone()))

    async def _refreshed(self) -> None:
        if self.on_refreshed is None:
            return
        try:
            await self.on_refreshed()
        except Exception as e:
            logger.error(
                "poll.refresh_failed", error=str(e), error_type=type(e).__name__
            )

    def _notify(self, outcome: PollOutcome) -> None:
        if outcome.severity is None or outcome.message is None:
            return
        if outcome.severity == ERROR:
            self.notifier.error(outcome.message)
        else:
            self.notifier.info(outcome.message)
