"""
Mock transaction transport for testing and development.

Serves an in-memory dataset with offset pagination, and lets tests queue
failures, override the reported total and script status responses.
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from txn_history.transactions.clients.base import BaseTransactionClient
from txn_history.transactions.errors import NetworkError
from txn_history.transactions.models import (
    ErrorPayload,
    PayeeInfo,
    PayerInfo,
    StatusResponse,
    Transaction,
    TransactionPage,
    TxnStatus,
)

MockFailure = Union[Exception, ErrorPayload]

_PAYEES = ["Ada Stores", "Kola Foods", "City Metro", "Bright Power", "Zenith Pharmacy"]
_STATUSES = [TxnStatus.SUCCESS, TxnStatus.SUCCESS, TxnStatus.SUCCESS, TxnStatus.PENDING, TxnStatus.DECLINED]


def generate_transactions(
    count: int, seed: int = 7, prefix: str = "TXN", now: Optional[datetime] = None
) -> list[Transaction]:
    """Generate ``count`` plausible transactions, newest first."""
    rng = random.Random(seed)
    now = now or datetime.now(timezone.utc)
    transactions = []
    for i in range(count):
        created_at = now - timedelta(minutes=17 * i + rng.randint(0, 10))
        transactions.append(
            Transaction(
                id=f"{prefix}{i + 1:06d}",
                status=rng.choice(_STATUSES).value,
                created_at=created_at,
                amount=Decimal(rng.randint(100, 500000)) / Decimal(100),
                currency="INR",
                type="PAY",
                self_initiated=True,
                purpose="00",
                txn_initiation_type="INTENT",
                payer_info=PayerInfo(vpa="me@bank", name="Account Holder"),
                payee_info=PayeeInfo(name=rng.choice(_PAYEES)),
            )
        )
    return transactions


class MockTransactionClient(BaseTransactionClient):
    """In-memory transport with scripted failures and call recording."""

    def __init__(
        self,
        transactions: Optional[list[Transaction]] = None,
        circle_transactions: Optional[list[Transaction]] = None,
        circle_marker: Optional[dict[str, str]] = None,
        failure_rate: float = 0.0,
        latency_ms: int = 0,
    ):
        """
        Initialize mock client.

        Args:
            transactions: Main-list dataset (defaults to 45 generated items)
            circle_transactions: Circle-list dataset (defaults to empty)
            circle_marker: Request filter that selects the circle dataset
            failure_rate: Probability of a simulated connection failure
            latency_ms: Simulated network latency in milliseconds
        """
        self.transactions = list(
            transactions if transactions is not None else generate_transactions(45)
        )
        self.circle_transactions = list(circle_transactions or [])
        self.circle_marker = circle_marker or {"upiCircle": "Y"}
        self.failure_rate = failure_rate
        self.latency_ms = latency_ms
        self.total_count_override: Optional[int] = None
        self.auxiliary_totals: dict[str, str] = {"totalCbAmount": "0"}
        self.checkpoint1_seconds: Optional[int] = 120

        self.page_requests: list[dict[str, Any]] = []
        self.status_requests: list[str] = []
        self._page_failures: list[MockFailure] = []
        self._status_failures: list[MockFailure] = []
        self._statuses: dict[str, Transaction] = {}

    def get_source_name(self) -> str:
        return "mock"

    def fail_next_page(self, failure: MockFailure) -> None:
        """Make the next page request raise (exception) or return an error."""
        self._page_failures.append(failure)

    def fail_next_status(self, failure: MockFailure) -> None:
        self._status_failures.append(failure)

    def set_status(self, transaction: Transaction) -> None:
        """Script the transaction returned by the next status requests."""
        self._statuses[transaction.id] = transaction

    async def fetch_transaction_page(
        self,
        request_filter: dict[str, str],
        limit: int,
        offset: int,
    ) -> TransactionPage:
        self.page_requests.append(
            {"filter": dict(request_filter), "limit": limit, "offset": offset}
        )
        await self._simulate_latency()

        if self._page_failures:
            failure = self._page_failures.pop(0)
            if isinstance(failure, ErrorPayload):
                return TransactionPage(error=failure)
            raise failure
        if self.failure_rate and random.random() < self.failure_rate:
            raise NetworkError("Simulated API connection failure")

        if request_filter == self.circle_marker:
            dataset = self.circle_transactions
        else:
            dataset = [t for t in self.transactions if self._matches(t, request_filter)]

        total = self.total_count_override
        if total is None:
            total = len(dataset)

        return TransactionPage(
            items=dataset[offset : offset + limit],
            total_count=total,
            auxiliary_totals=dict(self.auxiliary_totals),
            checkpoint1_seconds=self.checkpoint1_seconds,
        )

    async def fetch_transaction_status(self, transaction_id: str) -> StatusResponse:
        self.status_requests.append(transaction_id)
        await self._simulate_latency()

        if self._status_failures:
            failure = self._status_failures.pop(0)
            if isinstance(failure, ErrorPayload):
                return StatusResponse(error=failure)
            raise failure

        transaction = self._statuses.get(transaction_id)
        if transaction is None:
            transaction = next(
                (t for t in self.transactions if t.id == transaction_id), None
            )
        if transaction is None:
            return StatusResponse(
                error=ErrorPayload(error_code="TXN_NOT_FOUND", user_message="Transaction not found")
            )
        return StatusResponse(transaction=transaction)

    @staticmethod
    def _matches(transaction: Transaction, request_filter: dict[str, str]) -> bool:
        for key, value in request_filter.items():
            if key == "vpa":
                if transaction.payer_info.vpa != value:
                    return False
            elif key in Transaction.model_fields:
                if str(getattr(transaction, key)) != value:
                    return False
        return True

    async def _simulate_latency(self):
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)
