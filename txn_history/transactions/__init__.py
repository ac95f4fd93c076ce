"""Transaction history: cached lists, pagination, refresh and status polling."""

from txn_history.transactions.controller import TransactionHistory
from txn_history.transactions.errors import (
    NetworkError,
    PollFailure,
    ServiceError,
    TransactionHistoryError,
)
from txn_history.transactions.models import (
    CachedPage,
    ListId,
    PageStatus,
    PollOutcome,
    PollOutcomeKind,
    Transaction,
)

__all__ = [
    "TransactionHistory",
    "TransactionHistoryError",
    "NetworkError",
    "ServiceError",
    "PollFailure",
    "CachedPage",
    "ListId",
    "PageStatus",
    "PollOutcome",
    "PollOutcomeKind",
    "Transaction",
]
