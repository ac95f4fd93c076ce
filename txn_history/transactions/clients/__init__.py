"""Transaction transport client implementations."""

from txn_history.transactions.clients.base import BaseTransactionClient
from txn_history.transactions.clients.mock_client import MockTransactionClient

__all__ = ["BaseTransactionClient", "MockTransactionClient"]
