"""Transaction history cache and status-poll controller."""

from txn_history.transactions.controller import TransactionHistory

__all__ = ["TransactionHistory"]

__version__ = "0.1.0"
