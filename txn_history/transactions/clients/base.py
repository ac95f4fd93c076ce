"""
Base transaction transport interface.

Defines the contract the history controller consumes. Retries,
authentication and the wire format live in concrete implementations.
"""

from abc import ABC, abstractmethod
from typing import Optional

from txn_history.transactions.errors import NetworkError, Translate, classify_error
from txn_history.transactions.models import StatusResponse, Transaction, TransactionPage


class BaseTransactionClient(ABC):
    """
    Abstract base class for transaction transports.

    Implementations may raise any exception for transport failures; the
    caller classifies it. Application errors should be returned in the
    response's ``error`` field rather than raised.
    """

    @abstractmethod
    async def fetch_transaction_page(
        self,
        request_filter: dict[str, str],
        limit: int,
        offset: int,
    ) -> TransactionPage:
        """
        Fetch one page of transactions.

        Args:
            request_filter: Active filter criteria, or the circle marker
            limit: Page size
            offset: Number of transactions to skip

        Returns:
            The page, possibly carrying an application error
        """

    @abstractmethod
    async def fetch_transaction_status(self, transaction_id: str) -> StatusResponse:
        """
        Fetch the live status of one transaction.

        Args:
            transaction_id: Transaction identifier

        Returns:
            Status response, possibly carrying an application error
        """

    @abstractmethod
    def get_source_name(self) -> str:
        """Source identifier used in logs (e.g., 'mock')."""

    async def refresh_transaction(
        self, transaction_id: str, translate: Optional[Translate] = None
    ) -> Transaction:
        """
        Fetch a transaction's status and validate the response.

        Raises:
            ServiceError: The response carried an application error
            NetworkError: The transport failed or returned no transaction
        """
        try:
            response = await self.fetch_transaction_status(transaction_id)
        except Exception as e:
            raise classify_error(e, translate) from e

        if response.error is not None:
            raise classify_error(response.error, translate)
        if response.transaction is None:
            raise NetworkError(
                "Status response did not include a transaction",
                payload=response,
            )
        return response.transaction
