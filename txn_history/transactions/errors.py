"""
Error taxonomy for list fetches and status polls.

Transport failures are classified once, at the boundary, into either a
network error (no usable response) or a service error (well-formed
response carrying an application error). Poll failures never leave the
rate limiter; they are reported as a generic outcome instead.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from txn_history.transactions.models import ErrorPayload

GENERIC_NETWORK_MESSAGE = "Network error occurred"

Translate = Callable[[str], Optional[str]]


class TransactionHistoryError(Exception):
    """Base exception for transaction history errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.payload = payload


class NetworkError(TransactionHistoryError):
    """Transport unreachable or response malformed."""


class ServiceError(TransactionHistoryError):
    """Well-formed response carrying an application error code/message."""


class PollFailure(TransactionHistoryError):
    """A status poll could not be completed."""


def _error_fields(raw: Any) -> tuple[Optional[str], Optional[str]]:
    if isinstance(raw, ErrorPayload):
        return raw.error_code, raw.user_message
    if isinstance(raw, Mapping):
        code = raw.get("error_code") or raw.get("errorCode")
        message = raw.get("user_message") or raw.get("userMessage")
        nested = raw.get("error")
        if not code and not message and isinstance(nested, Mapping):
            return _error_fields(nested)
        return code, message
    return None, None


def classify_error(raw: Any, translate: Optional[Translate] = None) -> TransactionHistoryError:
    """
    Convert a raw transport error into the error taxonomy.

    The display message prefers a translation of the error code, then the
    server's user message; when both are empty the error is wrapped as a
    generic network error.

    Args:
        raw: Exception, ``ErrorPayload`` or error mapping from the transport
        translate: Lookup from error code to display text (None when unknown)

    Returns:
        A ``NetworkError`` or ``ServiceError``
    """
    if isinstance(raw, TransactionHistoryError):
        return raw

    if isinstance(raw, BaseException):
        return NetworkError(str(raw) or GENERIC_NETWORK_MESSAGE, payload=raw)

    code, user_message = _error_fields(raw)
    message = None
    if code and translate is not None:
        message = translate(code)
    if not message:
        message = user_message

    if not message:
        return NetworkError(GENERIC_NETWORK_MESSAGE, error_code=code, payload=raw)
    return ServiceError(message, error_code=code, payload=raw)
