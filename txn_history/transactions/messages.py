"""
User-facing message keys, default English texts and notification sinks.

Rendering and translation belong to the host application; this module
only supplies the keys, a default catalog usable as the formatter, and
the 12-hour clock rendering used by every "next window" message.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)


class MessageKey:
    """Message keys emitted by the status-poll rate limiter."""

    LIMIT_EXCEEDED = "PENDING_STATUS_LIMIT_EXCEEDED"
    BLOCKED = "PENDING_STATUS_BLOCK"
    WITHIN_WINDOW = "PENDING_STATUS_WITHIN_TWO_HOURS"
    AFTER_WINDOW = "PENDING_STATUS_AFTER_TWO_HOURS_ATTEMPTS"
    ATTEMPTS_EXCEEDED = "PENDING_STATUS_ATTEMPTS_EXCEEDED"
    TRY_LATER = "PENDING_STATUS_AFTER_SOME_TIME"
    DELEGATE_PRIMARY = "PENDING_TXN_DELEGATE_INITIATED_PRIMARY"
    DELEGATE_SECONDARY = "PENDING_TXN_DELEGATE_INITIATED_SECONDARY"
    SOMETHING_WRONG = "SOMETHING_WRONG"


DEFAULT_MESSAGES: dict[str, str] = {
    MessageKey.LIMIT_EXCEEDED: "You have reached the limit for checking this transaction's status.",
    MessageKey.BLOCKED: "Please wait {checkpoint1} seconds before checking the status again.",
    MessageKey.WITHIN_WINDOW: (
        "Status checked ({refresh_done}). {remaining_count} attempt{plural} left, "
        "more attempts after {formatted_time}."
    ),
    MessageKey.AFTER_WINDOW: (
        "Status checked ({refresh_done}). {remaining_count} attempt{plural} left."
    ),
    MessageKey.ATTEMPTS_EXCEEDED: (
        "All attempts used ({refresh_done}). Try again after {formatted_time}."
    ),
    MessageKey.TRY_LATER: "Please try again after {formatted_time}.",
    MessageKey.DELEGATE_PRIMARY: "This payment is waiting for approval. Please check back later.",
    MessageKey.DELEGATE_SECONDARY: "{name} has been notified to approve this payment.",
    MessageKey.SOMETHING_WRONG: "Something went wrong. Please try again.",
}


class MessageFormatter(Protocol):
    def __call__(self, key: str, **params: Any) -> str: ...


class Notifier(Protocol):
    def info(self, text: str) -> None: ...

    def error(self, text: str) -> None: ...


class MessageCatalog:
    """
    Key → template lookup used as the default message formatter.

    Unknown keys render as the key itself so a missing translation is
    visible rather than silent.
    """

    def __init__(self, messages: Optional[dict[str, str]] = None):
        self._messages = dict(DEFAULT_MESSAGES)
        if messages:
            self._messages.update(messages)

    def translate(self, key: str) -> Optional[str]:
        """Return the raw text for ``key`` or None when there is none."""
        return self._messages.get(key)

    def __call__(self, key: str, **params: Any) -> str:
        template = self._messages.get(key)
        if template is None:
            return key
        try:
            return template.format(**params)
        except (KeyError, IndexError):
            logger.warning("messages.missing_param", key=key, params=sorted(params))
            return template


class LoggingNotifier:
    """Notifier that writes notifications to the structured log."""

    def info(self, text: str) -> None:
        logger.info("notify.info", text=text)

    def error(self, text: str) -> None:
        logger.warning("notify.error", text=text)


def format_time_12hr(moment: datetime) -> str:
    """Render a clock time as ``h:mm AM/PM`` (hour 0 shows as 12)."""
    hours = moment.hour
    suffix = "PM" if hours >= 12 else "AM"
    display_hours = 12 if hours % 12 == 0 else hours % 12
    return f"{display_hours}:{moment.minute:02d} {suffix}"


def pluralize(count: int) -> str:
    return "s" if count > 1 else ""
