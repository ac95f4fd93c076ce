"""structlog setup for the history controller and its CLI."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_RENDERERS = {
    "development": lambda: structlog.dev.ConsoleRenderer(colors=True),
}


def configure_logging(env: str = "development", debug: bool = False) -> None:
    """Route structlog through stdlib logging on stdout.

    ``development`` renders coloured key/value lines; any other env renders
    JSON, one event per line.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )
    make_renderer = _RENDERERS.get(env, structlog.processors.JSONRenderer)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        make_renderer(),
    ]
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_session_context(session_id: str) -> None:
    """Attach a history session id to every log line emitted in this context."""
    structlog.contextvars.bind_contextvars(history_session=session_id)


def clear_session_context() -> None:
    structlog.contextvars.unbind_contextvars("history_session")
