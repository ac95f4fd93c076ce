"""
Payment-outcome event streams and their merge.

Other parts of the app announce completed payments on independent
streams. ``PaymentEventBus`` consumes every source in its own task and
feeds recognised events to a single handler.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

import structlog

logger = structlog.get_logger(__name__)


class PaymentEvent(str, Enum):
    """Tags published on the payment event streams."""

    INITIATED = "INITIATED"
    SENT = "SENT"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    FAILED = "FAILED"
    DIRECT_PAY_SENT = "DIRECT_PAY_SENT"
    DIRECT_PAY_FAILED = "DIRECT_PAY_FAILED"


REFRESH_EVENTS = frozenset(
    event.value
    for event in (
        PaymentEvent.SENT,
        PaymentEvent.APPROVED,
        PaymentEvent.DECLINED,
        PaymentEvent.FAILED,
        PaymentEvent.DIRECT_PAY_FAILED,
        PaymentEvent.DIRECT_PAY_SENT,
    )
)

EventTag = Union[PaymentEvent, str]
EventHandler = Callable[[str], Awaitable[None]]

_CLOSED = object()


class PaymentEventStream:
    """
    Queue-backed async stream of payment event tags.

    Producers call ``emit``; the bus iterates. ``join`` waits until every
    emitted event has been fully handled by the consumer.
    """

    def __init__(self, name: str):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()

    def emit(self, event: EventTag) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        """End the stream; the consumer stops after draining queued events."""
        self._queue.put_nowait(_CLOSED)

    async def join(self) -> None:
        await self._queue.join()

    async def __aiter__(self) -> AsyncIterator[EventTag]:
        while True:
            event = await self._queue.get()
            try:
                if event is _CLOSED:
                    return
                yield event
            finally:
                self._queue.task_done()


class PaymentEventBus:
    """
    Merges several event sources into one filtered handler.

    ``subscribe`` starts one consumer task per source the first time it is
    called; later calls are no-ops. ``close`` cancels the consumers once.
    """

    def __init__(
        self,
        sources: Iterable[AsyncIterable[EventTag]],
        handler: EventHandler,
        recognised: Optional[Iterable[str]] = None,
    ):
        self.sources = list(sources)
        self.handler = handler
        self.recognised = frozenset(recognised) if recognised is not None else REFRESH_EVENTS
        self._tasks: list[asyncio.Task] = []
        self._subscribed = False
        self._closed = False

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed and not self._closed

    def subscribe(self) -> bool:
        """
        Start consuming all sources.

        Returns:
            True if this call created the subscription
        """
        if self._closed:
            logger.warning("events.subscribe_after_close")
            return False
        if self._subscribed:
            return False

        self._subscribed = True
        for index, source in enumerate(self.sources):
            name = getattr(source, "name", f"source-{index}")
            self._tasks.append(
                asyncio.create_task(self._consume(name, source), name=f"payment-events:{name}")
            )
        logger.info("events.subscribed", sources=len(self.sources))
        return True

    async def close(self) -> None:
        """Tear down the subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("events.closed")

    async def _consume(self, name: str, source: AsyncIterable[EventTag]) -> None:
        try:
            async for event in source:
                await self._dispatch(name, event)
        except asyncio.CancelledError:
            logger.debug("events.consumer_cancelled", source=name)
            raise
        except Exception as e:
            logger.error(
                "events.source_failed",
                source=name,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _dispatch(self, source_name: str, event: EventTag) -> None:
        value = event.value if isinstance(event, PaymentEvent) else event
        if value not in self.recognised:
            logger.debug("events.ignored", source=source_name, event=value)
            return

        logger.info("events.received", source=source_name, event=value)
        try:
            await self.handler(value)
        except Exception as e:
            # Keep consuming after a failed handler.
            logger.error(
                "events.handler_failed",
                source=source_name,
                event=value,
                error=str(e),
                error_type=type(e).__name__,
            )
