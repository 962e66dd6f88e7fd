"""Async message bus between front ends and the agent loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any, Protocol, TypeVar

from blinker import Signal
from loguru import logger

from tern.events import InboundMessage, OutboundMessage

OutboundHandler = Callable[[OutboundMessage], Coroutine[Any, Any, None]]
T = TypeVar("T")


class BusProtocol(Protocol):
    """Minimal async contract for Tern bus providers."""

    async def publish_inbound(self, message: InboundMessage) -> None: ...

    async def publish_outbound(self, message: OutboundMessage) -> None: ...

    async def next_inbound(self, timeout_seconds: float | None = None) -> InboundMessage | None: ...

    async def next_outbound(self, timeout_seconds: float | None = None) -> OutboundMessage | None: ...


class MessageBus:
    """In-memory async bus for inbound/outbound messages.

    Both directions are unbounded FIFO queues. Outbound messages can either be
    pulled with ``next_outbound`` or fanned out to subscribers registered with
    ``on_outbound`` by running ``dispatch_outbound`` as a task.
    """

    def __init__(self) -> None:
        self._inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self._outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self._outbound_signal = Signal("tern.outbound")

    async def publish_inbound(self, message: InboundMessage) -> None:
        await self._inbound.put(message)

    async def publish_outbound(self, message: OutboundMessage) -> None:
        await self._outbound.put(message)

    async def next_inbound(self, timeout_seconds: float | None = None) -> InboundMessage | None:
        return await _next(self._inbound, timeout_seconds)

    async def next_outbound(self, timeout_seconds: float | None = None) -> OutboundMessage | None:
        return await _next(self._outbound, timeout_seconds)

    @property
    def inbound_size(self) -> int:
        return self._inbound.qsize()

    @property
    def outbound_size(self) -> int:
        return self._outbound.qsize()

    def on_outbound(self, handler: OutboundHandler) -> Callable[[], None]:
        async def _receiver(sender: Any, *, message: OutboundMessage) -> None:
            await handler(message)

        self._outbound_signal.connect(_receiver, weak=False)
        return lambda: self._outbound_signal.disconnect(_receiver)

    async def dispatch_outbound(self) -> None:
        """Deliver outbound messages to every subscriber in production order."""
        while True:
            message = await self._outbound.get()
            for receiver in list(self._outbound_signal.receivers_for(self)):
                try:
                    await receiver(self, message=message)
                except Exception:
                    logger.exception("bus.outbound.error session={}", message.session_id)


async def _next(queue: asyncio.Queue[T], timeout_seconds: float | None) -> T | None:
    if timeout_seconds is None:
        return await queue.get()
    try:
        return await asyncio.wait_for(queue.get(), timeout=timeout_seconds)
    except TimeoutError:
        return None
