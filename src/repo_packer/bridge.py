"""Push-to-pull adapter between callback producers and an async consumer.

Producers call `ProgressBridge.emit` from the event loop or from a worker
thread; a single consumer drains the values in emission order with
`next_or_end` or `async for`. Nothing is dropped and there is no back-pressure:
values not yet pulled wait in an unbounded buffer.
"""

from __future__ import annotations

import asyncio
from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

T = TypeVar("T")


class _End(Enum):
    END = "END"


END = _End.END
"""Sentinel returned by `ProgressBridge.next_or_end` once the stream is closed."""


class ProgressBridge(Generic[T]):
    """Single-consumer channel fed by non-blocking `emit` calls.

    Args:
        loop (asyncio.AbstractEventLoop | None): loop the consumer runs on.
            Defaults to the running loop, so the bridge must be created from
            async code when omitted.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._buffer: deque[T | _End] = deque()
        self._waiter: asyncio.Future[T | _End] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, value: T) -> None:
        """Publish `value`. Never blocks; values emitted after `close` are ignored."""
        self._dispatch(value)

    def close(self) -> None:
        """Mark the end of the stream after every value already emitted. Idempotent."""
        self._dispatch(END)

    async def next_or_end(self) -> T | _End:
        """Return the next value, or `END` once the stream is closed and drained.

        Raises:
            RuntimeError: if another consumer is already waiting.
        """
        if self._buffer:
            return self._buffer.popleft()
        if self._closed:
            return END
        if self._waiter is not None:
            msg = "ProgressBridge supports a single consumer"
            raise RuntimeError(msg)
        self._waiter = self._loop.create_future()
        try:
            return await self._waiter
        finally:
            self._waiter = None

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            value = await self.next_or_end()
            if value is END:
                return
            yield value

    def _dispatch(self, value: T | _End) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._deliver(value)
            return
        try:
            self._loop.call_soon_threadsafe(self._deliver, value)
        except RuntimeError:
            # Loop already closed: the consumer is gone.
            return

    def _deliver(self, value: T | _End) -> None:
        if self._closed:
            return
        if value is END:
            self._closed = True
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(value)
        else:
            self._buffer.append(value)
