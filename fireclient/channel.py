"""Bounded, closeable async channel used to hand events to consumers."""

import asyncio
from collections import deque
from typing import Generic, TypeVar

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised when sending on, or receiving from a drained, closed channel."""


class EventChannel(Generic[T]):
    """A bounded FIFO with blocking sends and a single, final close.

    ``send`` waits while the buffer is full, which is what throttles a
    producer against a slow consumer. After ``close`` the buffered items can
    still be received; once they are drained, receivers see the end of the
    channel. Iterate with ``async for``.
    """

    def __init__(self, maxsize: int = 64):
        if maxsize < 1:
            raise ValueError("channel capacity must be at least 1")
        self._maxsize = maxsize
        self._items: deque[T] = deque()
        self._closed = False
        self._cond = asyncio.Condition()

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return len(self._items)

    async def send(self, item: T) -> None:
        async with self._cond:
            await self._cond.wait_for(
                lambda: self._closed or len(self._items) < self._maxsize
            )
            if self._closed:
                raise ChannelClosed("send on closed channel")
            self._items.append(item)
            self._cond.notify_all()

    async def receive(self) -> T:
        async with self._cond:
            await self._cond.wait_for(lambda: self._items or self._closed)
            if not self._items:
                raise ChannelClosed("channel closed")
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    async def close(self) -> None:
        async with self._cond:
            if self._closed:
                raise ChannelClosed("close of closed channel")
            self._closed = True
            self._cond.notify_all()

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        try:
            return await self.receive()
        except ChannelClosed:
            raise StopAsyncIteration from None
