"""Result channel between the pool's workers and the dispatch driver."""

from __future__ import annotations

import asyncio
from collections import deque

from normandy._internal.errors import ChannelClosedError
from normandy.engine.protocol import RequestResult


class ResultChannel:
    """Multi-producer, single-consumer buffer of request results.

    Producers are the pool's workers, each announcing its exit with
    ``sender_done``. ``recv`` reports exhaustion (None) only once every
    sender is done and the buffer is empty, so no result sent before a
    worker exits is lost.

    With a positive ``capacity`` a full buffer blocks ``send`` until the
    consumer catches up. ``close`` marks the consumer as gone: pending and
    future sends raise ChannelClosedError.

    Attributes:
        capacity: Maximum buffered results; 0 means unbounded.
    """

    def __init__(self, capacity: int = 0, senders: int = 1) -> None:
        """Initialize the channel.

        Args:
            capacity: Maximum buffered results; 0 means unbounded.
            senders: Number of producers that will call ``sender_done``.

        Raises:
            ValueError: If capacity or senders is negative.
        """
        if capacity < 0:
            msg = f"capacity must be >= 0, got {capacity}"
            raise ValueError(msg)
        if senders < 0:
            msg = f"senders must be >= 0, got {senders}"
            raise ValueError(msg)

        self.capacity = capacity
        self._buffer: deque[RequestResult] = deque()
        self._senders = senders
        self._closed = False
        self._changed = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def closed(self) -> bool:
        """Return True once the consumer closed the channel."""
        return self._closed

    @property
    def active_senders(self) -> int:
        """Return the number of producers that have not finished."""
        return self._senders

    def _has_room(self) -> bool:
        return self.capacity == 0 or len(self._buffer) < self.capacity

    async def send(self, result: RequestResult) -> None:
        """Deliver a result, waiting for room when the buffer is full.

        Raises:
            ChannelClosedError: If the consumer has closed the channel.
        """
        async with self._changed:
            await self._changed.wait_for(lambda: self._closed or self._has_room())
            if self._closed:
                msg = "result channel closed by consumer"
                raise ChannelClosedError(msg)
            self._buffer.append(result)
            self._changed.notify_all()

    async def recv(self) -> RequestResult | None:
        """Return the next result, or None once all senders are done."""
        async with self._changed:
            await self._changed.wait_for(lambda: bool(self._buffer) or self._senders == 0)
            if not self._buffer:
                return None
            result = self._buffer.popleft()
            self._changed.notify_all()
            return result

    async def sender_done(self) -> None:
        """Record that one producer will send no more results."""
        async with self._changed:
            self._senders = max(0, self._senders - 1)
            self._changed.notify_all()

    async def close(self) -> None:
        """Mark the consumer as gone and wake every blocked sender."""
        async with self._changed:
            self._closed = True
            self._changed.notify_all()
