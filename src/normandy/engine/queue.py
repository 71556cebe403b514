"""Shared command queue the pool's workers pull from."""

from __future__ import annotations

import asyncio
from collections import deque

from normandy.engine.protocol import WorkerCommand


class CommandQueue:
    """Unbounded buffer of worker commands guarded by one condition.

    ``get`` sleeps on the same lock that ``put`` takes before waking a
    waiter, so a worker that saw the queue empty cannot miss a command
    put between its check and its wait. Each command is handed to exactly
    one caller of ``get``.
    """

    def __init__(self) -> None:
        self._items: deque[WorkerCommand] = deque()
        self._not_empty = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._items)

    async def put(self, command: WorkerCommand) -> None:
        """Append a command and wake one waiting worker."""
        async with self._not_empty:
            self._items.append(command)
            self._not_empty.notify()

    async def put_front(self, command: WorkerCommand) -> None:
        """Insert a command ahead of everything pending and wake one worker."""
        async with self._not_empty:
            self._items.appendleft(command)
            self._not_empty.notify()

    async def get(self) -> WorkerCommand:
        """Remove and return the next command, waiting while none is queued."""
        async with self._not_empty:
            await self._not_empty.wait_for(lambda: bool(self._items))
            return self._items.popleft()

    async def drain(self) -> list[WorkerCommand]:
        """Remove and return every pending command."""
        async with self._not_empty:
            items = list(self._items)
            self._items.clear()
            return items
