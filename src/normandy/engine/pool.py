"""Fixed-size worker pool sharing one command queue and one result channel."""

from __future__ import annotations

import asyncio
import contextlib
import functools
from enum import Enum, auto
from typing import TYPE_CHECKING

from normandy._internal.logging import get_logger
from normandy.engine.channel import ResultChannel
from normandy.engine.protocol import SHUTDOWN, WorkerCommand
from normandy.engine.queue import CommandQueue
from normandy.engine.worker import run_worker
from normandy.plan.http_client import HttpClient

if TYPE_CHECKING:
    from collections.abc import Sequence

    from normandy.engine.protocol import RequestExecutor, RequestResult
    from normandy.plan.request import RequestDescriptor

logger = get_logger("engine.pool")

# The event loop only keeps weak references to tasks. Running workers and
# detached teardowns are held here until they finish.
_live_workers: set[asyncio.Task[int]] = set()
_background_tasks: set[asyncio.Task[None]] = set()


class PoolState(Enum):
    """Lifecycle of a pool: RUNNING -> SHUTTING_DOWN -> TERMINATED."""

    RUNNING = auto()
    SHUTTING_DOWN = auto()
    TERMINATED = auto()


class Pool:
    """A fixed number of workers executing submitted requests.

    Workers pull ``send`` commands from one shared CommandQueue, so each
    submitted request is executed by exactly one worker, and push their
    timed results into one ResultChannel. Results arrive in completion
    order, not submission order.

    Must be created inside a running event loop. Use it as an async
    context manager or call ``shutdown()`` explicitly; a pool that is
    garbage collected while running schedules a best-effort teardown of
    its workers on its loop but does not finish queued requests.

    With a bounded result buffer, drain results before calling
    ``shutdown()``: workers blocked on a full buffer cannot join.

    Attributes:
        base_url: Base URL every request is sent against.
    """

    def __init__(
        self,
        worker_count: int,
        base_url: str,
        *,
        executor: RequestExecutor | None = None,
        result_buffer: int = 0,
        request_timeout: float | None = None,
    ) -> None:
        """Spawn the workers.

        Args:
            worker_count: Number of workers. Must be at least 1.
            base_url: Validated base URL.
            executor: Request executor shared by all workers. Defaults to a
                pool-owned HttpClient that is closed on shutdown.
            result_buffer: Result channel capacity; 0 means unbounded.
            request_timeout: Per-request timeout for the default HttpClient.

        Raises:
            ValueError: If worker_count is less than 1.
            RuntimeError: If there is no running event loop.
        """
        if worker_count < 1:
            msg = f"worker_count must be >= 1, got {worker_count}"
            raise ValueError(msg)

        self._loop = asyncio.get_running_loop()
        self.base_url = base_url
        self._owns_executor = executor is None
        self._executor: RequestExecutor = (
            executor
            if executor is not None
            else HttpClient(timeout=request_timeout, connection_limit=worker_count)
        )
        self._commands = CommandQueue()
        self._results = ResultChannel(capacity=result_buffer, senders=worker_count)
        self._submitted = 0
        self._dropped = 0

        self._tasks: tuple[asyncio.Task[int], ...] = tuple(
            self._loop.create_task(
                run_worker(worker_id, self._commands, self._results, self._executor, base_url),
                name=f"normandy-worker-{worker_id}",
            )
            for worker_id in range(worker_count)
        )
        for task in self._tasks:
            _live_workers.add(task)
            task.add_done_callback(_live_workers.discard)

        self._state = PoolState.RUNNING
        logger.debug("Pool started: workers=%d, base_url=%s", worker_count, base_url)

    @property
    def state(self) -> PoolState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def worker_count(self) -> int:
        return len(self._tasks)

    @property
    def worker_tasks(self) -> Sequence[asyncio.Task[int]]:
        """Return the worker tasks, e.g. to await their termination."""
        return self._tasks

    @property
    def submitted_count(self) -> int:
        """Return the number of send commands accepted so far."""
        return self._submitted

    @property
    def dropped_count(self) -> int:
        """Return the number of queued requests discarded at shutdown."""
        return self._dropped

    async def __aenter__(self) -> Pool:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        if exc_type is not None:
            # Nobody will read further results; unblock workers waiting on a full buffer.
            await self._results.close()
        await self.shutdown()

    async def submit(self, request: RequestDescriptor) -> bool:
        """Queue a request for execution.

        Args:
            request: The request to send.

        Returns:
            True if the request was queued, False if the pool no longer
            accepts submissions.
        """
        if self._state is not PoolState.RUNNING:
            logger.warning(
                "Pool is %s, rejecting %s",
                self._state.name.lower(),
                request.describe(),
            )
            return False

        await self._commands.put(WorkerCommand.send(request))
        self._submitted += 1
        return True

    async def next_result(self) -> RequestResult | None:
        """Wait for the next completed request.

        Returns:
            The next result in completion order, or None once every worker
            has terminated and all delivered results were consumed.
        """
        return await self._results.recv()

    async def shutdown(self) -> None:
        """Stop accepting requests, let queued ones finish and join all workers.

        Requests queued before the call are executed; results remain
        available through ``next_result``. Calling it again is a no-op
        once shutdown has started.

        With a bounded result buffer this only returns once every pending
        result fits in the buffer: keep calling ``next_result`` from
        another task, or drain results before shutting down. If the
        calling task is cancelled while joining, the workers are cancelled
        too and an owned executor is still closed.
        """
        if self._state is not PoolState.RUNNING:
            return

        self._state = PoolState.SHUTTING_DOWN
        logger.debug("Pool shutting down: %d worker(s)", len(self._tasks))
        capacity = self._results.capacity
        pending = len(self._results) + len(self._commands)
        if capacity and not self._results.closed and pending >= capacity:
            logger.warning(
                "Result buffer holds %d of %d result(s) with %d request(s) queued; "
                "shutdown may wait until results are consumed",
                len(self._results),
                capacity,
                len(self._commands),
            )
        await self._commands.put(SHUTDOWN)

        try:
            outcomes = await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            if self._owns_executor:
                await self._executor.aclose()
            self._state = PoolState.TERMINATED

        for worker_id, outcome in enumerate(outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                logger.debug("Worker %d was cancelled", worker_id)
            elif isinstance(outcome, BaseException):
                logger.error("Worker %d exited with an error", worker_id, exc_info=outcome)

        leftover = await self._commands.drain()
        self._dropped += sum(1 for command in leftover if not command.is_shutdown)
        if self._dropped:
            logger.warning("%d queued request(s) dropped at shutdown", self._dropped)

        logger.debug("Pool terminated: submitted=%d", self._submitted)

    def __del__(self) -> None:
        if getattr(self, "_state", None) is not PoolState.RUNNING:
            return
        if self._loop.is_closed():
            return

        teardown = functools.partial(
            _spawn_teardown,
            self._commands,
            self._results,
            self._tasks,
            self._executor if self._owns_executor else None,
        )
        # The loop may close between the check above and this call.
        with contextlib.suppress(RuntimeError):
            self._loop.call_soon_threadsafe(teardown)


def _spawn_teardown(
    commands: CommandQueue,
    results: ResultChannel,
    tasks: Sequence[asyncio.Task[int]],
    executor: RequestExecutor | None,
) -> None:
    task = asyncio.get_running_loop().create_task(
        _detached_shutdown(commands, results, tasks, executor),
        name="normandy-pool-teardown",
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def _detached_shutdown(
    commands: CommandQueue,
    results: ResultChannel,
    tasks: Sequence[asyncio.Task[int]],
    executor: RequestExecutor | None,
) -> None:
    """Stop the workers of a pool that was dropped without ``shutdown()``."""
    await results.close()
    await commands.put_front(SHUTDOWN)
    await asyncio.gather(*tasks, return_exceptions=True)

    dropped = sum(1 for command in await commands.drain() if not command.is_shutdown)
    if executor is not None:
        await executor.aclose()
    logger.debug(
        "Dropped pool torn down: %d worker(s) stopped, %d queued request(s) discarded",
        len(tasks),
        dropped,
    )
