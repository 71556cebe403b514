"""Worker loop: take a command, execute it, report the timed result."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from normandy._internal.errors import ChannelClosedError
from normandy._internal.logging import get_logger
from normandy.engine.protocol import RequestResult

if TYPE_CHECKING:
    from normandy.engine.channel import ResultChannel
    from normandy.engine.protocol import RequestExecutor
    from normandy.engine.queue import CommandQueue
    from normandy.plan.request import RequestDescriptor

logger = get_logger("engine.worker")


async def execute_request(
    descriptor: RequestDescriptor,
    executor: RequestExecutor,
    base_url: str,
    *,
    worker_id: int = 0,
) -> RequestResult:
    """Send one request through ``executor`` and time it.

    Any exception raised by the executor becomes a failed result; the
    caller never sees it. Cancellation still propagates.

    Args:
        descriptor: Request to send.
        executor: Request executor.
        base_url: Base URL passed through to the executor.
        worker_id: Worker identifier recorded on the result.

    Returns:
        The timed RequestResult.
    """
    url = descriptor.url_for(base_url)
    start = time.monotonic()

    try:
        response = await executor.send(descriptor, base_url)
    except Exception as exc:
        latency_ms = (time.monotonic() - start) * 1000
        logger.debug("Worker %d: %s failed", worker_id, descriptor.describe(), exc_info=True)
        return RequestResult(
            method=descriptor.method.value,
            url=url,
            started_at=start,
            latency_ms=latency_ms,
            error=f"{type(exc).__name__}: {exc}",
            worker_id=worker_id,
        )

    latency_ms = (time.monotonic() - start) * 1000
    return RequestResult(
        method=descriptor.method.value,
        url=url,
        started_at=start,
        latency_ms=latency_ms,
        status_code=response.status_code,
        reason=response.reason,
        content_length=response.content_length,
        worker_id=worker_id,
    )


async def run_worker(
    worker_id: int,
    commands: CommandQueue,
    results: ResultChannel,
    executor: RequestExecutor,
    base_url: str,
) -> int:
    """Process commands until shutdown or until the consumer goes away.

    On the shutdown sentinel the worker puts it back at the head of the
    queue before exiting, so every sibling sees it next, whatever
    ``send`` commands are still queued behind it.

    Args:
        worker_id: Worker identifier.
        commands: Shared command queue.
        results: Channel the timed results are delivered to.
        executor: Request executor shared by the pool.
        base_url: Base URL every request is sent against.

    Returns:
        Number of results this worker delivered.
    """
    delivered = 0
    logger.debug("Worker %d: started", worker_id)

    try:
        while True:
            command = await commands.get()

            if command.is_shutdown:
                await commands.put_front(command)
                logger.debug("Worker %d: shutdown received", worker_id)
                break

            if command.request is None:
                msg = f"send command without a request: {command!r}"
                raise RuntimeError(msg)

            result = await execute_request(
                command.request,
                executor,
                base_url,
                worker_id=worker_id,
            )

            try:
                await results.send(result)
            except ChannelClosedError:
                logger.debug("Worker %d: result consumer gone, exiting", worker_id)
                break
            delivered += 1
    finally:
        await results.sender_done()
        logger.debug("Worker %d: stopped after %d result(s)", worker_id, delivered)

    return delivered
