"""Dispatch driver: cycle the request plan through a pool and collect results."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from typing import TYPE_CHECKING

from normandy._internal.config import NormandyConfig
from normandy._internal.errors import ConfigError
from normandy._internal.logging import get_logger
from normandy.engine.pool import Pool
from normandy.metrics.collector import ResultCollector

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Sequence
    from typing import Any

    from normandy.engine.protocol import RequestExecutor, RequestResult
    from normandy.metrics.models import RunSummary
    from normandy.plan.request import RequestDescriptor

_default_logger = get_logger("engine.runner")


def resolve_worker_count(max_concurrency: int) -> int:
    """Derive the number of workers from the CPU count.

    Args:
        max_concurrency: Upper bound on concurrent requests. 0 means no cap.

    Returns:
        ``min(cpu_count, max_concurrency)``, at least 1.
    """
    cpu_count = os.cpu_count() or 1
    if max_concurrency > 0:
        return max(1, min(cpu_count, max_concurrency))
    return cpu_count


class DispatchDriver:
    """Feeds a pool the configured requests and gathers the results.

    The request list is replayed cyclically (``requests[i % len]``) until
    ``total_requests`` commands were submitted, then exactly that many
    results are awaited. Results arrive in completion order. If the pool
    runs out of results early the driver stops waiting and the summary
    reports the shortfall.

    Attributes:
        base_url: Validated base URL.
        total_requests: Number of requests to send.
        worker_count: Number of pool workers.
    """

    def __init__(
        self,
        requests: Sequence[RequestDescriptor],
        base_url: str,
        total_requests: int,
        *,
        worker_count: int,
        executor: RequestExecutor | None = None,
        config: NormandyConfig | None = None,
        on_result: Callable[[RequestResult], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the driver.

        Args:
            requests: Validated requests to cycle through.
            base_url: Validated base URL.
            total_requests: Number of requests to send. Must be >= 0.
            worker_count: Number of pool workers. Must be >= 1.
            executor: Optional request executor; defaults to the pool's
                own HttpClient.
            config: Timeout and result buffer settings.
            on_result: Callback invoked with each result as it arrives.
            logger: Logger for progress messages.

        Raises:
            ConfigError: If ``requests`` is empty or ``total_requests`` is
                negative.
            ValueError: If ``worker_count`` is less than 1.
        """
        if not requests:
            msg = "At least one request must be configured"
            raise ConfigError(msg)
        if total_requests < 0:
            msg = f"total_requests must be >= 0, got {total_requests}"
            raise ConfigError(msg)
        if worker_count < 1:
            msg = f"worker_count must be >= 1, got {worker_count}"
            raise ValueError(msg)

        self._requests = tuple(requests)
        self.base_url = base_url
        self.total_requests = total_requests
        self.worker_count = worker_count
        self._executor = executor
        self._config = config or NormandyConfig()
        self._on_result = on_result
        self._logger = logger or _default_logger

    def request_at(self, index: int) -> RequestDescriptor:
        """Return the request submitted at position ``index``."""
        return self._requests[index % len(self._requests)]

    async def run(self) -> RunSummary:
        """Submit every request, collect the results and summarize them.

        Returns:
            RunSummary over the collected results.
        """
        collector = ResultCollector()
        self._logger.info(
            "Dispatching %d request(s) to %s with %d worker(s)",
            self.total_requests,
            self.base_url,
            self.worker_count,
        )

        start = time.monotonic()
        async with Pool(
            self.worker_count,
            self.base_url,
            executor=self._executor,
            result_buffer=self._config.result_buffer,
            request_timeout=self._config.request_timeout,
        ) as pool:
            submitted = 0
            for index in range(self.total_requests):
                request = self.request_at(index)
                self._logger.debug("Submitting #%d: %s", index, request.describe())
                if await pool.submit(request):
                    submitted += 1

            for _ in range(submitted):
                result = await pool.next_result()
                if result is None:
                    break
                collector.record(result)
                if self._on_result is not None:
                    self._on_result(result)

        duration = time.monotonic() - start
        summary = collector.summary(self.total_requests, duration)

        if summary.missing_requests:
            self._logger.warning(
                "Collected %d of %d result(s)",
                summary.completed_requests,
                self.total_requests,
            )
        self._logger.info(
            "Run completed: requests=%d, failed=%d, avg=%.2fms, stddev=%.2fms",
            summary.completed_requests,
            summary.failed_requests,
            summary.latency_avg,
            summary.latency_stddev,
        )
        return summary


def _run_event_loop(coro: Coroutine[Any, Any, RunSummary]) -> RunSummary:
    """Run ``coro`` on uvloop when available, else on the default loop."""
    if sys.platform != "win32":
        try:
            import uvloop
        except ImportError:
            _default_logger.debug("uvloop not available, using default asyncio event loop")
        else:
            return uvloop.run(coro)
    return asyncio.run(coro)


def run_load_test(
    requests: Sequence[RequestDescriptor],
    base_url: str,
    total_requests: int,
    *,
    max_concurrency: int = 10,
    config: NormandyConfig | None = None,
    on_result: Callable[[RequestResult], None] | None = None,
    logger: logging.Logger | None = None,
) -> RunSummary:
    """Blocking entry point used by the CLI.

    Args:
        requests: Validated requests to cycle through.
        base_url: Validated base URL.
        total_requests: Number of requests to send.
        max_concurrency: Cap on the worker count; 0 means CPU count.
        config: Timeout and result buffer settings.
        on_result: Callback invoked with each result as it arrives.
        logger: Logger for progress messages.

    Returns:
        RunSummary over the collected results.
    """
    driver = DispatchDriver(
        requests,
        base_url,
        total_requests,
        worker_count=resolve_worker_count(max_concurrency),
        config=config,
        on_result=on_result,
        logger=logger,
    )
    return _run_event_loop(driver.run())
