"""Shared test fixtures for the normandy test suite."""

from __future__ import annotations

import asyncio
import socket
import threading
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

from normandy.engine.protocol import HttpResponse
from normandy.plan.request import RequestDescriptor

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# =============================================================================
# Echo HTTP server handlers
# =============================================================================


async def _echo_handler(request: web.Request) -> web.Response:
    """Echo back request details as JSON."""
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": str(request.path),
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": body.decode("utf-8", errors="replace"),
        },
        status=200,
    )


async def _delay_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    delay = float(request.query.get("delay", "0.1"))
    await asyncio.sleep(delay)
    return web.json_response({"delayed_by": delay})


async def _error_handler(request: web.Request) -> web.Response:
    """Return a configurable error status (query param: ?status=500)."""
    status = int(request.query.get("status", "500"))
    return web.json_response({"error": True}, status=status)


async def _health_handler(request: web.Request) -> web.Response:
    """Simple health check endpoint."""
    return web.json_response({"status": "ok"})


def _create_echo_app() -> web.Application:
    """Build the echo server app with all test routes."""
    app = web.Application()
    app.router.add_route("*", "/echo{path:.*}", _echo_handler)
    app.router.add_get("/delay", _delay_handler)
    app.router.add_route("*", "/error", _error_handler)
    app.router.add_get("/health", _health_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def echo_server() -> AsyncIterator[str]:
    """Aiohttp echo server running on the test's event loop.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    app = _create_echo_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@pytest.fixture
def sync_echo_server() -> Iterator[str]:
    """Echo server running in a background thread for sync tests.

    Needed by CLI tests, where ``normandy run`` starts its own event loop
    and blocks the main thread.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        app = _create_echo_app()
        runner = web.AppRunner(app)
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield f"http://127.0.0.1:{port}"

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


@pytest.fixture
def plan_file(tmp_path: Path) -> Path:
    """A valid request plan hitting the echo server routes."""
    path = tmp_path / "normandy.toml"
    path.write_text(
        """\
[[requests]]
method = "GET"
path = "/health"

[[requests]]
method = "POST"
path = "/echo/items?source=test"
headers = ["Content-Type: application/json", "X-Trace: abc"]
body = { json = '{"a":1}' }
"""
    )
    return path


@pytest.fixture
async def capturing_server() -> AsyncIterator[tuple[str, list[dict[str, object]]]]:
    """Server recording every request it receives.

    Yields the base URL and the list of captured requests, each a dict with
    method, path_qs, headers (a case-insensitive multidict) and body bytes.
    """
    captured: list[dict[str, object]] = []

    async def _capture(request: web.Request) -> web.Response:
        captured.append(
            {
                "method": request.method,
                "path_qs": request.path_qs,
                "headers": request.headers.copy(),
                "body": await request.read(),
            }
        )
        return web.Response(text="captured")

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", _capture)
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}", captured
    await runner.cleanup()


# =============================================================================
# Fake request executors
# =============================================================================


class RecordingExecutor:
    """Request executor double that records calls instead of using the network.

    Attributes:
        calls: (descriptor, base_url) pairs in the order sends started.
        delays: Optional per-path delay in seconds.
        failures: Paths whose send raises ``exc``.
    """

    def __init__(
        self,
        *,
        delays: dict[str, float] | None = None,
        failures: dict[str, Exception] | None = None,
        status_code: int = 200,
    ) -> None:
        self.calls: list[tuple[RequestDescriptor, str]] = []
        self.delays = delays or {}
        self.failures = failures or {}
        self.status_code = status_code
        self.closed = False

    async def send(self, descriptor: RequestDescriptor, base_url: str) -> HttpResponse:
        self.calls.append((descriptor, base_url))
        await asyncio.sleep(self.delays.get(descriptor.path, 0.0))
        if descriptor.path in self.failures:
            raise self.failures[descriptor.path]
        return HttpResponse(status_code=self.status_code, reason="OK")

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def recording_executor() -> RecordingExecutor:
    """A RecordingExecutor with no delays or failures."""
    return RecordingExecutor()


@pytest.fixture
def executor_factory() -> type[RecordingExecutor]:
    """The RecordingExecutor class, for tests that configure delays or failures."""
    return RecordingExecutor
