"""aiohttp-based request executor used by the worker pool."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiohttp

from normandy.engine.protocol import HttpResponse

if TYPE_CHECKING:
    from normandy.plan.request import RequestDescriptor


class HttpClient:
    """Sends request descriptors over one shared ``aiohttp.ClientSession``.

    The session is opened lazily on the first ``send`` so the client can be
    constructed outside a coroutine, and is closed by ``aclose()`` or by
    leaving the async context manager. Every worker of a pool shares the
    same client and therefore the same connection pool.

    A failed transport raises from ``send``; HTTP error statuses do not.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        connection_limit: int = 100,
    ) -> None:
        """Initialize the client.

        Args:
            timeout: Total timeout per request in seconds. None disables
                every aiohttp timeout, including the connect timeout.
            connection_limit: Maximum simultaneous connections.
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._connection_limit = connection_limit
        self._session: aiohttp.ClientSession | None = None

    @property
    def is_open(self) -> bool:
        """Return True while the underlying session is open."""
        return self._session is not None and not self._session.closed

    async def __aenter__(self) -> HttpClient:
        self._open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        await self.aclose()

    def _open(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=aiohttp.TCPConnector(limit=self._connection_limit),
            )
        return self._session

    async def aclose(self) -> None:
        """Close the underlying session, if open."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def send(self, descriptor: RequestDescriptor, base_url: str) -> HttpResponse:
        """Send one request and read its response body.

        Args:
            descriptor: The request to send.
            base_url: Validated base URL the request path is joined onto.

        Returns:
            Status, reason and body length of the response.

        Raises:
            aiohttp.ClientError: On connection, DNS or protocol failures.
            TimeoutError: If a configured timeout expires.
        """
        session = self._open()
        data = descriptor.body if descriptor.method.allows_body else None

        async with session.request(
            descriptor.method.value,
            descriptor.url_for(base_url),
            headers=descriptor.header_map,
            data=data,
        ) as resp:
            payload = await resp.read()
            return HttpResponse(
                status_code=resp.status,
                reason=resp.reason or "",
                content_length=len(payload),
            )
