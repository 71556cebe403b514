"""Types exchanged between the pool, its workers and the request executor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Protocol

if TYPE_CHECKING:
    from normandy.plan.request import RequestDescriptor


@dataclass(frozen=True)
class WorkerCommand:
    """Command taken from the shared queue by exactly one worker.

    Attributes:
        kind: Command type. "send" executes ``request``, "shutdown" stops
            the worker that observes it.
        request: Request to execute. Only set when kind is "send".
    """

    kind: Literal["send", "shutdown"]
    request: RequestDescriptor | None = None

    @classmethod
    def send(cls, request: RequestDescriptor) -> WorkerCommand:
        """Build a command executing ``request``."""
        return cls(kind="send", request=request)

    @property
    def is_shutdown(self) -> bool:
        return self.kind == "shutdown"


SHUTDOWN = WorkerCommand(kind="shutdown")


@dataclass(frozen=True)
class HttpResponse:
    """Transport-level success reported by a request executor.

    Attributes:
        status_code: HTTP response status.
        reason: HTTP reason phrase.
        content_length: Size of the response body in bytes.
    """

    status_code: int
    reason: str = ""
    content_length: int = 0


class RequestExecutor(Protocol):
    """Anything that can send a RequestDescriptor against a base URL."""

    async def send(self, descriptor: RequestDescriptor, base_url: str) -> HttpResponse: ...

    async def aclose(self) -> None: ...


@dataclass(frozen=True)
class RequestResult:
    """Timed outcome of executing one request.

    Attributes:
        method: HTTP method that was sent.
        url: Full request URL.
        started_at: Monotonic timestamp taken just before sending.
        latency_ms: Elapsed time in milliseconds.
        status_code: HTTP status, or None if the transport failed.
        reason: HTTP reason phrase ("" on failure).
        content_length: Response body size in bytes.
        error: Description of the transport failure, None on success.
        worker_id: Worker that executed the request.
    """

    method: str
    url: str
    started_at: float
    latency_ms: float
    status_code: int | None = None
    reason: str = ""
    content_length: int = 0
    error: str | None = None
    worker_id: int = 0

    @property
    def ok(self) -> bool:
        """True when the request reached the server and got a response."""
        return self.error is None

    def __str__(self) -> str:
        if self.error is not None:
            outcome = f"error: {self.error}"
        else:
            outcome = f"{self.status_code} {self.reason}".rstrip()
        return f"[worker {self.worker_id}] {self.method} {self.url} -> {outcome} ({self.latency_ms:.2f}ms)"
