"""Validated, ready-to-send HTTP request descriptors."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

from normandy._internal.errors import ValidationError

# RFC 9110 token characters.
_HEADER_NAME_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
# Visible ASCII, space, horizontal tab and obs-text.
_HEADER_VALUE_RE = re.compile(r"[\t\x20-\x7e\x80-\xff]*")
_PATH_RE = re.compile(r"/[^\s#\x00-\x1f\x7f]*")


class HttpMethod(Enum):
    """HTTP methods a request plan may use."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    DELETE = "DELETE"

    @property
    def allows_body(self) -> bool:
        """Whether a configured body is attached when sending."""
        return self in _BODY_METHODS


_BODY_METHODS = frozenset({HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH, HttpMethod.DELETE})


@dataclass(frozen=True)
class RequestDescriptor:
    """An immutable HTTP request template replayed by the dispatch engine.

    Instances are only built from validated input, so every descriptor
    can be sent as-is. They are cheap to share between in-flight commands.

    Attributes:
        method: HTTP method.
        path: Path and optional query, relative to the base URL.
        headers: Header name/value pairs in configuration order.
        body: Raw request body, or None.
    """

    method: HttpMethod
    path: str
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes | None = None

    @property
    def header_map(self) -> CIMultiDictProxy[str]:
        """Headers as a read-only mapping with case-insensitive names."""
        return CIMultiDictProxy(CIMultiDict(self.headers))

    def url_for(self, base_url: str) -> str:
        """Join this request's path onto the path of ``base_url``."""
        return f"{base_url.rstrip('/')}{self.path}"

    def describe(self) -> str:
        """Return a short ``METHOD /path`` label."""
        return f"{self.method.value} {self.path}"


def parse_method(value: str) -> HttpMethod:
    """Parse an HTTP method name.

    Raises:
        ValidationError: If the method is not supported.
    """
    try:
        return HttpMethod(value.upper())
    except ValueError:
        allowed = ", ".join(m.value for m in HttpMethod)
        msg = f"Unsupported HTTP method: {value!r} (expected one of {allowed})."
        raise ValidationError(msg) from None


def validate_path(path: str) -> str:
    """Check that ``path`` is a relative path with optional query.

    Raises:
        ValidationError: If the path is empty, does not start with ``/``, or
            contains whitespace, control characters or a fragment.
    """
    if not _PATH_RE.fullmatch(path):
        msg = f"Invalid request path: {path!r}."
        raise ValidationError(msg)
    return path


def parse_header(line: str) -> tuple[str, str]:
    """Split a ``Name: value`` header line and check both halves.

    Surrounding whitespace around the name and value is trimmed.

    Raises:
        ValidationError: If the line has no colon, or the name or value
            contains characters not allowed in HTTP headers.
    """
    name, sep, value = line.partition(":")
    if not sep:
        msg = f"Malformed HTTP header: {line!r}."
        raise ValidationError(msg)

    name = name.strip()
    value = value.strip()
    if not _HEADER_NAME_RE.fullmatch(name):
        msg = f"Invalid HTTP header name: {name!r}."
        raise ValidationError(msg)
    if not _HEADER_VALUE_RE.fullmatch(value):
        msg = f"Invalid HTTP header value for {name}: {value!r}."
        raise ValidationError(msg)
    return name, value


def validate_base_url(host: str) -> str:
    """Validate the target host and return it without a trailing slash.

    Raises:
        ValidationError: If ``host`` is not an absolute http(s) URL with a
            host name, or carries a query string or fragment.
    """
    try:
        url = URL(host)
    except (TypeError, ValueError):
        msg = "Invalid host url."
        raise ValidationError(msg) from None

    if (
        not url.absolute
        or url.scheme not in ("http", "https")
        or not url.host
        or url.query_string
        or url.fragment
    ):
        msg = f"Invalid host url: {host!r}."
        raise ValidationError(msg)

    return str(url).rstrip("/")
