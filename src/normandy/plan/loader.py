"""Request plan loading from a TOML file."""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from normandy._internal.errors import ConfigError, ValidationError
from normandy._internal.logging import get_logger
from normandy.plan.request import (
    RequestDescriptor,
    parse_header,
    parse_method,
    validate_path,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = get_logger("plan.loader")

_REQUEST_KEYS = frozenset({"method", "path", "headers", "body"})
_BODY_KINDS = frozenset({"json"})


@dataclass(frozen=True)
class RequestPlan:
    """The validated, ordered list of requests to replay.

    Attributes:
        requests: Request descriptors in the order they are cycled through.
        source: Where the plan was loaded from, for messages.
    """

    requests: tuple[RequestDescriptor, ...]
    source: str = "<memory>"

    def __len__(self) -> int:
        return len(self.requests)


def load_plan(file_path: str | Path) -> RequestPlan:
    """Load and validate a request plan from a TOML file.

    Args:
        file_path: Path to the plan file.

    Returns:
        The validated request plan.

    Raises:
        ConfigError: If the file cannot be read or is not valid TOML.
        ValidationError: If any request entry is invalid.
    """
    path = Path(file_path)

    if not path.is_file():
        msg = f"Request plan file not found: {path}"
        raise ConfigError(msg)

    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Failed to parse request plan {path}: {exc}"
        raise ConfigError(msg) from exc
    except OSError as exc:
        msg = f"Failed to read request plan {path}: {exc}"
        raise ConfigError(msg) from exc

    plan = parse_plan(data, source=str(path))
    logger.debug("Loaded %d request(s) from %s", len(plan), path)
    return plan


def parse_plan(data: Mapping[str, Any], *, source: str = "<memory>") -> RequestPlan:
    """Validate an already-decoded plan mapping.

    Args:
        data: Mapping with a ``requests`` list of request tables.
        source: Label used in error messages.

    Returns:
        The validated request plan.

    Raises:
        ConfigError: If the plan has no ``requests`` list or it is empty.
        ValidationError: If any request entry is invalid.
    """
    entries = data.get("requests")
    if not isinstance(entries, list):
        msg = f"{source}: expected a [[requests]] array"
        raise ConfigError(msg)
    if not entries:
        msg = f"{source}: the request plan defines no requests"
        raise ConfigError(msg)

    requests = []
    for index, entry in enumerate(entries):
        try:
            requests.append(parse_request(entry))
        except ValidationError as exc:
            msg = f"{source}: request #{index + 1}: {exc}"
            raise ValidationError(msg) from exc

    return RequestPlan(requests=tuple(requests), source=source)


def parse_request(entry: object) -> RequestDescriptor:
    """Build a RequestDescriptor from one ``[[requests]]`` table.

    Raises:
        ValidationError: If the entry is malformed.
    """
    if not isinstance(entry, dict):
        msg = "request entry must be a table"
        raise ValidationError(msg)

    unknown = set(entry) - _REQUEST_KEYS
    if unknown:
        msg = f"unknown key(s): {', '.join(sorted(unknown))}"
        raise ValidationError(msg)

    method = entry.get("method")
    path = entry.get("path")
    if not isinstance(method, str):
        msg = "'method' is required and must be a string"
        raise ValidationError(msg)
    if not isinstance(path, str):
        msg = "'path' is required and must be a string"
        raise ValidationError(msg)

    raw_headers = entry.get("headers", [])
    if not isinstance(raw_headers, list) or not all(isinstance(h, str) for h in raw_headers):
        msg = "'headers' must be a list of \"Name: value\" strings"
        raise ValidationError(msg)

    return RequestDescriptor(
        method=parse_method(method),
        path=validate_path(path),
        headers=tuple(parse_header(line) for line in raw_headers),
        body=_parse_body(entry.get("body")),
    )


def _parse_body(body: object) -> bytes | None:
    """Encode a ``body`` table to bytes.

    ``body = { json = '{"a": 1}' }`` is sent verbatim after checking it
    parses; a table or array value is serialised with ``json.dumps``.
    """
    if body is None:
        return None

    if not isinstance(body, dict) or len(body) != 1 or not set(body) <= _BODY_KINDS:
        msg = "'body' must be a table with exactly one key: json"
        raise ValidationError(msg)

    value = body["json"]
    if isinstance(value, str):
        try:
            json.loads(value)
        except json.JSONDecodeError as exc:
            msg = f"'body.json' is not valid JSON: {exc}"
            raise ValidationError(msg) from exc
        return value.encode("utf-8")

    # TOML dates/times and nan/inf have no JSON encoding.
    try:
        encoded = json.dumps(value, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        msg = f"'body.json' cannot be encoded as JSON: {exc}"
        raise ValidationError(msg) from exc
    return encoded.encode("utf-8")
