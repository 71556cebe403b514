"""Logging setup for normandy: stderr handler, text or JSON lines."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime

_TEXT_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s <%(task)s>: %(message)s"
_TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _TaskNameFilter(logging.Filter):
    """Tag each record with the name of the asyncio task that emitted it.

    Pool workers run as tasks named ``normandy-worker-<id>``, so a
    record's ``task`` tells which worker logged it. Outside a running
    loop the tag is ``-``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        record.task = task.get_name() if task is not None else "-"
        return True


class _JsonFormatter(logging.Formatter):
    """One JSON object per line with timestamp, level, logger, task and message."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "task": getattr(record, "task", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def _build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return logging.Formatter(_TEXT_FORMAT, datefmt=_TEXT_DATEFMT)


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure and return the root normandy logger.

    Keeps exactly one stderr handler on the ``normandy`` logger. Each call
    applies the requested level and format to it and points it at the
    current ``sys.stderr``, so ``normandy run -v`` followed by
    ``normandy run --json-logs`` in the same process gets what it asked
    for.

    Args:
        level: Logging level; the CLI passes DEBUG for ``--verbose`` and
            WARNING otherwise.
        json_format: Emit one JSON object per line (``--json-logs``)
            instead of human-readable text.

    Returns:
        The configured ``normandy`` root logger.
    """
    logger = logging.getLogger("normandy")
    logger.setLevel(level)
    logger.propagate = False

    handler = next(
        (h for h in logger.handlers if type(h) is logging.StreamHandler),
        None,
    )
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        logger.addHandler(handler)
    else:
        # Not setStream(): it flushes the old stream, which may be closed.
        handler.stream = sys.stderr
    if not any(isinstance(f, _TaskNameFilter) for f in handler.filters):
        handler.addFilter(_TaskNameFilter())

    handler.setLevel(level)
    handler.setFormatter(_build_formatter(json_format))
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``normandy`` namespace.

    Args:
        name: Logger name appended to the ``normandy.`` prefix, e.g.
            ``get_logger("engine.pool")``.

    Returns:
        The child logger.
    """
    return logging.getLogger(f"normandy.{name}")
