"""Environment configuration for normandy."""

from __future__ import annotations

import os
from dataclasses import dataclass

from normandy._internal.errors import ConfigError

DEFAULT_PLAN_FILE = "normandy.toml"


@dataclass(frozen=True)
class NormandyConfig:
    """Process-wide settings, passed explicitly to the runner and CLI.

    Attributes:
        plan_path: Path of the TOML request plan.
        request_timeout: Total timeout per request in seconds, or None for
            no timeout (a hung request keeps its worker busy).
        result_buffer: Capacity of the result channel. 0 means unbounded.
    """

    plan_path: str = DEFAULT_PLAN_FILE
    request_timeout: float | None = None
    result_buffer: int = 0


def load_config() -> NormandyConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        NORMANDY_CONFIG: Request plan file (default: normandy.toml).
        NORMANDY_TIMEOUT: Per-request timeout in seconds (default: none).
        NORMANDY_RESULT_BUFFER: Result channel capacity (default: 0, unbounded).

    Returns:
        Populated NormandyConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    timeout_str = os.environ.get("NORMANDY_TIMEOUT", "")
    buffer_str = os.environ.get("NORMANDY_RESULT_BUFFER", "0")

    timeout: float | None = None
    if timeout_str:
        try:
            timeout = float(timeout_str)
        except ValueError:
            msg = f"NORMANDY_TIMEOUT must be a number, got: {timeout_str!r}"
            raise ConfigError(msg) from None
        if timeout <= 0:
            msg = f"NORMANDY_TIMEOUT must be positive, got: {timeout}"
            raise ConfigError(msg)

    try:
        result_buffer = int(buffer_str)
    except ValueError:
        msg = f"NORMANDY_RESULT_BUFFER must be an integer, got: {buffer_str!r}"
        raise ConfigError(msg) from None

    if result_buffer < 0:
        msg = f"NORMANDY_RESULT_BUFFER must be >= 0, got: {result_buffer}"
        raise ConfigError(msg)

    return NormandyConfig(
        plan_path=os.environ.get("NORMANDY_CONFIG", DEFAULT_PLAN_FILE),
        request_timeout=timeout,
        result_buffer=result_buffer,
    )
