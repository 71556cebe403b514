"""Custom exception hierarchy for normandy."""

from __future__ import annotations


class NormandyError(Exception):
    """Base exception for all normandy errors.

    All custom exceptions raised by normandy inherit from this class,
    so the CLI can report any of them with a single except clause.
    """


class ConfigError(NormandyError):
    """Raised when configuration is invalid or missing.

    Examples:
        - An environment variable has an invalid value.
        - The request plan file does not exist or is not valid TOML.
        - The request plan defines no requests.
    """


class ValidationError(ConfigError):
    """Raised when a request plan entry or the target host is invalid.

    Examples:
        - The host is not an absolute http(s) URL.
        - A request path does not start with ``/``.
        - A header line is not of the form ``Name: value``.
    """


class EngineError(NormandyError):
    """Raised when the dispatch engine cannot proceed."""


class ChannelClosedError(EngineError):
    """Raised to a worker delivering a result after the consumer went away."""
