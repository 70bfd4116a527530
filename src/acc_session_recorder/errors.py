"""Error taxonomy for the session recorder."""

from __future__ import annotations


class RecorderError(Exception):
    """Base exception for all recorder errors."""


class SourceUnavailable(RecorderError):
    """Raised when the telemetry feed is not present (game closed, map missing, read timed out)."""


class MalformedSnapshot(RecorderError):
    """Raised when a raw telemetry buffer cannot be decoded into a snapshot."""

    def __init__(self, message: str, expected_size: int | None = None, actual_size: int | None = None) -> None:
        self.expected_size = expected_size
        self.actual_size = actual_size
        super().__init__(message)


class PersistenceFailure(RecorderError):
    """Raised by a session store when an upsert did not go through. Always retryable."""


class InvariantViolation(RecorderError):
    """Describes a telemetry sequence the tracker did not expect, e.g. a regressing sector index."""


class ConfigError(RecorderError):
    """Raised at startup for configuration the recorder cannot run with."""
