"""
Error types raised by the measurement engine.
"""

from __future__ import annotations


class SpeedTestError(Exception):
    """Base class for all speed test failures."""


class TransportError(SpeedTestError):
    """Connection-level failure while a transaction was in flight."""

    def __init__(self, phase: str, cause: BaseException):
        self.phase = phase
        self.cause = cause
        super().__init__(f"transport failure during {phase}: {cause!r}")


class ProtocolError(SpeedTestError):
    """The server answered, but not the way the service contract says it should.

    Raised for a missing or unparsable Server-Timing header, an HTTP error
    status, or malformed metadata payloads.
    """

    def __init__(self, message: str, header: str | None = None):
        self.header = header
        if header is not None:
            message = f"{message} (header value: {header!r})"
        super().__init__(message)


class DegenerateInputError(SpeedTestError, ValueError):
    """A measurement would come out infinite or negative."""
