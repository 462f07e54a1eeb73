"""
Error taxonomy for the telemetry pipeline.

Every error carries a short ``reason`` code. The JSON telemetry endpoints
report that code in-band; the pixel, redirect and unsubscribe adapters only
log it.
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for pipeline errors."""

    reason = "internal_error"

    def __init__(self, message: str = "", reason: str | None = None):
        super().__init__(message or self.reason)
        if reason:
            self.reason = reason


class ValidationError(TelemetryError):
    """A required identifier is missing or malformed."""

    reason = "bad_request"


class NotFound(TelemetryError):
    """An identifier is well-formed but unknown to the store."""

    reason = "not_found"


class UpstreamUnavailable(TelemetryError):
    """The geo lookup service (or the store) could not be reached."""

    reason = "upstream_unavailable"


class StoreWriteFailure(TelemetryError):
    """A database write failed."""

    reason = "db_write_failed"
