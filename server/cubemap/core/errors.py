"""Cube Map error taxonomy.

Upstream failures carry enough detail to become the JSON error body returned
at the HTTP boundary when no cached record is available.
"""

from __future__ import annotations


class CubeMapError(Exception):
    """Base class for all Cube Map errors."""


class UpstreamError(CubeMapError):
    """A fetch from the upstream location API did not produce a usable record."""

    error = "Upstream error"
    http_status = 502

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class UpstreamUnreachable(UpstreamError):
    """Connection refused, DNS failure or read timeout."""

    error = "Connection timeout"
    http_status = 503


class UpstreamBadStatus(UpstreamError):
    """Upstream answered with a non-200 status."""

    error = "Failed to fetch cube location"
    http_status = 502

    def __init__(self, status: int, body: str = "") -> None:
        super().__init__(f"Upstream returned HTTP {status}", details=body[:500] or None)
        self.status = status

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["status"] = self.status
        return body


class UpstreamMalformed(UpstreamError):
    """Upstream answered 200 but the body was not valid JSON."""

    error = "Invalid response format"
    http_status = 502


class InvalidRecord(UpstreamError):
    """A location payload is missing usable coordinates."""

    error = "Invalid location data"
    http_status = 502


class PersistenceError(CubeMapError):
    """The client snapshot store could not be read or written."""
