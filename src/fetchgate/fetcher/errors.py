"""
Typed failures raised by the fetch layer.

Every failure path of FetchExecutor.perform ends in one of these. Callers that
want to defer work (rate limits, open circuits) can catch the specific kind.
"""

from __future__ import annotations

from typing import Optional


class FetchError(Exception):
    """Base class for all fetch failures."""

    kind = "error"

    def __init__(self, message: str, *, url: Optional[str] = None, host: Optional[str] = None):
        super().__init__(message)
        self.url = url
        self.host = host


class InvalidURL(FetchError, ValueError):
    """The URL has no scheme/host or uses an unsupported scheme."""

    kind = "invalid_url"


class QueueTimeout(FetchError):
    """Waited longer than queue_timeout for an admission slot."""

    kind = "queue_timeout"


class CircuitOpen(FetchError):
    """The host has reached its timeout threshold; no request was made."""

    kind = "circuit_open"


class RateLimited(FetchError):
    """The host answered 429, or is still inside a previous 429 window."""

    kind = "rate_limited"

    def __init__(self, message: str, *, retry_after: float, url: Optional[str] = None, host: Optional[str] = None):
        super().__init__(message, url=url, host=host)
        self.retry_after = retry_after


class Timeout(FetchError):
    """The request timed out on every attempt."""

    kind = "timeout"


class NetworkError(FetchError):
    """A transport failure persisted through every attempt, or a non-retryable client error (e.g. a redirect loop)."""

    kind = "network_error"


class NotFound(FetchError):
    """404 from the host, or a metadata lookup without a match."""

    kind = "not_found"


class HttpError(FetchError):
    """Any other non-success status."""

    kind = "http_error"

    def __init__(self, message: str, *, status: int, url: Optional[str] = None, host: Optional[str] = None):
        super().__init__(message, url=url, host=host)
        self.status = status


class InvalidResponse(FetchError):
    """The body could not be decoded as requested (e.g. invalid JSON)."""

    kind = "invalid_response"
