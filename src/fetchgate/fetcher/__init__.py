"""
fetchgate fetcher - resilient outbound HTTP.

Per-host admission gates bound concurrency, transport failures are retried
with exponential backoff, 429 responses are waited out once or turned into a
timed block, and hosts that keep timing out are failed fast.
"""

from .admission import AdmissionToken, HostAdmissionControl
from .circuit_breaker import FailureCircuit
from .errors import (
    CircuitOpen,
    FetchError,
    HttpError,
    InvalidResponse,
    InvalidURL,
    NetworkError,
    NotFound,
    QueueTimeout,
    RateLimited,
    Timeout,
)
from .http_client import FetchExecutor, FetchResponse, host_key
from .rate_limiter import RateLimitGuard

__all__ = [
    "AdmissionToken",
    "CircuitOpen",
    "FailureCircuit",
    "FetchError",
    "FetchExecutor",
    "FetchResponse",
    "HostAdmissionControl",
    "HttpError",
    "InvalidResponse",
    "InvalidURL",
    "NetworkError",
    "NotFound",
    "QueueTimeout",
    "RateLimitGuard",
    "RateLimited",
    "Timeout",
    "host_key",
]
