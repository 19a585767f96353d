"""
Per-host rate-limit marks derived from 429 responses.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class RateLimitGuard:
    """
    Remembers until when each host asked us to stay away.

    Marks expire on their own: an expired mark reads as absent and is dropped
    on access, there is no explicit delete on the request path.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._blocked_until: Dict[str, float] = {}

    def remaining(self, host: str) -> float:
        """Seconds left on the host's mark, 0.0 if there is none."""
        blocked_until = self._blocked_until.get(host)
        if blocked_until is None:
            return 0.0
        left = blocked_until - self._clock()
        if left <= 0:
            del self._blocked_until[host]
            return 0.0
        return left

    def is_limited(self, host: str) -> bool:
        return self.remaining(host) > 0

    def block(self, host: str, seconds: float) -> None:
        until = self._clock() + seconds
        # A shorter Retry-After never shortens an existing window.
        self._blocked_until[host] = max(until, self._blocked_until.get(host, 0.0))
        logger.warning("Host rate limited", host=host, retry_after=seconds)

    def clear(self, host: Optional[str] = None) -> None:
        if host is None:
            self._blocked_until.clear()
        else:
            self._blocked_until.pop(host, None)

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        return {host: until - now for host, until in self._blocked_until.items() if until > now}
