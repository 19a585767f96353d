"""
Per-host timeout counting for fast-fail.

A host's counter goes up when a request exhausts its retries on a timeout or
transport failure and down (never below zero) whenever the host answers at
all. Once the counter reaches the caller's threshold, requests to the host are
refused without touching the network. Each write refreshes the entry's TTL; an
entry left alone for longer than the TTL is dropped, which resets the host.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class TimeoutCounter:
    host: str
    count: int
    expires_at: float


class FailureCircuit:
    """Rolling timeout counter keyed by host."""

    def __init__(self, ttl: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._counters: Dict[str, TimeoutCounter] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, host: str) -> asyncio.Lock:
        lock = self._locks.get(host)
        if lock is None:
            lock = self._locks[host] = asyncio.Lock()
        return lock

    def _live_entry(self, host: str) -> Optional[TimeoutCounter]:
        entry = self._counters.get(host)
        if entry is not None and entry.expires_at <= self._clock():
            del self._counters[host]
            logger.debug("Timeout counter expired", host=host, count=entry.count)
            return None
        return entry

    def count(self, host: str) -> int:
        entry = self._live_entry(host)
        return entry.count if entry else 0

    def is_open(self, host: str, threshold: int) -> bool:
        return self.count(host) >= threshold

    async def record_failure(self, host: str) -> int:
        async with self._get_lock(host):
            entry = self._live_entry(host)
            count = (entry.count if entry else 0) + 1
            self._counters[host] = TimeoutCounter(host, count, self._clock() + self.ttl)
        logger.info("Recorded host timeout", host=host, timeouts=count)
        return count

    async def record_success(self, host: str) -> int:
        async with self._get_lock(host):
            entry = self._live_entry(host)
            count = max(0, (entry.count if entry else 0) - 1)
            self._counters[host] = TimeoutCounter(host, count, self._clock() + self.ttl)
        return count

    def reset(self, host: Optional[str] = None) -> None:
        if host is None:
            self._counters.clear()
        else:
            self._counters.pop(host, None)

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            host: {"count": entry.count, "expires_in": entry.expires_at - now}
            for host, entry in self._counters.items()
            if entry.expires_at > now
        }
