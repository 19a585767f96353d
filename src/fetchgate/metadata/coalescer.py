"""
Single-flight request coalescing.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Generic, TypeVar

import structlog

from fetchgate.observability import increment

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class _Flight(Generic[T]):
    __slots__ = ("task", "waiters")

    def __init__(self, task: "asyncio.Task[T]"):
        self.task = task
        self.waiters = 0


class RequestCoalescer:
    """
    Collapses concurrent calls that share a key into one underlying call.

    The first caller for a key starts the call; callers arriving while it is in
    flight await the same task and get the same result or exception. An entry
    is dropped as soon as its call finishes or its last waiter leaves, so the
    next caller after completion starts a fresh call. This is not a cache.

    A waiter that is cancelled only stops waiting; the shared call keeps
    running for the others and is cancelled when nobody is left.
    """

    def __init__(self) -> None:
        self._flights: Dict[str, _Flight[Any]] = {}

    def in_flight(self) -> int:
        return len(self._flights)

    def _forget(self, key: str, flight: _Flight[Any]) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        flight = self._flights.get(key)
        if flight is None:
            flight = _Flight(asyncio.ensure_future(factory()))
            self._flights[key] = flight
            # Registered before any waiter, so the entry is gone by the time waiters resume.
            flight.task.add_done_callback(lambda _t, f=flight: self._forget(key, f))
        else:
            increment("coalesced_requests_total")
            logger.debug("Joining in-flight request", waiters=flight.waiters + 1)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0:
                self._forget(key, flight)
                if not flight.task.done():
                    flight.task.cancel()
