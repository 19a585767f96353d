"""
Per-host admission control.

Each host gets a bounded semaphore the first time it is referenced. Callers
wait for a slot for at most ``queue_timeout`` seconds and then fail with
QueueTimeout without ever holding the slot.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from fetchgate.fetcher.errors import QueueTimeout
from fetchgate.observability import increment

logger = structlog.get_logger(__name__)


class AdmissionGate:
    """Bounded concurrency for one host."""

    def __init__(self, host: str, capacity: int, queue_timeout: float):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.host = host
        self.capacity = capacity
        self.queue_timeout = queue_timeout
        self.held = 0
        self._semaphore = asyncio.Semaphore(capacity)

    async def acquire(self, timeout: Optional[float] = None) -> None:
        """Wait for a slot for at most timeout seconds (the gate's queue timeout by default)."""
        if timeout is None:
            timeout = self.queue_timeout
        try:
            if self._semaphore.locked():
                await asyncio.wait_for(self._semaphore.acquire(), timeout=max(timeout, 0.0))
            else:
                await self._semaphore.acquire()
        except asyncio.TimeoutError:
            increment("admission_timeouts_total")
            logger.warning(
                "Admission wait timed out",
                host=self.host,
                capacity=self.capacity,
                queue_timeout=self.queue_timeout,
            )
            raise QueueTimeout(
                f"Queue timeout for {self.host} after {self.queue_timeout}s",
                host=self.host,
            ) from None
        self.held += 1

    def release(self) -> None:
        self.held -= 1
        self._semaphore.release()


@dataclass
class AdmissionToken:
    """Proof of a held slot. Must be released exactly once."""

    host: str
    gates: List[AdmissionGate] = field(default_factory=list)
    released: bool = False


class HostAdmissionControl:
    """
    Registry of per-host admission gates.

    Gate parameters are fixed by the first caller for a host. A later caller
    asking for a different capacity or queue timeout gets the existing gate
    unchanged; the mismatch is logged.

    ``serialize=True`` additionally takes a per-host recovery gate of capacity 1,
    so callers coming back from a rate-limit wait go through one at a time
    without changing the shared gate.
    """

    def __init__(self) -> None:
        self._gates: Dict[str, AdmissionGate] = {}
        self._recovery_gates: Dict[str, AdmissionGate] = {}

    def gate_for(self, host: str, capacity: int, queue_timeout: float) -> AdmissionGate:
        gate = self._gates.get(host)
        if gate is None:
            gate = AdmissionGate(host, capacity, queue_timeout)
            self._gates[host] = gate
            logger.debug("Created admission gate", host=host, capacity=capacity, queue_timeout=queue_timeout)
        elif gate.capacity != capacity or gate.queue_timeout != queue_timeout:
            logger.debug(
                "Ignoring conflicting admission parameters, first caller wins",
                host=host,
                capacity=gate.capacity,
                requested_capacity=capacity,
                queue_timeout=gate.queue_timeout,
                requested_queue_timeout=queue_timeout,
            )
        return gate

    def _recovery_gate_for(self, host: str, queue_timeout: float) -> AdmissionGate:
        gate = self._recovery_gates.get(host)
        if gate is None:
            gate = AdmissionGate(host, 1, queue_timeout)
            self._recovery_gates[host] = gate
        return gate

    async def acquire(
        self, host: str, capacity: int, queue_timeout: float, *, serialize: bool = False
    ) -> AdmissionToken:
        token = AdmissionToken(host=host)
        shared = self.gate_for(host, capacity, queue_timeout)
        gates = [shared]
        if serialize:
            gates.insert(0, self._recovery_gate_for(host, shared.queue_timeout))
        # One deadline covers every gate taken for this call.
        loop = asyncio.get_running_loop()
        deadline = loop.time() + shared.queue_timeout
        try:
            for gate in gates:
                await gate.acquire(deadline - loop.time())
                token.gates.append(gate)
        except BaseException:
            # Partial acquisition (timeout or cancellation): give back what we hold.
            self.release(token)
            raise
        return token

    def release(self, token: AdmissionToken) -> None:
        if token.released:
            logger.warning("Admission token released twice", host=token.host)
            return
        token.released = True
        for gate in reversed(token.gates):
            gate.release()

    @asynccontextmanager
    async def slot(
        self, host: str, capacity: int, queue_timeout: float, *, serialize: bool = False
    ) -> AsyncIterator[AdmissionToken]:
        token = await self.acquire(host, capacity, queue_timeout, serialize=serialize)
        try:
            yield token
        finally:
            self.release(token)

    def held(self, host: str) -> int:
        gate = self._gates.get(host)
        return gate.held if gate else 0

    def recovering(self, host: str) -> int:
        """Slots held on the host's serialized recovery gate (0 or 1)."""
        gate = self._recovery_gates.get(host)
        return gate.held if gate else 0

    def get_stats(self) -> Dict[str, Any]:
        return {
            host: {"held": gate.held, "capacity": gate.capacity, "queue_timeout": gate.queue_timeout}
            for host, gate in self._gates.items()
        }

    def capacity(self, host: str) -> Optional[int]:
        gate = self._gates.get(host)
        return gate.capacity if gate else None
