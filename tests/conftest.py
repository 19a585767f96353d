"""
Shared fixtures for the fetchgate test suite.

Time is faked wherever the code under test would wait: executors get a
FakeClock for TTL bookkeeping and a sleep function that records the requested
delay and advances the clock instead of blocking.
"""

import asyncio
from typing import AsyncGenerator, List

import pytest
import pytest_asyncio

from fetchgate.config.config import FetcherSettings, TMDBSettings
from fetchgate.fetcher.http_client import FetchExecutor
from fetchgate.metadata.tmdb import TMDBClient


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep: records delays, advances the fake clock, yields once."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def fetcher_settings() -> FetcherSettings:
    return FetcherSettings()


@pytest_asyncio.fixture
async def executor(fetcher_settings, clock, fake_sleep) -> AsyncGenerator[FetchExecutor, None]:
    """Initialized executor with fake time."""
    async with FetchExecutor(fetcher_settings, clock=clock, sleep=fake_sleep) as client:
        yield client


@pytest.fixture
def tmdb(executor) -> TMDBClient:
    return TMDBClient(executor, "test-key", settings=TMDBSettings(base_url="https://api.themoviedb.org/3"))
