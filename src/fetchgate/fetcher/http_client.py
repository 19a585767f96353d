"""
Resilient HTTP fetch executor with per-host admission, retries and fast-fail.
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, NoReturn, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
import structlog

from fetchgate.config.config import FetchConfig, FetcherSettings, ResolvedFetchConfig
from fetchgate.fetcher.admission import HostAdmissionControl
from fetchgate.fetcher.circuit_breaker import FailureCircuit
from fetchgate.fetcher.errors import (
    CircuitOpen,
    FetchError,
    HttpError,
    InvalidResponse,
    InvalidURL,
    NetworkError,
    NotFound,
    RateLimited,
    Timeout,
)
from fetchgate.fetcher.rate_limiter import RateLimitGuard
from fetchgate.observability import gauge, histogram, increment

logger = structlog.get_logger(__name__)

JSON_ACCEPT = "application/json,text/plain,*/*"

# Transport failures worth retrying. Timeouts are matched first so that
# aiohttp's ServerTimeoutError (also a connection error) counts as a timeout.
TRANSIENT_ERRORS: Tuple[type, ...] = (
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
)


def host_key(url: str) -> str:
    """Return ``scheme://host[:port]`` for url, raising InvalidURL when it has none."""
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
        port = parsed.port
    except (ValueError, AttributeError, TypeError) as e:
        raise InvalidURL(f"Malformed URL {url!r}: {e}", url=str(url)) from e

    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https") or not hostname:
        raise InvalidURL(f"Unsupported or incomplete URL {url!r}", url=str(url))
    return f"{scheme}://{hostname}:{port}" if port else f"{scheme}://{hostname}"


def parse_retry_after(headers: Mapping[str, str], default: float) -> float:
    """Retry-After in seconds. Missing, non-numeric and non-positive values give default."""
    value = headers.get("Retry-After") or headers.get("retry-after")
    if value is None:
        return default
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return default
    if not math.isfinite(seconds) or seconds <= 0:
        return default
    return seconds


@dataclass
class FetchResponse:
    """A response that passed status classification."""

    status: int
    headers: Dict[str, str]
    body: bytes
    url: str
    final_url: str
    attempts: int
    start_ts: float
    end_ts: float

    @property
    def charset(self) -> str:
        content_type = next((v for k, v in self.headers.items() if k.lower() == "content-type"), "")
        for part in content_type.split(";")[1:]:
            name, _, value = part.strip().partition("=")
            if name.lower() == "charset" and value:
                return value.strip('"')
        return "utf-8"

    def text(self) -> str:
        try:
            return self.body.decode(self.charset, errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidResponse(f"Invalid JSON from {self.url}: {e}", url=self.url) from e


class FetchExecutor:
    """
    Performs HTTP requests on behalf of many concurrent callers.

    One instance owns all per-host state (admission gates, timeout counters,
    rate-limit marks) and the aiohttp session. Share the instance; do not
    create one per request.
    """

    def __init__(
        self,
        settings: Optional[FetcherSettings] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or FetcherSettings()
        self.admission = HostAdmissionControl()
        self.circuit = FailureCircuit(ttl=self.settings.timeout_counter_ttl, clock=clock)
        self.rate_limits = RateLimitGuard(clock=clock)
        self._sleep = sleep

        self.session = session
        self._owns_session = session is None
        self._is_initialized = session is not None

        logger.debug(
            "Fetch executor created",
            queue_limit=self.settings.queue_limit,
            timeout=self.settings.timeout,
            max_retries=self.settings.max_retries,
        )

    async def initialize(self) -> None:
        """Open the aiohttp session if one was not supplied."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=0, ttl_dns_cache=30, enable_cleanup_closed=True)
            )
            self._owns_session = True
        self._is_initialized = True

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None
        self._is_initialized = False

    async def __aenter__(self) -> "FetchExecutor":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _backoff_delay(self, retry_index: int) -> float:
        """Exponential backoff: base, 2*base, 4*base ... capped."""
        return min(self.settings.backoff_base * (2**retry_index), self.settings.backoff_cap)

    async def _request(self, url: str, config: ResolvedFetchConfig) -> Tuple[int, Dict[str, str], bytes, str]:
        if self.session is None:
            raise RuntimeError("Fetch executor not initialized. Call initialize() first.")
        async with self.session.request(
            config.method,
            url,
            headers=config.headers,
            params=config.params,
            data=config.data,
            timeout=aiohttp.ClientTimeout(total=config.timeout),
        ) as response:
            body = await response.read()
            return response.status, dict(response.headers), body, str(response.url)

    async def perform(self, url: str, config: Optional[FetchConfig] = None) -> FetchResponse:
        """
        Fetch url and classify the outcome.

        Returns the response for 2xx/3xx statuses. Every other outcome raises a
        FetchError subclass: RateLimited and CircuitOpen are raised before any
        network call, transport failures are retried with exponential backoff
        before surfacing as Timeout or NetworkError. Other aiohttp errors are
        not retried and surface as NetworkError (or InvalidURL).
        """
        if not self._is_initialized:
            raise RuntimeError("Fetch executor not initialized. Call initialize() first.")

        try:
            host = host_key(url)
            response = await self._perform(url, host, (config or FetchConfig()).resolve(self.settings))
        except FetchError as e:
            increment("fetch_requests_total", labels={"outcome": e.kind})
            raise
        increment("fetch_requests_total", labels={"outcome": "ok"})
        return response

    async def _perform(self, url: str, host: str, config: ResolvedFetchConfig) -> FetchResponse:
        start_ts = time.time()
        retries = 0
        attempts = 0
        inline_wait_spent = False
        serialize = False

        while True:
            first_attempt = retries == 0 and not inline_wait_spent

            blocked_for = self.rate_limits.remaining(host)
            if blocked_for > 0:
                if first_attempt and blocked_for <= self.settings.max_inline_wait:
                    logger.info("Waiting out rate limit", host=host, wait=round(blocked_for, 3))
                    inline_wait_spent = True
                    serialize = True
                    await self._sleep(blocked_for)
                    continue
                increment("rate_limit_rejections_total")
                raise RateLimited(
                    f"Too many requests to {host}, retry after {math.ceil(blocked_for)}s",
                    retry_after=math.ceil(blocked_for),
                    url=url,
                    host=host,
                )

            if self.circuit.is_open(host, config.timeouts_count_throw):
                increment("circuit_rejections_total")
                raise CircuitOpen(
                    f"Too many timeouts for {host} ({self.circuit.count(host)})",
                    url=url,
                    host=host,
                )

            attempts += 1
            failure: Optional[BaseException] = None
            fatal: Optional[aiohttp.ClientError] = None
            async with self.admission.slot(host, config.queue_limit, config.queue_timeout, serialize=serialize):
                gauge("fetch_in_flight_requests", 1)
                attempt_start = time.perf_counter()
                try:
                    status, headers, body, final_url = await self._request(url, config)
                except TRANSIENT_ERRORS as e:
                    failure = e
                except aiohttp.ClientError as e:
                    fatal = e
                finally:
                    gauge("fetch_in_flight_requests", -1)
                    histogram("fetch_latency_seconds", time.perf_counter() - attempt_start)

            if fatal is not None:
                await self._raise_client_error(url, host, fatal)

            if failure is not None:
                is_timeout = isinstance(failure, asyncio.TimeoutError)
                if retries < config.max_retries:
                    delay = self._backoff_delay(retries)
                    retries += 1
                    increment("fetch_retries_total", labels={"reason": "timeout" if is_timeout else "network"})
                    logger.warning(
                        "Transient fetch failure, retrying",
                        url=url,
                        host=host,
                        error=repr(failure),
                        retry=retries,
                        max_retries=config.max_retries,
                        delay=delay,
                    )
                    await self._sleep(delay)
                    continue

                timeouts = await self.circuit.record_failure(host)
                logger.warning(
                    "Fetch failed after retries",
                    url=url,
                    host=host,
                    error=repr(failure),
                    attempts=attempts,
                    host_timeouts=timeouts,
                )
                if is_timeout:
                    raise Timeout(f"Timeout fetching {url}", url=url, host=host) from failure
                raise NetworkError(f"Network error fetching {url}: {failure!r}", url=url, host=host) from failure

            await self.circuit.record_success(host)

            if 200 <= status <= 399:
                return FetchResponse(
                    status=status,
                    headers=headers,
                    body=body,
                    url=url,
                    final_url=final_url,
                    attempts=attempts,
                    start_ts=start_ts,
                    end_ts=time.time(),
                )

            if status == 429:
                retry_after = parse_retry_after(headers, self.settings.default_retry_after)
                if first_attempt and retry_after <= self.settings.max_inline_wait:
                    logger.info("Rate limited, waiting before single retry", host=host, retry_after=retry_after)
                    increment("fetch_retries_total", labels={"reason": "rate_limited"})
                    inline_wait_spent = True
                    serialize = True
                    await self._sleep(retry_after)
                    continue
                self.rate_limits.block(host, retry_after)
                raise RateLimited(
                    f"Rate limited by {host}, retry after {math.ceil(retry_after)}s",
                    retry_after=retry_after,
                    url=url,
                    host=host,
                )

            if status == 404:
                raise NotFound(f"Not found: {url}", url=url, host=host)

            raise HttpError(f"HTTP {status} for {url}", status=status, url=url, host=host)

    async def _raise_client_error(self, url: str, host: str, error: aiohttp.ClientError) -> NoReturn:
        """Non-transient aiohttp failures (redirect loops, malformed responses) are not retried."""
        if isinstance(error, aiohttp.InvalidURL):
            raise InvalidURL(f"Invalid URL {url!r}: {error!r}", url=url, host=host) from error
        if isinstance(error, aiohttp.ClientResponseError):
            # The host answered, so it is not timing out.
            await self.circuit.record_success(host)
        logger.warning("Fetch failed", url=url, host=host, error=repr(error))
        raise NetworkError(f"Request to {url} failed: {error!r}", url=url, host=host) from error

    async def text(self, url: str, config: Optional[FetchConfig] = None) -> str:
        response = await self.perform(url, config)
        return response.text()

    async def json(self, url: str, config: Optional[FetchConfig] = None) -> Any:
        config = (config or FetchConfig()).with_headers({"Accept": JSON_ACCEPT}, override=False)
        response = await self.perform(url, config)
        return response.json()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "admission": self.admission.get_stats(),
            "timeouts": self.circuit.get_stats(),
            "rate_limited": self.rate_limits.get_stats(),
        }
