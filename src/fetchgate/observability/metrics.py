"""
Defines Prometheus metrics for the fetch layer.
"""

from __future__ import annotations

from typing import Any, Dict

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Reloading this module (the test suite does so between tests) must not fail
# with duplicate registration errors, so an existing collector is reused.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race, fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Gauge = _duplicate_safe_factory(_OrigGauge)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "fetch_requests_total": Counter(
            "fetchgate_fetch_requests_total",
            "Completed fetch calls by outcome (ok, not_found, http_error, rate_limited, ...)",
            ["outcome"],
        ),
        "fetch_retries_total": Counter(
            "fetchgate_fetch_retries_total",
            "Retries performed by the executor",
            ["reason"],
        ),
        "fetch_latency_seconds": Histogram(
            "fetchgate_fetch_latency_seconds",
            "Latency of individual HTTP attempts",
        ),
        "fetch_in_flight_requests": Gauge(
            "fetchgate_fetch_in_flight_requests",
            "HTTP requests currently holding an admission slot",
        ),
        "admission_timeouts_total": Counter(
            "fetchgate_admission_timeouts_total",
            "Callers that gave up waiting for an admission slot",
        ),
        "circuit_rejections_total": Counter(
            "fetchgate_circuit_rejections_total",
            "Calls failed fast because a host exceeded its timeout threshold",
        ),
        "rate_limit_rejections_total": Counter(
            "fetchgate_rate_limit_rejections_total",
            "Calls failed fast because a host is rate limited",
        ),
        "coalesced_requests_total": Counter(
            "fetchgate_coalesced_requests_total",
            "Calls served by joining an identical in-flight request",
        ),
        "id_cache_hits_total": Counter(
            "fetchgate_id_cache_hits_total",
            "ID translations served from the in-memory cache",
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()
