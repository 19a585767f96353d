from .metric_delta import histogram_observes, metric_delta


def request_count(mocked) -> int:
    """Number of requests an aioresponses instance has seen."""
    return sum(len(calls) for calls in mocked.requests.values())


__all__ = ["histogram_observes", "metric_delta", "request_count"]
