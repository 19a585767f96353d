from .config import (
    DEFAULT_HEADERS,
    FetchConfig,
    FetcherSettings,
    MonitoringSettings,
    ResolvedFetchConfig,
    Settings,
    TMDBSettings,
    load_settings,
)

__all__ = [
    "DEFAULT_HEADERS",
    "FetchConfig",
    "FetcherSettings",
    "MonitoringSettings",
    "ResolvedFetchConfig",
    "Settings",
    "TMDBSettings",
    "load_settings",
]
