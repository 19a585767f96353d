"""
fetchgate - resilient outbound HTTP fetch layer.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import FetchConfig, Settings
from .fetcher import FetchExecutor, FetchResponse
from .metadata import TMDBClient

__all__ = ["__version__", "FetchConfig", "FetchExecutor", "FetchResponse", "Settings", "TMDBClient"]
