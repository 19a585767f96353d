"""Metadata API wrappers with request coalescing and ID translation caching."""

from .coalescer import RequestCoalescer
from .tmdb import NameAndYear, TMDBClient

__all__ = ["NameAndYear", "RequestCoalescer", "TMDBClient"]
