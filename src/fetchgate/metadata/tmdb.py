"""
TMDB metadata API client on top of FetchExecutor.

Identical concurrent queries are coalesced into one request and IMDb/TMDB ID
translations are cached for the lifetime of the client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Tuple
from urllib.parse import urlencode

import structlog

from fetchgate.config.config import FetchConfig, TMDBSettings
from fetchgate.fetcher.errors import InvalidResponse, NotFound
from fetchgate.fetcher.http_client import FetchExecutor
from fetchgate.metadata.coalescer import RequestCoalescer
from fetchgate.observability import increment

logger = structlog.get_logger(__name__)

MediaType = Literal["movie", "tv"]
MEDIA_TYPES: Tuple[str, ...] = ("movie", "tv")


@dataclass(frozen=True)
class NameAndYear:
    name: Optional[str]
    year: Optional[int]
    original_name: Optional[str]


def _check_media_type(media_type: str) -> None:
    if media_type not in MEDIA_TYPES:
        raise ValueError(f"media_type must be one of {MEDIA_TYPES}, got {media_type!r}")


def _year(value: Any) -> Optional[int]:
    """Year from an ISO date or bare year string ("2008-01-20", "2020")."""
    prefix = str(value or "")[:4]
    return int(prefix) if len(prefix) == 4 and prefix.isdigit() else None


def _as_object(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidResponse(f"Expected a JSON object for {what}, got {type(data).__name__}")
    return data


class TMDBClient:
    """Coalescing, caching client for the TMDB v3 API."""

    def __init__(
        self,
        executor: FetchExecutor,
        api_key: Optional[str] = None,
        *,
        settings: Optional[TMDBSettings] = None,
    ):
        self.executor = executor
        self.settings = settings or TMDBSettings()
        self.api_key = api_key if api_key is not None else self.settings.api_key
        if not self.api_key:
            raise ValueError("A TMDB api_key is required")

        self._coalescer = RequestCoalescer()
        # imdb id -> (media type, tmdb id)
        self._imdb_to_tmdb: Dict[str, Tuple[str, int]] = {}
        # (media type, tmdb id) -> imdb id
        self._tmdb_to_imdb: Dict[Tuple[str, int], str] = {}

    def canonical_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Full request URL: empty parameters dropped, the rest sorted, api_key appended."""
        query = {name: str(value) for name, value in (params or {}).items() if value}
        query["api_key"] = self.api_key
        return f"{self.settings.base_url}{path}?{urlencode(sorted(query.items()))}"

    async def fetch_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = self.canonical_url(path, params)
        config = FetchConfig(
            headers={"Content-Type": "application/json"},
            queue_limit=self.settings.queue_limit,
        )
        return await self._coalescer.run(url, lambda: self.executor.json(url, config))

    def _remember(self, imdb_id: str, media_type: str, tmdb_id: int) -> None:
        self._imdb_to_tmdb[imdb_id] = (media_type, tmdb_id)
        self._tmdb_to_imdb[(media_type, tmdb_id)] = imdb_id

    async def external_to_internal_id(self, imdb_id: str) -> int:
        """TMDB ID for an IMDb ID. TV results take precedence over movie results."""
        cached = self._imdb_to_tmdb.get(imdb_id)
        if cached is not None:
            increment("id_cache_hits_total")
            return cached[1]

        data = _as_object(await self.fetch_json(f"/find/{imdb_id}", {"external_source": "imdb_id"}), "find")
        for media_type, key in (("tv", "tv_results"), ("movie", "movie_results")):
            results = data.get(key) or []
            if results and results[0].get("id"):
                tmdb_id = int(results[0]["id"])
                self._remember(imdb_id, media_type, tmdb_id)
                logger.debug("Resolved IMDb ID", imdb_id=imdb_id, tmdb_id=tmdb_id, media_type=media_type)
                return tmdb_id

        raise NotFound(f'Could not get TMDB ID for IMDb ID "{imdb_id}"')

    async def internal_to_external_id(self, tmdb_id: int, media_type: MediaType = "tv") -> str:
        """IMDb ID for a TMDB ID, via the external_ids endpoint."""
        _check_media_type(media_type)
        cached = self._tmdb_to_imdb.get((media_type, int(tmdb_id)))
        if cached is not None:
            increment("id_cache_hits_total")
            return cached

        data = _as_object(await self.get_external_ids(tmdb_id, media_type), "external_ids")
        imdb_id = data.get("imdb_id")
        if not imdb_id:
            raise NotFound(f'Could not get IMDb ID for TMDB {media_type} ID "{tmdb_id}"')
        self._remember(imdb_id, media_type, int(tmdb_id))
        return imdb_id

    async def get_details(self, tmdb_id: int, media_type: MediaType = "tv", language: Optional[str] = None) -> Any:
        _check_media_type(media_type)
        return await self.fetch_json(f"/{media_type}/{tmdb_id}", {"language": language or self.settings.language})

    async def get_external_ids(self, tmdb_id: int, media_type: MediaType = "tv") -> Any:
        _check_media_type(media_type)
        return await self.fetch_json(f"/{media_type}/{tmdb_id}/external_ids")

    async def get_name_and_year(
        self, tmdb_id: int, media_type: MediaType = "tv", language: Optional[str] = None
    ) -> NameAndYear:
        details = _as_object(await self.get_details(tmdb_id, media_type, language), "details")
        if media_type == "tv":
            return NameAndYear(
                name=details.get("name"),
                year=_year(details.get("first_air_date")),
                original_name=details.get("original_name"),
            )
        return NameAndYear(
            name=details.get("title"),
            year=_year(details.get("release_date")),
            original_name=details.get("original_title"),
        )
