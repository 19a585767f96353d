"""
Tests for the TMDB client: coalescing, ID translation cache and projections.
"""

import asyncio

import pytest
from aioresponses import aioresponses

from fetchgate.config.config import TMDBSettings
from fetchgate.fetcher.errors import InvalidResponse, NotFound, RateLimited
from fetchgate.metadata.tmdb import NameAndYear, TMDBClient, _year

from tests.helpers import request_count

BASE = "https://api.themoviedb.org/3"
FIND_URL = f"{BASE}/find/tt0903747?api_key=test-key&external_source=imdb_id"


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, expected",
    [("2008-01-20", 2008), ("2020", 2020), ("", None), (None, None), ("TBA", None)],
)
def test_year(value, expected):
    assert _year(value) == expected


@pytest.mark.unit
class TestCanonicalUrl:
    def test_params_sorted_and_api_key_appended(self, tmdb):
        url = tmdb.canonical_url("/tv/1396", {"language": "en-US", "append": "videos"})

        assert url == f"{BASE}/tv/1396?api_key=test-key&append=videos&language=en-US"

    def test_empty_params_dropped(self, tmdb):
        url = tmdb.canonical_url("/tv/1396", {"language": None, "page": ""})

        assert url == f"{BASE}/tv/1396?api_key=test-key"

    def test_parameter_order_does_not_matter(self, tmdb):
        assert tmdb.canonical_url("/x", {"a": "1", "b": "2"}) == tmdb.canonical_url("/x", {"b": "2", "a": "1"})

    def test_api_key_required(self, executor):
        with pytest.raises(ValueError):
            TMDBClient(executor, settings=TMDBSettings(api_key=""))

    def test_api_key_from_settings(self, executor):
        client = TMDBClient(executor, settings=TMDBSettings(api_key="from-settings"))

        assert "api_key=from-settings" in client.canonical_url("/x")


@pytest.mark.unit
class TestFetchJson:
    @pytest.mark.asyncio
    async def test_concurrent_identical_queries_make_one_request(self, tmdb):
        url = f"{BASE}/tv/1396?api_key=test-key&language=en-US"
        with aioresponses() as m:
            m.get(url, payload={"name": "Breaking Bad"}, repeat=True)

            first, second = await asyncio.gather(
                tmdb.fetch_json("/tv/1396", {"language": "en-US"}),
                tmdb.fetch_json("/tv/1396", {"language": "en-US"}),
            )

            assert request_count(m) == 1
        assert first == second == {"name": "Breaking Bad"}

    @pytest.mark.asyncio
    async def test_concurrent_identical_queries_share_the_error(self, tmdb):
        url = f"{BASE}/tv/1396?api_key=test-key"
        with aioresponses() as m:
            m.get(url, status=429, headers={"Retry-After": "600"}, repeat=True)

            results = await asyncio.gather(
                tmdb.fetch_json("/tv/1396"),
                tmdb.fetch_json("/tv/1396"),
                return_exceptions=True,
            )

            assert request_count(m) == 1
        assert all(isinstance(r, RateLimited) for r in results)
        assert results[0] is results[1]

    @pytest.mark.asyncio
    async def test_sequential_queries_are_not_cached(self, tmdb):
        url = f"{BASE}/movie/550?api_key=test-key"
        with aioresponses() as m:
            m.get(url, payload={"title": "Fight Club"}, repeat=True)

            await tmdb.fetch_json("/movie/550")
            await tmdb.fetch_json("/movie/550")

            assert request_count(m) == 2

    @pytest.mark.asyncio
    async def test_sends_json_content_type(self, tmdb):
        url = f"{BASE}/movie/550?api_key=test-key"
        with aioresponses() as m:
            m.get(url, payload={})

            await tmdb.fetch_json("/movie/550")

            calls = next(iter(m.requests.values()))
            assert calls[0].kwargs["headers"]["Content-Type"] == "application/json"


@pytest.mark.unit
class TestIdTranslation:
    @pytest.mark.asyncio
    async def test_lookup_is_cached(self, tmdb):
        with aioresponses() as m:
            m.get(FIND_URL, payload={"tv_results": [{"id": 1396}], "movie_results": []}, repeat=True)

            assert await tmdb.external_to_internal_id("tt0903747") == 1396
            assert await tmdb.external_to_internal_id("tt0903747") == 1396

            assert request_count(m) == 1

    @pytest.mark.asyncio
    async def test_tv_results_take_precedence(self, tmdb):
        with aioresponses() as m:
            m.get(FIND_URL, payload={"tv_results": [{"id": 1396}], "movie_results": [{"id": 42}]})

            assert await tmdb.external_to_internal_id("tt0903747") == 1396

    @pytest.mark.asyncio
    async def test_movie_results_used_when_no_tv_result(self, tmdb):
        with aioresponses() as m:
            m.get(FIND_URL, payload={"tv_results": [], "movie_results": [{"id": 42}]})

            assert await tmdb.external_to_internal_id("tt0903747") == 42

    @pytest.mark.asyncio
    async def test_no_mapping_is_not_found_and_not_cached(self, tmdb):
        with aioresponses() as m:
            m.get(FIND_URL, payload={"tv_results": [], "movie_results": []}, repeat=True)

            with pytest.raises(NotFound):
                await tmdb.external_to_internal_id("tt0903747")
            with pytest.raises(NotFound):
                await tmdb.external_to_internal_id("tt0903747")

            assert request_count(m) == 2

    @pytest.mark.asyncio
    async def test_inverse_served_from_cache_after_lookup(self, tmdb):
        with aioresponses() as m:
            m.get(FIND_URL, payload={"tv_results": [{"id": 1396}]})

            await tmdb.external_to_internal_id("tt0903747")
            assert await tmdb.internal_to_external_id(1396, "tv") == "tt0903747"

            assert request_count(m) == 1

    @pytest.mark.asyncio
    async def test_inverse_lookup_via_external_ids(self, tmdb):
        with aioresponses() as m:
            m.get(f"{BASE}/movie/550/external_ids?api_key=test-key", payload={"imdb_id": "tt0137523"})

            assert await tmdb.internal_to_external_id(550, "movie") == "tt0137523"
            assert await tmdb.external_to_internal_id("tt0137523") == 550

            assert request_count(m) == 1

    @pytest.mark.asyncio
    async def test_non_object_find_body_is_invalid_response(self, tmdb):
        with aioresponses() as m:
            m.get(FIND_URL, body="null", content_type="application/json")

            with pytest.raises(InvalidResponse):
                await tmdb.external_to_internal_id("tt0903747")

    @pytest.mark.asyncio
    async def test_non_object_external_ids_body_is_invalid_response(self, tmdb):
        with aioresponses() as m:
            m.get(f"{BASE}/tv/7/external_ids?api_key=test-key", body="[]", content_type="application/json")

            with pytest.raises(InvalidResponse):
                await tmdb.internal_to_external_id(7, "tv")

    @pytest.mark.asyncio
    async def test_inverse_lookup_without_imdb_id(self, tmdb):
        with aioresponses() as m:
            m.get(f"{BASE}/tv/7/external_ids?api_key=test-key", payload={"imdb_id": None})

            with pytest.raises(NotFound):
                await tmdb.internal_to_external_id(7, "tv")


@pytest.mark.unit
class TestProjections:
    @pytest.mark.asyncio
    async def test_name_and_year_for_tv(self, tmdb):
        with aioresponses() as m:
            m.get(
                f"{BASE}/tv/1396?api_key=test-key&language=en-US",
                payload={"name": "Breaking Bad", "original_name": "Breaking Bad", "first_air_date": "2008-01-20"},
            )

            result = await tmdb.get_name_and_year(1396, "tv")

        assert result == NameAndYear(name="Breaking Bad", year=2008, original_name="Breaking Bad")

    @pytest.mark.asyncio
    async def test_name_and_year_for_movie(self, tmdb):
        with aioresponses() as m:
            m.get(
                f"{BASE}/movie/129?api_key=test-key&language=ja-JP",
                payload={"title": "Spirited Away", "original_title": "千と千尋の神隠し", "release_date": "2001-07-20"},
            )

            result = await tmdb.get_name_and_year(129, "movie", "ja-JP")

        assert result.name == "Spirited Away"
        assert result.year == 2001
        assert result.original_name == "千と千尋の神隠し"

    @pytest.mark.asyncio
    async def test_missing_date_gives_no_year(self, tmdb):
        with aioresponses() as m:
            m.get(f"{BASE}/movie/1?api_key=test-key&language=en-US", payload={"title": "Untitled", "release_date": ""})

            result = await tmdb.get_name_and_year(1, "movie")

        assert result.year is None

    @pytest.mark.asyncio
    async def test_year_only_date(self, tmdb):
        with aioresponses() as m:
            m.get(f"{BASE}/tv/2?api_key=test-key&language=en-US", payload={"name": "Pilot", "first_air_date": "2020"})

            result = await tmdb.get_name_and_year(2, "tv")

        assert result.year == 2020

    @pytest.mark.asyncio
    async def test_external_ids(self, tmdb):
        with aioresponses() as m:
            m.get(f"{BASE}/tv/1396/external_ids?api_key=test-key", payload={"imdb_id": "tt0903747", "tvdb_id": 81189})

            data = await tmdb.get_external_ids(1396)

        assert data["tvdb_id"] == 81189

    @pytest.mark.asyncio
    async def test_unknown_media_type(self, tmdb):
        with pytest.raises(ValueError):
            await tmdb.get_details(1, "person")
