"""Tests for the TMDB client."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.errors import MetadataNotFoundError, UpstreamError
from app.services.tmdb import SearchFilters, TMDBClient


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {"TMDB_API_KEY": "tmdb-key", "TMDB_LANGUAGE": "en-US"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def test_client_requires_api_key() -> None:
    with pytest.raises(ValueError, match="TMDB API key is required"):
        TMDBClient(Settings(_env_file=None), httpx.AsyncClient())


@pytest.mark.anyio("asyncio")
async def test_get_details_sends_key_and_tags_media_type() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": 550, "title": "Fight Club"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        details = await client.get_details("movie", 550)

    assert details["media_type"] == "movie"
    assert requests[0].url.path == "/3/movie/550"
    assert requests[0].url.params["api_key"] == "tmdb-key"
    assert requests[0].url.params["language"] == "en-US"


@pytest.mark.anyio("asyncio")
async def test_get_details_maps_missing_items_to_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"status_code": 34})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        with pytest.raises(MetadataNotFoundError):
            await client.get_details("movie", 999999)


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(429, json={"status_code": 25}),
        httpx.Response(200, text="not json"),
    ],
)
async def test_get_details_maps_provider_failures_to_upstream_error(
    response: httpx.Response,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        with pytest.raises(UpstreamError):
            await client.get_details("tv", 1399)


@pytest.mark.anyio("asyncio")
async def test_transport_errors_become_upstream_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        with pytest.raises(UpstreamError):
            await client.fetch_trending("movie")


@pytest.mark.anyio("asyncio")
async def test_search_keeps_movies_and_shows_matching_filters() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/search/multi"
        assert request.url.params["query"] == "matrix"
        return httpx.Response(
            200,
            json={
                "results": [
                    {"id": 603, "media_type": "movie", "genre_ids": [28], "release_date": "1999-03-31"},
                    {"id": 604, "media_type": "movie", "genre_ids": [28], "release_date": "2003-05-15"},
                    {"id": 9, "media_type": "person", "name": "Keanu Reeves"},
                    {"id": 700, "media_type": "tv", "genre_ids": [18], "first_air_date": "1999-01-01"},
                ]
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        everything = await client.search("matrix")
        filtered = await client.search("matrix", SearchFilters(genre="28", year=1999))

    assert [item["id"] for item in everything] == [603, 604, 700]
    assert [item["id"] for item in filtered] == [603]


@pytest.mark.anyio("asyncio")
async def test_search_without_query_discovers_by_genre() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        assert request.url.params["with_genres"] == "18"
        if request.url.path.endswith("/movie"):
            return httpx.Response(200, json={"results": [{"id": 1, "popularity": 5.0}]})
        return httpx.Response(200, json={"results": [{"id": 2, "popularity": 9.0}]})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.example.com/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        results = await client.search("", SearchFilters(genre="18"))
        nothing = await client.search("   ", SearchFilters(genre="all"))

    assert paths == ["/3/discover/movie", "/3/discover/tv"]
    assert [(item["id"], item["media_type"]) for item in results] == [(2, "tv"), (1, "movie")]
    assert nothing == []
