"""Client for The Movie Database (TMDB), the catalog metadata provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import Settings
from ..errors import MetadataNotFoundError, UpstreamError

logger = logging.getLogger(__name__)

MEDIA_TYPES: tuple[str, ...] = ("movie", "tv")


@dataclass(slots=True)
class SearchFilters:
    """Optional search refinements accepted by :meth:`TMDBClient.search`."""

    page: int = 1
    language: str | None = None
    genre: str | None = None
    year: int | None = None

    @property
    def has_genre(self) -> bool:
        return bool(self.genre) and self.genre != "all"


class TMDBClient:
    """Thin async wrapper around the TMDB v3 REST API.

    Every failure is mapped to the service error taxonomy: an unknown id
    raises :class:`MetadataNotFoundError`, anything else (transport errors,
    rate limiting, 5xx) raises :class:`UpstreamError`.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def fetch_trending(self, kind: str, *, page: int = 1) -> list[dict[str, Any]]:
        """Return this week's trending titles of ``kind`` (``movie`` or ``tv``)."""

        self._check_kind(kind)
        data = await self._get(f"/trending/{kind}/week", {"page": max(page, 1)})
        return [
            self._tag_media_type(item, kind)
            for item in data.get("results", [])
            if isinstance(item, dict)
        ]

    async def search(
        self, query: str, filters: SearchFilters | None = None
    ) -> list[dict[str, Any]]:
        """Search movies and shows.

        A free-text query goes through ``/search/multi``. A genre filter with
        no query falls back to ``/discover`` for both media types.
        """

        filters = filters or SearchFilters()
        query = (query or "").strip()
        if not query:
            if not filters.has_genre:
                return []
            return await self._discover(filters)

        params: dict[str, Any] = {
            "query": query,
            "include_adult": "false",
            "page": max(filters.page, 1),
        }
        if filters.language:
            params["language"] = filters.language
        data = await self._get("/search/multi", params)

        results: list[dict[str, Any]] = []
        for item in data.get("results", []):
            if not isinstance(item, dict):
                continue
            if item.get("media_type") not in MEDIA_TYPES:
                continue
            if filters.has_genre and not self._matches_genre(item, filters.genre):
                continue
            if filters.year and self._extract_year(item) != filters.year:
                continue
            results.append(item)
        return results

    async def get_details(self, kind: str, tmdb_id: int) -> dict[str, Any]:
        """Return the full TMDB record for a single movie or show."""

        self._check_kind(kind)
        data = await self._get(f"/{kind}/{tmdb_id}", {})
        if not data.get("id"):
            raise MetadataNotFoundError(f"No {kind} with TMDB id {tmdb_id}")
        return self._tag_media_type(data, kind)

    async def _discover(self, filters: SearchFilters) -> list[dict[str, Any]]:
        combined: list[dict[str, Any]] = []
        for kind in MEDIA_TYPES:
            params: dict[str, Any] = {
                "with_genres": filters.genre,
                "page": max(filters.page, 1),
                "sort_by": "popularity.desc",
                "include_adult": "false",
            }
            if filters.language:
                params["with_original_language"] = filters.language
            if filters.year:
                year_key = "primary_release_year" if kind == "movie" else "first_air_date_year"
                params[year_key] = filters.year
            data = await self._get(f"/discover/{kind}", params)
            combined.extend(
                self._tag_media_type(item, kind)
                for item in data.get("results", [])
                if isinstance(item, dict)
            )
        combined.sort(key=lambda item: item.get("popularity") or 0, reverse=True)
        return combined

    async def _get(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        query = {
            "api_key": self._settings.tmdb_api_key,
            "language": self._settings.tmdb_language,
            **params,
        }
        try:
            response = await self._client.get(endpoint, params=query)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", endpoint, exc)
            raise UpstreamError() from exc

        if response.status_code == 404:
            raise MetadataNotFoundError()
        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s returned %s: %s",
                endpoint,
                response.status_code,
                response.text,
            )
            raise UpstreamError()
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("TMDB returned invalid JSON for %s", endpoint)
            raise UpstreamError() from exc
        if not isinstance(payload, dict):
            raise UpstreamError()
        return payload

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in MEDIA_TYPES:
            raise ValueError(f"Unsupported media type: {kind}")

    @staticmethod
    def _tag_media_type(item: dict[str, Any], kind: str) -> dict[str, Any]:
        if item.get("media_type") == kind:
            return item
        return {**item, "media_type": kind}

    @staticmethod
    def _matches_genre(item: dict[str, Any], genre: str | None) -> bool:
        try:
            wanted = int(genre or "")
        except ValueError:
            return True
        genre_ids = item.get("genre_ids") or []
        return wanted in genre_ids

    @staticmethod
    def _extract_year(result: dict[str, Any]) -> int | None:
        date_value = result.get("release_date") or result.get("first_air_date")
        if not isinstance(date_value, str) or len(date_value) < 4:
            return None
        try:
            return int(date_value[:4])
        except ValueError:
            return None
