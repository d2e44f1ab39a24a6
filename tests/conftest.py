"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, cast

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.errors import MetadataNotFoundError  # noqa: E402
from app.main import Services, build_services, register_routes  # noqa: E402
from app.models import RegisterRequest  # noqa: E402
from app.services.sessions import RequestContext  # noqa: E402
from app.services.tmdb import SearchFilters, TMDBClient  # noqa: E402

ADMIN_EMAIL = "admin@example.com"


class FakeMetadata:
    """In-memory stand-in for :class:`TMDBClient` that records lookups."""

    def __init__(self) -> None:
        self.details: dict[tuple[str, int], dict[str, Any]] = {
            ("movie", 550): {
                "id": 550,
                "title": "Fight Club",
                "overview": "An insomniac office worker...",
                "poster_path": "/fight-club.jpg",
                "backdrop_path": "/fight-club-backdrop.jpg",
                "release_date": "1999-10-15",
                "vote_average": 8.4,
                "vote_count": 26000,
                "popularity": 61.4,
                "genres": [{"id": 18, "name": "Drama"}],
            },
            ("tv", 1399): {
                "id": 1399,
                "name": "Game of Thrones",
                "first_air_date": "2011-04-17",
                "vote_average": 8.4,
                "popularity": 300.2,
                "genre_ids": [10765, 18],
            },
        }
        self.trending: dict[str, list[dict[str, Any]]] = {
            "movie": [
                {"id": 550, "title": "Fight Club", "release_date": "1999-10-15", "popularity": 61.4, "media_type": "movie"},
                {"id": 603, "title": "The Matrix", "release_date": "1999-03-31", "popularity": 80.0, "media_type": "movie"},
            ],
            "tv": [
                {"id": 1399, "name": "Game of Thrones", "first_air_date": "2011-04-17", "popularity": 300.2, "media_type": "tv"},
            ],
        }
        self.detail_calls: list[tuple[str, int]] = []

    async def get_details(self, kind: str, tmdb_id: int) -> dict[str, Any]:
        self.detail_calls.append((kind, tmdb_id))
        try:
            return {**self.details[(kind, tmdb_id)], "media_type": kind}
        except KeyError:
            raise MetadataNotFoundError() from None

    async def fetch_trending(self, kind: str, *, page: int = 1) -> list[dict[str, Any]]:
        return [dict(item) for item in self.trending[kind]]

    async def search(
        self, query: str, filters: SearchFilters | None = None
    ) -> list[dict[str, Any]]:
        needle = query.strip().lower()
        return [
            dict(item)
            for items in self.trending.values()
            for item in items
            if needle in str(item.get("title") or item.get("name")).lower()
        ]


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        TMDB_API_KEY="test-key",
        ADMIN_EMAILS=ADMIN_EMAIL,
        ENVIRONMENT="development",
    )


@pytest.fixture
def fake_metadata() -> FakeMetadata:
    return FakeMetadata()


@pytest.fixture
async def database(tmp_path, anyio_backend) -> AsyncIterator[Database]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'cinelist-test.db'}")
    await database.create_all()
    try:
        yield database
    finally:
        await database.dispose()


@pytest.fixture
async def services(
    database: Database, test_settings: Settings, fake_metadata: FakeMetadata
) -> Services:
    return build_services(test_settings, database, cast(TMDBClient, fake_metadata))


@pytest.fixture
def make_user(
    services: Services,
) -> Callable[..., Awaitable[RequestContext]]:
    """Register an account and return the context of a fresh session for it."""

    async def factory(
        username: str, *, email: str | None = None, phone: str | None = None
    ) -> RequestContext:
        user = await services.accounts.register(
            RegisterRequest(
                username=username,
                email=email or f"{username}@example.com",
                password="secret123",
                phone=phone,
            )
        )
        token = await services.sessions.create(user.id)
        context = await services.sessions.load(token)
        assert context is not None
        return context

    return factory


@pytest.fixture
def client(
    tmp_path, test_settings: Settings, fake_metadata: FakeMetadata
) -> Iterator[TestClient]:
    """A TestClient whose services live on the client's own event loop."""

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'cinelist-routes.db'}")
        await database.create_all()
        fastapi_app.state.services = build_services(
            test_settings, database, cast(TMDBClient, fake_metadata)
        )
        try:
            yield
        finally:
            await database.dispose()

    app = FastAPI(lifespan=lifespan)
    register_routes(app)
    with TestClient(app) as test_client:
        yield test_client
