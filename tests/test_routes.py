"""End-to-end behaviour of the HTTP routes."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import Settings
from app.database import Database
from app.main import build_services, register_routes
from app.services.tmdb import TMDBClient


def _register(client: TestClient, username: str, **extra: str) -> dict:
    response = client.post(
        "/api/register",
        json={
            "username": username,
            "email": extra.get("email", f"{username}@example.com"),
            "password": "secret123",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_does_not_require_a_session(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "environment": "development"}


def test_protected_routes_require_a_session(client: TestClient) -> None:
    for path in ("/api/user", "/api/profiles", "/api/mylist", "/api/content/newest"):
        response = client.get(path)
        assert response.status_code == 401, path
        assert response.json() == {"message": "Not authenticated"}


def test_register_logs_in_and_hides_password_hash(client: TestClient) -> None:
    user = _register(client, "alice")

    assert user["username"] == "alice"
    assert "passwordHash" not in user and "password" not in user
    assert client.get("/api/user").json()["id"] == user["id"]

    assert client.post("/api/logout").status_code == 204
    assert client.get("/api/user").status_code == 401

    login = client.post("/api/login", json={"email": "alice@example.com", "password": "secret123"})
    assert login.status_code == 200
    assert client.get("/api/user").status_code == 200

    bad = client.post("/api/login", json={"username": "alice", "password": "wrong"})
    assert bad.status_code == 401


def test_validation_errors_are_400_without_echoing_input(client: TestClient) -> None:
    response = client.post(
        "/api/register",
        json={"username": "al", "email": "not-an-email", "password": "hunter2hunter2"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid data"
    assert {error["field"] for error in body["errors"]} == {"username", "email"}
    assert "hunter2hunter2" not in response.text


def test_watchlist_scenario(client: TestClient) -> None:
    _register(client, "alice")
    created = client.post("/api/profiles", json={"name": "Kids", "isKids": True})
    assert created.status_code == 201
    profile = created.json()
    assert profile["isKids"] is True

    active = client.post("/api/profiles/active", json={"profileId": profile["id"]})
    assert active.status_code == 200
    assert active.json()["activeProfileId"] == profile["id"]
    assert client.get("/api/profiles/active").json()["activeProfile"]["name"] == "Kids"

    item = {"profileId": profile["id"], "tmdbId": 550, "type": "movie", "title": "Fight Club"}
    assert client.post("/api/mylist", json=item).status_code == 201

    listing = client.get("/api/mylist")
    assert [entry["tmdbId"] for entry in listing.json()] == [550]
    check = client.get(f"/api/mylist/{profile['id']}/check/550")
    assert check.json() == {"inList": True}

    duplicate = client.post("/api/mylist", json=item)
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Content already in list"

    assert client.delete(f"/api/mylist/{profile['id']}/550").status_code == 204
    missing = client.delete(f"/api/mylist/{profile['id']}/550")
    assert missing.status_code == 404
    assert missing.json()["message"] == "Item not found in list"


def test_foreign_profiles_are_forbidden(client: TestClient) -> None:
    _register(client, "alice")
    profile = client.post("/api/profiles", json={"name": "Main"}).json()
    client.post("/api/logout")

    _register(client, "bob")
    assert client.get(f"/api/profiles/{profile['id']}").status_code == 403
    assert client.post("/api/profiles/active", json={"profileId": profile["id"]}).status_code == 403
    assert client.get(f"/api/mylist/{profile['id']}").status_code == 403
    assert client.put(f"/api/profiles/{profile['id']}", json={"name": "Bob"}).status_code == 403
    assert client.delete(f"/api/profiles/{profile['id']}").status_code == 403
    assert client.get("/api/profiles/999999").status_code == 404
    assert client.get("/api/profiles/active").status_code == 404


def test_reviews_and_content_routes(client: TestClient, fake_metadata) -> None:
    _register(client, "alice")
    profile = client.post("/api/profiles", json={"name": "Main"}).json()

    for rating in (True, "abc", 0, 6):
        bad_rating = client.post(
            "/api/reviews",
            json={"profileId": profile["id"], "tmdbId": 550, "type": "movie", "rating": rating},
        )
        assert bad_rating.status_code == 400, rating
        assert [error["field"] for error in bad_rating.json()["errors"]] == ["rating"]
    assert client.get(f"/api/reviews/profile/{profile['id']}").json() == []

    payload = {"profileId": profile["id"], "tmdbId": 550, "type": "movie", "rating": 5, "isPublic": True}
    review = client.post("/api/reviews", json=payload)
    assert review.status_code == 201
    again = client.post("/api/reviews", json=payload)
    assert again.status_code == 400
    assert again.json()["reviewId"] == review.json()["id"]

    content = client.get("/api/content/movie/550").json()
    assert content["title"] == "Fight Club"
    assert client.get(f"/api/content/by-id/{content['id']}").json()["tmdbId"] == 550
    listed = client.get(f"/api/reviews/content/{content['id']}").json()
    assert [item["profileName"] for item in listed] == ["Main"]
    assert fake_metadata.detail_calls == [("movie", 550)]

    assert client.get("/api/content/movie/999999").status_code == 404
    assert client.get("/api/content/anime/1").status_code == 400


def test_trending_and_search_routes(client: TestClient) -> None:
    _register(client, "alice")

    newest = client.get("/api/content/newest", params={"limit": 2}).json()
    assert [item["id"] for item in newest] == [1399, 550]
    popular = client.get("/api/content/popular").json()
    assert [item["id"] for item in popular] == [1399, 603, 550]

    assert client.get("/api/content/search").status_code == 400
    found = client.get("/api/content/search", params={"q": "matrix"}).json()
    assert [item["id"] for item in found] == [603]


def test_admin_routes_require_admin(client: TestClient) -> None:
    _register(client, "alice")
    assert client.get("/api/admin/stats").status_code == 403
    client.post("/api/logout")

    admin = _register(client, "root", email="admin@example.com")
    assert admin["isAdmin"] is True

    added = client.post("/api/admin/content", json={"tmdbId": 1399, "type": "tv"})
    assert added.status_code == 201
    assert added.json()["details"]["name"] == "Game of Thrones"
    assert client.post("/api/admin/content", json={"tmdbId": 1399, "type": "tv"}).status_code == 400

    stats = client.get("/api/admin/stats").json()
    assert stats["totalUsers"] == 2
    assert stats["totalContent"] == 1

    logs = client.get("/api/admin/logs", params={"limit": 1}).json()
    assert logs[0]["action"] == "content_added"
    assert logs[0]["username"] == "root"

    users = client.get("/api/admin/users").json()
    alice = next(user for user in users if user["username"] == "alice")
    promoted = client.patch(f"/api/admin/users/{alice['id']}", json={"isAdmin": True})
    assert promoted.json()["isAdmin"] is True

    content_id = added.json()["id"]
    assert client.put(f"/api/admin/content/{content_id}", json={"title": "GoT"}).json()["title"] == "GoT"
    assert client.delete(f"/api/admin/content/{content_id}").status_code == 204
    assert client.get("/api/admin/content").json() == []


def test_logout_is_audited(client: TestClient) -> None:
    _register(client, "root", email="admin@example.com")
    assert client.post("/api/logout").status_code == 204
    client.post("/api/login", json={"username": "root", "password": "secret123"})

    logs = client.get("/api/admin/logs", params={"limit": 2}).json()

    assert [entry["action"] for entry in logs] == ["user_login", "user_logout"]
    assert logs[1]["username"] == "root"


def test_unexpected_errors_hide_details_by_default(tmp_path, fake_metadata) -> None:
    """Without an explicit development environment a 500 carries only a message."""

    default_settings = Settings(_env_file=None)  # type: ignore[call-arg]
    assert default_settings.environment == "production"

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'cinelist-errors.db'}")
        await database.create_all()
        fastapi_app.state.services = build_services(
            default_settings, database, cast(TMDBClient, fake_metadata)
        )
        try:
            yield
        finally:
            await database.dispose()

    app = FastAPI(lifespan=lifespan)
    register_routes(app)

    @app.get("/api/explode")
    async def explode() -> None:
        raise RuntimeError("secret internals")

    with TestClient(app, raise_server_exceptions=False) as test_client:
        response = test_client.get("/api/explode")

    assert response.status_code == 500
    assert response.json() == {"message": "Something went wrong!"}
    assert "secret internals" not in response.text
