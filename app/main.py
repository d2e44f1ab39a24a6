"""Entry point for the FastAPI-powered CineList backend."""

from __future__ import annotations

import logging
import time
import traceback
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, settings
from .database import Database
from .errors import AuthenticationRequired, ForbiddenError, ServiceError, ValidationFailed
from .models import (
    ActiveProfileRequest,
    AdminContentAddRequest,
    AdminContentUpdateRequest,
    AdminUserUpdateRequest,
    ContentOut,
    LoginRequest,
    MediaType,
    ProfileCreate,
    ProfileOut,
    ProfileUpdate,
    RegisterRequest,
    ReviewCreateRequest,
    ReviewOut,
    ReviewUpdateRequest,
    UserOut,
    WatchlistAddRequest,
    WatchlistEntryOut,
)
from .services.accounts import AccountService
from .services.admin import AdminService
from .services.audit import AuditLog
from .services.catalog import CatalogCache
from .services.profiles import ProfileService
from .services.reviews import ReviewService
from .services.sessions import RequestContext, SessionStore
from .services.tmdb import SearchFilters, TMDBClient
from .services.watchlist import WatchlistService
from .utils import paginate

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, built once per process."""

    settings: Settings
    audit: AuditLog
    sessions: SessionStore
    accounts: AccountService
    profiles: ProfileService
    catalog: CatalogCache
    watchlist: WatchlistService
    reviews: ReviewService
    admin: AdminService
    metadata: TMDBClient | None = None


def build_services(
    app_settings: Settings, database: Database, metadata: TMDBClient | None
) -> Services:
    session_factory = database.session_factory
    audit = AuditLog(session_factory)
    sessions = SessionStore(session_factory, ttl_seconds=app_settings.session_ttl_seconds)
    catalog = CatalogCache(session_factory, metadata, audit)
    return Services(
        settings=app_settings,
        audit=audit,
        sessions=sessions,
        accounts=AccountService(app_settings, session_factory, audit),
        profiles=ProfileService(session_factory, sessions, audit),
        catalog=catalog,
        watchlist=WatchlistService(session_factory, audit),
        reviews=ReviewService(session_factory, catalog, audit),
        admin=AdminService(session_factory, audit),
        metadata=metadata,
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    metadata: TMDBClient | None = None
    if settings.tmdb_api_key:
        metadata = TMDBClient(settings, tmdb_http_client)
    else:
        logger.warning("TMDB_API_KEY is not set; catalog lookups will fail")

    services = build_services(settings, database, metadata)
    await services.sessions.purge_expired()
    fastapi_app.state.services = services
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Profiles, watchlists and reviews over a TMDB-backed catalog",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(fastapi_app: FastAPI) -> Services:
    services = getattr(fastapi_app.state, "services", None)
    if not isinstance(services, Services):
        raise RuntimeError("Services not initialised")
    return services


async def require_context(request: Request) -> RequestContext:
    """Load the caller's session or fail with 401."""

    services = get_services(request.app)
    token = request.cookies.get(services.settings.session_cookie_name)
    context = await services.sessions.load(token)
    if context is None:
        raise AuthenticationRequired()
    return context


async def require_admin(request: Request) -> RequestContext:
    context = await require_context(request)
    if not context.is_admin:
        raise ForbiddenError("Admin access required")
    return context


def register_exception_handlers(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(ServiceError)
    async def service_error_handler(_: Request, exc: ServiceError) -> JSONResponse:
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @fastapi_app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Only locations and messages are echoed; raw input may hold a password.
        errors = []
        for error in exc.errors():
            location = [
                str(part)
                for part in error.get("loc", ())
                if part not in {"body", "query", "path"}
            ]
            errors.append({"field": ".".join(location), "message": error.get("msg")})
        return JSONResponse({"message": "Invalid data", "errors": errors}, status_code=400)

    @fastapi_app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error for %s %s", request.method, request.url.path)
        payload: dict[str, Any] = {"message": "Something went wrong!"}
        services = getattr(request.app.state, "services", None)
        app_settings = services.settings if isinstance(services, Services) else settings
        if app_settings.environment == "development":
            payload["error"] = str(exc)
            payload["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
        return JSONResponse(payload, status_code=500)


def register_routes(fastapi_app: FastAPI) -> None:
    register_exception_handlers(fastapi_app)

    def _services() -> Services:
        return get_services(fastapi_app)

    def _page(page: int, limit: int | None, default_limit: int) -> tuple[int, int]:
        return paginate(
            page,
            limit,
            default_limit=default_limit,
            max_limit=_services().settings.max_page_size,
        )

    def _set_session_cookie(response: Response, token: str) -> None:
        app_settings = _services().settings
        response.set_cookie(
            app_settings.session_cookie_name,
            token,
            max_age=app_settings.session_ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=app_settings.secure_cookies,
        )

    @fastapi_app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    @fastapi_app.get("/api/health")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "environment": _services().settings.environment}

    # ------------------------------------------------------------------ auth

    @fastapi_app.post("/api/register", status_code=201)
    async def register(payload: RegisterRequest) -> JSONResponse:
        services = _services()
        user = await services.accounts.register(payload)
        token = await services.sessions.create(user.id)
        response = JSONResponse(UserOut.model_validate(user).to_payload(), status_code=201)
        _set_session_cookie(response, token)
        return response

    @fastapi_app.post("/api/login")
    async def login(payload: LoginRequest) -> JSONResponse:
        services = _services()
        user = await services.accounts.authenticate(payload.username, payload.password)
        await services.sessions.purge_expired()
        token = await services.sessions.create(user.id)
        response = JSONResponse(UserOut.model_validate(user).to_payload())
        _set_session_cookie(response, token)
        return response

    @fastapi_app.post("/api/logout", status_code=204)
    async def logout(request: Request) -> Response:
        services = _services()
        cookie_name = services.settings.session_cookie_name
        token = request.cookies.get(cookie_name)
        context = await services.sessions.load(token)
        if token:
            await services.sessions.destroy(token)
        if context is not None:
            await services.audit.append("user_logout", context.user_id, "Session ended")
        response = Response(status_code=204)
        response.delete_cookie(cookie_name)
        return response

    @fastapi_app.get("/api/user")
    async def current_user(request: Request) -> dict[str, Any]:
        context = await require_context(request)
        user = await _services().accounts.get_user(context.user_id)
        return UserOut.model_validate(user).to_payload()

    # -------------------------------------------------------------- profiles

    @fastapi_app.post("/api/profiles/active")
    async def set_active_profile(
        request: Request, payload: ActiveProfileRequest
    ) -> dict[str, Any]:
        context = await require_context(request)
        profile = await _services().profiles.set_active(context, payload.profile_id)
        return {
            "activeProfileId": profile.id,
            "profile": ProfileOut.model_validate(profile).to_payload(),
        }

    @fastapi_app.get("/api/profiles/active")
    async def get_active_profile(request: Request) -> dict[str, Any]:
        context = await require_context(request)
        profile = await _services().profiles.get_active(context)
        return {"activeProfile": ProfileOut.model_validate(profile).to_payload()}

    @fastapi_app.get("/api/profiles")
    async def list_profiles(request: Request) -> list[dict[str, Any]]:
        context = await require_context(request)
        profiles = await _services().profiles.list_profiles(context)
        return [ProfileOut.model_validate(profile).to_payload() for profile in profiles]

    @fastapi_app.get("/api/profiles/{profile_id}")
    async def get_profile(request: Request, profile_id: int) -> dict[str, Any]:
        context = await require_context(request)
        profile = await _services().profiles.get(context, profile_id)
        return ProfileOut.model_validate(profile).to_payload()

    @fastapi_app.post("/api/profiles", status_code=201)
    async def create_profile(request: Request, payload: ProfileCreate) -> dict[str, Any]:
        context = await require_context(request)
        profile = await _services().profiles.create(context, payload)
        return ProfileOut.model_validate(profile).to_payload()

    @fastapi_app.put("/api/profiles/{profile_id}")
    async def update_profile(
        request: Request, profile_id: int, payload: ProfileUpdate
    ) -> dict[str, Any]:
        context = await require_context(request)
        profile = await _services().profiles.update(context, profile_id, payload)
        return ProfileOut.model_validate(profile).to_payload()

    @fastapi_app.delete("/api/profiles/{profile_id}", status_code=204)
    async def delete_profile(request: Request, profile_id: int) -> Response:
        context = await require_context(request)
        await _services().profiles.delete(context, profile_id)
        return Response(status_code=204)

    # --------------------------------------------------------------- content

    async def _trending(page: int) -> list[dict[str, Any]]:
        metadata = _services().catalog.metadata
        movies = await metadata.fetch_trending("movie", page=page)
        shows = await metadata.fetch_trending("tv", page=page)
        return movies + shows

    def _release_key(item: dict[str, Any]) -> str:
        return str(item.get("release_date") or item.get("first_air_date") or "")

    @fastapi_app.get("/api/content/newest")
    async def newest_content(
        request: Request, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        await require_context(request)
        _, size = _page(page, limit, 10)
        items = await _trending(max(page, 1))
        items.sort(key=_release_key, reverse=True)
        return items[:size]

    @fastapi_app.get("/api/content/popular")
    async def popular_content(
        request: Request, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        await require_context(request)
        _, size = _page(page, limit, 10)
        items = await _trending(max(page, 1))
        items.sort(key=lambda item: item.get("popularity") or 0, reverse=True)
        return items[:size]

    @fastapi_app.get("/api/content/movies")
    async def trending_movies(
        request: Request, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        await require_context(request)
        _, size = _page(page, limit, 20)
        movies = await _services().catalog.metadata.fetch_trending("movie", page=max(page, 1))
        return movies[:size]

    @fastapi_app.get("/api/content/tvshows")
    async def trending_shows(
        request: Request, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        await require_context(request)
        _, size = _page(page, limit, 20)
        shows = await _services().catalog.metadata.fetch_trending("tv", page=max(page, 1))
        return shows[:size]

    @fastapi_app.get("/api/content/search")
    async def search_content(
        request: Request,
        q: str | None = None,
        page: int = 1,
        language: str | None = None,
        genre: str | None = None,
        year: int | None = None,
    ) -> list[dict[str, Any]]:
        await require_context(request)
        filters = SearchFilters(page=max(page, 1), language=language, genre=genre, year=year)
        if not (q and q.strip()) and not filters.has_genre:
            raise ValidationFailed(
                "q", "Search query is required when not filtering by genre"
            )
        return await _services().catalog.metadata.search(q or "", filters)

    @fastapi_app.get("/api/content/by-id/{content_id}")
    async def content_by_id(request: Request, content_id: int) -> dict[str, Any]:
        await require_context(request)
        content = await _services().catalog.get_content(content_id)
        return ContentOut.model_validate(content).to_payload()

    @fastapi_app.get("/api/content/{media_type}/{tmdb_id}")
    async def content_by_tmdb_id(
        request: Request, media_type: MediaType, tmdb_id: int
    ) -> dict[str, Any]:
        context = await require_context(request)
        content = await _services().catalog.resolve(
            tmdb_id, media_type, added_by=context.user_id
        )
        return ContentOut.model_validate(content).to_payload()

    # ------------------------------------------------------------- watchlist

    @fastapi_app.get("/api/mylist")
    async def active_watchlist(
        request: Request, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        context = await require_context(request)
        offset, size = _page(page, limit, 20)
        entries = await _services().watchlist.list_active(context, offset=offset, limit=size)
        return [WatchlistEntryOut.model_validate(entry).to_payload() for entry in entries]

    @fastapi_app.get("/api/mylist/{profile_id}")
    async def profile_watchlist(
        request: Request, profile_id: int, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        context = await require_context(request)
        offset, size = _page(page, limit, 20)
        entries = await _services().watchlist.list_entries(
            context, profile_id, offset=offset, limit=size
        )
        return [WatchlistEntryOut.model_validate(entry).to_payload() for entry in entries]

    @fastapi_app.get("/api/mylist/{profile_id}/check/{tmdb_id}")
    async def watchlist_check(
        request: Request, profile_id: int, tmdb_id: int
    ) -> dict[str, bool]:
        context = await require_context(request)
        in_list = await _services().watchlist.is_member(context, profile_id, tmdb_id)
        return {"inList": in_list}

    @fastapi_app.post("/api/mylist", status_code=201)
    async def add_to_watchlist(
        request: Request, payload: WatchlistAddRequest
    ) -> dict[str, Any]:
        context = await require_context(request)
        entry = await _services().watchlist.add(context, payload)
        return WatchlistEntryOut.model_validate(entry).to_payload()

    @fastapi_app.delete("/api/mylist/{profile_id}/{tmdb_id}", status_code=204)
    async def remove_from_watchlist(
        request: Request, profile_id: int, tmdb_id: int
    ) -> Response:
        context = await require_context(request)
        await _services().watchlist.remove(context, profile_id, tmdb_id)
        return Response(status_code=204)

    # --------------------------------------------------------------- reviews

    @fastapi_app.get("/api/reviews/content/{content_id}")
    async def reviews_for_content_id(
        request: Request, content_id: int, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        context = await require_context(request)
        offset, size = _page(page, limit, 20)
        reviews = await _services().reviews.list_for_content_id(
            context, content_id, offset=offset, limit=size
        )
        return [review.to_payload() for review in reviews]

    @fastapi_app.get("/api/reviews/content/{media_type}/{tmdb_id}")
    async def reviews_for_tmdb_id(
        request: Request,
        media_type: MediaType,
        tmdb_id: int,
        page: int = 1,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        context = await require_context(request)
        offset, size = _page(page, limit, 20)
        reviews = await _services().reviews.list_for_content(
            context, tmdb_id, media_type, offset=offset, limit=size
        )
        return [review.to_payload() for review in reviews]

    @fastapi_app.get("/api/reviews/profile/{profile_id}")
    async def reviews_for_profile(
        request: Request, profile_id: int, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        context = await require_context(request)
        offset, size = _page(page, limit, 20)
        reviews = await _services().reviews.list_for_profile(
            context, profile_id, offset=offset, limit=size
        )
        return [review.to_payload() for review in reviews]

    @fastapi_app.post("/api/reviews", status_code=201)
    async def create_review(
        request: Request, payload: ReviewCreateRequest
    ) -> dict[str, Any]:
        context = await require_context(request)
        review = await _services().reviews.create(context, payload)
        return ReviewOut.model_validate(review).to_payload()

    @fastapi_app.put("/api/reviews/{review_id}")
    async def update_review(
        request: Request, review_id: int, payload: ReviewUpdateRequest
    ) -> dict[str, Any]:
        context = await require_context(request)
        review = await _services().reviews.update(context, review_id, payload)
        return ReviewOut.model_validate(review).to_payload()

    @fastapi_app.delete("/api/reviews/{review_id}", status_code=204)
    async def delete_review(request: Request, review_id: int) -> Response:
        context = await require_context(request)
        await _services().reviews.delete(context, review_id)
        return Response(status_code=204)

    # ----------------------------------------------------------------- admin

    @fastapi_app.get("/api/admin/logs")
    async def admin_logs(
        request: Request, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        await require_admin(request)
        services = _services()
        offset, size = _page(page, limit, 20)
        entries = await services.audit.query(offset=offset, limit=size)
        return [entry.to_payload() for entry in await services.audit.with_usernames(entries)]

    @fastapi_app.get("/api/admin/stats")
    async def admin_stats(request: Request) -> dict[str, Any]:
        await require_admin(request)
        return await _services().admin.stats()

    @fastapi_app.get("/api/admin/users")
    async def admin_users(
        request: Request, page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        await require_admin(request)
        offset, size = _page(page, limit, 20)
        users = await _services().accounts.list_users(offset=offset, limit=size)
        return [UserOut.model_validate(user).to_payload() for user in users]

    @fastapi_app.patch("/api/admin/users/{user_id}")
    async def admin_update_user(
        request: Request, user_id: int, payload: AdminUserUpdateRequest
    ) -> dict[str, Any]:
        context = await require_admin(request)
        user = await _services().accounts.set_admin(
            user_id, payload.is_admin, acting_user_id=context.user_id
        )
        return UserOut.model_validate(user).to_payload()

    @fastapi_app.get("/api/admin/content")
    async def admin_list_content(
        request: Request,
        type: MediaType | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        await require_admin(request)
        offset, size = _page(page, limit, 20)
        items = await _services().catalog.list_content(
            media_type=type, offset=offset, limit=size
        )
        return [ContentOut.model_validate(item).to_payload() for item in items]

    @fastapi_app.post("/api/admin/content", status_code=201)
    async def admin_add_content(
        request: Request, payload: AdminContentAddRequest
    ) -> dict[str, Any]:
        context = await require_admin(request)
        content, details = await _services().catalog.add(
            payload.tmdb_id, payload.media_type, added_by=context.user_id
        )
        return {**ContentOut.model_validate(content).to_payload(), "details": details}

    @fastapi_app.put("/api/admin/content/{content_id}")
    async def admin_update_content(
        request: Request, content_id: int, payload: AdminContentUpdateRequest
    ) -> dict[str, Any]:
        context = await require_admin(request)
        content = await _services().catalog.update(
            content_id, payload, acting_user_id=context.user_id
        )
        return ContentOut.model_validate(content).to_payload()

    @fastapi_app.delete("/api/admin/content/{content_id}", status_code=204)
    async def admin_delete_content(request: Request, content_id: int) -> Response:
        context = await require_admin(request)
        await _services().catalog.delete(content_id, acting_user_id=context.user_id)
        return Response(status_code=204)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
