"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_CORS_ORIGINS: tuple[str, ...] = (
    "http://localhost:3000",
    "http://localhost:3001",
)


def _split_csv(value: object, *, setting: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, Iterable):
        return [str(part).strip() for part in value if str(part).strip()]
    raise TypeError(f"{setting} must be a string or iterable of strings")


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="CineList", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=5001, alias="PORT")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cinelist.db", alias="DATABASE_URL"
    )

    session_cookie_name: str = Field(
        default="cinelist_session", alias="SESSION_COOKIE_NAME"
    )
    session_ttl_seconds: int = Field(
        default=86_400, alias="SESSION_TTL_SECONDS", ge=300
    )

    cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_CORS_ORIGINS, alias="CORS_ORIGINS"
    )
    admin_emails: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), alias="ADMIN_EMAILS"
    )

    default_page_size: int = Field(
        default=20, alias="DEFAULT_PAGE_SIZE", ge=1, le=100
    )
    max_page_size: int = Field(default=100, alias="MAX_PAGE_SIZE", ge=1, le=500)

    environment: Literal["development", "production"] = Field(
        default="production", alias="ENVIRONMENT"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: object) -> tuple[str, ...]:
        """Accept a comma separated list of allowed origins."""

        cleaned: list[str] = []
        for origin in _split_csv(value, setting="CORS_ORIGINS"):
            origin = origin.rstrip("/")
            if origin not in cleaned:
                cleaned.append(origin)
        if not cleaned:
            return DEFAULT_CORS_ORIGINS
        return tuple(cleaned)

    @field_validator("admin_emails", mode="before")
    @classmethod
    def _parse_admin_emails(cls, value: object) -> tuple[str, ...]:
        """Normalise admin email addresses for case-insensitive matching."""

        cleaned: list[str] = []
        for email in _split_csv(value, setting="ADMIN_EMAILS"):
            email = email.lower()
            if email not in cleaned:
                cleaned.append(email)
        return tuple(cleaned)

    @model_validator(mode="after")
    def _check_page_sizes(self) -> "Settings":
        if self.default_page_size > self.max_page_size:
            raise ValueError("DEFAULT_PAGE_SIZE must not exceed MAX_PAGE_SIZE")
        return self

    @property
    def secure_cookies(self) -> bool:
        """Session cookies are only marked secure outside development."""

        return self.environment == "production"

    def is_admin_email(self, email: str) -> bool:
        return email.strip().lower() in self.admin_emails

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
