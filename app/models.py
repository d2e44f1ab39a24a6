"""Pydantic models describing request and response payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

MediaType = Literal["movie", "tv"]

MIN_RATING = 1
MAX_RATING = 5
MAX_REVIEW_LENGTH = 500


class APIModel(BaseModel):
    """Base model exposing camelCase JSON while accepting snake_case too."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _coerce_avatar(value: object) -> object:
    """Avatars may be sent as numeric picker ids or as URLs."""

    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return _blank_to_none(value)


def _reject_bool_rating(value: object) -> object:
    """JSON booleans would otherwise be coerced to a 0 or 1 star rating."""

    if isinstance(value, bool):
        raise ValueError("Rating must be an integer")
    return value


# --------------------------------------------------------------------------
# Requests
# --------------------------------------------------------------------------


class RegisterRequest(APIModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    phone: str | None = Field(default=None, max_length=32)

    @field_validator("username", mode="before")
    @classmethod
    def _strip_username(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("phone", mode="before")
    @classmethod
    def _normalise_phone(cls, value: object) -> object:
        """An empty phone means "no phone", never an empty-string phone."""

        value = _blank_to_none(value)
        return value.strip() if isinstance(value, str) else value


class LoginRequest(APIModel):
    username: str = Field(
        min_length=1, validation_alias=AliasChoices("username", "email")
    )
    password: str = Field(min_length=1)


class ProfileCreate(APIModel):
    name: str = Field(min_length=1, max_length=50)
    avatar: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("avatar", "avatarUrl", "avatarId"),
    )
    is_kids: bool = False

    @field_validator("avatar", mode="before")
    @classmethod
    def _stringify_avatar(cls, value: object) -> object:
        return _coerce_avatar(value)


class ProfileUpdate(APIModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    avatar: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("avatar", "avatarUrl", "avatarId"),
    )
    is_kids: bool | None = None

    @field_validator("avatar", mode="before")
    @classmethod
    def _stringify_avatar(cls, value: object) -> object:
        return _coerce_avatar(value)


class ActiveProfileRequest(APIModel):
    profile_id: int


class WatchlistAddRequest(APIModel):
    profile_id: int
    tmdb_id: int
    media_type: MediaType = Field(
        validation_alias=AliasChoices("type", "mediaType", "media_type")
    )
    title: str | None = Field(default=None, max_length=255)
    poster_path: str | None = Field(default=None, max_length=255)


class ReviewCreateRequest(APIModel):
    profile_id: int
    tmdb_id: int
    media_type: MediaType = Field(
        validation_alias=AliasChoices("type", "mediaType", "media_type")
    )
    rating: int = Field(ge=MIN_RATING, le=MAX_RATING)
    body: str | None = Field(
        default=None,
        max_length=MAX_REVIEW_LENGTH,
        validation_alias=AliasChoices("body", "review"),
    )
    is_public: bool = False

    @field_validator("rating", mode="before")
    @classmethod
    def _check_rating_type(cls, value: object) -> object:
        return _reject_bool_rating(value)


class ReviewUpdateRequest(APIModel):
    rating: int | None = Field(default=None, ge=MIN_RATING, le=MAX_RATING)
    body: str | None = Field(
        default=None,
        max_length=MAX_REVIEW_LENGTH,
        validation_alias=AliasChoices("body", "review"),
    )
    is_public: bool | None = None

    @field_validator("rating", mode="before")
    @classmethod
    def _check_rating_type(cls, value: object) -> object:
        return _reject_bool_rating(value)


class AdminContentAddRequest(APIModel):
    tmdb_id: int
    media_type: MediaType = Field(
        validation_alias=AliasChoices("type", "mediaType", "media_type")
    )


class AdminContentUpdateRequest(APIModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    overview: str | None = None
    poster_path: str | None = Field(default=None, max_length=255)
    backdrop_path: str | None = Field(default=None, max_length=255)


class AdminUserUpdateRequest(APIModel):
    is_admin: bool


# --------------------------------------------------------------------------
# Responses
# --------------------------------------------------------------------------


class UserOut(APIModel):
    id: int
    username: str
    email: str
    phone: str | None = None
    is_admin: bool
    created_at: datetime


class ProfileOut(APIModel):
    id: int
    user_id: int
    name: str
    avatar: str | None = None
    is_kids: bool
    created_at: datetime


class ContentOut(APIModel):
    id: int
    tmdb_id: int
    media_type: MediaType
    title: str
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: date | None = None
    vote_average: float
    vote_count: int
    popularity: float
    genre_ids: list[int] = Field(default_factory=list)
    additional_data: dict[str, Any] | None = None
    added_by: int | None = None
    added_at: datetime


class WatchlistEntryOut(APIModel):
    id: int
    profile_id: int
    tmdb_id: int
    media_type: MediaType
    title: str | None = None
    poster_path: str | None = None
    added_at: datetime


class ReviewOut(APIModel):
    id: int
    profile_id: int
    tmdb_id: int
    media_type: MediaType
    rating: int
    body: str | None = None
    is_public: bool
    created_at: datetime
    updated_at: datetime
    profile_name: str | None = None
    profile_avatar: str | None = None


class LogEntryOut(APIModel):
    id: int
    action: str
    user_id: int | None = None
    details: str | None = None
    timestamp: datetime
    username: str | None = None
