"""Ratings and reviews written by profiles."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Profile, Review
from ..errors import DuplicateError, NotFoundError, ValidationFailed
from ..models import (
    MAX_RATING,
    MIN_RATING,
    ReviewCreateRequest,
    ReviewOut,
    ReviewUpdateRequest,
)
from ..utils import utcnow
from .audit import AuditLog
from .catalog import CatalogCache
from .profiles import load_owned_profile
from .sessions import RequestContext

logger = logging.getLogger(__name__)

ALREADY_REVIEWED = "You have already reviewed this content"


def validate_rating(value: Any) -> int:
    """Return ``value`` as a rating or raise :class:`ValidationFailed`."""

    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed("rating", "Rating must be an integer")
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValidationFailed(
            "rating", f"Rating must be between {MIN_RATING} and {MAX_RATING}"
        )
    return value


class ReviewService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: CatalogCache,
        audit: AuditLog,
    ):
        self._session_factory = session_factory
        self._catalog = catalog
        self._audit = audit

    async def create(self, context: RequestContext, data: ReviewCreateRequest) -> Review:
        """Write a profile's single review of an item.

        The item is resolved through the catalog first so a review never
        points at something the catalog has not seen.
        """

        rating = validate_rating(data.rating)
        async with self._session_factory() as session:
            profile = await load_owned_profile(session, data.profile_id, context.user_id)
            profile_name = profile.name
            existing = await self._find(session, data.profile_id, data.tmdb_id)
            if existing is not None:
                raise DuplicateError(ALREADY_REVIEWED, reviewId=existing.id)

        await self._catalog.resolve(data.tmdb_id, data.media_type, added_by=context.user_id)

        review = Review(
            profile_id=data.profile_id,
            tmdb_id=data.tmdb_id,
            media_type=data.media_type,
            rating=rating,
            body=data.body,
            is_public=data.is_public,
        )
        async with self._session_factory() as session:
            session.add(review)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                winner = await self._find(session, data.profile_id, data.tmdb_id)
                raise DuplicateError(
                    ALREADY_REVIEWED, reviewId=winner.id if winner else None
                ) from exc

        await self._audit.append(
            "review_created",
            context.user_id,
            f"Profile {profile_name} reviewed {data.media_type} {data.tmdb_id}",
        )
        return review

    async def update(
        self, context: RequestContext, review_id: int, data: ReviewUpdateRequest
    ) -> Review:
        changes = data.model_dump(exclude_unset=True)
        if "rating" in changes:
            if changes["rating"] is None:
                changes.pop("rating")
            else:
                changes["rating"] = validate_rating(changes["rating"])
        if changes.get("is_public", ...) is None:
            changes.pop("is_public")

        async with self._session_factory() as session:
            review = await self._load_owned_review(session, context, review_id)
            for key, value in changes.items():
                setattr(review, key, value)
            review.updated_at = utcnow()
            await session.commit()
            profile = await session.get(Profile, review.profile_id)
            profile_name = profile.name if profile else review.profile_id

        await self._audit.append(
            "review_updated",
            context.user_id,
            f"Profile {profile_name} updated review {review_id}",
        )
        return review

    async def delete(self, context: RequestContext, review_id: int) -> None:
        async with self._session_factory() as session:
            review = await self._load_owned_review(session, context, review_id)
            profile = await session.get(Profile, review.profile_id)
            profile_name = profile.name if profile else review.profile_id
            await session.delete(review)
            await session.commit()

        await self._audit.append(
            "review_deleted",
            context.user_id,
            f"Profile {profile_name} deleted review {review_id}",
        )

    async def list_for_content(
        self,
        context: RequestContext,
        tmdb_id: int,
        media_type: str,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> list[ReviewOut]:
        """Reviews of an item visible to the caller, newest first.

        Public reviews are always included. Private ones only when they were
        written by the caller's active profile.
        """

        async with self._session_factory() as session:
            viewer_profile_id = await self._viewer_profile_id(session, context)
            visibility = Review.is_public.is_(True)
            if viewer_profile_id is not None:
                visibility = or_(visibility, Review.profile_id == viewer_profile_id)
            result = await session.execute(
                select(Review, Profile.name, Profile.avatar)
                .join(Profile, Profile.id == Review.profile_id)
                .where(
                    Review.tmdb_id == tmdb_id,
                    Review.media_type == media_type,
                    visibility,
                )
                .order_by(Review.created_at.desc(), Review.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return [self._to_out(*row) for row in result]

    async def list_for_content_id(
        self,
        context: RequestContext,
        content_id: int,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> list[ReviewOut]:
        content = await self._catalog.get_content(content_id)
        return await self.list_for_content(
            context, content.tmdb_id, content.media_type, offset=offset, limit=limit
        )

    async def list_for_profile(
        self,
        context: RequestContext,
        profile_id: int,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> list[ReviewOut]:
        async with self._session_factory() as session:
            profile = await load_owned_profile(session, profile_id, context.user_id)
            result = await session.execute(
                select(Review)
                .where(Review.profile_id == profile_id)
                .order_by(Review.created_at.desc(), Review.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return [
                self._to_out(review, profile.name, profile.avatar)
                for review in result.scalars()
            ]

    async def _load_owned_review(
        self, session: AsyncSession, context: RequestContext, review_id: int
    ) -> Review:
        review = await session.get(Review, review_id)
        if review is None:
            raise NotFoundError("Review not found")
        await load_owned_profile(session, review.profile_id, context.user_id)
        return review

    @staticmethod
    async def _viewer_profile_id(
        session: AsyncSession, context: RequestContext
    ) -> int | None:
        """The active profile id, if it still exists and is still owned."""

        if context.active_profile_id is None:
            return None
        profile = await session.get(Profile, context.active_profile_id)
        if profile is None or profile.user_id != context.user_id:
            return None
        return profile.id

    @staticmethod
    async def _find(session: AsyncSession, profile_id: int, tmdb_id: int) -> Review | None:
        result = await session.execute(
            select(Review).where(
                Review.profile_id == profile_id, Review.tmdb_id == tmdb_id
            )
        )
        return result.scalars().first()

    @staticmethod
    def _to_out(review: Review, name: str | None, avatar: str | None) -> ReviewOut:
        payload = ReviewOut.model_validate(review)
        payload.profile_name = name
        payload.profile_avatar = avatar
        return payload
