"""Profile management and active-profile selection.

Every read or write of a profile walks back to ``profile.user_id`` and
compares it with the caller's user id. A profile that exists but belongs to
someone else is reported as :class:`ForbiddenError`, never as not found.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Profile, Review, SessionRecord, WatchlistEntry
from ..errors import ForbiddenError, NoActiveProfile, NotFoundError
from ..models import ProfileCreate, ProfileUpdate
from .audit import AuditLog
from .sessions import RequestContext, SessionStore

logger = logging.getLogger(__name__)


async def load_owned_profile(
    session: AsyncSession, profile_id: int, user_id: int
) -> Profile:
    """Fetch a profile and verify it belongs to ``user_id``."""

    profile = await session.get(Profile, profile_id)
    if profile is None:
        raise NotFoundError("Profile not found")
    if profile.user_id != user_id:
        logger.info(
            "User %s denied access to profile %s owned by %s",
            user_id,
            profile_id,
            profile.user_id,
        )
        raise ForbiddenError()
    return profile


class ProfileService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sessions: SessionStore,
        audit: AuditLog,
    ):
        self._session_factory = session_factory
        self._sessions = sessions
        self._audit = audit

    async def create(self, context: RequestContext, data: ProfileCreate) -> Profile:
        profile = Profile(
            user_id=context.user_id,
            name=data.name,
            avatar=data.avatar,
            is_kids=data.is_kids,
        )
        async with self._session_factory() as session:
            session.add(profile)
            await session.commit()

        await self._audit.append(
            "profile_created", context.user_id, f'Created profile "{profile.name}"'
        )
        return profile

    async def list_profiles(self, context: RequestContext) -> list[Profile]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Profile)
                .where(Profile.user_id == context.user_id)
                .order_by(Profile.id)
            )
            return list(result.scalars())

    async def get(self, context: RequestContext, profile_id: int) -> Profile:
        async with self._session_factory() as session:
            return await load_owned_profile(session, profile_id, context.user_id)

    async def update(
        self, context: RequestContext, profile_id: int, data: ProfileUpdate
    ) -> Profile:
        changes: dict[str, Any] = data.model_dump(exclude_unset=True)
        # name and is_kids are not nullable; an explicit null means "unchanged".
        for key in ("name", "is_kids"):
            if changes.get(key, ...) is None:
                changes.pop(key)

        async with self._session_factory() as session:
            profile = await load_owned_profile(session, profile_id, context.user_id)
            previous_name = profile.name
            for key, value in changes.items():
                setattr(profile, key, value)
            await session.commit()

        await self._audit.append(
            "profile_updated", context.user_id, f'Updated profile "{previous_name}"'
        )
        return profile

    async def delete(self, context: RequestContext, profile_id: int) -> None:
        """Delete a profile with its list and reviews.

        Any session still pointing at the profile loses its active-profile
        pointer in the same transaction.
        """

        async with self._session_factory() as session:
            profile = await load_owned_profile(session, profile_id, context.user_id)
            name = profile.name
            await session.execute(
                delete(WatchlistEntry).where(WatchlistEntry.profile_id == profile_id)
            )
            await session.execute(delete(Review).where(Review.profile_id == profile_id))
            await session.execute(
                update(SessionRecord)
                .where(SessionRecord.active_profile_id == profile_id)
                .values(active_profile_id=None)
            )
            await session.delete(profile)
            await session.commit()

        if context.active_profile_id == profile_id:
            context.active_profile_id = None
        await self._audit.append(
            "profile_deleted", context.user_id, f'Deleted profile "{name}"'
        )

    async def set_active(self, context: RequestContext, profile_id: int) -> Profile:
        """Select ``profile_id`` for this session after re-checking ownership."""

        profile = await self.get(context, profile_id)
        await self._sessions.set_active_profile(context, profile.id)
        logger.info(
            "Session %s activated profile %s", context.session_id[:8], profile.id
        )
        await self._audit.append(
            "profile_selected", context.user_id, f'Selected profile "{profile.name}"'
        )
        return profile

    async def get_active(self, context: RequestContext) -> Profile:
        """Return the selected profile, validating it again on every read."""

        if context.active_profile_id is None:
            raise NoActiveProfile()
        return await self.get(context, context.active_profile_id)
