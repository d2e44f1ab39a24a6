"""Per-profile "My List" membership."""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import WatchlistEntry
from ..errors import DuplicateError, ForbiddenError, NotFoundError
from ..models import WatchlistAddRequest
from .audit import AuditLog
from .profiles import load_owned_profile
from .sessions import RequestContext

logger = logging.getLogger(__name__)

ALREADY_IN_LIST = "Content already in list"


class WatchlistService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditLog,
    ):
        self._session_factory = session_factory
        self._audit = audit

    async def is_member(
        self, context: RequestContext, profile_id: int, tmdb_id: int
    ) -> bool:
        async with self._session_factory() as session:
            await load_owned_profile(session, profile_id, context.user_id)
            return await self._find(session, profile_id, tmdb_id) is not None

    async def add(self, context: RequestContext, item: WatchlistAddRequest) -> WatchlistEntry:
        """Add an item, reporting an existing entry as a duplicate."""

        async with self._session_factory() as session:
            profile = await load_owned_profile(session, item.profile_id, context.user_id)
            profile_name = profile.name
            if await self._find(session, item.profile_id, item.tmdb_id) is not None:
                raise DuplicateError(ALREADY_IN_LIST)

            entry = WatchlistEntry(
                profile_id=item.profile_id,
                tmdb_id=item.tmdb_id,
                media_type=item.media_type,
                title=item.title,
                poster_path=item.poster_path,
            )
            session.add(entry)
            try:
                await session.commit()
            except IntegrityError as exc:
                # Another request added the same item between check and insert.
                await session.rollback()
                raise DuplicateError(ALREADY_IN_LIST) from exc

        await self._audit.append(
            "mylist_added",
            context.user_id,
            f"Profile {profile_name} added content {item.tmdb_id} to their list",
        )
        return entry

    async def remove(self, context: RequestContext, profile_id: int, tmdb_id: int) -> None:
        async with self._session_factory() as session:
            profile = await load_owned_profile(session, profile_id, context.user_id)
            profile_name = profile.name
            result = await session.execute(
                delete(WatchlistEntry).where(
                    WatchlistEntry.profile_id == profile_id,
                    WatchlistEntry.tmdb_id == tmdb_id,
                )
            )
            await session.commit()
        if not result.rowcount:
            raise NotFoundError("Item not found in list")

        await self._audit.append(
            "mylist_removed",
            context.user_id,
            f"Profile {profile_name} removed content {tmdb_id} from their list",
        )

    async def list_entries(
        self,
        context: RequestContext,
        profile_id: int,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> list[WatchlistEntry]:
        async with self._session_factory() as session:
            await load_owned_profile(session, profile_id, context.user_id)
            result = await session.execute(
                select(WatchlistEntry)
                .where(WatchlistEntry.profile_id == profile_id)
                .order_by(WatchlistEntry.added_at.desc(), WatchlistEntry.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars())

    async def list_active(
        self, context: RequestContext, *, offset: int = 0, limit: int = 20
    ) -> list[WatchlistEntry]:
        """List for the session's active profile; empty when none is usable."""

        if context.active_profile_id is None:
            return []
        try:
            return await self.list_entries(
                context, context.active_profile_id, offset=offset, limit=limit
            )
        except (NotFoundError, ForbiddenError):
            logger.info(
                "Session %s points at unusable profile %s",
                context.session_id[:8],
                context.active_profile_id,
            )
            return []

    @staticmethod
    async def _find(
        session: AsyncSession, profile_id: int, tmdb_id: int
    ) -> WatchlistEntry | None:
        result = await session.execute(
            select(WatchlistEntry).where(
                WatchlistEntry.profile_id == profile_id,
                WatchlistEntry.tmdb_id == tmdb_id,
            )
        )
        return result.scalars().first()
