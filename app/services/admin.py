"""Read-only rollups for the admin dashboard."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Content, Profile, Review, User, WatchlistEntry
from .audit import AuditLog

RECENT_ACTIVITY_LIMIT = 5


class AdminService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditLog,
    ):
        self._session_factory = session_factory
        self._audit = audit

    async def counts(self) -> dict[str, int]:
        async with self._session_factory() as session:
            return {
                "totalUsers": await self._count(session, User.id),
                "totalProfiles": await self._count(session, Profile.id),
                "totalContent": await self._count(session, Content.id),
                "totalReviews": await self._count(session, Review.id),
                "totalWatchlistEntries": await self._count(session, WatchlistEntry.id),
            }

    async def stats(self) -> dict[str, Any]:
        """Entity counts plus the latest audit entries with usernames."""

        totals = await self.counts()
        entries = await self._audit.query(limit=RECENT_ACTIVITY_LIMIT)
        recent = await self._audit.with_usernames(entries)
        return {
            **totals,
            "recentActivity": [entry.to_payload() for entry in recent],
        }

    @staticmethod
    async def _count(session: AsyncSession, column) -> int:
        return int(await session.scalar(select(func.count(column))) or 0)
