"""Append-only audit trail consumed by the admin dashboard."""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import LogEntry, User
from ..models import LogEntryOut
from ..utils import utcnow

logger = logging.getLogger(__name__)

SYSTEM_USERNAME = "System"


class AuditLog:
    """Writes and reads :class:`LogEntry` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(
        self, action: str, user_id: int | None, details: str | None = None
    ) -> None:
        """Record an action.

        Runs in its own transaction after the primary write has committed, so
        a failure here is logged and never undoes the operation it describes.
        """

        try:
            async with self._session_factory() as session:
                session.add(
                    LogEntry(
                        action=action,
                        user_id=user_id,
                        details=details,
                        timestamp=utcnow(),
                    )
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to write audit entry %s for user %s", action, user_id)

    async def query(self, *, offset: int = 0, limit: int = 20) -> list[LogEntry]:
        """Return entries newest first."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(LogEntry)
                .order_by(LogEntry.timestamp.desc(), LogEntry.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars())

    async def with_usernames(self, entries: Sequence[LogEntry]) -> list[LogEntryOut]:
        """Attach the acting username to each entry with one bulk lookup."""

        user_ids = {entry.user_id for entry in entries if entry.user_id is not None}
        usernames: dict[int, str] = {}
        if user_ids:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(User.id, User.username).where(User.id.in_(user_ids))
                )
                usernames = {row.id: row.username for row in result}

        enriched: list[LogEntryOut] = []
        for entry in entries:
            payload = LogEntryOut.model_validate(entry)
            if entry.user_id is None:
                payload.username = SYSTEM_USERNAME
            else:
                payload.username = usernames.get(entry.user_id)
            enriched.append(payload)
        return enriched
