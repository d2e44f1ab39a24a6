"""Server-side session store and the per-request context it yields."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import SessionRecord, User
from ..utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RequestContext:
    """Who is calling and which profile they selected.

    Built once per request from the session cookie and passed explicitly to
    every service call; nothing reads session state from ambient globals.
    """

    session_id: str
    user_id: int
    is_admin: bool = False
    active_profile_id: int | None = None


class SessionStore:
    """Persists sessions keyed by an opaque random token."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ttl_seconds: int = 86_400,
    ):
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)

    async def create(self, user_id: int) -> str:
        """Open a new session for ``user_id`` and return its token."""

        token = secrets.token_urlsafe(32)
        now = utcnow()
        async with self._session_factory() as session:
            session.add(
                SessionRecord(
                    id=token,
                    user_id=user_id,
                    active_profile_id=None,
                    created_at=now,
                    expires_at=now + self._ttl,
                )
            )
            await session.commit()
        return token

    async def load(self, token: str | None) -> RequestContext | None:
        """Return the context for ``token`` or ``None`` if missing or expired."""

        if not token:
            return None
        async with self._session_factory() as session:
            record = await session.get(SessionRecord, token)
            if record is None:
                return None
            if record.expires_at <= utcnow():
                await session.delete(record)
                await session.commit()
                return None
            user = await session.get(User, record.user_id)
            if user is None:
                return None
            return RequestContext(
                session_id=record.id,
                user_id=user.id,
                is_admin=user.is_admin,
                active_profile_id=record.active_profile_id,
            )

    async def set_active_profile(
        self, context: RequestContext, profile_id: int | None
    ) -> None:
        """Persist the active-profile pointer before the caller responds."""

        async with self._session_factory() as session:
            await session.execute(
                update(SessionRecord)
                .where(SessionRecord.id == context.session_id)
                .values(active_profile_id=profile_id)
            )
            await session.commit()
        context.active_profile_id = profile_id

    async def destroy(self, token: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(SessionRecord).where(SessionRecord.id == token))
            await session.commit()

    async def purge_expired(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SessionRecord).where(SessionRecord.expires_at <= utcnow())
            )
            await session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("Purged %s expired sessions", removed)
        return removed
