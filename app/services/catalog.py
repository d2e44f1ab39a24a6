"""Write-once cache of TMDB metadata keyed by ``(tmdb_id, media_type)``."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Content
from ..errors import DuplicateError, NotFoundError, UpstreamError
from ..models import AdminContentUpdateRequest
from ..utils import coerce_float, coerce_int, parse_release_date
from .audit import AuditLog
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)


def content_from_details(
    details: dict[str, Any],
    tmdb_id: int,
    media_type: str,
    *,
    added_by: int | None = None,
) -> Content:
    """Build an unsaved :class:`Content` row from a TMDB details payload."""

    title = details.get("title") or details.get("name")
    if media_type == "tv":
        title = details.get("name") or details.get("title")

    genre_ids = details.get("genre_ids")
    if not isinstance(genre_ids, list):
        genre_ids = [
            genre.get("id")
            for genre in details.get("genres") or []
            if isinstance(genre, dict) and genre.get("id") is not None
        ]

    return Content(
        tmdb_id=tmdb_id,
        media_type=media_type,
        title=str(title or f"TMDB {tmdb_id}"),
        overview=details.get("overview") or None,
        poster_path=details.get("poster_path"),
        backdrop_path=details.get("backdrop_path"),
        release_date=parse_release_date(
            details.get("release_date") or details.get("first_air_date")
        ),
        vote_average=coerce_float(details.get("vote_average")),
        vote_count=coerce_int(details.get("vote_count"), default=0) or 0,
        popularity=coerce_float(details.get("popularity")),
        genre_ids=[int(genre_id) for genre_id in genre_ids if coerce_int(genre_id) is not None],
        additional_data={**details, "media_type": media_type},
        added_by=added_by,
    )


class CatalogCache:
    """Resolves catalog entries, fetching from TMDB only on first sight.

    Existing rows are returned unchanged; later fetches never merge newer
    metadata into them.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        metadata: TMDBClient | None,
        audit: AuditLog,
    ):
        self._session_factory = session_factory
        self._metadata = metadata
        self._audit = audit

    @property
    def metadata(self) -> TMDBClient:
        if self._metadata is None:
            raise UpstreamError("Metadata provider is not configured")
        return self._metadata

    async def get_content(self, content_id: int) -> Content:
        """Look up by internal id."""

        async with self._session_factory() as session:
            content = await session.get(Content, content_id)
        if content is None:
            raise NotFoundError("Content not found")
        return content

    async def get_content_by_tmdb_id(self, tmdb_id: int, media_type: str) -> Content | None:
        """Look up by the composite external key."""

        async with self._session_factory() as session:
            return await self._find(session, tmdb_id, media_type)

    async def resolve(
        self, tmdb_id: int, media_type: str, *, added_by: int | None = None
    ) -> Content:
        """Return the cached row, creating it from TMDB details if absent."""

        existing = await self.get_content_by_tmdb_id(tmdb_id, media_type)
        if existing is not None:
            return existing

        details = await self.metadata.get_details(media_type, tmdb_id)
        content = content_from_details(details, tmdb_id, media_type, added_by=added_by)
        async with self._session_factory() as session:
            session.add(content)
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent request stored the same key first; use its row.
                await session.rollback()
                logger.info(
                    "Lost insert race for %s %s, re-reading", media_type, tmdb_id
                )
                winner = await self._find(session, tmdb_id, media_type)
                if winner is None:
                    raise
                return winner

        logger.info("Cached %s %s as content %s", media_type, tmdb_id, content.id)
        return content

    async def add(
        self, tmdb_id: int, media_type: str, *, added_by: int
    ) -> tuple[Content, dict[str, Any]]:
        """Explicitly add an item; fails if it is already cached."""

        if await self.get_content_by_tmdb_id(tmdb_id, media_type) is not None:
            raise DuplicateError("Content already exists in the system")

        details = await self.metadata.get_details(media_type, tmdb_id)
        content = content_from_details(details, tmdb_id, media_type, added_by=added_by)
        async with self._session_factory() as session:
            session.add(content)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateError("Content already exists in the system") from exc

        await self._audit.append(
            "content_added",
            added_by,
            f"Added {media_type} with TMDb ID {tmdb_id}: {content.title}",
        )
        return content, details

    async def update(
        self, content_id: int, data: AdminContentUpdateRequest, *, acting_user_id: int
    ) -> Content:
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if not (key == "title" and value is None)
        }
        async with self._session_factory() as session:
            content = await session.get(Content, content_id)
            if content is None:
                raise NotFoundError("Content not found")
            for key, value in changes.items():
                setattr(content, key, value)
            await session.commit()

        await self._audit.append(
            "content_updated", acting_user_id, f"Updated content {content_id}: {content.title}"
        )
        return content

    async def delete(self, content_id: int, *, acting_user_id: int) -> None:
        async with self._session_factory() as session:
            content = await session.get(Content, content_id)
            if content is None:
                raise NotFoundError("Content not found")
            title = content.title
            await session.delete(content)
            await session.commit()

        await self._audit.append(
            "content_deleted", acting_user_id, f"Deleted content {content_id}: {title}"
        )

    async def list_content(
        self, *, media_type: str | None = None, offset: int = 0, limit: int = 20
    ) -> list[Content]:
        """Cached items, most recently added first."""

        stmt = select(Content)
        if media_type:
            stmt = stmt.where(Content.media_type == media_type)
        stmt = stmt.order_by(Content.added_at.desc(), Content.id.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt.offset(offset).limit(limit))
            return list(result.scalars())

    @staticmethod
    async def _find(session: AsyncSession, tmdb_id: int, media_type: str) -> Content | None:
        result = await session.execute(
            select(Content).where(
                Content.tmdb_id == tmdb_id, Content.media_type == media_type
            )
        )
        return result.scalars().first()
