"""Database utilities for the CineList service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str, **engine_kwargs: Any):
        self._engine: AsyncEngine = create_async_engine(
            database_url, future=True, **engine_kwargs
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Importing the models registers their tables on ``Base.metadata``.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = set(inspector.get_table_names())

        def _ensure_column(
            table: str, name: str, ddl: str, init_sql: str | None = None
        ) -> None:
            if table not in table_names:
                return
            existing = {column["name"] for column in inspector.get_columns(table)}
            if name in existing:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))

        _ensure_column(
            "profiles",
            "is_kids",
            "ALTER TABLE profiles ADD COLUMN is_kids BOOLEAN DEFAULT 0",
            "UPDATE profiles SET is_kids = 0 WHERE is_kids IS NULL",
        )
        _ensure_column(
            "profiles",
            "avatar",
            "ALTER TABLE profiles ADD COLUMN avatar VARCHAR(255)",
        )
        _ensure_column(
            "users",
            "phone",
            "ALTER TABLE users ADD COLUMN phone VARCHAR(32)",
        )
        # Blank phone numbers must not collide under the unique index.
        if "users" in table_names:
            sync_connection.execute(
                text("UPDATE users SET phone = NULL WHERE phone = ''")
            )
        _ensure_column(
            "content",
            "vote_count",
            "ALTER TABLE content ADD COLUMN vote_count INTEGER DEFAULT 0",
            "UPDATE content SET vote_count = 0 WHERE vote_count IS NULL",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session
