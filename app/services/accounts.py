"""User registration, authentication and admin-side account edits."""

from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import User
from ..errors import DuplicateError, InvalidCredentials, NotFoundError
from ..models import RegisterRequest
from ..security import hash_password, verify_password
from .audit import AuditLog

logger = logging.getLogger(__name__)

_UNIQUE_FIELDS: tuple[str, ...] = ("username", "email", "phone")


class AccountService:
    """Owns the :class:`User` table."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditLog,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._audit = audit

    async def register(self, candidate: RegisterRequest) -> User:
        """Create an account.

        Username, email and phone (when given) must be unused. The checks run
        before the insert so the client learns which field clashed; the
        unique indexes still catch a concurrent registration that slips in
        between.
        """

        email = str(candidate.email).lower()
        async with self._session_factory() as session:
            clash = await self._find_clash(
                session, candidate.username, email, candidate.phone
            )
            if clash:
                raise DuplicateError(f"{clash.capitalize()} already in use", field=clash)

            user = User(
                username=candidate.username,
                email=email,
                phone=candidate.phone,
                password_hash=hash_password(candidate.password),
                is_admin=self._settings.is_admin_email(email),
            )
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info("Registration for %s lost a uniqueness race", candidate.username)
                raise DuplicateError("Username, email or phone already in use") from exc

        logger.info("Registered user %s (id=%s)", user.username, user.id)
        await self._audit.append(
            "user_registered", user.id, f'Registered user "{user.username}"'
        )
        return user

    async def authenticate(self, login: str, password: str) -> User:
        """Return the user for a username-or-email and password pair."""

        login = login.strip()
        async with self._session_factory() as session:
            result = await session.execute(
                select(User).where(
                    or_(User.username == login, User.email == login.lower())
                )
            )
            user = result.scalars().first()

        if user is None or not verify_password(password, user.password_hash):
            raise InvalidCredentials()
        await self._audit.append("user_login", user.id, f'User "{user.username}" logged in')
        return user

    async def get_user(self, user_id: int) -> User:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def list_users(self, *, offset: int = 0, limit: int = 20) -> list[User]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User).order_by(User.id).offset(offset).limit(limit)
            )
            return list(result.scalars())

    async def set_admin(self, user_id: int, is_admin: bool, *, acting_user_id: int) -> User:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            user.is_admin = is_admin
            await session.commit()

        state = "granted" if is_admin else "revoked"
        await self._audit.append(
            "user_updated", acting_user_id, f'Admin access {state} for "{user.username}"'
        )
        return user

    @staticmethod
    async def _find_clash(
        session: AsyncSession, username: str, email: str, phone: str | None
    ) -> str | None:
        conditions = [User.username == username, User.email == email]
        if phone:
            conditions.append(User.phone == phone)
        result = await session.execute(
            select(User.username, User.email, User.phone).where(or_(*conditions))
        )
        for row in result:
            values = {"username": username, "email": email, "phone": phone}
            for name in _UNIQUE_FIELDS:
                if values[name] is not None and getattr(row, name) == values[name]:
                    return name
        return None
