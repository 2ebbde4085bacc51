"""Cookie session lifecycle for mediagen users.

- create: single active session per user, TTL from SecurityConfig
- get_valid_with_user: session plus its user, or None when expired/revoked
- revoke: mark revoked and drop the cached lookup
"""

from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col

from mediagen.app.config import get_settings
from mediagen.core.models import Session, User
from mediagen.infra.cache import clear_session_cache

_security_config = get_settings().security


class SessionService:
    """Service for managing user sessions."""

    DEFAULT_SESSION_TTL_SECONDS = _security_config.session_ttl

    @staticmethod
    async def create(
        db: AsyncSession, user_id: str, ttl_seconds: int | None = None
    ) -> Session:
        """Create a session, replacing any the user already has."""
        await db.execute(delete(Session).where(col(Session.user_id) == user_id))

        session = Session(
            user_id=user_id,
            expires_at=datetime.now(UTC)
            + timedelta(seconds=ttl_seconds or SessionService.DEFAULT_SESSION_TTL_SECONDS),
        )
        db.add(session)
        await db.commit()
        await db.refresh(session)
        return session

    @staticmethod
    async def get_valid_with_user(
        db: AsyncSession, session_id: str
    ) -> tuple[Session, User] | None:
        result = await db.execute(
            select(Session, User)
            .join(User, col(Session.user_id) == col(User.id))
            .where(col(Session.id) == session_id)
        )
        row = result.one_or_none()
        if row is None:
            return None

        session, user = row
        if not SessionService.is_valid(session):
            return None
        return session, user

    @staticmethod
    async def revoke(db: AsyncSession, session_id: str) -> bool:
        """Returns False when the session does not exist."""
        result = await db.execute(select(Session).where(col(Session.id) == session_id))
        session = result.scalar_one_or_none()
        if session is None:
            return False

        session.revoked_at = datetime.now(UTC)
        await db.commit()
        clear_session_cache(session_id)
        return True

    @staticmethod
    def is_valid(session: Session) -> bool:
        if session.revoked_at is not None:
            return False

        # Drivers may hand back naive or aware datetimes
        expires_at = session.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at > datetime.now(UTC)
