"""Shared route dependencies: DB session and cookie authentication.

Session lookups are cached for a few seconds (CacheConfig) since clients
poll generation status frequently.
"""

from dataclasses import dataclass
from typing import Annotated

from cachetools_async import cached
from fastapi import Cookie, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.core.domain import UserRole
from mediagen.core.errors import ForbiddenError, UnauthorizedError
from mediagen.infra import get_session
from mediagen.infra.cache import session_cache
from mediagen.services.session_service import SessionService

DbSession = Annotated[AsyncSession, Depends(get_session)]
SessionCookie = Annotated[str | None, Cookie(alias="session")]


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin


def _session_key(_db: AsyncSession, session_cookie: str | None) -> str | None:
    return session_cookie


@cached(cache=session_cache, key=_session_key)
async def get_identity_from_session(
    db: AsyncSession, session_cookie: str | None
) -> tuple[str, str]:
    """(user_id, role) for a session cookie. Raises UnauthorizedError if invalid."""
    if session_cookie is None:
        raise UnauthorizedError()

    result = await SessionService.get_valid_with_user(db, session_cookie)
    if result is None:
        raise UnauthorizedError()

    _, user = result
    return user.id, user.role


async def get_current_user(db: DbSession, session: SessionCookie = None) -> CurrentUser:
    user_id, role = await get_identity_from_session(db, session)
    try:
        return CurrentUser(id=user_id, role=UserRole(role))
    except ValueError:
        return CurrentUser(id=user_id, role=UserRole.USER)


async def require_admin(
    user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


AuthUser = Annotated[CurrentUser, Depends(get_current_user)]
AdminUser = Annotated[CurrentUser, Depends(require_admin)]
