"""Authentication API endpoints.

Endpoints:
- POST /api/v1/login - Login with username/password
- POST /api/v1/logout - Logout (revoke session)
- GET /api/v1/session - Get current session info
"""

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlmodel import col

from mediagen.app.api.dependencies import DbSession, SessionCookie
from mediagen.app.config import get_settings
from mediagen.core.errors import TooManyRequestsError, UnauthorizedError
from mediagen.core.models import User
from mediagen.core.security import calculate_lockout_duration, verify_password
from mediagen.services.session_service import SessionService

router = APIRouter(tags=["auth"])

_cookie_config = get_settings().cookie


class LoginRequest(BaseModel):
    """Request schema for login."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class SessionResponse(BaseModel):
    """Response schema for session info."""

    user_id: str
    username: str
    role: str
    credits: int


def _session_response(user: User) -> SessionResponse:
    return SessionResponse(
        user_id=user.id, username=user.username, role=user.role, credits=user.credits
    )


@router.post("/login")
async def login(
    body: LoginRequest,
    response: Response,
    db: DbSession,
) -> SessionResponse:
    """Login with username and password.

    401 on bad credentials, 429 while the account is locked out.
    """
    result = await db.execute(select(User).where(col(User.username) == body.username))
    user = result.scalar_one_or_none()

    if user is None:
        raise UnauthorizedError("Invalid username or password")

    now = datetime.now(UTC)
    if user.locked_until:
        locked_until = (
            user.locked_until.replace(tzinfo=UTC)
            if user.locked_until.tzinfo is None
            else user.locked_until
        )
        if locked_until > now:
            retry_after = int((locked_until - now).total_seconds())
            raise TooManyRequestsError(
                retry_after=retry_after,
                message=f"Too many failed attempts. Try again in {retry_after} seconds.",
            )

    if not verify_password(body.password, user.password_hash):
        user.failed_login_attempts += 1
        user.last_failed_at = now

        lockout_seconds = calculate_lockout_duration(user.failed_login_attempts)
        if lockout_seconds > 0:
            user.locked_until = now + timedelta(seconds=lockout_seconds)

        await db.commit()
        raise UnauthorizedError("Invalid username or password")

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_failed_at = None
    await db.commit()

    session = await SessionService.create(db, user.id)

    response.set_cookie(
        key="session",
        value=session.id,
        httponly=True,
        samesite="lax",
        secure=_cookie_config.secure,
        path="/",
        max_age=SessionService.DEFAULT_SESSION_TTL_SECONDS,
    )

    return _session_response(user)


@router.post("/logout")
async def logout(
    response: Response,
    db: DbSession,
    session: SessionCookie = None,
) -> dict[str, str]:
    """Revoke the session and clear the cookie. Always succeeds."""
    if session:
        await SessionService.revoke(db, session)

    response.delete_cookie(key="session", path="/")
    return {"message": "Logged out"}


@router.get("/session")
async def get_session_info(
    db: DbSession,
    session: SessionCookie = None,
) -> SessionResponse:
    if session is None:
        raise UnauthorizedError()

    result = await SessionService.get_valid_with_user(db, session)
    if result is None:
        raise UnauthorizedError()

    _, user = result
    return _session_response(user)
