"""Scheduled-job endpoints for external cron (Bearer SECURITY_CRON_SECRET)."""

import secrets
from typing import Annotated

from fastapi import APIRouter, Header

from mediagen.app.api.dependencies import DbSession
from mediagen.app.config import get_settings
from mediagen.core.errors import UnauthorizedError
from mediagen.services import generation_service

router = APIRouter(prefix="/cron", tags=["cron"])


def _check_cron_secret(authorization: str | None) -> None:
    """No-op when no secret is configured."""
    secret = get_settings().security.cron_secret
    if not secret:
        return
    if authorization is None or not secrets.compare_digest(authorization, f"Bearer {secret}"):
        raise UnauthorizedError()


@router.get("/cleanup")
async def cleanup(
    db: DbSession,
    authorization: Annotated[str | None, Header()] = None,
) -> dict[str, int]:
    """Resolve stale generations (same sweep as the reaper)."""
    _check_cron_secret(authorization)
    return await generation_service.cleanup_stale(db)
