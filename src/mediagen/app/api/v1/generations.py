"""Generation API endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from mediagen.app.api.dependencies import AdminUser, AuthUser, DbSession
from mediagen.core.domain import Action, GenerationStatus
from mediagen.services import generation_service

router = APIRouter(prefix="/generations", tags=["generations"])


# =============================================================================
# Request/Response Models
# =============================================================================


class CreateGenerationRequest(BaseModel):
    """Create generation request."""

    action: Action
    model_id: str = Field(min_length=1, max_length=100)
    prompt: str | None = Field(default=None, max_length=10_000)
    input_image_url: str | None = Field(default=None, max_length=4096)
    input_video_url: str | None = Field(default=None, max_length=4096)
    settings: dict[str, Any] = Field(default_factory=dict)
    workspace_id: str | None = Field(default=None, max_length=64)


class GenerationResponse(BaseModel):
    id: str
    user_id: str
    workspace_id: str | None
    action: str
    model_id: str
    model_name: str | None
    provider: str | None
    status: str
    prompt: str | None
    settings: dict[str, Any]
    output_urls: list[str] | None
    output_text: str | None
    error_message: str | None
    cost_credits: int
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class GenerationListResponse(BaseModel):
    items: list[GenerationResponse]
    total: int
    page: int
    limit: int


class SyncStatusResponse(BaseModel):
    synced: int
    total: int


class StaleStatsResponse(BaseModel):
    stale_count: int
    affected_users: int
    threshold_minutes: int
    by_user: dict[str, int]


class CleanupResponse(BaseModel):
    total: int
    synced: int
    cleaned: int


def _to_response(generation) -> GenerationResponse:
    return GenerationResponse.model_validate(generation)


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=GenerationResponse, status_code=201)
async def create_generation(
    request: CreateGenerationRequest,
    db: DbSession,
    user: AuthUser,
) -> GenerationResponse:
    """Create a generation and dispatch it to the model's provider chain.

    429 when the user already has the maximum number of active generations,
    502 when every provider rejected the request.
    """
    generation = await generation_service.create_generation(
        db=db,
        user_id=user.id,
        action=request.action,
        model_id=request.model_id,
        prompt=request.prompt,
        input_image_url=request.input_image_url,
        input_video_url=request.input_video_url,
        settings=request.settings,
        workspace_id=request.workspace_id,
    )
    return _to_response(generation)


@router.get("", response_model=GenerationListResponse)
async def list_generations(
    db: DbSession,
    user: AuthUser,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    status: GenerationStatus | None = None,
    action: Action | None = None,
) -> GenerationListResponse:
    generations, total = await generation_service.list_generations(
        db=db, user_id=user.id, page=page, limit=limit, status=status, action=action
    )
    return GenerationListResponse(
        items=[_to_response(g) for g in generations],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/sync-status", response_model=SyncStatusResponse)
async def sync_status(db: DbSession, user: AuthUser) -> SyncStatusResponse:
    """Poll providers for the caller's in-flight generations."""
    result = await generation_service.sync_user_generations(db, user.id)
    return SyncStatusResponse(**result)


@router.get("/cleanup-stale", response_model=StaleStatsResponse)
async def stale_stats(db: DbSession, _admin: AdminUser) -> StaleStatsResponse:
    return StaleStatsResponse(**await generation_service.stale_stats(db))


@router.post("/cleanup-stale", response_model=CleanupResponse)
async def cleanup_stale(db: DbSession, _admin: AdminUser) -> CleanupResponse:
    return CleanupResponse(**await generation_service.cleanup_stale(db))


@router.get("/{generation_id}", response_model=GenerationResponse)
async def get_generation(
    generation_id: str,
    db: DbSession,
    user: AuthUser,
) -> GenerationResponse:
    generation = await generation_service.get_generation(db, generation_id, user.id)
    return _to_response(generation)


@router.delete("/{generation_id}", status_code=204)
async def delete_generation(
    generation_id: str,
    db: DbSession,
    user: AuthUser,
) -> None:
    """Delete a generation, cancelling it upstream first when still active."""
    await generation_service.delete_generation(db, user.id, generation_id)


@router.post("/{generation_id}/retry", response_model=GenerationResponse)
async def retry_generation(
    generation_id: str,
    db: DbSession,
    user: AuthUser,
) -> GenerationResponse:
    """Retry a failed generation. 400 for any other status."""
    generation = await generation_service.retry_generation(db, user.id, generation_id)
    return _to_response(generation)


@router.post("/{generation_id}/cancel", response_model=GenerationResponse)
async def cancel_generation(
    generation_id: str,
    db: DbSession,
    user: AuthUser,
) -> GenerationResponse:
    generation = await generation_service.cancel_generation(db, user.id, generation_id)
    return _to_response(generation)
