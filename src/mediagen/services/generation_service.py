"""Generation lifecycle: create, dispatch, apply provider outcomes, clean up.

Dispatch mode (settings.dispatcher.mode):
- direct: the registry submits inside the calling request
- queue: a job is LPUSHed and GenerationQueueWorker submits it

Provider outcomes (webhook, poll, reaper) all go through apply_outcome(),
which is idempotent: the row is locked and reloaded first, and rows that
are already terminal are left untouched.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col

from mediagen.app.config import get_settings
from mediagen.app.metrics.collector import (
    GENERATION_AUTO_RETRIES_TOTAL,
    GENERATION_DURATION,
    GENERATIONS_CREATED_TOTAL,
    GENERATIONS_FINISHED_TOTAL,
)
from mediagen.core.domain import ACTIVE_STATUSES, Action, GenerationStatus
from mediagen.core.error_classifier import (
    is_retryable_message,
    truncate,
    user_friendly_message,
)
from mediagen.core.errors import (
    ConcurrentLimitExceededError,
    ForbiddenError,
    GenerationNotFoundError,
    InvalidGenerationStateError,
    InvalidRequestError,
    ModelNotFoundError,
    UpstreamUnavailableError,
)
from mediagen.core.logging_schema import LogEvent
from mediagen.core.models import Generation, User
from mediagen.core.retryable import is_db_retryable
from mediagen.infra.redis import get_queue
from mediagen.providers.base import GenerationParams, Outcome, SyncResult
from mediagen.providers.catalog import ModelSpec, get_model
from mediagen.providers.chain import NoProvidersError, resolve_chain
from mediagen.providers.registry import (
    AllProvidersFailedError,
    Dispatched,
    get_registry,
)
from mediagen.services.media_storage import save_generation_media

logger = logging.getLogger(__name__)

# Load settings once at module level
_settings = get_settings()

ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]
VIDEO_ACTIONS = [a.value for a in Action if a.is_video]

AUTO_RETRY_KEY = "auto_retry_count"

IMAGE_TIMEOUT_MESSAGE = "Generation timed out"
STALE_TIMEOUT_MESSAGE = "Generation timed out. Please try again."
NEVER_STARTED_MESSAGE = "Generation was never started. Please try again."
SYNC_FAILED_MESSAGE = "Status sync failed. Please try again."
ERROR_MESSAGE_MAX = 2000


def _now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Input
# =============================================================================


def build_input(
    action: Action,
    settings: dict[str, Any] | None,
    prompt: str | None = None,
    input_image_url: str | None = None,
    input_video_url: str | None = None,
) -> dict[str, Any]:
    """Generic provider input: settings plus prompt/image/video.

    Raises:
        InvalidRequestError: A required image or mask is missing
    """
    data = _user_settings(settings)

    if prompt:
        data["prompt"] = prompt
    if input_image_url:
        data["image"] = input_image_url
    if input_video_url:
        data["video"] = input_video_url

    if action in (Action.REMOVE_BG, Action.INPAINT, Action.VIDEO_I2V) and not data.get("image"):
        raise InvalidRequestError("An image is required")
    if action == Action.INPAINT and not data.get("mask"):
        raise InvalidRequestError("A mask is required")

    return data


def _user_settings(settings: dict[str, Any] | None) -> dict[str, Any]:
    """Client settings minus the server-owned auto-retry counter."""
    data = dict(settings or {})
    data.pop(AUTO_RETRY_KEY, None)
    return data


def _auto_retry_count(generation: Generation) -> int:
    try:
        return int((generation.settings or {}).get(AUTO_RETRY_KEY, 0))
    except (TypeError, ValueError):
        return 0


def _model_for(generation: Generation) -> ModelSpec:
    model = get_model(generation.model_id)
    if model is None:
        raise ModelNotFoundError()
    return model


def generation_params(generation: Generation, model: ModelSpec) -> GenerationParams:
    return GenerationParams(
        model=model,
        input=dict(generation.input_data),
        generation_id=generation.id,
        user_id=generation.user_id,
    )


# =============================================================================
# Queries
# =============================================================================


async def get_generation(
    db: AsyncSession,
    generation_id: str,
    user_id: str | None = None,
) -> Generation:
    """Get generation by ID.

    Raises:
        GenerationNotFoundError: If generation not found
        ForbiddenError: If user doesn't own the generation
    """
    result = await db.execute(select(Generation).where(col(Generation.id) == generation_id))
    generation = result.scalar_one_or_none()

    if generation is None:
        raise GenerationNotFoundError()

    if user_id is not None and generation.user_id != user_id:
        raise ForbiddenError()

    return generation


async def find_by_prediction_id(
    db: AsyncSession, provider: str, prediction_id: str
) -> Generation | None:
    stmt = select(Generation).where(
        col(Generation.prediction_id) == prediction_id,
        col(Generation.provider) == provider,
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def list_generations(
    db: AsyncSession,
    user_id: str,
    page: int = 1,
    limit: int = 20,
    status: GenerationStatus | None = None,
    action: Action | None = None,
) -> tuple[list[Generation], int]:
    """Page of a user's generations, newest first, plus the total count."""
    limit = max(1, min(limit, _settings.generation.list_max_limit))
    page = max(1, page)

    conditions = [col(Generation.user_id) == user_id]
    if status is not None:
        conditions.append(col(Generation.status) == status.value)
    if action is not None:
        conditions.append(col(Generation.action) == action.value)

    total = (
        await db.execute(select(func.count()).select_from(Generation).where(*conditions))
    ).scalar() or 0

    stmt = (
        select(Generation)
        .where(*conditions)
        .order_by(col(Generation.created_at).desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def count_active_generations(db: AsyncSession, user_id: str) -> int:
    stmt = select(func.count()).select_from(Generation).where(
        col(Generation.user_id) == user_id,
        col(Generation.status).in_(ACTIVE_VALUES),
    )
    result = await db.execute(stmt)
    return result.scalar() or 0


async def expire_stale_image_generations(db: AsyncSession, user_id: str) -> int:
    """Fail this user's non-video generations stuck for image_stale_minutes.

    Image models finish within seconds; anything older is lost and would
    otherwise hold a concurrency slot. Rows with an in-flight request also
    give back their dispatcher slot.
    """
    now = _now()
    threshold = now - timedelta(minutes=_settings.generation.image_stale_minutes)
    stmt = (
        select(Generation)
        .where(
            col(Generation.user_id) == user_id,
            col(Generation.status).in_(ACTIVE_VALUES),
            col(Generation.action).not_in(VIDEO_ACTIONS),
            col(Generation.created_at) < threshold,
        )
        .with_for_update(skip_locked=True)
    )
    generations = list((await db.execute(stmt)).scalars().all())
    if not generations:
        return 0

    for generation in generations:
        await _release_slot(generation)
        generation.status = GenerationStatus.FAILED.value
        generation.error_message = IMAGE_TIMEOUT_MESSAGE
        generation.completed_at = now
        generation.updated_at = now
    await db.commit()

    for generation in generations:
        _observe_finished(generation)
    logger.info(
        "Stale image generations expired",
        extra={
            "event": LogEvent.STALE_CLEANUP,
            "user_id": user_id,
            "total": len(generations),
        },
    )
    return len(generations)


# =============================================================================
# State transitions
# =============================================================================


def _observe_finished(generation: Generation) -> None:
    provider = generation.provider or "none"
    GENERATIONS_FINISHED_TOTAL.labels(status=generation.status, provider=provider).inc()
    started = generation.started_at or generation.created_at
    if started is not None and generation.completed_at is not None:
        GENERATION_DURATION.labels(provider=provider).observe(
            (generation.completed_at - started).total_seconds()
        )


async def _release_slot(generation: Generation) -> None:
    """Give back the dispatcher slot held by an in-flight async request."""
    if generation.provider and generation.prediction_id:
        await get_registry().dispatcher.release(generation.provider)


async def mark_failed(db: AsyncSession, generation: Generation, message: str) -> None:
    now = _now()
    generation.status = GenerationStatus.FAILED.value
    generation.error_message = truncate(message, ERROR_MESSAGE_MAX)
    generation.completed_at = now
    generation.updated_at = now
    await db.commit()

    _observe_finished(generation)
    logger.info(
        "Generation failed",
        extra={
            "event": LogEvent.GENERATION_FAILED,
            "generation_id": generation.id,
            "provider": generation.provider,
            "error": generation.error_message,
        },
    )


async def mark_dispatch_failed(db: AsyncSession, generation: Generation, error: str) -> None:
    """Fail a generation whose submit was rejected by every chain entry.

    A first submit keeps the provider errors for the API caller, which
    sanitizes them itself. An auto-retry submit happens behind a webhook or
    poll, so only the sanitized message is stored.
    """
    if _auto_retry_count(generation):
        logger.warning(
            "Auto-retry dispatch failed",
            extra={
                "event": LogEvent.PROVIDER_ERROR,
                "generation_id": generation.id,
                "error": truncate(error, ERROR_MESSAGE_MAX),
            },
        )
        error = user_friendly_message(error)
    await mark_failed(db, generation, error)


async def _mark_completed(
    db: AsyncSession,
    generation: Generation,
    output_urls: list[str],
    output_text: str | None = None,
    raw_output: Any = None,
) -> None:
    now = _now()
    generation.status = GenerationStatus.COMPLETED.value
    generation.output_urls = output_urls
    generation.output_text = output_text
    generation.provider_output = raw_output
    generation.error_message = None
    generation.completed_at = now
    generation.updated_at = now

    if generation.cost_credits:
        await db.execute(
            update(User)
            .where(col(User.id) == generation.user_id)
            .values(credits=func.greatest(col(User.credits) - generation.cost_credits, 0))
        )
    await db.commit()

    _observe_finished(generation)
    logger.info(
        "Generation completed",
        extra={
            "event": LogEvent.GENERATION_COMPLETED,
            "generation_id": generation.id,
            "provider": generation.provider,
            "outputs": len(output_urls),
        },
    )


async def record_dispatch(
    db: AsyncSession, generation: Generation, dispatched: Dispatched
) -> None:
    """Store which chain entry accepted the generation."""
    result = dispatched.result
    generation.provider = dispatched.entry.provider.value
    generation.provider_model = dispatched.entry.model
    generation.chain_position = dispatched.chain_position
    generation.started_at = generation.started_at or _now()

    logger.info(
        "Generation dispatched",
        extra={
            "event": LogEvent.GENERATION_DISPATCHED,
            "generation_id": generation.id,
            "provider": generation.provider,
            "chain_position": dispatched.chain_position,
            "kind": result.kind,
        },
    )

    if isinstance(result, SyncResult):
        generation.prediction_id = None
        await _mark_completed(db, generation, result.output_urls)
        return

    generation.status = GenerationStatus.PROCESSING.value
    generation.prediction_id = result.prediction_id
    generation.provider_token_index = result.token_index
    generation.updated_at = _now()
    await db.commit()


async def _dispatch(
    db: AsyncSession,
    generation: Generation,
    model: ModelSpec,
    start_from: int = 0,
) -> str | None:
    """Submit (direct) or enqueue (queue). Returns the error when submit failed.

    A failed direct submit leaves the row failed with the error message.
    """
    if _settings.dispatcher.mode == "queue":
        await get_queue().push({"generation_id": generation.id, "start_from": start_from})
        logger.info(
            "Generation enqueued",
            extra={
                "event": LogEvent.JOB_ENQUEUED,
                "generation_id": generation.id,
                "start_from": start_from,
            },
        )
        return None

    try:
        dispatched = await get_registry().generate(generation_params(generation, model), start_from=start_from)
    except (NoProvidersError, AllProvidersFailedError) as e:
        await mark_dispatch_failed(db, generation, str(e))
        return str(e)

    await record_dispatch(db, generation, dispatched)
    return None


async def _insert(db: AsyncSession, generation: Generation) -> None:
    """INSERT with retries on transient connection errors."""
    attempts = _settings.generation.insert_attempts
    for attempt in range(1, attempts + 1):
        try:
            db.add(generation)
            await db.commit()
            await db.refresh(generation)
            return
        except Exception as e:
            await db.rollback()
            if not is_db_retryable(e) or attempt == attempts:
                raise
            logger.warning(
                "Generation insert attempt %d failed, retrying",
                attempt,
                extra={"generation_id": generation.id, "error_type": type(e).__name__},
            )
            await asyncio.sleep(attempt)


# =============================================================================
# Operations
# =============================================================================


async def create_generation(
    db: AsyncSession,
    user_id: str,
    action: Action,
    model_id: str,
    prompt: str | None = None,
    input_image_url: str | None = None,
    input_video_url: str | None = None,
    settings: dict[str, Any] | None = None,
    workspace_id: str | None = None,
) -> Generation:
    """Create a generation and dispatch it.

    Raises:
        ConcurrentLimitExceededError: Too many active generations
        ModelNotFoundError: Unknown model id
        InvalidRequestError: Action mismatch or missing inputs
        UpstreamUnavailableError: Every provider rejected the request
    """
    await expire_stale_image_generations(db, user_id)

    limit = _settings.generation.max_concurrent_per_user
    if await count_active_generations(db, user_id) >= limit:
        raise ConcurrentLimitExceededError(limit)

    model = get_model(model_id)
    if model is None:
        raise ModelNotFoundError()
    if model.action != action:
        raise InvalidRequestError("Model does not support this action")

    generation = Generation(
        user_id=user_id,
        workspace_id=workspace_id,
        action=action.value,
        model_id=model.id,
        model_name=model.display_name,
        prompt=prompt,
        settings=_user_settings(settings),
        input_data=build_input(action, settings, prompt, input_image_url, input_video_url),
        cost_credits=model.cost_credits,
        status=GenerationStatus.PENDING.value,
    )
    await _insert(db, generation)

    GENERATIONS_CREATED_TOTAL.labels(action=action.value).inc()
    logger.info(
        "Generation created",
        extra={
            "event": LogEvent.GENERATION_CREATED,
            "generation_id": generation.id,
            "user_id": user_id,
            "model_id": model.id,
        },
    )

    error = await _dispatch(db, generation, model)
    if error is not None:
        raise UpstreamUnavailableError(user_friendly_message(error))
    return generation


async def retry_generation(
    db: AsyncSession, user_id: str, generation_id: str
) -> Generation:
    """Re-dispatch a failed generation from the start of its chain."""
    generation = await get_generation(db, generation_id, user_id)

    if generation.status != GenerationStatus.FAILED:
        raise InvalidGenerationStateError("Only failed generations can be retried")

    model = _model_for(generation)

    settings = dict(generation.settings)
    settings.pop(AUTO_RETRY_KEY, None)
    generation.settings = settings
    input_data = dict(generation.input_data)
    input_data.pop(AUTO_RETRY_KEY, None)
    generation.input_data = input_data

    now = _now()
    generation.status = GenerationStatus.PROCESSING.value
    generation.error_message = None
    generation.prediction_id = None
    generation.provider_token_index = None
    generation.chain_position = 0
    generation.completed_at = None
    generation.started_at = now
    generation.updated_at = now
    await db.commit()

    logger.info(
        "Generation retried",
        extra={"event": LogEvent.GENERATION_RETRIED, "generation_id": generation.id},
    )

    error = await _dispatch(db, generation, model)
    if error is not None:
        raise UpstreamUnavailableError(user_friendly_message(error))
    return generation


async def _cancel_upstream(generation: Generation) -> None:
    """Best-effort provider cancel. Failures are logged."""
    if not (generation.provider and generation.prediction_id):
        return
    provider = get_registry().get(generation.provider)
    if provider is None:
        return
    try:
        await provider.cancel(
            generation.provider_model or "",
            generation.prediction_id,
            generation.provider_token_index,
        )
    except Exception as e:
        logger.warning(
            "Upstream cancel failed",
            extra={
                "event": LogEvent.PROVIDER_ERROR,
                "generation_id": generation.id,
                "provider": generation.provider,
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )


async def cancel_generation(
    db: AsyncSession, user_id: str, generation_id: str
) -> Generation:
    generation = await get_generation(db, generation_id, user_id)

    if generation.status not in ACTIVE_VALUES:
        raise InvalidGenerationStateError("Only active generations can be cancelled")

    await _cancel_upstream(generation)
    await _release_slot(generation)

    now = _now()
    generation.status = GenerationStatus.CANCELLED.value
    generation.completed_at = now
    generation.updated_at = now
    await db.commit()

    _observe_finished(generation)
    logger.info(
        "Generation cancelled",
        extra={"event": LogEvent.GENERATION_CANCELLED, "generation_id": generation.id},
    )
    return generation


async def delete_generation(db: AsyncSession, user_id: str, generation_id: str) -> None:
    generation = await get_generation(db, generation_id, user_id)

    if generation.status in ACTIVE_VALUES:
        await _cancel_upstream(generation)
        await _release_slot(generation)

    await db.delete(generation)
    await db.commit()


# =============================================================================
# Provider outcomes
# =============================================================================


async def _try_auto_retry(
    db: AsyncSession, generation: Generation, error: str
) -> bool:
    """Hand a retryable failure to the next chain entry.

    Returns True when the generation was re-dispatched (or re-failed by the
    dispatch itself), False when the caller should fail it.
    """
    if not is_retryable_message(error):
        return False

    retries = _auto_retry_count(generation)
    if retries >= _settings.dispatcher.max_auto_retries:
        return False

    model = get_model(generation.model_id)
    if model is None:
        return False
    try:
        chain = resolve_chain(model)
    except NoProvidersError:
        return False

    next_position = generation.chain_position + 1
    if next_position >= len(chain):
        return False

    await _release_slot(generation)

    generation.settings = {**generation.settings, AUTO_RETRY_KEY: retries + 1}
    generation.status = GenerationStatus.PROCESSING.value
    generation.prediction_id = None
    generation.provider_token_index = None
    generation.updated_at = _now()
    await db.commit()

    GENERATION_AUTO_RETRIES_TOTAL.inc()
    logger.warning(
        "Auto-retrying generation on next provider",
        extra={
            "event": LogEvent.GENERATION_AUTO_RETRY,
            "generation_id": generation.id,
            "failed_provider": generation.provider,
            "chain_position": next_position,
            "attempt": retries + 1,
            "error": error,
        },
    )

    await _dispatch(db, generation, model, start_from=next_position)
    return True


async def _lock_active(db: AsyncSession, generation: Generation) -> bool:
    """Row-lock and reload the generation.

    False when another webhook, poll or reaper already finished it or moved
    it to a different upstream request in the meantime.
    """
    expected = generation.prediction_id
    await db.refresh(generation, with_for_update=True)
    return (
        GenerationStatus(generation.status).is_active
        and generation.prediction_id == expected
    )


async def apply_outcome(db: AsyncSession, generation: Generation, outcome: Outcome) -> bool:
    """Apply a provider-reported state. Returns True when the row changed."""
    if GenerationStatus(generation.status).is_terminal:
        return False
    if outcome.status == GenerationStatus.PROCESSING:
        return False

    if not await _lock_active(db, generation):
        await db.commit()
        logger.info(
            "Outcome for already handled generation skipped",
            extra={
                "event": LogEvent.WEBHOOK_SKIPPED,
                "generation_id": generation.id,
                "status": generation.status,
            },
        )
        return False

    match outcome.status:
        case GenerationStatus.COMPLETED:
            if Action(generation.action).is_analyze:
                await _mark_completed(
                    db, generation, [], outcome.output_text, outcome.raw_output
                )
            else:
                saved = await save_generation_media(outcome.media_urls, generation.id)
                await _mark_completed(
                    db, generation, saved or outcome.media_urls, raw_output=outcome.raw_output
                )
            if generation.provider:
                await get_registry().dispatcher.report_success(generation.provider)
            return True

        case GenerationStatus.FAILED:
            error = outcome.error or "Unknown error"
            if await _try_auto_retry(db, generation, error):
                return True
            await _release_slot(generation)
            generation.provider_output = outcome.raw_output
            await mark_failed(db, generation, user_friendly_message(error))
            return True

        case GenerationStatus.CANCELLED:
            await _release_slot(generation)
            now = _now()
            generation.status = GenerationStatus.CANCELLED.value
            generation.completed_at = now
            generation.updated_at = now
            await db.commit()
            _observe_finished(generation)
            return True

    return False


async def _poll(generation: Generation) -> Outcome | None:
    """Provider state for an in-flight generation. None when not pollable."""
    provider = get_registry().get(generation.provider or "")
    if provider is None or not generation.prediction_id:
        return None
    return await provider.poll(
        generation.provider_model or "",
        generation.prediction_id,
        generation.provider_token_index,
        text_output=Action(generation.action).is_analyze,
    )


async def sync_user_generations(db: AsyncSession, user_id: str) -> dict[str, int]:
    """Poll the user's in-flight generations and apply finished outcomes."""
    stmt = select(Generation).where(
        col(Generation.user_id) == user_id,
        col(Generation.status).in_(ACTIVE_VALUES),
        col(Generation.prediction_id).is_not(None),
        col(Generation.provider) != "google",
    )
    generations = list((await db.execute(stmt)).scalars().all())

    synced = 0
    for generation in generations:
        try:
            outcome = await _poll(generation)
        except Exception as e:
            logger.warning(
                "Status poll failed",
                extra={
                    "event": LogEvent.PROVIDER_ERROR,
                    "generation_id": generation.id,
                    "provider": generation.provider,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            continue

        if outcome is None or outcome.status == GenerationStatus.PROCESSING:
            continue
        if await apply_outcome(db, generation, outcome):
            synced += 1
            logger.info(
                "Generation synced",
                extra={
                    "event": LogEvent.GENERATION_SYNCED,
                    "generation_id": generation.id,
                    "status": generation.status,
                },
            )

    return {"synced": synced, "total": len(generations)}


async def _stale_generations(db: AsyncSession) -> list[Generation]:
    threshold = _now() - timedelta(minutes=_settings.generation.stale_threshold_minutes)
    stmt = (
        select(Generation)
        .where(
            col(Generation.status).in_(ACTIVE_VALUES),
            col(Generation.created_at) < threshold,
        )
        .order_by(col(Generation.created_at))
    )
    return list((await db.execute(stmt)).scalars().all())


async def stale_stats(db: AsyncSession) -> dict[str, Any]:
    generations = await _stale_generations(db)
    by_user: dict[str, int] = {}
    for generation in generations:
        by_user[generation.user_id] = by_user.get(generation.user_id, 0) + 1

    return {
        "stale_count": len(generations),
        "affected_users": len(by_user),
        "threshold_minutes": _settings.generation.stale_threshold_minutes,
        "by_user": by_user,
    }


async def cleanup_stale(db: AsyncSession) -> dict[str, int]:
    """Resolve generations active for longer than the stale threshold.

    Each one is polled when possible: finished outcomes are applied
    (synced); anything still running, never started or unreachable is
    failed (cleaned).
    """
    generations = await _stale_generations(db)
    synced = 0
    cleaned = 0

    for generation in generations:
        if not generation.prediction_id:
            await mark_failed(db, generation, NEVER_STARTED_MESSAGE)
            cleaned += 1
            continue

        try:
            outcome = await _poll(generation)
        except Exception as e:
            logger.warning(
                "Stale generation poll failed",
                extra={
                    "event": LogEvent.STALE_CLEANUP,
                    "generation_id": generation.id,
                    "provider": generation.provider,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            await _release_slot(generation)
            await mark_failed(db, generation, SYNC_FAILED_MESSAGE)
            cleaned += 1
            continue

        if outcome is not None and outcome.status != GenerationStatus.PROCESSING:
            await apply_outcome(db, generation, outcome)
            synced += 1
            continue

        await _release_slot(generation)
        await mark_failed(db, generation, STALE_TIMEOUT_MESSAGE)
        cleaned += 1

    if generations:
        logger.info(
            "Stale generations cleaned up",
            extra={
                "event": LogEvent.STALE_CLEANUP,
                "total": len(generations),
                "synced": synced,
                "cleaned": cleaned,
            },
        )
    return {"total": len(generations), "synced": synced, "cleaned": cleaned}
