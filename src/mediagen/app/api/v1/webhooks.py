"""Provider completion webhooks.

POST /api/v1/webhooks/{provider} (replicate, fal). Providers retry on
non-2xx, so duplicate deliveries for finished generations are acknowledged
with skipped=true instead of an error.
"""

import logging
import time
from typing import Any

from fastapi import APIRouter, Request

from mediagen.app.api.dependencies import DbSession
from mediagen.app.metrics.collector import WEBHOOKS_RECEIVED_TOTAL
from mediagen.core.domain import Action, GenerationStatus
from mediagen.core.errors import (
    GenerationNotFoundError,
    InvalidRequestError,
    MediaGenError,
    ProviderNotFoundError,
)
from mediagen.core.logging_schema import LogEvent
from mediagen.providers.registry import get_registry
from mediagen.services import generation_service
from mediagen.services.api_log_service import write_api_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _read_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as e:
        raise InvalidRequestError("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise InvalidRequestError("Invalid JSON body")
    return body


@router.post("/{provider}")
async def receive_webhook(provider: str, request: Request, db: DbSession) -> dict[str, Any]:
    handler = get_registry().get(provider)
    if handler is None or not handler.supports_webhooks:
        raise ProviderNotFoundError()

    path = f"/api/v1/webhooks/{handler.name}"
    started = time.monotonic()
    body: dict[str, Any] | None = None
    log: dict[str, Any] = {"method": "POST", "path": path, "provider": handler.name.value}

    try:
        body = await _read_body(request)
        log["request_body"] = body
        log["external_status"] = body.get("status")

        request_id = handler.webhook_request_id(body)
        if not request_id:
            WEBHOOKS_RECEIVED_TOTAL.labels(provider=handler.name, result="invalid").inc()
            raise InvalidRequestError("Missing request id")

        generation = await generation_service.find_by_prediction_id(
            db, handler.name.value, request_id
        )
        if generation is None:
            WEBHOOKS_RECEIVED_TOTAL.labels(provider=handler.name, result="not_found").inc()
            raise GenerationNotFoundError()

        log.update(
            generation_id=generation.id,
            user_id=generation.user_id,
            model_name=generation.model_name,
        )

        if GenerationStatus(generation.status).is_terminal:
            WEBHOOKS_RECEIVED_TOTAL.labels(provider=handler.name, result="skipped").inc()
            logger.info(
                "Webhook for finished generation skipped",
                extra={
                    "event": LogEvent.WEBHOOK_SKIPPED,
                    "generation_id": generation.id,
                    "status": generation.status,
                },
            )
            result: dict[str, Any] = {"success": True, "skipped": True}
        else:
            outcome = handler.parse_webhook(
                body, text_output=Action(generation.action).is_analyze
            )
            await generation_service.apply_outcome(db, generation, outcome)
            WEBHOOKS_RECEIVED_TOTAL.labels(provider=handler.name, result="applied").inc()
            logger.info(
                "Webhook applied",
                extra={
                    "event": LogEvent.WEBHOOK_RECEIVED,
                    "generation_id": generation.id,
                    "provider": handler.name.value,
                    "status": generation.status,
                },
            )
            log["error_message"] = outcome.error
            result = {"success": True}

        log["response_summary"] = {**result, "status": generation.status}
    except MediaGenError as e:
        await write_api_log(
            **log,
            status_code=e.status_code,
            duration_ms=int((time.monotonic() - started) * 1000),
            error_message=e.message,
        )
        raise

    await write_api_log(
        **log,
        status_code=200,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return result
