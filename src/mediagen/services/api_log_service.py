"""api_logs writer.

Rows are written in their own session so a failed audit insert never rolls
back the caller's transaction, and errors are logged, never raised.
"""

import logging
from typing import Any

from mediagen.core.error_classifier import (
    ErrorCategory,
    classify_error_message,
    sanitize_payload,
    truncate,
)
from mediagen.core.logging_schema import LogEvent
from mediagen.core.models import ApiLog
from mediagen.infra.postgresql import get_session_factory

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX = 2000
ERROR_STACK_MAX = 4000

WARNING_METHOD = "WARN"
WARNING_STATUS = 299


def build_api_log(
    *,
    method: str,
    path: str,
    status_code: int,
    duration_ms: int | None = None,
    user_id: str | None = None,
    provider: str | None = None,
    external_status: str | None = None,
    model_name: str | None = None,
    generation_id: str | None = None,
    request_body: Any = None,
    response_summary: Any = None,
    error_message: str | None = None,
    error_stack: str | None = None,
    error_category: str | None = None,
    is_fallback: bool = False,
    retry_count: int = 0,
) -> ApiLog:
    """Sanitize and truncate fields into an ApiLog row.

    error_category defaults to the classifier's bucket for error_message.
    """
    if error_category is None and error_message:
        category = classify_error_message(error_message)
        error_category = category.value if category else None

    return ApiLog(
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
        user_id=user_id,
        provider=provider,
        external_status=external_status,
        model_name=model_name,
        generation_id=generation_id,
        request_body=sanitize_payload(request_body),
        response_summary=sanitize_payload(response_summary),
        error_message=truncate(error_message, ERROR_MESSAGE_MAX),
        error_stack=truncate(error_stack, ERROR_STACK_MAX),
        error_category=error_category,
        is_fallback=is_fallback,
        retry_count=retry_count,
    )


async def write_api_log(**fields: Any) -> None:
    """Insert an api_logs row. Never raises."""
    try:
        entry = build_api_log(**fields)
        async with get_session_factory()() as db:
            db.add(entry)
            await db.commit()
    except Exception as e:
        logger.warning(
            "Failed to write api log",
            extra={
                "event": LogEvent.API_LOG_WRITE_FAILED,
                "path": fields.get("path"),
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )


async def write_warning_log(
    *,
    path: str,
    message: str,
    provider: str | None = None,
    model_name: str | None = None,
    generation_id: str | None = None,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Non-error notice (provider fallback) visible next to errors."""
    await write_api_log(
        method=WARNING_METHOD,
        path=path,
        status_code=WARNING_STATUS,
        provider=provider,
        model_name=model_name,
        generation_id=generation_id,
        user_id=user_id,
        error_message=message,
        error_category=ErrorCategory.WARNING.value,
        response_summary=details,
        is_fallback=True,
    )
