"""JSON logging configuration with request tracing and rate limiting."""

import logging
import sys
import time
from collections import defaultdict
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pythonjsonlogger import jsonlogger

from mediagen.app.config import get_settings

# Request-scoped correlation
trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)
# Set while a generation is being dispatched/finalized (API, webhook, worker)
generation_id_ctx: ContextVar[str | None] = ContextVar("generation_id", default=None)


def get_trace_id() -> str | None:
    return trace_id_ctx.get()


def set_trace_id(trace_id: str | None = None) -> str:
    """Set trace_id in context, generating one if not provided."""
    tid = trace_id or str(uuid4())
    trace_id_ctx.set(tid)
    return tid


def set_generation_id(generation_id: str | None) -> None:
    generation_id_ctx.set(generation_id)


def clear_trace_context() -> None:
    """Clear trace context (call at end of request)."""
    trace_id_ctx.set(None)
    generation_id_ctx.set(None)


class RateLimitFilter(logging.Filter):
    """Suppress identical log lines beyond rate_per_minute.

    ERROR and above always pass. The first suppressed record of a burst is
    let through with a "[RATE LIMITED]" prefix so the storm stays visible.
    """

    def __init__(self, rate_per_minute: int = 100) -> None:
        super().__init__()
        self.rate_per_minute = rate_per_minute
        self._counts: dict[str, list[float]] = defaultdict(list)
        self._warned: set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        key = f"{record.name}:{record.lineno}:{record.msg}"
        now = time.time()
        window = [t for t in self._counts[key] if now - t < 60]
        self._counts[key] = window

        if len(window) >= self.rate_per_minute:
            if key in self._warned:
                return False
            self._warned.add(key)
            record.msg = f"[RATE LIMITED] {record.msg} (max {self.rate_per_minute}/min)"
            window.append(now)
            return True

        if key in self._warned and len(window) < self.rate_per_minute // 2:
            self._warned.discard(key)

        window.append(now)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with schema version, service name and correlation ids.

    Standard fields:
    - timestamp: ISO 8601 (UTC)
    - level, logger, pid
    - schema_version, service
    - trace_id: request trace (if set)
    - generation_id: generation being processed (if set and not passed in extra)
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        settings = get_settings()
        self._schema_version = settings.logging.schema_version
        self._service = settings.logging.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["pid"] = record.process
        log_record["filename"] = record.filename
        log_record["lineno"] = record.lineno
        log_record["funcName"] = record.funcName

        log_record["schema_version"] = self._schema_version
        log_record["service"] = self._service

        if trace_id := get_trace_id():
            log_record.setdefault("trace_id", trace_id)
        if generation_id := generation_id_ctx.get():
            log_record.setdefault("generation_id", generation_id)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        log_record.pop("color_message", None)


def setup_logging(level: int | None = None) -> None:
    """Configure JSON logging for the application.

    Args:
        level: Log level. If None, uses LOGGING_LEVEL from settings.
    """
    settings = get_settings()

    if level is None:
        level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter())
    handler.addFilter(RateLimitFilter(settings.logging.rate_limit_per_minute))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = False
        uv_logger.addHandler(handler)

    # LoggingMiddleware writes the access line
    logging.getLogger("uvicorn.access").disabled = True

    # Provider polling and media downloads are chatty
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
