"""FastAPI application entry point."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen import __version__
from mediagen.app.api.v1 import (
    admin_router,
    auth_router,
    cron_router,
    generations_router,
    models_router,
    webhooks_router,
)
from mediagen.app.config import get_settings
from mediagen.app.logging import setup_logging
from mediagen.app.metrics import get_metrics_response, setup_metrics
from mediagen.app.middleware import LoggingMiddleware
from mediagen.control import run_control_plane
from mediagen.core.domain import UserRole
from mediagen.core.errors import ErrorCode, ErrorDetail, ErrorResponse, MediaGenError
from mediagen.core.logging_schema import LogEvent
from mediagen.core.models import User, generate_ulid, utc_now
from mediagen.core.security import hash_password
from mediagen.infra import (
    close_db,
    close_redis,
    close_storage,
    get_engine,
    get_queue,
    get_redis,
    get_s3_client,
    init_db,
    init_redis,
    init_storage,
)
from mediagen.infra import postgresql as pg_infra
from mediagen.infra import redis as redis_infra
from mediagen.providers.dispatcher import ProviderDispatcher
from mediagen.providers.registry import close_registry, init_registry
from mediagen.services.media_storage import close_http_client

setup_logging()
logger = logging.getLogger(__name__)


async def _ensure_admin_user() -> None:
    """Create or update the admin account from ADMIN_USERNAME/ADMIN_PASSWORD.

    Skipped when ADMIN_PASSWORD is unset. Upsert keeps concurrent worker
    startup safe.
    """
    password = os.getenv("ADMIN_PASSWORD")
    if not password:
        return
    username = os.getenv("ADMIN_USERNAME", "admin")

    async with AsyncSession(get_engine()) as session:
        stmt = insert(User).values(
            id=generate_ulid(),
            username=username,
            password_hash=hash_password(password),
            role=UserRole.SUPER_ADMIN.value,
            credits=0,
            created_at=utc_now(),
            failed_login_attempts=0,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["username"],
            set_={
                "password_hash": stmt.excluded.password_hash,
                "role": stmt.excluded.role,
            },
        )
        await session.execute(stmt)
        await session.commit()

    logger.info(
        "Ensured admin user",
        extra={"event": LogEvent.APP_STARTED, "username": username},
    )


async def _metrics_updater_loop() -> None:
    """Sample DB/Redis pool gauges every METRICS_UPDATE_INTERVAL seconds."""
    interval = get_settings().metrics.update_interval
    while True:
        pg_infra.update_pool_metrics()
        redis_infra.update_pool_metrics()
        await asyncio.sleep(interval)


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.metrics.enabled:
        setup_metrics(settings.metrics.multiproc_dir)

    await init_db()
    await init_redis()
    await init_storage()
    registry = init_registry(ProviderDispatcher(get_redis()))
    await _ensure_admin_user()

    logger.info(
        "Starting application",
        extra={"event": LogEvent.APP_STARTED, "dispatch_mode": settings.dispatcher.mode},
    )

    control_task = asyncio.create_task(run_control_plane(get_engine(), get_queue(), registry))
    metrics_task = asyncio.create_task(_metrics_updater_loop())

    yield

    logger.info("Shutting down application", extra={"event": LogEvent.APP_STOPPED})
    await _cancel(control_task)
    await _cancel(metrics_task)

    await close_registry()
    await close_http_client()
    await close_storage()
    await close_redis()
    await close_db()


app = FastAPI(title="mediagen", version=__version__, lifespan=lifespan)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(MediaGenError)
async def mediagen_error_handler(request: Request, exc: MediaGenError) -> JSONResponse:
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """422 naming the offending fields only; submitted values are not echoed."""
    fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
    message = "Invalid request"
    if fields:
        message = f"Invalid request: {', '.join(fields)}"
    body = ErrorResponse(error=ErrorDetail(code=ErrorCode.INVALID_REQUEST.value, message=message))
    return JSONResponse(status_code=422, content=body.model_dump())


app.include_router(auth_router, prefix="/api/v1")
app.include_router(generations_router, prefix="/api/v1")
app.include_router(models_router, prefix="/api/v1")
app.include_router(webhooks_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")
app.include_router(cron_router, prefix="/api/v1")


async def _check_service(check_fn: Callable[[], Awaitable[None]]) -> str:
    """Check service health and return status string."""
    try:
        await check_fn()
        return "connected"
    except RuntimeError:
        return "not initialized"
    except Exception as e:
        return f"error: {type(e).__name__}"


async def _check_postgres() -> None:
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _check_redis() -> None:
    await get_redis().ping()


async def _check_s3() -> None:
    async with get_s3_client() as s3:
        await s3.head_bucket(Bucket=get_settings().storage.bucket_name)


@app.get("/health")
async def health():
    postgres, redis, s3 = await asyncio.gather(
        _check_service(_check_postgres),
        _check_service(_check_redis),
        _check_service(_check_s3),
    )
    services = {"postgres": postgres, "redis": redis, "s3": s3}
    is_degraded = any(s != "connected" for s in services.values())

    return {
        "status": "degraded" if is_degraded else "ok",
        "version": __version__,
        "services": services,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
