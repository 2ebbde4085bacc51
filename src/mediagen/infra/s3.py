"""S3-compatible object storage client management."""

import logging
from types import TracebackType

import aioboto3
from botocore.exceptions import ClientError
from types_aiobotocore_s3 import S3Client

from mediagen.app.config import get_settings
from mediagen.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_session: aioboto3.Session | None = None


def _client_kwargs() -> dict[str, str]:
    storage = get_settings().storage
    return {
        "endpoint_url": storage.endpoint_url,
        "aws_access_key_id": storage.access_key,
        "aws_secret_access_key": storage.secret_key,
    }


async def init_storage() -> None:
    """Create the session and make sure the media bucket exists."""
    global _session

    _session = aioboto3.Session()
    storage = get_settings().storage
    log_fields = {"bucket": storage.bucket_name, "endpoint": storage.endpoint_url}

    try:
        async with _session.client("s3", **_client_kwargs()) as s3:
            try:
                await s3.head_bucket(Bucket=storage.bucket_name)
                logger.info(
                    "S3 storage connected",
                    extra={"event": LogEvent.S3_CONNECTED, **log_fields},
                )
            except ClientError:
                await s3.create_bucket(Bucket=storage.bucket_name)
                logger.info(
                    "S3 bucket created",
                    extra={"event": LogEvent.S3_BUCKET_CREATED, **log_fields},
                )
    except Exception as e:
        logger.error(
            "S3 connection failed",
            extra={
                "event": LogEvent.S3_ERROR,
                "error_type": type(e).__name__,
                "error": str(e),
                **log_fields,
            },
        )
        raise


async def close_storage() -> None:
    global _session
    _session = None


class S3ClientContext:
    """Async context manager yielding a configured S3 client."""

    def __init__(self) -> None:
        self._context: object | None = None

    async def __aenter__(self) -> S3Client:
        if _session is None:
            raise RuntimeError("Storage not initialized")

        self._context = _session.client("s3", **_client_kwargs())
        return await self._context.__aenter__()  # type: ignore[attr-defined]

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._context:
            await self._context.__aexit__(exc_type, exc_val, exc_tb)  # type: ignore[attr-defined]


def get_s3_client() -> S3ClientContext:
    return S3ClientContext()


def public_url(key: str) -> str:
    """Public URL of an object in the media bucket."""
    storage = get_settings().storage
    base = storage.public_url or f"{storage.endpoint_url.rstrip('/')}/{storage.bucket_name}"
    return f"{base.rstrip('/')}/{key}"
