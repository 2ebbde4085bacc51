"""Copy generated media from provider URLs into object storage.

Provider URLs expire (Replicate deletes outputs after an hour), so
completed media is re-hosted as {generation_id}-{index}.{ext} in the
media bucket.
"""

import asyncio
import logging
import time

import httpx

from mediagen.app.config import get_settings
from mediagen.app.metrics.collector import MEDIA_SAVE_DURATION, MEDIA_SAVES_TOTAL
from mediagen.core.logging_schema import LogEvent
from mediagen.core.retryable import with_retry
from mediagen.infra.s3 import get_s3_client, public_url
from mediagen.providers.media import media_type_info

logger = logging.getLogger(__name__)

_http_client: httpx.AsyncClient | None = None


def _get_http_client() -> httpx.AsyncClient:
    global _http_client

    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=get_settings().generation.media_download_timeout,
            follow_redirects=True,
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client

    if _http_client and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


async def upload_bytes(key: str, data: bytes, content_type: str) -> str:
    """Upload an object to the media bucket. Returns its public URL."""
    bucket = get_settings().storage.bucket_name

    async def _put() -> None:
        async with get_s3_client() as s3:
            await s3.put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)

    await with_retry(_put, max_retries=2, circuit_breaker="s3")
    return public_url(key)


async def _download(url: str) -> httpx.Response:
    async def _get() -> httpx.Response:
        resp = await _get_http_client().get(url)
        resp.raise_for_status()
        return resp

    return await with_retry(
        _get, max_retries=2, base_delay=2.0, circuit_breaker="media_download"
    )


async def save_media(url: str, generation_id: str, index: int = 0) -> str | None:
    """Re-host one media URL. None when download or upload fails."""
    started = time.monotonic()
    try:
        resp = await _download(url)
        extension, mime, is_video = media_type_info(url, resp.headers.get("content-type"))
        key = f"{generation_id}-{index}.{extension}"
        saved = await upload_bytes(key, resp.content, mime)
    except Exception as e:
        MEDIA_SAVES_TOTAL.labels(result="failure").inc()
        logger.warning(
            "Failed to save media",
            extra={
                "event": LogEvent.MEDIA_SAVE_FAILED,
                "generation_id": generation_id,
                "index": index,
                "url": url[:200],
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        return None

    MEDIA_SAVES_TOTAL.labels(result="success").inc()
    MEDIA_SAVE_DURATION.observe(time.monotonic() - started)
    logger.info(
        "Media saved",
        extra={
            "event": LogEvent.MEDIA_SAVED,
            "generation_id": generation_id,
            "index": index,
            "key": key,
            "is_video": is_video,
            "size": len(resp.content),
        },
    )
    return saved


async def save_generation_media(urls: list[str], generation_id: str) -> list[str]:
    """Re-host all media of a generation concurrently.

    Returns public URLs of the saves that succeeded, in input order.
    """
    results = await asyncio.gather(
        *(save_media(url, generation_id, index) for index, url in enumerate(urls))
    )
    return [url for url in results if url is not None]
