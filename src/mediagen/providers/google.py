"""Google Generative AI provider (synchronous).

API: POST {base}/models/{model}:generateContent?key=...

The image comes back inline as base64. submit() uploads it to object
storage at generations/{user_id}/{generation_id}.{ext} and returns a
SyncResult with the public URL. Nothing to poll, cancel, or receive.
"""

import base64
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from mediagen.app.config import ProviderConfig
from mediagen.core.domain import ProviderName
from mediagen.core.logging_schema import LogEvent
from mediagen.providers.base import (
    GenerationParams,
    GenerationProvider,
    ProviderError,
    SyncResult,
)
from mediagen.services.media_storage import upload_bytes

logger = logging.getLogger(__name__)

Uploader = Callable[[str, bytes, str], Awaitable[str]]


class GoogleProvider(GenerationProvider):
    name = ProviderName.GOOGLE

    def __init__(
        self,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        uploader: Uploader | None = None,
    ) -> None:
        super().__init__(config, transport)
        self.base_url = self._config.google_base_url
        self._upload = uploader or upload_bytes

    async def _image_part(self, image: str) -> dict[str, Any] | None:
        """Reference image -> inlineData part. Unreadable images are skipped."""
        if image.startswith("data:"):
            header, _, data = image.partition(",")
            mime = header.removeprefix("data:").split(";")[0] or "image/jpeg"
            return {"inlineData": {"mimeType": mime, "data": data}}

        if image.startswith("http"):
            client = await self._get_client()
            try:
                resp = await client.get(image)
                resp.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning("Failed to fetch reference image: %s", e)
                return None
            mime = resp.headers.get("content-type", "image/jpeg").split(";")[0]
            return {
                "inlineData": {
                    "mimeType": mime,
                    "data": base64.b64encode(resp.content).decode(),
                }
            }
        return None

    async def _build_request(self, input: dict[str, Any]) -> dict[str, Any]:
        images = input.get("image_input") or input.get("image") or []
        if isinstance(images, str):
            images = [images]

        parts: list[dict[str, Any]] = []
        for image in images:
            if part := await self._image_part(image):
                parts.append(part)
        parts.append({"text": input.get("prompt") or ""})

        generation_config: dict[str, Any] = {"responseModalities": ["TEXT", "IMAGE"]}
        image_config = {
            key: value
            for key, value in (
                ("aspectRatio", input.get("aspect_ratio")),
                ("imageSize", input.get("resolution")),
            )
            if value and value != "match_input_image"
        }
        if image_config:
            generation_config["imageConfig"] = image_config

        return {"contents": [{"parts": parts}], "generationConfig": generation_config}

    async def submit(self, params: GenerationParams) -> SyncResult:
        if not self._config.google_api_key:
            raise ProviderError(self.name, "Google AI API key not configured")

        started = time.monotonic()
        body = await self._build_request(params.input)
        resp = await self._request(
            "post",
            f"/models/{params.provider_model}:generateContent",
            params={"key": self._config.google_api_key},
            json=body,
        )
        data = resp.json()

        if error := data.get("error"):
            raise ProviderError(self.name, error.get("message") or "Google API error")

        candidates = data.get("candidates") or [{}]
        response_parts = (candidates[0].get("content") or {}).get("parts") or []
        image_part = next((p["inlineData"] for p in response_parts if p.get("inlineData")), None)

        if image_part is None:
            text = next((p["text"] for p in response_parts if p.get("text")), None)
            raise ProviderError(self.name, text or "No image generated")

        mime = image_part.get("mimeType") or "image/png"
        extension = "png" if "png" in mime else "jpg"
        key = f"generations/{params.user_id}/{params.generation_id}.{extension}"
        url = await self._upload(key, base64.b64decode(image_part["data"]), mime)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Google generation completed",
            extra={
                "event": LogEvent.PROVIDER_SUBMITTED,
                "provider": self.name.value,
                "provider_model": params.provider_model,
                "generation_id": params.generation_id,
                "duration_ms": elapsed_ms,
            },
        )
        return SyncResult(provider=self.name, output_urls=[url], time_ms=elapsed_ms)
