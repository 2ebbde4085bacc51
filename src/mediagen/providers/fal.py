"""Fal.ai provider (async queue API, webhook + polling).

API: https://docs.fal.ai/model-apis/model-endpoints/queue
- POST {queue}/{model}?fal_webhook=...            -> {request_id}
- GET  {queue}/{app_id}/requests/{id}/status     -> {status}
- GET  {queue}/{app_id}/requests/{id}            -> result payload
- PUT  {queue}/{app_id}/requests/{id}/cancel

app_id is the first two path segments of the model
(fal-ai/kling-video/v2.5-turbo/pro/text-to-video -> fal-ai/kling-video).
"""

import logging
from typing import Any

import httpx

from mediagen.app.config import ProviderConfig
from mediagen.core.domain import GenerationStatus, ProviderName
from mediagen.core.logging_schema import LogEvent
from mediagen.providers.base import (
    AsyncResult,
    GenerationParams,
    GenerationProvider,
    Outcome,
    ProviderError,
    WebhookResult,
    completed_outcome,
)
from mediagen.providers.catalog import ModelSpec
from mediagen.providers.media import extract_fal_media_urls

logger = logging.getLogger(__name__)

_NO_MEDIA = "No media URLs in FAL response"
_SUCCESS_STATUSES = frozenset({"COMPLETED", "OK"})


def app_id(model: str) -> str:
    return "/".join(model.split("/")[:2])


class FalProvider(GenerationProvider):
    name = ProviderName.FAL
    supports_webhooks = True

    def __init__(
        self,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, transport)
        self.base_url = self._config.fal_queue_url

    def _headers(self) -> dict[str, str]:
        if not self._config.fal_api_key:
            raise ProviderError(self.name, "FAL API key not configured")
        return {"Authorization": f"Key {self._config.fal_api_key}"}

    def map_input(self, input: dict[str, Any], model: ModelSpec) -> dict[str, Any]:
        """Remap Gemini-style input when Fal serves a Google-first model.

        Only fields the Fal Gemini endpoints accept are kept:
        image_input -> image_urls, image -> image_url,
        aspect_ratio match_input_image -> auto, output_format jpg -> jpeg.
        Fal-first models pass through unchanged.
        """
        if not model.google_primary:
            return dict(input)

        mapped: dict[str, Any] = {"prompt": input.get("prompt")}

        if image_input := input.get("image_input"):
            mapped["image_urls"] = image_input if isinstance(image_input, list) else [image_input]
        if image := input.get("image"):
            mapped["image_url"] = image
        if aspect_ratio := input.get("aspect_ratio"):
            mapped["aspect_ratio"] = "auto" if aspect_ratio == "match_input_image" else aspect_ratio
        if resolution := input.get("resolution"):
            mapped["resolution"] = resolution
        if output_format := input.get("output_format"):
            mapped["output_format"] = "jpeg" if output_format == "jpg" else output_format
        if seed := input.get("seed"):
            mapped["seed"] = seed

        return mapped

    async def submit(self, params: GenerationParams) -> AsyncResult:
        query: dict[str, str] = {}
        if webhook := self.webhook_url():
            query["fal_webhook"] = webhook

        resp = await self._request(
            "post",
            f"/{params.provider_model}",
            json=params.input,
            params=query,
            headers=self._headers(),
        )
        request_id = resp.json()["request_id"]

        logger.info(
            "Fal request queued",
            extra={
                "event": LogEvent.PROVIDER_SUBMITTED,
                "provider": self.name.value,
                "provider_model": params.provider_model,
                "prediction_id": request_id,
                "generation_id": params.generation_id,
            },
        )
        return AsyncResult(provider=self.name, prediction_id=request_id)

    def webhook_request_id(self, body: dict[str, Any]) -> str | None:
        return body.get("request_id")

    def parse_webhook(
        self, body: dict[str, Any], text_output: bool = False
    ) -> WebhookResult:
        request_id = body.get("request_id", "")
        payload = body.get("payload")

        if body.get("status") in _SUCCESS_STATUSES:
            outcome = completed_outcome(
                extract_fal_media_urls(payload), payload, text_output, _NO_MEDIA
            )
        else:
            outcome = Outcome(
                GenerationStatus.FAILED,
                error=body.get("error") or "FAL generation failed",
                raw_output=payload,
            )
        return WebhookResult(**vars(outcome), request_id=request_id)

    async def poll(
        self,
        provider_model: str,
        prediction_id: str,
        token_index: int | None = None,
        text_output: bool = False,
    ) -> Outcome | None:
        base = f"/{app_id(provider_model)}/requests/{prediction_id}"
        resp = await self._request("get", f"{base}/status", headers=self._headers())
        status = resp.json().get("status")

        if status in ("IN_QUEUE", "IN_PROGRESS"):
            return Outcome(GenerationStatus.PROCESSING)
        if status not in _SUCCESS_STATUSES:
            return Outcome(GenerationStatus.FAILED, error=f"FAL request {status or 'failed'}")

        # Completed requests whose model errored answer the result call with 4xx/5xx
        try:
            result = await self._request("get", base, headers=self._headers())
        except ProviderError as e:
            return Outcome(GenerationStatus.FAILED, error=str(e))
        payload = result.json()
        return completed_outcome(
            extract_fal_media_urls(payload), payload, text_output, _NO_MEDIA
        )

    async def cancel(
        self,
        provider_model: str,
        prediction_id: str,
        token_index: int | None = None,
    ) -> None:
        await self._request_or_none(
            "put",
            f"/{app_id(provider_model)}/requests/{prediction_id}/cancel",
            headers=self._headers(),
        )
