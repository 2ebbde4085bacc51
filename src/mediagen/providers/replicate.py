"""Replicate provider (async, webhook + polling).

API: https://replicate.com/docs/reference/http
- POST /predictions (pinned version) or /models/{owner}/{name}/predictions
- GET  /predictions/{id}
- POST /predictions/{id}/cancel

Requests rotate through a token pool; the token index is stored on the
generation so polling and cancel use the token that created the prediction.
"""

import itertools
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
from mediagen.providers.media import extract_replicate_media_urls

logger = logging.getLogger(__name__)

_NO_MEDIA = "No media URLs in Replicate response"


class ReplicateProvider(GenerationProvider):
    name = ProviderName.REPLICATE
    supports_webhooks = True

    def __init__(
        self,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, transport)
        self.base_url = self._config.replicate_base_url
        self._tokens = list(self._config.replicate_api_tokens)
        self._cycle = itertools.cycle(range(len(self._tokens)))

    def _next_token(self) -> int:
        if not self._tokens:
            raise ProviderError(self.name, "Replicate API token not configured")
        return next(self._cycle)

    def _headers(self, token_index: int | None) -> dict[str, str]:
        if not self._tokens:
            raise ProviderError(self.name, "Replicate API token not configured")
        index = token_index if token_index is not None and token_index < len(self._tokens) else 0
        return {"Authorization": f"Bearer {self._tokens[index]}"}

    async def submit(self, params: GenerationParams) -> AsyncResult:
        token_index = self._next_token()
        body: dict[str, Any] = {"input": params.input}

        if webhook := self.webhook_url():
            body["webhook"] = webhook
            body["webhook_events_filter"] = ["completed"]

        if params.model.version:
            body["version"] = params.model.version
            path = "/predictions"
        else:
            path = f"/models/{params.provider_model}/predictions"

        resp = await self._request("post", path, json=body, headers=self._headers(token_index))
        prediction = resp.json()

        logger.info(
            "Replicate prediction created",
            extra={
                "event": LogEvent.PROVIDER_SUBMITTED,
                "provider": self.name.value,
                "provider_model": params.provider_model,
                "prediction_id": prediction.get("id"),
                "generation_id": params.generation_id,
            },
        )
        return AsyncResult(
            provider=self.name,
            prediction_id=prediction["id"],
            token_index=token_index,
        )

    def webhook_request_id(self, body: dict[str, Any]) -> str | None:
        return body.get("id")

    def _outcome(self, prediction: dict[str, Any], text_output: bool) -> Outcome:
        status = prediction.get("status")
        output = prediction.get("output")

        if status == "succeeded":
            return completed_outcome(
                extract_replicate_media_urls(output), output, text_output, _NO_MEDIA
            )
        if status == "canceled":
            return Outcome(GenerationStatus.CANCELLED, raw_output=output)
        if status == "failed":
            return Outcome(
                GenerationStatus.FAILED,
                error=prediction.get("error") or "Replicate generation failed",
                raw_output=output,
            )
        return Outcome(GenerationStatus.PROCESSING)

    def parse_webhook(
        self, body: dict[str, Any], text_output: bool = False
    ) -> WebhookResult:
        outcome = self._outcome(body, text_output)
        # Webhooks are filtered to "completed"; anything unfinished is a failure
        if outcome.status == GenerationStatus.PROCESSING:
            outcome = Outcome(
                GenerationStatus.FAILED,
                error=body.get("error") or "Replicate generation failed",
            )
        return WebhookResult(**vars(outcome), request_id=body.get("id", ""))

    async def poll(
        self,
        provider_model: str,
        prediction_id: str,
        token_index: int | None = None,
        text_output: bool = False,
    ) -> Outcome | None:
        resp = await self._request(
            "get", f"/predictions/{prediction_id}", headers=self._headers(token_index)
        )
        return self._outcome(resp.json(), text_output)

    async def cancel(
        self,
        provider_model: str,
        prediction_id: str,
        token_index: int | None = None,
    ) -> None:
        await self._request_or_none(
            "post",
            f"/predictions/{prediction_id}/cancel",
            headers=self._headers(token_index),
        )
