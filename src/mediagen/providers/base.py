"""Generation provider interface and shared result types.

A provider turns a generic input dict into its own request format, submits
it, and understands its own completion payloads (webhook bodies and poll
responses). Sync providers (Google) finish inside submit(); async providers
return a prediction id and finish later via webhook or poll.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from mediagen.app.config import ProviderConfig, get_settings
from mediagen.core.domain import GenerationStatus, ProviderName
from mediagen.providers.catalog import ModelSpec
from mediagen.providers.media import extract_text_output

logger = logging.getLogger(__name__)


@dataclass
class GenerationParams:
    model: ModelSpec
    input: dict[str, Any]
    generation_id: str
    user_id: str
    # Filled per chain entry by the registry
    provider_model: str = ""


@dataclass
class SyncResult:
    """Generation finished inside submit()."""

    provider: ProviderName
    output_urls: list[str]
    time_ms: int = 0
    kind: Literal["sync"] = "sync"


@dataclass
class AsyncResult:
    """Generation queued at the provider; completes via webhook or poll."""

    provider: ProviderName
    prediction_id: str
    # Replicate token pool index, needed to poll/cancel with the same token
    token_index: int | None = None
    kind: Literal["async"] = "async"


GenerationResult = SyncResult | AsyncResult


@dataclass
class Outcome:
    """Provider-reported state of a generation.

    status is PROCESSING while the provider is still working.
    """

    status: GenerationStatus
    media_urls: list[str] = field(default_factory=list)
    output_text: str | None = None
    error: str | None = None
    raw_output: Any = None


@dataclass
class WebhookResult(Outcome):
    request_id: str = ""


class ProviderError(Exception):
    """Provider rejected or failed a request."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class GenerationProvider(ABC):
    """Base class for HTTP generation providers.

    Holds one lazily created httpx.AsyncClient per provider instance.
    """

    name: ProviderName
    base_url: str = ""
    # Completes via POST /api/v1/webhooks/{name}
    supports_webhooks: bool = False

    def __init__(
        self,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or get_settings().providers
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._config.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def _send(
        self, method: Literal["get", "post", "put"], path: str, **kwargs: Any
    ) -> httpx.Response:
        client = await self._get_client()
        return await getattr(client, method)(path, **kwargs)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        """Raise ProviderError on a non-2xx response.

        The error message carries the provider's own error text when the
        body has one, so it can be classified and shown to users.
        """
        if resp.is_error:
            raise ProviderError(
                self.name,
                f"{self.name} HTTP {resp.status_code}: {_error_text(resp)}",
                status_code=resp.status_code,
            )

    async def _request(
        self, method: Literal["get", "post", "put"], path: str, **kwargs: Any
    ) -> httpx.Response:
        resp = await self._send(method, path, **kwargs)
        self._raise_for_status(resp)
        return resp

    async def _request_or_none(
        self, method: Literal["get", "post", "put"], path: str, **kwargs: Any
    ) -> httpx.Response | None:
        """Like _request, but a 404 yields None instead of an error."""
        resp = await self._send(method, path, **kwargs)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp)
        return resp

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Provider interface
    # =========================================================================

    def map_input(self, input: dict[str, Any], model: ModelSpec) -> dict[str, Any]:
        """Generic input -> provider request input. Pass-through by default."""
        return dict(input)

    @abstractmethod
    async def submit(self, params: GenerationParams) -> GenerationResult: ...

    def webhook_url(self) -> str | None:
        """Callback URL for this provider, or None when webhooks are off."""
        base = self._config.webhook_base_url
        if not base:
            return None
        return f"{base.rstrip('/')}/api/v1/webhooks/{self.name}"

    def webhook_request_id(self, body: dict[str, Any]) -> str | None:
        """Prediction id carried by a webhook body."""
        return None

    def parse_webhook(
        self, body: dict[str, Any], text_output: bool = False
    ) -> WebhookResult:
        raise NotImplementedError(f"{self.name} does not use webhooks")

    async def poll(
        self,
        provider_model: str,
        prediction_id: str,
        token_index: int | None = None,
        text_output: bool = False,
    ) -> Outcome | None:
        """Current state at the provider. None when the provider is not pollable."""
        return None

    async def cancel(
        self,
        provider_model: str,
        prediction_id: str,
        token_index: int | None = None,
    ) -> None:
        """Best-effort upstream cancel. No-op by default."""
        return None


def _error_text(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:500] or resp.reason_phrase

    if isinstance(data, dict):
        for key in ("detail", "error", "message", "title"):
            value = data.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if value:
                return str(value)
    return str(data)[:500]


def completed_outcome(
    media_urls: list[str],
    raw_output: Any,
    text_output: bool,
    missing_error: str,
) -> Outcome:
    """Successful provider result -> Outcome.

    A success without usable output (no URLs, or no text for analyze models)
    is reported as a failure with `missing_error`.
    """
    if text_output:
        text = extract_text_output(raw_output)
        if not text:
            return Outcome(GenerationStatus.FAILED, error="No text in provider response")
        return Outcome(GenerationStatus.COMPLETED, output_text=text, raw_output=raw_output)

    if not media_urls:
        return Outcome(GenerationStatus.FAILED, error=missing_error, raw_output=raw_output)
    return Outcome(GenerationStatus.COMPLETED, media_urls=media_urls, raw_output=raw_output)
