"""Provider registry: submit along the model's chain with fallback.

generate() walks the resolved chain from `start_from`. Each failed
provider is reported to the dispatcher (cooldown) and recorded as a
fallback notice in api_logs before the next one is tried.
"""

import logging
import time
from dataclasses import dataclass, replace

from mediagen.app.metrics.collector import (
    PROVIDER_FALLBACKS_TOTAL,
    PROVIDER_SUBMIT_DURATION,
    PROVIDER_SUBMITS_TOTAL,
)
from mediagen.core.domain import ProviderName
from mediagen.core.error_classifier import classify_error_message
from mediagen.core.logging_schema import LogEvent
from mediagen.providers.base import (
    GenerationParams,
    GenerationProvider,
    GenerationResult,
    SyncResult,
)
from mediagen.providers.catalog import ChainEntry
from mediagen.providers.chain import resolve_chain
from mediagen.providers.dispatcher import ProviderDispatcher
from mediagen.providers.fal import FalProvider
from mediagen.providers.google import GoogleProvider
from mediagen.providers.replicate import ReplicateProvider
from mediagen.services.api_log_service import write_warning_log

logger = logging.getLogger(__name__)


class AllProvidersFailedError(Exception):
    def __init__(self, errors: list[tuple[str, str]]) -> None:
        self.errors = errors
        detail = " | ".join(f"{name}: {error}" for name, error in errors)
        super().__init__(f"All providers failed: {detail}" if errors else "No provider accepted the request")


@dataclass
class Dispatched:
    result: GenerationResult
    entry: ChainEntry
    chain_position: int


class ProviderRegistry:
    def __init__(
        self,
        providers: list[GenerationProvider],
        dispatcher: ProviderDispatcher,
    ) -> None:
        self._providers: dict[str, GenerationProvider] = {p.name: p for p in providers}
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> ProviderDispatcher:
        return self._dispatcher

    def get(self, name: str) -> GenerationProvider | None:
        return self._providers.get(name)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()

    async def _candidates(self, chain: list[ChainEntry], start_from: int) -> list[int]:
        """Chain indices to try, skipping providers without capacity.

        When every remaining provider is busy the whole remainder is tried
        anyway; strict capacity waits are the queue worker's job.
        """
        remaining = list(range(start_from, len(chain)))
        available = [i for i in remaining if await self._dispatcher.is_available(chain[i].provider)]
        return available or remaining

    async def generate(
        self,
        params: GenerationParams,
        start_from: int = 0,
        path: str = "/api/v1/generations",
    ) -> Dispatched:
        """Submit to the first provider that accepts the request.

        Raises:
            NoProvidersError: The model has no provider after filtering
            AllProvidersFailedError: Every tried provider failed
        """
        chain = resolve_chain(params.model)
        errors: list[tuple[str, str]] = []
        candidates = await self._candidates(chain, start_from)

        for position, index in enumerate(candidates):
            entry = chain[index]
            provider = self._providers.get(entry.provider)
            if provider is None:
                continue

            submit_params = replace(
                params,
                input=provider.map_input(params.input, params.model),
                provider_model=entry.model,
            )

            await self._dispatcher.report_submit(entry.provider)
            started = time.monotonic()
            try:
                result = await provider.submit(submit_params)
            except Exception as e:
                await self._dispatcher.report_error(entry.provider)
                errors.append((entry.provider, str(e)))
                next_entry = chain[candidates[position + 1]] if position + 1 < len(candidates) else None
                await self._record_fallback(params, chain, index, entry, next_entry, e, path)
                continue
            finally:
                PROVIDER_SUBMIT_DURATION.labels(provider=entry.provider).observe(
                    time.monotonic() - started
                )

            PROVIDER_SUBMITS_TOTAL.labels(provider=entry.provider, result=result.kind).inc()
            if isinstance(result, SyncResult):
                await self._dispatcher.report_success(entry.provider)
            return Dispatched(result=result, entry=entry, chain_position=index)

        raise AllProvidersFailedError(errors)

    async def _record_fallback(
        self,
        params: GenerationParams,
        chain: list[ChainEntry],
        index: int,
        entry: ChainEntry,
        next_entry: ChainEntry | None,
        exc: Exception,
        path: str,
    ) -> None:
        reason = str(exc)
        category = classify_error_message(reason)
        PROVIDER_SUBMITS_TOTAL.labels(provider=entry.provider, result="error").inc()
        PROVIDER_FALLBACKS_TOTAL.labels(
            provider=entry.provider, category=category.value if category else "unknown"
        ).inc()

        if next_entry is not None:
            message = (
                f"Chain fallback {index + 1}/{len(chain)}: "
                f"{entry.provider} -> {next_entry.provider}. Reason: {reason}"
            )
        else:
            message = f"Last provider in chain failed: {entry.provider}. Reason: {reason}"

        logger.warning(
            message,
            extra={
                "event": LogEvent.PROVIDER_FALLBACK,
                "provider": entry.provider.value,
                "generation_id": params.generation_id,
                "error_type": type(exc).__name__,
            },
        )
        await write_warning_log(
            path=path,
            provider=entry.provider.value,
            model_name=params.model.display_name,
            generation_id=params.generation_id,
            user_id=params.user_id,
            message=message,
            details={
                "original_provider": chain[0].provider.value,
                "failed_provider": entry.provider.value,
                "fallback_provider": next_entry.provider.value if next_entry else None,
                "chain_position": index,
                "chain_length": len(chain),
                "error": reason,
                "error_category": category.value if category else None,
            },
        )


def build_registry(dispatcher: ProviderDispatcher) -> ProviderRegistry:
    return ProviderRegistry(
        [ReplicateProvider(), FalProvider(), GoogleProvider()],
        dispatcher,
    )


_registry: ProviderRegistry | None = None


def init_registry(dispatcher: ProviderDispatcher) -> ProviderRegistry:
    global _registry
    _registry = build_registry(dispatcher)
    return _registry


async def close_registry() -> None:
    global _registry
    if _registry is not None:
        await _registry.close()
        _registry = None


def get_registry() -> ProviderRegistry:
    if _registry is None:
        raise RuntimeError("Provider registry not initialized")
    return _registry


__all__ = [
    "AllProvidersFailedError",
    "Dispatched",
    "ProviderName",
    "ProviderRegistry",
    "build_registry",
    "close_registry",
    "get_registry",
    "init_registry",
]
