"""Provider dispatcher: concurrency, RPM and error cooldown per provider.

State lives in Redis so every API process and queue worker sees the same
counters:

    provider:{name}:active     in-flight requests
    provider:{name}:rpm        submits in the current minute (60s TTL)
    provider:{name}:lastError  epoch ms of the last error
    provider:{name}:errors     consecutive errors (600s TTL)

After an error a provider cools down for cooldown_ms times
COOLDOWN_MULTIPLIERS[errors - 1] (last multiplier for 4+ errors).
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis

from mediagen.core.logging_schema import LogEvent
from mediagen.providers.catalog import ChainEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderLimits:
    max_concurrent: int
    cooldown_ms: int
    rpm: int | None = None


# Google: 10 images/min on Tier 1; Replicate: 600 create/min;
# Fal: 2 concurrent on the standard tier, no RPM limit.
PROVIDER_LIMITS: dict[str, ProviderLimits] = {
    "google": ProviderLimits(max_concurrent=3, rpm=10, cooldown_ms=10_000),
    "replicate": ProviderLimits(max_concurrent=10, rpm=600, cooldown_ms=10_000),
    "fal": ProviderLimits(max_concurrent=2, cooldown_ms=10_000),
}

COOLDOWN_MULTIPLIERS = (1, 3, 6, 12)

RPM_WINDOW_SECONDS = 60
ERROR_WINDOW_SECONDS = 600


def _key(provider: str, suffix: str) -> str:
    return f"provider:{provider}:{suffix}"


def cooldown_ms(limits: ProviderLimits, error_count: int) -> int:
    index = min(max(error_count, 1) - 1, len(COOLDOWN_MULTIPLIERS) - 1)
    return limits.cooldown_ms * COOLDOWN_MULTIPLIERS[index]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


class ProviderDispatcher:
    """Picks the first chain entry with capacity and tracks provider health."""

    def __init__(
        self,
        client: redis.Redis,
        limits: dict[str, ProviderLimits] | None = None,
    ) -> None:
        self._client = client
        self._limits = PROVIDER_LIMITS if limits is None else limits

    async def is_available(self, provider: str) -> bool:
        """Not at max concurrency, not at RPM limit, not cooling down.

        Providers without limits are always available.
        """
        limits = self._limits.get(provider)
        if limits is None:
            return True

        active, rpm, last_error, errors = await self._client.mget(
            _key(provider, "active"),
            _key(provider, "rpm"),
            _key(provider, "lastError"),
            _key(provider, "errors"),
        )

        if _int(active) >= limits.max_concurrent:
            logger.debug("%s at max concurrent (%s/%d)", provider, active, limits.max_concurrent)
            return False

        if limits.rpm is not None and _int(rpm) >= limits.rpm:
            logger.debug("%s at RPM limit (%s/%d)", provider, rpm, limits.rpm)
            return False

        if last_error is not None:
            remaining = cooldown_ms(limits, _int(errors, 1)) - (_now_ms() - _int(last_error))
            if remaining > 0:
                logger.debug("%s cooling down (%.0fs remaining)", provider, remaining / 1000)
                return False

        return True

    async def pick(self, chain: list[ChainEntry]) -> tuple[ChainEntry, int] | None:
        """First available entry and its chain index, or None if all are busy."""
        for index, entry in enumerate(chain):
            if await self.is_available(entry.provider):
                return entry, index
        return None

    async def report_submit(self, provider: str) -> None:
        """Count a request about to be submitted."""
        rpm_key = _key(provider, "rpm")
        await self._client.incr(_key(provider, "active"))
        if await self._client.incr(rpm_key) == 1:
            await self._client.expire(rpm_key, RPM_WINDOW_SECONDS)

    async def release(self, provider: str) -> None:
        """Drop one in-flight request, floored at zero."""
        active_key = _key(provider, "active")
        if await self._client.decr(active_key) < 0:
            await self._client.set(active_key, 0)

    async def report_success(self, provider: str) -> None:
        """Request finished: release it and clear the error streak."""
        await self.release(provider)
        await self._client.delete(_key(provider, "lastError"), _key(provider, "errors"))

    async def report_error(self, provider: str) -> None:
        """Request failed: release it and start or extend the cooldown."""
        await self.release(provider)
        await self._client.set(_key(provider, "lastError"), _now_ms())

        errors_key = _key(provider, "errors")
        error_count = await self._client.incr(errors_key)
        if error_count == 1:
            await self._client.expire(errors_key, ERROR_WINDOW_SECONDS)

        extra: dict[str, Any] = {
            "event": LogEvent.PROVIDER_COOLDOWN,
            "provider": provider,
            "error_count": error_count,
        }
        if limits := self._limits.get(provider):
            extra["cooldown_ms"] = cooldown_ms(limits, error_count)
        logger.warning("Provider error #%d: %s", error_count, provider, extra=extra)

    async def states(self) -> dict[str, dict[str, int]]:
        """Per-provider counters for the admin endpoint."""
        result: dict[str, dict[str, int]] = {}
        now = _now_ms()

        for name, limits in self._limits.items():
            active, rpm, last_error, errors = await self._client.mget(
                _key(name, "active"),
                _key(name, "rpm"),
                _key(name, "lastError"),
                _key(name, "errors"),
            )
            error_count = _int(errors)
            remaining = 0
            if error_count > 0 and last_error is not None:
                remaining = max(0, cooldown_ms(limits, error_count) - (now - _int(last_error)))

            result[name] = {
                "active": _int(active),
                "rpm": _int(rpm),
                "errors": error_count,
                "cooldown_remaining_ms": remaining,
                "max_concurrent": limits.max_concurrent,
            }
        return result
