"""Shared fixtures for unit tests."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from mediagen.core.circuit_breaker import reset_all_circuit_breakers
from mediagen.infra.cache import clear_session_cache


class FakeRedis:
    """In-memory stand-in for the redis.asyncio calls the app makes.

    Values are stored as strings, like a client with decode_responses=True.
    TTLs are recorded, not enforced.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def mget(self, *keys: str) -> list[str | None]:
        return [self.data.get(key) for key in keys]

    async def set(self, key: str, value: Any) -> bool:
        self.data[key] = str(value)
        return True

    async def incr(self, key: str) -> int:
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def decr(self, key: str) -> int:
        value = int(self.data.get(key, 0)) - 1
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def lpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def brpop(self, keys: list[str], timeout: int = 0) -> tuple[str, str] | None:
        for key in keys:
            items = self.lists.get(key)
            if items:
                return key, items.pop()
        return None

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Circuit breakers and the session cache are process-global."""
    reset_all_circuit_breakers()
    clear_session_cache()
    yield
    reset_all_circuit_breakers()
    clear_session_cache()


@pytest.fixture
def mock_db() -> AsyncMock:
    """AsyncSession mock. add() is synchronous on the real session."""
    db = AsyncMock()
    db.add = MagicMock()
    return db
