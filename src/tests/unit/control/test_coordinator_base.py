"""Unit tests for CoordinatorBase."""

import asyncio
import time
from unittest.mock import AsyncMock

from mediagen.control.coordinator.base import CoordinatorBase, CoordinatorType


class DummyCoordinator(CoordinatorBase):
    """Counts ticks; stops itself after `stop_after` ticks."""

    COORDINATOR_TYPE = CoordinatorType.REAPER

    INTERVAL = 0.01
    MIN_INTERVAL = 0.0
    LEADER_RETRY_INTERVAL = 0.01

    def __init__(self, leader, stop_after: int = 1, error: Exception | None = None) -> None:
        super().__init__(leader)
        self.tick_count = 0
        self._stop_after = stop_after
        self._error = error

    async def tick(self) -> None:
        self.tick_count += 1
        if self.tick_count >= self._stop_after:
            self.stop()
        if self._error is not None:
            raise self._error


class TestLeadership:
    async def test_acquires_when_not_leader(self, mock_leader: AsyncMock) -> None:
        mock_leader.is_leader = False
        coord = DummyCoordinator(mock_leader)

        assert await coord._ensure_leadership() is True
        mock_leader.try_acquire.assert_awaited_once()

    async def test_skips_round_trip_within_verify_interval(self, mock_leader: AsyncMock) -> None:
        coord = DummyCoordinator(mock_leader)
        coord._last_verify = time.time()

        assert await coord._ensure_leadership() is True
        mock_leader.try_acquire.assert_not_called()

    async def test_not_leader_waits(self, mock_leader: AsyncMock) -> None:
        mock_leader.is_leader = False
        mock_leader.try_acquire.return_value = False
        coord = DummyCoordinator(mock_leader)

        assert await coord._ensure_leadership() is False
        assert coord._waiting_since is not None

    async def test_acquire_error_counts_as_not_leader(self, mock_leader: AsyncMock) -> None:
        mock_leader.is_leader = False
        mock_leader.try_acquire.side_effect = ConnectionError("db gone")
        coord = DummyCoordinator(mock_leader)

        assert await coord._ensure_leadership() is False


class TestExecuteTick:
    async def test_runs_tick(self, mock_leader: AsyncMock) -> None:
        coord = DummyCoordinator(mock_leader, stop_after=10)

        assert await coord._execute_tick() is True
        assert coord.tick_count == 1
        assert coord._last_tick > 0

    async def test_skips_tick_when_lock_lost(self, mock_leader: AsyncMock) -> None:
        mock_leader.verify_holding.return_value = False
        coord = DummyCoordinator(mock_leader)

        assert await coord._execute_tick() is True
        assert coord.tick_count == 0

    async def test_tick_error_is_contained(self, mock_leader: AsyncMock) -> None:
        coord = DummyCoordinator(mock_leader, stop_after=10, error=RuntimeError("boom"))

        assert await coord._execute_tick() is True
        assert coord.tick_count == 1

    async def test_cancel_stops_loop(self, mock_leader: AsyncMock) -> None:
        coord = DummyCoordinator(mock_leader, stop_after=10, error=asyncio.CancelledError())

        assert await coord._execute_tick() is False


class TestRun:
    async def test_runs_until_stopped_and_releases(self, mock_leader: AsyncMock) -> None:
        coord = DummyCoordinator(mock_leader, stop_after=3)

        await asyncio.wait_for(coord.run(), timeout=2)

        assert coord.tick_count == 3
        mock_leader.release.assert_awaited_once()

    async def test_release_error_is_logged(self, mock_leader: AsyncMock) -> None:
        mock_leader.release.side_effect = ConnectionError("gone")
        coord = DummyCoordinator(mock_leader, stop_after=1)

        await asyncio.wait_for(coord.run(), timeout=2)

        assert coord.tick_count == 1
