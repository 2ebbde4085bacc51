"""Coordinator infrastructure - base class for leader-elected periodic jobs.

Configuration via CoordinatorConfig (COORDINATOR_ env prefix).
"""

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from enum import StrEnum

from mediagen.app.config import get_settings
from mediagen.app.metrics.collector import (
    COORDINATOR_IS_LEADER,
    COORDINATOR_TICK_DURATION,
    COORDINATOR_TICK_TOTAL,
)
from mediagen.core.interfaces.leader import LeaderElection
from mediagen.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_coordinator_config = get_settings().coordinator


class CoordinatorType(StrEnum):
    """Coordinator types for leader election (lock keys)."""

    REAPER = "reaper"


class CoordinatorBase(ABC):
    """Runs tick() every INTERVAL seconds on exactly one instance.

    Leadership is a PostgreSQL advisory lock held on a dedicated connection.
    tick() does its DB work in its own sessions from the pool; the lock
    connection is never used for queries.
    """

    INTERVAL: float = _coordinator_config.min_interval
    MIN_INTERVAL: float = _coordinator_config.min_interval
    LEADER_RETRY_INTERVAL: float = _coordinator_config.leader_retry_interval
    VERIFY_INTERVAL: float = _coordinator_config.verify_interval
    VERIFY_JITTER: float = _coordinator_config.verify_jitter

    COORDINATOR_TYPE: CoordinatorType

    def __init__(self, leader: LeaderElection) -> None:
        self._leader = leader
        self._running = False
        self._last_verify = 0.0
        self._last_tick = 0.0
        self._waiting_since: float | None = None

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def stop(self) -> None:
        self._running = False

    def _jittered_verify_interval(self) -> float:
        """VERIFY_INTERVAL with +/-VERIFY_JITTER random jitter."""
        jitter = 1.0 + random.uniform(-self.VERIFY_JITTER, self.VERIFY_JITTER)
        return self.VERIFY_INTERVAL * jitter

    def _set_leader_gauge(self, is_leader: bool) -> None:
        COORDINATOR_IS_LEADER.labels(coordinator=self.COORDINATOR_TYPE.value).set(
            1 if is_leader else 0
        )

    @abstractmethod
    async def tick(self) -> None:
        """Execute one cycle."""

    async def run(self) -> None:
        """Main coordinator loop."""
        self._running = True
        logger.info(
            "Starting coordinator",
            extra={"event": LogEvent.APP_STARTED, "coordinator": self.name},
        )

        try:
            while self._running:
                if not await self._ensure_leadership():
                    continue
                await self._throttle()
                if not await self._execute_tick():
                    break
                await asyncio.sleep(self.INTERVAL)
        finally:
            await self._cleanup()

    async def _ensure_leadership(self) -> bool:
        """Verify/acquire leadership. Returns False if not leader."""
        now = time.time()
        if now - self._last_verify <= self._jittered_verify_interval() and self._leader.is_leader:
            self._waiting_since = None
            return True

        try:
            acquired = await self._leader.try_acquire()
        except Exception as e:
            logger.warning(
                "Error acquiring leadership",
                extra={"event": LogEvent.LEADERSHIP_LOST, "error": str(e)},
            )
            acquired = False

        self._set_leader_gauge(acquired)
        if not acquired:
            if self._waiting_since is None:
                self._waiting_since = now
            await asyncio.sleep(self.LEADER_RETRY_INTERVAL)
            return False

        if self._waiting_since is not None:
            logger.info(
                "Leadership acquired after waiting",
                extra={
                    "event": LogEvent.LEADERSHIP_ACQUIRED,
                    "coordinator": self.name,
                    "wait_seconds": round(now - self._waiting_since, 1),
                },
            )
        self._waiting_since = None
        self._last_verify = now
        return True

    async def _throttle(self) -> None:
        """Ensure minimum interval between ticks."""
        elapsed = time.time() - self._last_tick
        if elapsed < self.MIN_INTERVAL:
            await asyncio.sleep(self.MIN_INTERVAL - elapsed)

    async def _execute_tick(self) -> bool:
        """Execute tick. Returns False if cancelled."""
        # Split brain: another instance may have taken the lock since the last verify
        if not await self._leader.verify_holding():
            logger.warning(
                "Leadership lost before tick - skipping",
                extra={"event": LogEvent.LEADERSHIP_LOST, "coordinator": self.name},
            )
            self._set_leader_gauge(False)
            return True

        started = time.monotonic()
        try:
            await self.tick()
        except asyncio.CancelledError:
            return False
        except Exception as e:
            logger.exception(
                "Error in tick: %s",
                e,
                extra={"event": LogEvent.OPERATION_FAILED, "coordinator": self.name},
            )
        finally:
            self._last_tick = time.time()

        label = self.COORDINATOR_TYPE.value
        COORDINATOR_TICK_TOTAL.labels(coordinator=label).inc()
        COORDINATOR_TICK_DURATION.labels(coordinator=label).observe(time.monotonic() - started)
        return True

    async def _cleanup(self) -> None:
        logger.info(
            "Cleaning up",
            extra={"event": LogEvent.APP_STOPPED, "coordinator": self.name},
        )
        self._set_leader_gauge(False)
        try:
            await self._leader.release()
        except Exception as e:
            logger.warning(
                "Error releasing leadership",
                extra={"event": LogEvent.LEADERSHIP_LOST, "error": str(e)},
            )
