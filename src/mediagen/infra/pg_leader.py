"""Leader election on a PostgreSQL session-level advisory lock."""

import asyncio
import hashlib
import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from mediagen.core.interfaces.leader import LeaderElection
from mediagen.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_TRY_LOCK = text("SELECT pg_try_advisory_lock(:lock_id)")
_UNLOCK = text("SELECT pg_advisory_unlock(:lock_id)")
# classid/objid are reassembled to bigint server side; asyncpg cannot bind oid pairs
_HOLDING = text("""
    SELECT EXISTS(
        SELECT 1 FROM pg_locks
        WHERE locktype = 'advisory'
          AND (classid::bigint << 32) | (objid::bigint & x'FFFFFFFF'::bigint) = :lock_id
          AND objsubid = 1
          AND pid = pg_backend_pid()
          AND granted = true
    )
""")


def _compute_lock_id(lock_key: str) -> int:
    """First 8 bytes of sha256(lock_key), masked into the positive bigint range."""
    digest = hashlib.sha256(lock_key.encode()).digest()
    return int.from_bytes(digest[:8], "big") & 0x7FFFFFFFFFFFFFFF


class SQLAlchemyLeaderElection(LeaderElection):
    """Advisory lock held on a dedicated AsyncConnection.

    The lock lives as long as the connection, so the connection must not be
    shared with tick work (a rollback there would not release it, but a
    dropped connection would).
    """

    DEFAULT_TIMEOUT: float = 5.0
    VERIFY_TIMEOUT: float = 2.0

    def __init__(self, conn: AsyncConnection, lock_key: str) -> None:
        self._conn = conn
        self._lock_key = str(lock_key)
        self._lock_id = _compute_lock_id(self._lock_key)
        self._is_leader = False
        self._was_leader = False
        self._lock = asyncio.Lock()

    @property
    def is_leader(self) -> bool:
        return self._is_leader

    @property
    def lock_id(self) -> int:
        return self._lock_id

    async def _scalar(self, statement: Any, timeout: float, op: str) -> bool | None:
        """Run a boolean query. None on timeout or error (logged)."""
        try:
            async with asyncio.timeout(timeout):
                result = await self._conn.execute(statement, {"lock_id": self._lock_id})
                row = result.fetchone()
                return bool(row[0]) if row else False
        except TimeoutError:
            logger.warning("Leadership %s timeout (lock=%s)", op, self._lock_key)
        except Exception as e:
            logger.warning("Leadership %s error (lock=%s): %s", op, self._lock_key, e)
        return None

    async def try_acquire(self, timeout: float | None = None) -> bool:
        # Re-entrant calls would stack the session lock
        if self._is_leader:
            return True

        async with self._lock:
            if self._is_leader:
                return True

            acquired = await self._scalar(
                _TRY_LOCK, timeout if timeout is not None else self.DEFAULT_TIMEOUT, "acquire"
            )
            self._is_leader = bool(acquired)

            if self._is_leader and not self._was_leader:
                logger.info(
                    "Acquired leadership (lock=%s, id=%d)",
                    self._lock_key,
                    self._lock_id,
                    extra={"event": LogEvent.LEADERSHIP_ACQUIRED, "lock": self._lock_key},
                )
            elif not self._is_leader and self._was_leader:
                logger.warning(
                    "Lost leadership (lock=%s)",
                    self._lock_key,
                    extra={"event": LogEvent.LEADERSHIP_LOST, "lock": self._lock_key},
                )

            self._was_leader = self._is_leader
            return self._is_leader

    async def release(self, timeout: float | None = None) -> None:
        if not self._is_leader:
            return

        async with self._lock:
            if not self._is_leader:
                return

            released = await self._scalar(
                _UNLOCK, timeout if timeout is not None else self.DEFAULT_TIMEOUT, "release"
            )
            if released is False:
                logger.warning("Lock was not held during release (lock=%s)", self._lock_key)

            self._is_leader = False
            self._was_leader = False
            logger.info("Released leadership (lock=%s)", self._lock_key)

    async def verify_holding(self, timeout: float | None = None) -> bool:
        if not self._is_leader:
            return False

        async with self._lock:
            if not self._is_leader:
                return False

            holding = await self._scalar(
                _HOLDING, timeout if timeout is not None else self.VERIFY_TIMEOUT, "verify"
            )
            if not holding:
                logger.warning(
                    "Leadership lost (lock=%s), detected via pg_locks",
                    self._lock_key,
                    extra={"event": LogEvent.LEADERSHIP_LOST, "lock": self._lock_key},
                )
                self._is_leader = False
                self._was_leader = False
                return False
            return True
