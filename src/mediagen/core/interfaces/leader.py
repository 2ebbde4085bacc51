"""Leader election interface."""

from abc import ABC, abstractmethod


class LeaderElection(ABC):
    """Single-leader lock shared by all API processes.

    Implementations skip the round trip when already leader, bind
    parameters, bound every query with a timeout, and can verify the lock
    is still held after a connection hiccup.
    """

    @property
    @abstractmethod
    def is_leader(self) -> bool: ...

    @property
    @abstractmethod
    def lock_id(self) -> int: ...

    @abstractmethod
    async def try_acquire(self, timeout: float | None = None) -> bool:
        """Try to take the lock without blocking. True if held afterwards."""
        ...

    @abstractmethod
    async def release(self, timeout: float | None = None) -> None: ...

    @abstractmethod
    async def verify_holding(self, timeout: float | None = None) -> bool:
        """Re-check the lock server side.

        is_leader can be stale if the connection dropped; call this before
        work that must not run twice.
        """
        ...
