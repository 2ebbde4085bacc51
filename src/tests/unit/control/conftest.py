"""Fixtures for control plane unit tests."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mediagen.core.interfaces.leader import LeaderElection


@pytest.fixture
def mock_leader() -> AsyncMock:
    """LeaderElection mock that holds the lock."""
    leader = AsyncMock(spec=LeaderElection)
    leader.is_leader = True
    leader.try_acquire = AsyncMock(return_value=True)
    leader.release = AsyncMock()
    leader.verify_holding = AsyncMock(return_value=True)
    return leader


@pytest.fixture
def session_factory():
    """Patches get_session_factory() in the given module; yields the session."""

    def _patch(module: str):
        session = AsyncMock()
        session.add = MagicMock()
        factory = MagicMock()
        factory.return_value.__aenter__.return_value = session
        return session, patch(f"{module}.get_session_factory", return_value=factory)

    return _patch
