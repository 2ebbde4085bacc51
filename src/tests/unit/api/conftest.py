"""Fixtures for API route tests.

Lifespan is not run (TestClient is used without a context manager), so no
database, Redis or S3 is touched; routes get a mock session instead.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from mediagen.app.api.dependencies import CurrentUser, get_current_user
from mediagen.app.main import app
from mediagen.core.domain import UserRole
from mediagen.infra import get_session


@pytest.fixture
def db() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def user() -> CurrentUser:
    return CurrentUser(id="user-1", role=UserRole.USER)


@pytest.fixture
def anonymous_client(db: AsyncMock) -> TestClient:
    app.dependency_overrides[get_session] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(db: AsyncMock, user: CurrentUser) -> TestClient:
    app.dependency_overrides[get_session] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: user
    yield TestClient(app)
    app.dependency_overrides.clear()
