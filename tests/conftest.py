"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import AsyncGenerator

import pytest
from fastapi.testclient import TestClient

from src.core import db_client
from src.core.config import settings
from src.domain.user import AuthenticatedUser
from src.interface.auth import issue_session_token
from src.main import app


logger = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def no_slack_webhook(monkeypatch):
    """Keep tests from posting to a webhook configured in the environment."""
    monkeypatch.setattr(settings, "slack_webhook_url", None)


@pytest.fixture
def alice() -> AuthenticatedUser:
    """Primary test user."""
    return AuthenticatedUser(id="user-alice", email="alice@example.com")


@pytest.fixture
def bob() -> AuthenticatedUser:
    """Second user, for ownership checks."""
    return AuthenticatedUser(id="user-bob", email="bob@example.com")


@pytest.fixture
def auth_headers(alice: AuthenticatedUser) -> dict[str, str]:
    """Bearer header carrying a session token for alice."""
    return {"Authorization": f"Bearer {issue_session_token(alice)}"}


@pytest.fixture
def test_client() -> TestClient:
    """Provide FastAPI test client (lifespan not run)."""
    return TestClient(app)


@pytest.fixture
async def sqlite_db(tmp_path, monkeypatch) -> AsyncGenerator[str]:
    """Fresh SQLite database file with the schema applied."""
    db_path = str(tmp_path / "taskun-test.db")
    monkeypatch.setattr(settings, "sqlite_db_path", db_path)

    await db_client.init_db()
    yield db_path
    await db_client.close_connection()
