"""Pytest configuration and fixtures for unit tests."""

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from src.core.change_feed import ChangeFeed
from src.domain.task import Task, TaskPriority, TaskStatus
from tests.unit.mocks import InMemoryDBClient


# Fixed "today" so due-date windows are deterministic
TODAY = date(2025, 6, 10)


@pytest.fixture
def today() -> date:
    """Calendar day used for due-date windows in tests."""
    return TODAY


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db):
    """Patches src.core.db_client functions to use InMemoryDBClient."""
    monkeypatch.setattr("src.core.db_client.create_record", in_memory_db.create_record)
    monkeypatch.setattr("src.core.db_client.get_record", in_memory_db.get_record)
    monkeypatch.setattr("src.core.db_client.update_record", in_memory_db.update_record)
    monkeypatch.setattr("src.core.db_client.delete_record", in_memory_db.delete_record)
    monkeypatch.setattr("src.core.db_client.list_records", in_memory_db.list_records)
    monkeypatch.setattr("src.core.db_client.count_records", in_memory_db.count_records)
    monkeypatch.setattr("src.core.db_client.get_first_record", in_memory_db.get_first_record)
    return in_memory_db


@pytest.fixture
def feed(monkeypatch) -> ChangeFeed:
    """Fresh in-process change feed used by the task service."""
    fresh = ChangeFeed()
    monkeypatch.setattr("src.modules.tasks.service.change_feed", fresh)
    monkeypatch.setattr("src.modules.tasks.sources.change_feed", fresh)
    monkeypatch.setattr("src.interface.tasks_router.change_feed", fresh)
    return fresh


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Factory for Task objects with sensible defaults."""
    counter = iter(range(1, 10_000))
    base = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)

    def _make(**overrides: Any) -> Task:
        n = next(counter)
        created = overrides.pop("created_at", base + timedelta(minutes=n))
        fields: dict[str, Any] = {
            "id": str(n),
            "user_id": "user-alice",
            "title": f"Task {n}",
            "description": None,
            "status": TaskStatus.TODO,
            "priority": TaskPriority.MEDIUM,
            "due_date": None,
            "created_at": created,
            "updated_at": overrides.pop("updated_at", created),
        }
        fields.update(overrides)
        return Task(**fields)

    return _make


@pytest.fixture
def seed_tasks(patched_db) -> Callable[..., Any]:
    """Insert task rows straight into the in-memory store."""

    async def _seed(*rows: dict[str, Any]) -> list[dict[str, Any]]:
        created = []
        base = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)
        for offset, row in enumerate(rows):
            stamp = (base + timedelta(minutes=offset)).isoformat()
            data = {
                "user_id": "user-alice",
                "description": None,
                "status": "todo",
                "priority": "medium",
                "due_date": None,
                "created_at": stamp,
                "updated_at": stamp,
                **row,
            }
            created.append(await patched_db.create_record(collection="tasks", data=data))
        return created

    return _seed
