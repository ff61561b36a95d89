"""Change notification models for the tasks table."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.domain.task import Task


class ChangeEventType(StrEnum):
    """Kind of row change."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A row change pushed to subscribers.

    For DELETE events `row` carries at least `id` and `user_id`.
    No ordering or exactly-once delivery is guaranteed.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_type: ChangeEventType = Field(..., alias="eventType")
    row: dict[str, Any]

    @property
    def task_id(self) -> str:
        """ID of the changed task."""
        return str(self.row["id"])

    @property
    def user_id(self) -> str:
        """Owner of the changed task."""
        return str(self.row["user_id"])

    def to_task(self) -> Task:
        """Parse the row into a Task (INSERT and UPDATE events)."""
        return Task.model_validate(self.row)

    @classmethod
    def for_task(cls, event_type: ChangeEventType, task: Task) -> "ChangeEvent":
        """Build an event carrying the full row of a task."""
        return cls(event_type=event_type, row=task.model_dump(mode="json"))
