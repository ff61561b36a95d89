"""Update models for database operations."""

from datetime import date

from pydantic import BaseModel, field_validator

from src.domain.task import TaskPriority, TaskStatus, parse_due_date


class TaskUpdate(BaseModel):
    """Partial update payload for a task.

    Only fields that were explicitly supplied are written; read them with
    `model_dump(exclude_unset=True)`. An empty `due_date` clears the date.
    """

    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str | None) -> str:
        """Validate a supplied title is not blank."""
        if v is None or not v.strip():
            msg = "Title is required"
            raise ValueError(msg)
        return v.strip()

    @field_validator("status", "priority")
    @classmethod
    def reject_null(cls, v: TaskStatus | TaskPriority | None) -> TaskStatus | TaskPriority:
        """Status and priority can change but never become null."""
        if v is None:
            msg = "Value cannot be null"
            raise ValueError(msg)
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def coerce_due_date(cls, v: object) -> object:
        """Accept empty strings (clear) and date-times for the due date."""
        return parse_due_date(v)
