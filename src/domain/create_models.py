"""Pydantic models for creating records in database."""

from datetime import date

from pydantic import BaseModel, Field, field_validator

from src.domain.task import TaskPriority, TaskStatus, parse_due_date


class TaskCreate(BaseModel):
    """Pydantic model for creating a task record."""

    title: str = Field(..., description="Task title")
    description: str | None = Field(default=None, description="Detailed task description")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Initial progress state")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    due_date: date | None = Field(default=None, description="Due date (calendar day)")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate the title is not blank."""
        v = v.strip()
        if not v:
            msg = "Title is required"
            raise ValueError(msg)
        return v

    @field_validator("description")
    @classmethod
    def blank_description_is_none(cls, v: str | None) -> str | None:
        """Store blank descriptions as missing."""
        return v or None

    @field_validator("due_date", mode="before")
    @classmethod
    def coerce_due_date(cls, v: object) -> object:
        """Accept empty strings and date-times for the due date."""
        return parse_due_date(v)
