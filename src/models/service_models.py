"""Pydantic models for service layer payloads and return types."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from src.domain.task import Task, TaskPriority, TaskStatus


class NotificationAction(StrEnum):
    """Why a task notification is sent."""

    CREATED = "created"
    UPDATED = "updated"
    REMINDER = "reminder"


class NotificationTask(BaseModel):
    """Task fields included in an outbound notification."""

    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority

    @classmethod
    def from_task(cls, task: Task) -> "NotificationTask":
        """Copy the notified fields from a task."""
        return cls(title=task.title, description=task.description, status=task.status, priority=task.priority)


class SlackNotification(BaseModel):
    """Body of a task notification request."""

    model_config = ConfigDict(populate_by_name=True)

    action: NotificationAction
    task: NotificationTask
    user_email: str
    reminder_time: datetime | None = None
    webhook_url: str | None = Field(default=None, alias="webhookUrl")


class NotificationResult(BaseModel):
    """Result of sending a notification."""

    success: bool
    status_code: int | None = None
    error: str | None = None


class CalendarLink(BaseModel):
    """Google Calendar event-creation link for a task."""

    task_id: str
    url: str
