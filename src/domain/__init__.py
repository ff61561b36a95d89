"""Domain models and DTOs."""

from src.domain.create_models import TaskCreate
from src.domain.events import ChangeEvent, ChangeEventType
from src.domain.task import (
    PRIORITY_RANK,
    ColumnSorts,
    DueFilter,
    FilterSpec,
    Pagination,
    SortKey,
    SortOrder,
    SortSpec,
    StatusCounts,
    Task,
    TaskListResult,
    TaskPriority,
    TaskStatus,
)
from src.domain.update_models import TaskUpdate
from src.domain.user import AuthenticatedUser


__all__ = [
    "PRIORITY_RANK",
    "AuthenticatedUser",
    "ChangeEvent",
    "ChangeEventType",
    "ColumnSorts",
    "DueFilter",
    "FilterSpec",
    "Pagination",
    "SortKey",
    "SortOrder",
    "SortSpec",
    "StatusCounts",
    "Task",
    "TaskCreate",
    "TaskListResult",
    "TaskPriority",
    "TaskStatus",
    "TaskUpdate",
]
