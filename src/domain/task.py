"""Task domain models and enums."""

from datetime import UTC, date, datetime
from enum import StrEnum

from dateutil import parser as dateutil_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskStatus(StrEnum):
    """Task progress state."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(StrEnum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class DueFilter(StrEnum):
    """Due-date windows a task list can be restricted to."""

    OVERDUE = "overdue"
    DUE_SOON = "due_soon"


class SortKey(StrEnum):
    """Columns a task list can be ordered by."""

    TITLE = "title"
    PRIORITY = "priority"
    DUE_DATE = "due_date"
    CREATED_AT = "created_at"


class SortOrder(StrEnum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


def parse_due_date(value: object) -> object:
    """Coerce stored due dates (date or ISO date-time strings) to a calendar date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return dateutil_parser.isoparse(value).date()
    return value


class Task(BaseModel):
    """Task data transfer object."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique task ID from database")
    user_id: str = Field(..., description="Owner user ID")
    title: str = Field(..., min_length=1, description="Task title")
    description: str | None = Field(default=None, description="Detailed task description")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Current progress state")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    due_date: date | None = Field(default=None, description="Due date (calendar day)")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> object:
        """Accept integer ids coming straight from the store."""
        return str(v) if isinstance(v, int) else v

    @field_validator("due_date", mode="before")
    @classmethod
    def coerce_due_date(cls, v: object) -> object:
        """Discard time-of-day from stored due dates."""
        return parse_due_date(v)

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC so they compare with aware ones."""
        return v.replace(tzinfo=UTC) if v.tzinfo is None else v


class FilterSpec(BaseModel):
    """Active list filter: search text, status set, due-date windows, priority.

    An empty `statuses` set means no status restriction.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    search: str = ""
    statuses: frozenset[TaskStatus] = frozenset()
    due_filters: frozenset[DueFilter] = Field(default=frozenset(), alias="dueFilters")
    priority: TaskPriority | None = None

    @field_validator("search", mode="before")
    @classmethod
    def strip_search(cls, v: object) -> object:
        """Whitespace-only search text means no search."""
        return v.strip() if isinstance(v, str) else v


class SortSpec(BaseModel):
    """Sort key and direction."""

    model_config = ConfigDict(frozen=True)

    key: SortKey = SortKey.CREATED_AT
    order: SortOrder = SortOrder.DESC


ColumnSorts = dict[TaskStatus, SortSpec]


class StatusCounts(BaseModel):
    """Per-status counts under the active search and due-date filter."""

    total: int = 0
    todo: int = 0
    in_progress: int = 0
    done: int = 0


class Pagination(BaseModel):
    """Page window over a filtered task list."""

    model_config = ConfigDict(populate_by_name=True)

    page: int
    per_page: int = Field(..., alias="perPage")
    total: int
    total_pages: int = Field(..., alias="totalPages")


class TaskListResult(BaseModel):
    """Response of the list endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    tasks: list[Task]
    status_counts: StatusCounts = Field(..., alias="statusCounts")
    pagination: Pagination | None = None
