"""Due-date window classification (overdue / due soon)."""

from collections.abc import Collection, Iterable
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from src.core.config import constants, settings
from src.domain.task import DueFilter, Task


def today_local() -> date:
    """Current calendar day in the configured timezone."""
    return datetime.now(ZoneInfo(settings.timezone)).date()


def normalize_date(value: date | datetime) -> date:
    """Drop the time of day so comparisons happen per calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def is_overdue(due: date | datetime | None, today: date) -> bool:
    """Due strictly before today."""
    if due is None:
        return False
    return normalize_date(due) < normalize_date(today)


def is_due_soon(due: date | datetime | None, today: date) -> bool:
    """Due today or within the next DUE_SOON_DAYS days (inclusive)."""
    if due is None:
        return False
    day = normalize_date(due)
    start = normalize_date(today)
    return start <= day <= start + timedelta(days=constants.DUE_SOON_DAYS)


def matches_due_filters(due: date | datetime | None, filters: Collection[DueFilter], today: date) -> bool:
    """Check a due date against the selected windows.

    The selected windows are OR-ed together. With no window selected every
    task passes; with any window selected a task without a due date fails.
    """
    if not filters:
        return True
    if due is None:
        return False
    if DueFilter.OVERDUE in filters and is_overdue(due, today):
        return True
    return DueFilter.DUE_SOON in filters and is_due_soon(due, today)


def apply_due_date_filters(
    tasks: Iterable[Task],
    filters: Collection[DueFilter],
    today: date | None = None,
) -> list[Task]:
    """Keep the tasks whose due date falls in any selected window."""
    if not filters:
        return list(tasks)
    day = today or today_local()
    return [task for task in tasks if matches_due_filters(task.due_date, filters, day)]
