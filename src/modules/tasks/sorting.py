"""Task ordering by title, priority, due date or creation time.

All sorts are stable and return new lists; inputs are never reordered in place.
"""

import unicodedata
from collections.abc import Iterable, Mapping

from src.domain.task import PRIORITY_RANK, ColumnSorts, SortKey, SortOrder, SortSpec, Task, TaskStatus


def title_key(title: str) -> str:
    """Case-insensitive, normalisation-insensitive comparison key for titles."""
    return unicodedata.normalize("NFKC", title).casefold()


def _sort_key(task: Task, key: SortKey) -> object:
    if key == SortKey.TITLE:
        return title_key(task.title)
    if key == SortKey.PRIORITY:
        return PRIORITY_RANK[task.priority]
    if key == SortKey.DUE_DATE:
        return task.due_date
    return task.created_at


def sort_tasks(tasks: Iterable[Task], spec: SortSpec | None = None) -> list[Task]:
    """Order tasks by a sort spec.

    Tasks without a due date always come after dated ones when sorting by
    due date, whichever the direction.

    Args:
        tasks: Tasks to order
        spec: Key and direction (defaults to newest first)

    Returns:
        New ordered list
    """
    spec = spec or SortSpec()
    reverse = spec.order == SortOrder.DESC
    items = list(tasks)

    if spec.key == SortKey.DUE_DATE:
        dated = [task for task in items if task.due_date is not None]
        undated = [task for task in items if task.due_date is None]
        return sorted(dated, key=lambda task: task.due_date, reverse=reverse) + undated

    # sorted(reverse=True) keeps equal elements in input order
    return sorted(items, key=lambda task: _sort_key(task, spec.key), reverse=reverse)


def default_column_sorts() -> ColumnSorts:
    """Newest-first ordering for every status column."""
    return {status: SortSpec() for status in TaskStatus}


def sort_columns(tasks: Iterable[Task], column_sorts: Mapping[TaskStatus, SortSpec]) -> dict[TaskStatus, list[Task]]:
    """Partition tasks by status and sort each partition by its own spec.

    Statuses missing from `column_sorts` use the default ordering.
    """
    columns: dict[TaskStatus, list[Task]] = {status: [] for status in TaskStatus}
    for task in tasks:
        columns[task.status].append(task)
    return {status: sort_tasks(bucket, column_sorts.get(status)) for status, bucket in columns.items()}
