"""Translate a FilterSpec into store filter queries and in-memory predicates."""

from datetime import date
from enum import StrEnum
from typing import TypeVar

from src.core.db_client import sanitize_param
from src.core.errors import TaskValidationError
from src.domain.task import FilterSpec, Task, TaskStatus
from src.modules.tasks.due_dates import matches_due_filters, today_local


E = TypeVar("E", bound=StrEnum)


# Store-level ordering before any client-side sort
DEFAULT_STORE_SORT = "-created_at"


def parse_csv_set(raw: str | None, enum: type[E]) -> frozenset[E]:
    """Parse a comma-separated query parameter into a set of enum members.

    Raises:
        TaskValidationError: If any value is not a member of the enum
    """
    if not raw:
        return frozenset()

    values = set()
    for part in raw.split(","):
        item = part.strip()
        if not item:
            continue
        try:
            values.add(enum(item))
        except ValueError as e:
            allowed = ", ".join(member.value for member in enum)
            msg = f"Invalid value '{item}' (expected one of: {allowed})"
            raise TaskValidationError(msg) from e
    return frozenset(values)


def build_filter_query(
    owner_id: str,
    spec: FilterSpec,
    *,
    status_override: TaskStatus | None = None,
    apply_statuses: bool = True,
) -> str:
    """Build the store filter for a task query.

    The owner clause is always present. `status_override` replaces the status
    set with a single status (used for counting); `apply_statuses=False` drops
    status restriction entirely.

    Args:
        owner_id: Authenticated caller
        spec: Active filter
        status_override: Restrict to exactly this status
        apply_statuses: Whether the spec's status set is applied

    Returns:
        Filter expression understood by db_client
    """
    if not owner_id:
        msg = "Owner is required for task queries"
        raise ValueError(msg)

    filters = [f'user_id = "{sanitize_param(owner_id)}"']

    if spec.search:
        term = sanitize_param(spec.search)
        filters.append(f'(title ~ "{term}" || description ~ "{term}")')

    if status_override is not None:
        filters.append(f'status = "{status_override}"')
    elif apply_statuses and spec.statuses:
        ordered = sorted(spec.statuses, key=list(TaskStatus).index)
        if len(ordered) == 1:
            filters.append(f'status = "{ordered[0]}"')
        else:
            filters.append("(" + " || ".join(f'status = "{status}"' for status in ordered) + ")")

    if spec.priority is not None:
        filters.append(f'priority = "{spec.priority}"')

    return " && ".join(filters)


def matches_search(task: Task, search: str) -> bool:
    """Case-insensitive substring match against title or description."""
    if not search:
        return True
    needle = search.casefold()
    return needle in task.title.casefold() or needle in (task.description or "").casefold()


def task_matches(
    task: Task,
    spec: FilterSpec,
    *,
    owner_id: str | None = None,
    today: date | None = None,
) -> bool:
    """In-memory equivalent of the store query plus the due-date post-filter."""
    if owner_id is not None and task.user_id != owner_id:
        return False
    if not matches_search(task, spec.search):
        return False
    if spec.statuses and task.status not in spec.statuses:
        return False
    if spec.priority is not None and task.priority != spec.priority:
        return False
    if spec.due_filters:
        return matches_due_filters(task.due_date, spec.due_filters, today or today_local())
    return True
