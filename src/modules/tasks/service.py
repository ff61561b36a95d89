"""Task service: owner-scoped CRUD and the filtered, counted list query."""

import asyncio
import logging
import math
from datetime import UTC, date, datetime
from typing import Any

from src.core import db_client
from src.core.change_feed import change_feed
from src.core.config import constants
from src.core.errors import DatabaseError, RecordNotFoundError
from src.core.logging import log_with_user_context, span
from src.domain.create_models import TaskCreate
from src.domain.events import ChangeEvent, ChangeEventType
from src.domain.task import DueFilter, FilterSpec, Pagination, SortSpec, Task, TaskListResult, TaskStatus
from src.domain.update_models import TaskUpdate
from src.domain.user import AuthenticatedUser
from src.models.service_models import NotificationAction
from src.modules.tasks.aggregation import count_statuses
from src.modules.tasks.due_dates import apply_due_date_filters, today_local
from src.modules.tasks.filters import DEFAULT_STORE_SORT, build_filter_query
from src.modules.tasks.queries import TASKS_COLLECTION, fetch_all_tasks
from src.modules.tasks.sorting import sort_tasks
from src.services import notification_service


logger = logging.getLogger(__name__)

# Fire-and-forget notifications still running
_pending_notifications: set[asyncio.Task[Any]] = set()


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _schedule_notification(action: NotificationAction, task: Task, user: AuthenticatedUser) -> None:
    """Send a task notification in the background; the mutation never waits for it."""
    background = asyncio.create_task(
        notification_service.notify_task_event(action=action, task=task, user_email=user.email)
    )
    _pending_notifications.add(background)
    background.add_done_callback(_pending_notifications.discard)


async def wait_for_notifications() -> None:
    """Wait until every scheduled notification has finished."""
    if _pending_notifications:
        await asyncio.gather(*_pending_notifications, return_exceptions=True)


async def ensure_user(user: AuthenticatedUser) -> None:
    """Remember the caller's email for reminders.

    Raises:
        DatabaseError: If the users table cannot be read or written
    """
    filter_query = f'user_id = "{db_client.sanitize_param(user.id)}"'
    if await db_client.get_first_record(collection="users", filter_query=filter_query):
        return
    try:
        await db_client.create_record(collection="users", data={"user_id": user.id, "email": user.email})
    except DatabaseError:
        # A concurrent request may have inserted the same user
        if await db_client.get_first_record(collection="users", filter_query=filter_query) is None:
            raise


async def create_task(user: AuthenticatedUser, data: TaskCreate) -> Task:
    """Create a task owned by the caller.

    Args:
        user: Authenticated caller
        data: Validated task fields

    Returns:
        The stored task

    Raises:
        DatabaseError: If the insert fails
    """
    with span("task_service.create_task"):
        await ensure_user(user)

        now = _now()
        record = await db_client.create_record(
            collection=TASKS_COLLECTION,
            data={
                "user_id": user.id,
                "title": data.title,
                "description": data.description,
                "status": data.status,
                "priority": data.priority,
                "due_date": data.due_date,
                "created_at": now,
                "updated_at": now,
            },
        )
        task = Task.model_validate(record)
        log_with_user_context(logger, "info", "Created task", user_id=user.id, task_id=task.id)

        await change_feed.publish(ChangeEvent.for_task(ChangeEventType.INSERT, task))
        _schedule_notification(NotificationAction.CREATED, task, user)
        return task


async def get_task(user: AuthenticatedUser, task_id: str) -> Task:
    """Fetch one of the caller's tasks.

    Raises:
        RecordNotFoundError: If the task does not exist or belongs to someone else
    """
    with span("task_service.get_task"):
        record = await db_client.get_record(collection=TASKS_COLLECTION, record_id=task_id)
        if record.get("user_id") != user.id:
            msg = f"Record not found in {TASKS_COLLECTION}: {task_id}"
            raise RecordNotFoundError(msg)
        return Task.model_validate(record)


async def update_task(user: AuthenticatedUser, task_id: str, data: TaskUpdate) -> Task:
    """Apply a partial update to one of the caller's tasks.

    Only supplied fields change; `updated_at` is always refreshed.

    Raises:
        RecordNotFoundError: If the task does not exist or belongs to someone else
        DatabaseError: If the update fails
    """
    with span("task_service.update_task"):
        await get_task(user, task_id)

        changes: dict[str, Any] = data.model_dump(exclude_unset=True)
        changes["updated_at"] = _now()

        record = await db_client.update_record(collection=TASKS_COLLECTION, record_id=task_id, data=changes)
        task = Task.model_validate(record)
        log_with_user_context(
            logger, "info", "Updated task", user_id=user.id, task_id=task.id, fields=sorted(changes)
        )

        await change_feed.publish(ChangeEvent.for_task(ChangeEventType.UPDATE, task))
        _schedule_notification(NotificationAction.UPDATED, task, user)
        return task


async def delete_task(user: AuthenticatedUser, task_id: str) -> None:
    """Delete one of the caller's tasks.

    Raises:
        RecordNotFoundError: If the task does not exist or belongs to someone else
        DatabaseError: If the delete fails
    """
    with span("task_service.delete_task"):
        task = await get_task(user, task_id)
        await db_client.delete_record(collection=TASKS_COLLECTION, record_id=task_id)
        log_with_user_context(logger, "info", "Deleted task", user_id=user.id, task_id=task_id)

        await change_feed.publish(
            ChangeEvent(event_type=ChangeEventType.DELETE, row={"id": task.id, "user_id": task.user_id})
        )


def paginate(total: int, page: int, per_page: int | None = None) -> Pagination:
    """Page window over `total` rows; the page is clamped into range."""
    size = per_page or constants.TASKS_PER_PAGE
    total_pages = math.ceil(total / size) if total else 0
    current = min(max(page, 1), max(total_pages, 1))
    return Pagination(page=current, per_page=size, total=total, total_pages=total_pages)


async def list_tasks(
    user: AuthenticatedUser,
    spec: FilterSpec,
    *,
    page: int | None = None,
    sort: SortSpec | None = None,
    today: date | None = None,
) -> TaskListResult:
    """List the caller's tasks with status counts.

    Rows come from the store newest first, then the due-date windows are
    applied, then the optional page window, then `sort` orders what is
    returned. Counts run concurrently with the row query.

    Args:
        user: Authenticated caller
        spec: Active filter
        page: 1-based page number; None returns every matching task
        sort: Ordering applied to the returned tasks
        today: Calendar day for due-date windows

    Returns:
        TaskListResult with tasks, status counts and (when paging) pagination

    Raises:
        StatusCountError: If any count query fails
        DatabaseError: If the row query fails
    """
    with span("task_service.list_tasks"):
        filter_query = build_filter_query(user.id, spec)
        pagination: Pagination | None = None

        if spec.due_filters:
            day = today or today_local()
            rows, counts = await asyncio.gather(
                fetch_all_tasks(filter_query=filter_query),
                count_statuses(user.id, spec, today=day),
            )
            tasks = apply_due_date_filters(rows, spec.due_filters, day)
            if page is not None:
                pagination = paginate(len(tasks), page)
                start = (pagination.page - 1) * pagination.per_page
                tasks = tasks[start : start + pagination.per_page]
        elif page is None:
            tasks, counts = await asyncio.gather(
                fetch_all_tasks(filter_query=filter_query),
                count_statuses(user.id, spec),
            )
        else:
            total, counts = await asyncio.gather(
                db_client.count_records(collection=TASKS_COLLECTION, filter_query=filter_query),
                count_statuses(user.id, spec),
            )
            pagination = paginate(total, page)
            records = await db_client.list_records(
                collection=TASKS_COLLECTION,
                filter_query=filter_query,
                sort=DEFAULT_STORE_SORT,
                page=pagination.page,
                per_page=pagination.per_page,
            )
            tasks = [Task.model_validate(record) for record in records]

        if sort is not None:
            tasks = sort_tasks(tasks, sort)

        logger.debug(
            "Listed tasks",
            extra={"user_id": user.id, "count": len(tasks), "filter": filter_query, "page": page},
        )
        return TaskListResult(tasks=tasks, status_counts=counts, pagination=pagination)


async def list_due_soon_tasks(user_id: str, *, today: date | None = None) -> list[Task]:
    """Open tasks of one owner that fall in the due-soon window."""
    spec = FilterSpec(statuses=frozenset({TaskStatus.TODO, TaskStatus.IN_PROGRESS}))
    rows = await fetch_all_tasks(filter_query=build_filter_query(user_id, spec))
    return apply_due_date_filters(rows, {DueFilter.DUE_SOON}, today)
