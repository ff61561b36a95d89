"""HTTP API for the caller's tasks."""

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from src.core.change_feed import change_feed
from src.core.config import constants
from src.core.errors import TaskValidationError
from src.domain.create_models import TaskCreate
from src.domain.task import DueFilter, FilterSpec, SortKey, SortOrder, SortSpec, Task, TaskPriority, TaskStatus
from src.domain.update_models import TaskUpdate
from src.domain.user import AuthenticatedUser
from src.interface.auth import require_user
from src.models.service_models import CalendarLink
from src.modules.tasks import service as task_service
from src.modules.tasks.filters import parse_csv_set
from src.services.calendar_links import calendar_url_for_task


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def parse_filter_params(
    search: str | None = None,
    status: str | None = None,
    due: str | None = None,
    priority: str | None = None,
    *,
    statuses: str | None = None,
    due_filters: str | None = None,
) -> FilterSpec:
    """Build a FilterSpec from list query parameters.

    `status`/`statuses` and `due`/`dueFilters` are comma-separated and the two
    spellings of each are merged; empty values mean no restriction.

    Raises:
        TaskValidationError: If any value is unknown
    """
    priorities = parse_csv_set(priority, TaskPriority)
    if len(priorities) > 1:
        msg = "Only one priority can be selected"
        raise TaskValidationError(msg)

    return FilterSpec(
        search=search or "",
        statuses=parse_csv_set(status, TaskStatus) | parse_csv_set(statuses, TaskStatus),
        due_filters=parse_csv_set(due, DueFilter) | parse_csv_set(due_filters, DueFilter),
        priority=next(iter(priorities), None),
    )


def _task_json(task: Task) -> dict:
    return task.model_dump(mode="json")


@router.get("")
async def list_tasks(
    search: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    statuses: str | None = None,
    due: str | None = None,
    due_filters: str | None = Query(default=None, alias="dueFilters"),
    priority: str | None = None,
    page: int | None = Query(default=None, ge=1),
    sort: SortKey | None = None,
    order: SortOrder = SortOrder.DESC,
    user: AuthenticatedUser = Depends(require_user),
) -> JSONResponse:
    """List the caller's tasks with per-status counts.

    Without `page` every matching task is returned and no pagination is
    reported.
    """
    spec = parse_filter_params(search, status_filter, due, priority, statuses=statuses, due_filters=due_filters)
    sort_spec = SortSpec(key=sort, order=order) if sort is not None else None

    result = await task_service.list_tasks(user, spec, page=page, sort=sort_spec)

    content = result.model_dump(mode="json", by_alias=True)
    if result.pagination is None:
        content.pop("pagination")
    return JSONResponse(content=content, status_code=status.HTTP_200_OK)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(data: TaskCreate, user: AuthenticatedUser = Depends(require_user)) -> JSONResponse:
    """Create a task for the caller."""
    task = await task_service.create_task(user, data)
    return JSONResponse(content=_task_json(task), status_code=status.HTTP_201_CREATED)


async def _event_stream(request: Request, user: AuthenticatedUser) -> AsyncIterator[str]:
    async with change_feed.subscribe(user.id) as subscription:
        yield ": connected\n\n"
        while not await request.is_disconnected():
            event = await subscription.next_event(timeout=constants.SSE_KEEPALIVE_SECONDS)
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield f"event: {event.event_type}\ndata: {event.model_dump_json(by_alias=True)}\n\n"
    logger.debug("Change stream closed", extra={"user_id": user.id})


@router.get("/events")
async def stream_events(request: Request, user: AuthenticatedUser = Depends(require_user)) -> StreamingResponse:
    """Stream the caller's task changes as Server-Sent Events."""
    return StreamingResponse(
        _event_stream(request, user),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{task_id}")
async def get_task(task_id: str, user: AuthenticatedUser = Depends(require_user)) -> JSONResponse:
    """Fetch one of the caller's tasks."""
    task = await task_service.get_task(user, task_id)
    return JSONResponse(content=_task_json(task))


@router.patch("/{task_id}")
async def update_task(
    task_id: str, data: TaskUpdate, user: AuthenticatedUser = Depends(require_user)
) -> JSONResponse:
    """Partially update one of the caller's tasks."""
    task = await task_service.update_task(user, task_id, data)
    return JSONResponse(content=_task_json(task))


@router.delete("/{task_id}")
async def delete_task(task_id: str, user: AuthenticatedUser = Depends(require_user)) -> JSONResponse:
    """Delete one of the caller's tasks."""
    await task_service.delete_task(user, task_id)
    return JSONResponse(content={"message": "Task deleted"})


@router.get("/{task_id}/calendar-link")
async def get_calendar_link(task_id: str, user: AuthenticatedUser = Depends(require_user)) -> CalendarLink:
    """Google Calendar link for a one-hour event at the task's due date."""
    task = await task_service.get_task(user, task_id)
    return CalendarLink(task_id=task.id, url=calendar_url_for_task(task))
