"""Client-side task board: filter, sort and page state over a TaskSource.

The board owns one TaskCollection and keeps it in step with the store:
full reloads on every state change, optimistic local mutations, and change
events from the source's subscription. Only the most recently issued
refresh may update the board.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from src.core.errors import DatabaseError, StaleRequestDiscardedError
from src.domain.create_models import TaskCreate
from src.domain.events import ChangeEvent, ChangeEventType
from src.domain.task import (
    FilterSpec,
    Pagination,
    SortSpec,
    StatusCounts,
    Task,
    TaskListResult,
    TaskStatus,
)
from src.domain.update_models import TaskUpdate
from src.modules.tasks.filters import task_matches
from src.modules.tasks.reconciliation import RefreshTokens, TaskCollection
from src.modules.tasks.sorting import default_column_sorts, sort_columns, sort_tasks
from src.modules.tasks.sources import TaskSource


logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local-"


class BoardView(BaseModel):
    """What the presentation layer renders."""

    model_config = ConfigDict(frozen=True)

    tasks: tuple[Task, ...]
    columns: dict[TaskStatus, tuple[Task, ...]]
    status_counts: StatusCounts
    pagination: Pagination | None = None


class TaskBoard:
    """Task list state plus the refresh pipeline that keeps it current.

    Args:
        source: Store operations and change subscription
        filter_spec: Initial filter
        sort: Ordering of the flat task list
        column_sorts: Ordering of each status column
        page: Page number, or None to show every matching task
    """

    def __init__(
        self,
        source: TaskSource,
        *,
        filter_spec: FilterSpec | None = None,
        sort: SortSpec | None = None,
        column_sorts: Mapping[TaskStatus, SortSpec] | None = None,
        page: int | None = None,
    ) -> None:
        self._source = source
        self.filter_spec = filter_spec or FilterSpec()
        self.sort = sort or SortSpec()
        self.column_sorts = {**default_column_sorts(), **(column_sorts or {})}
        self.page = page
        self._collection = TaskCollection(predicate=self._matches)
        self._tokens = RefreshTokens()
        self._status_counts = StatusCounts()
        self._pagination: Pagination | None = None

    def _matches(self, task: Task) -> bool:
        return task_matches(task, self.filter_spec)

    def view(self) -> BoardView:
        """Current tasks sorted globally and per column, with counts."""
        tasks = self._collection.snapshot()
        columns = sort_columns(tasks, self.column_sorts)
        return BoardView(
            tasks=tuple(sort_tasks(tasks, self.sort)),
            columns={status: tuple(bucket) for status, bucket in columns.items()},
            status_counts=self._status_counts,
            pagination=self._pagination,
        )

    async def refresh(self) -> BoardView | None:
        """Reload tasks and counts for the current state.

        A refresh superseded by a newer one while in flight is discarded.
        A failed refresh leaves the board as it was.

        Returns:
            The new view, or None if this refresh was superseded

        Raises:
            DatabaseError: If the reload fails (StatusCountError for counts)
        """
        token = self._tokens.issue()
        try:
            result = await self._source.list_tasks(self.filter_spec, page=self.page)
        except Exception:
            if not self._tokens.is_current(token):
                logger.debug("Superseded refresh %d failed; ignoring", token)
                return None
            logger.warning("Task refresh failed; keeping previous view", exc_info=True)
            raise

        try:
            self._tokens.ensure_current(token)
        except StaleRequestDiscardedError as e:
            logger.debug("Discarded stale refresh: %s", e)
            return None

        self._commit(result)
        return self.view()

    def _commit(self, result: TaskListResult) -> None:
        self._collection.replace_all(result.tasks)
        self._status_counts = result.status_counts
        self._pagination = result.pagination

    async def set_filter(self, filter_spec: FilterSpec) -> BoardView | None:
        """Change the filter, go back to the first page and refresh."""
        self.filter_spec = filter_spec
        self._collection.set_predicate(self._matches)
        if self.page is not None:
            self.page = 1
        return await self.refresh()

    async def set_sort(self, sort: SortSpec) -> BoardView | None:
        """Change the flat list ordering and refresh."""
        self.sort = sort
        return await self.refresh()

    async def set_column_sort(self, status: TaskStatus, sort: SortSpec) -> BoardView | None:
        """Change one status column's ordering and refresh."""
        self.column_sorts[status] = sort
        return await self.refresh()

    async def set_page(self, page: int | None) -> BoardView | None:
        """Move to another page (None shows every task) and refresh."""
        self.page = page
        return await self.refresh()

    async def handle_event(self, event: ChangeEvent) -> BoardView | None:
        """Merge a change event, then refresh so counts follow."""
        if self._collection.apply_event(event):
            logger.debug("Applied %s for task %s", event.event_type, event.task_id)
        return await self.refresh()

    async def _refresh_after_mutation(self) -> None:
        try:
            await self.refresh()
        except DatabaseError:
            # The mutation itself succeeded; the next refresh catches up
            logger.warning("Refresh after task mutation failed", exc_info=True)

    async def create_task(self, data: TaskCreate) -> Task:
        """Create a task, showing it before the store confirms.

        Raises:
            DatabaseError: If the store rejects the task (the board is rolled back)
        """
        now = datetime.now(UTC)
        placeholder = Task(
            id=f"{LOCAL_ID_PREFIX}{uuid4().hex}",
            user_id="",
            title=data.title,
            description=data.description,
            status=data.status,
            priority=data.priority,
            due_date=data.due_date,
            created_at=now,
            updated_at=now,
        )
        change = self._collection.apply_local_insert(placeholder)

        try:
            task = await self._source.create_task(data)
        except Exception:
            self._collection.revert(change)
            raise

        self._collection.confirm(change)
        self._collection.discard(placeholder.id)
        self._collection.apply_event(ChangeEvent.for_task(ChangeEventType.INSERT, task))
        await self._refresh_after_mutation()
        return task

    async def update_task(self, task_id: str, data: TaskUpdate) -> Task:
        """Update a task, showing the change before the store confirms.

        Raises:
            DatabaseError: If the store rejects the update (the board is rolled back)
        """
        change = self._collection.apply_local_update(task_id, data.model_dump(exclude_unset=True))

        try:
            task = await self._source.update_task(task_id, data)
        except Exception:
            if change is not None:
                self._collection.revert(change)
            raise

        self._collection.apply_event(ChangeEvent.for_task(ChangeEventType.UPDATE, task))
        await self._refresh_after_mutation()
        return task

    async def delete_task(self, task_id: str) -> None:
        """Delete a task, hiding it before the store confirms.

        Raises:
            DatabaseError: If the store rejects the delete (the board is rolled back)
        """
        change = self._collection.apply_local_delete(task_id)

        try:
            await self._source.delete_task(task_id)
        except Exception:
            self._collection.revert(change)
            raise

        self._collection.confirm(change)
        await self._refresh_after_mutation()

    async def _listen(self, events: AsyncIterator[ChangeEvent]) -> None:
        async for event in events:
            try:
                await self.handle_event(event)
            except Exception:
                # One bad event must not stop the board following later ones
                logger.exception("Failed to apply change event", extra={"event_type": event.event_type})

    @asynccontextmanager
    async def live(self) -> AsyncIterator["TaskBoard"]:
        """Keep the board current from the source's change events.

        Loads the board, then applies pushed events until the block exits;
        the subscription is released however the block exits.
        """
        async with self._source.subscribe() as events:
            listener = asyncio.create_task(self._listen(events))
            try:
                await self.refresh()
                yield self
            finally:
                listener.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await listener
