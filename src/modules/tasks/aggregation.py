"""Status-count aggregation.

Counts answer "how many tasks would each status group show under the active
search (and due-date) filter". They are never restricted by the selected
statuses, so deselected groups keep their badge counts.
"""

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from datetime import date
from typing import TypeVar

from src.core import db_client
from src.core.errors import StatusCountError
from src.core.logging import span
from src.domain.task import FilterSpec, StatusCounts, Task, TaskStatus
from src.modules.tasks.due_dates import apply_due_date_filters, today_local
from src.modules.tasks.filters import build_filter_query
from src.modules.tasks.queries import TASKS_COLLECTION, fetch_all_tasks


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _gather_all(awaitables: list[Awaitable[T]]) -> list[T]:
    """Await every query; fail as one if any of them failed."""
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        logger.error("status_count_failed", extra={"failures": [str(f) for f in failures]})
        msg = f"Failed to count tasks by status: {failures[0]}"
        raise StatusCountError(msg, failures) from failures[0]
    return list(results)  # type: ignore[arg-type]


async def _count_in_store(owner_id: str, spec: FilterSpec) -> StatusCounts:
    queries = [
        db_client.count_records(
            collection=TASKS_COLLECTION,
            filter_query=build_filter_query(owner_id, spec, apply_statuses=False),
        ),
        *(
            db_client.count_records(
                collection=TASKS_COLLECTION,
                filter_query=build_filter_query(owner_id, spec, status_override=status),
            )
            for status in TaskStatus
        ),
    ]
    total, todo, in_progress, done = await _gather_all(queries)
    return StatusCounts(total=total, todo=todo, in_progress=in_progress, done=done)


async def _count_with_due_filters(owner_id: str, spec: FilterSpec, today: date) -> StatusCounts:
    # Due windows depend on "today", so rows are fetched per status and post-filtered
    per_status = await _gather_all(
        [
            fetch_all_tasks(filter_query=build_filter_query(owner_id, spec, status_override=status))
            for status in TaskStatus
        ]
    )
    counts = {
        status: len(apply_due_date_filters(rows, spec.due_filters, today))
        for status, rows in zip(TaskStatus, per_status, strict=True)
    }
    return StatusCounts(
        total=sum(counts.values()),
        todo=counts[TaskStatus.TODO],
        in_progress=counts[TaskStatus.IN_PROGRESS],
        done=counts[TaskStatus.DONE],
    )


async def count_statuses(owner_id: str, spec: FilterSpec, *, today: date | None = None) -> StatusCounts:
    """Count the caller's tasks per status under the active search/due filter.

    The queries run concurrently.

    Args:
        owner_id: Authenticated caller
        spec: Active filter (its status set is ignored)
        today: Calendar day for due-date windows (defaults to the configured timezone's today)

    Returns:
        StatusCounts with total and per-status counts

    Raises:
        StatusCountError: If any count query fails
    """
    with span("task_aggregation.count_statuses"):
        if spec.due_filters:
            return await _count_with_due_filters(owner_id, spec, today or today_local())
        return await _count_in_store(owner_id, spec)


def count_in_memory(tasks: Iterable[Task]) -> StatusCounts:
    """Status counts of an already filtered collection."""
    counts = dict.fromkeys(TaskStatus, 0)
    for task in tasks:
        counts[task.status] += 1
    return StatusCounts(
        total=sum(counts.values()),
        todo=counts[TaskStatus.TODO],
        in_progress=counts[TaskStatus.IN_PROGRESS],
        done=counts[TaskStatus.DONE],
    )
