"""Store reads shared by the task service and the aggregation engine."""

import logging

from src.core import db_client
from src.core.config import constants
from src.domain.task import Task
from src.modules.tasks.filters import DEFAULT_STORE_SORT


logger = logging.getLogger(__name__)

TASKS_COLLECTION = "tasks"


async def fetch_all_tasks(*, filter_query: str, sort: str = DEFAULT_STORE_SORT) -> list[Task]:
    """Read every task matching the filter, batch by batch.

    Raises:
        DatabaseError: If any batch fails
    """
    tasks: list[Task] = []
    page = 1
    batch_size = constants.DEFAULT_PER_PAGE_LIMIT

    while True:
        records = await db_client.list_records(
            collection=TASKS_COLLECTION,
            filter_query=filter_query,
            sort=sort,
            page=page,
            per_page=batch_size,
        )
        tasks.extend(Task.model_validate(record) for record in records)
        if len(records) < batch_size:
            break
        page += 1

    logger.debug("Fetched %d tasks in %d batch(es)", len(tasks), page)
    return tasks
