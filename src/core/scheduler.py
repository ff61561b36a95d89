"""Scheduler for automated jobs (due-soon reminders)."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.core import db_client
from src.core.config import constants, settings
from src.models.service_models import NotificationAction
from src.modules.tasks import service as task_service
from src.services import notification_service


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone=settings.timezone)

# Last outcome of each job, reported by the health endpoint
job_status: dict[str, dict[str, Any]] = {}


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[None]],
    job_name: str,
    max_retries: int = 3,
    base_delay: float = 2.0,
) -> None:
    """Execute job with retry logic and exponential backoff.

    Args:
        job_func: Async function to execute
        job_name: Name of the job for tracking
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds for exponential backoff
    """
    status = job_status.setdefault(job_name, {"consecutive_failures": 0})
    status["current_run"] = datetime.now(UTC).isoformat()

    last_error = None
    for attempt in range(max_retries):
        try:
            logger.info("Executing %s (attempt %d/%d)", job_name, attempt + 1, max_retries)
            await job_func()

            status["last_success"] = datetime.now(UTC).isoformat()
            status["consecutive_failures"] = 0
            status.pop("current_run", None)
            logger.info("%s completed successfully", job_name)
            return

        except Exception as e:
            last_error = str(e)
            logger.error("%s failed on attempt %d/%d: %s", job_name, attempt + 1, max_retries, last_error)

            if attempt < max_retries - 1:
                delay = base_delay**attempt
                logger.info("Retrying %s in %ds", job_name, delay)
                await asyncio.sleep(delay)

    status["consecutive_failures"] += 1
    status["last_error"] = f"Failed after {max_retries} attempts: {last_error}"
    status.pop("current_run", None)
    logger.error(
        "%s failed after all retry attempts",
        job_name,
        extra={"error": status["last_error"], "consecutive_failures": status["consecutive_failures"]},
    )


async def _list_users() -> list[dict[str, Any]]:
    users: list[dict[str, Any]] = []
    page = 1
    while True:
        batch = await db_client.list_records(
            collection="users", page=page, per_page=constants.DEFAULT_PER_PAGE_LIMIT, sort="+id"
        )
        users.extend(batch)
        if len(batch) < constants.DEFAULT_PER_PAGE_LIMIT:
            return users
        page += 1


async def _send_reminders_to_user(user: dict[str, Any], today: date | None, now: datetime) -> int:
    """Send one reminder per due-soon task of a user.

    Returns:
        Number of reminders delivered
    """
    try:
        tasks = await task_service.list_due_soon_tasks(user["user_id"], today=today)
    except db_client.DatabaseError as e:
        logger.error("Error loading due-soon tasks for user %s: %s", user["user_id"], e)
        return 0

    sent = 0
    for task in tasks:
        result = await notification_service.notify_task_event(
            action=NotificationAction.REMINDER,
            task=task,
            user_email=user["email"],
            reminder_time=now,
        )
        if result is not None and result.success:
            sent += 1
    return sent


async def send_due_soon_reminders(*, today: date | None = None, now: datetime | None = None) -> None:
    """Remind every user of their open tasks due within the due-soon window.

    Runs daily at DAILY_REMINDER_HOUR.
    """
    logger.info("Running due-soon reminders job")

    if not settings.slack_webhook_url:
        logger.info("Slack webhook not configured, skipping reminders")
        return

    now = now or datetime.now(UTC)
    users = await _list_users()

    sent_count = 0
    for user in users:
        sent_count += await _send_reminders_to_user(user, today, now)

    logger.info("Completed due-soon reminders job: %d reminder(s) for %d user(s)", sent_count, len(users))


def start_scheduler() -> None:
    """Start the scheduler and register all jobs.

    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")

    scheduler.add_job(
        retry_job_with_backoff,
        args=[send_due_soon_reminders, "due_soon_reminders"],
        trigger=CronTrigger(hour=constants.DAILY_REMINDER_HOUR, minute=0, timezone=settings.timezone),
        id="due_soon_reminders",
        name="Send Due-Soon Task Reminders",
        replace_existing=True,
    )
    logger.info("Scheduled due-soon reminders job: daily at %d:00", constants.DAILY_REMINDER_HOUR)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    if not scheduler.running:
        return
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")
