"""Notification service for posting task events to a Slack incoming webhook."""

import asyncio
import logging
from datetime import datetime
from typing import Any

import httpx

from src.core.config import constants, settings
from src.core.errors import NotificationDeliveryError
from src.core.logging import span
from src.domain.task import Task, TaskPriority, TaskStatus
from src.models.service_models import (
    NotificationAction,
    NotificationResult,
    NotificationTask,
    SlackNotification,
)


logger = logging.getLogger(__name__)


# HTTP status code constants for error handling
HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500

_ACTION_TEXT = {
    NotificationAction.CREATED: ("✨", "Task created"),
    NotificationAction.UPDATED: ("🔄", "Task updated"),
    NotificationAction.REMINDER: ("⏰", "Task reminder"),
}

_PRIORITY_EMOJI = {
    TaskPriority.HIGH: "🔴",
    TaskPriority.MEDIUM: "🟡",
    TaskPriority.LOW: "🟢",
}

_STATUS_TEXT = {
    TaskStatus.TODO: "To do",
    TaskStatus.IN_PROGRESS: "In progress",
    TaskStatus.DONE: "Done",
}


def build_slack_message(notification: SlackNotification) -> dict[str, Any]:
    """Render a notification as a Slack Block Kit message.

    Header and a fields section are always present; a context block carries
    the reminder time for reminders and a trailing section carries the
    description when there is one.
    """
    emoji, action_text = _ACTION_TEXT[notification.action]
    headline = f"{emoji} {action_text}"
    task = notification.task

    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": headline, "emoji": True}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Task:*\n{task.title}"},
                {"type": "mrkdwn", "text": f"*Created by:*\n{notification.user_email}"},
                {"type": "mrkdwn", "text": f"*Status:*\n{_STATUS_TEXT[task.status]}"},
                {"type": "mrkdwn", "text": f"*Priority:*\n{_PRIORITY_EMOJI[task.priority]} {task.priority}"},
            ],
        },
    ]

    if notification.action == NotificationAction.REMINDER and notification.reminder_time:
        reminder_at = notification.reminder_time.strftime("%Y-%m-%d %H:%M")
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": f"Reminder time: {reminder_at}"}]})

    if task.description:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Description:*\n{task.description}"}})

    return {"text": headline, "blocks": blocks}


async def send_slack_notification(
    notification: SlackNotification,
    *,
    max_retries: int | None = None,
    retry_delay: float | None = None,
) -> NotificationResult:
    """POST a notification to the Slack webhook with retry.

    Server errors and network failures are retried with exponential backoff;
    client errors are not.

    Args:
        notification: What to send (an explicit webhook URL overrides the configured one)
        max_retries: Attempts before giving up
        retry_delay: Base delay in seconds between attempts

    Returns:
        NotificationResult describing the outcome

    Raises:
        NotificationDeliveryError: If no webhook URL is configured
    """
    webhook_url = notification.webhook_url or settings.slack_webhook_url
    if not webhook_url:
        msg = "Slack webhook URL is not configured"
        raise NotificationDeliveryError(msg)

    attempts = max_retries or constants.NOTIFY_MAX_RETRIES
    delay = retry_delay if retry_delay is not None else constants.NOTIFY_RETRY_DELAY_SECONDS
    payload = build_slack_message(notification)

    with span("notification_service.send_slack_notification"):
        last_error = "Max retries exceeded"
        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(timeout=constants.SLACK_TIMEOUT_SECONDS) as client:
                    response = await client.post(webhook_url, json=payload)

                if response.is_success:
                    logger.info("Slack notification sent", extra={"action": str(notification.action)})
                    return NotificationResult(success=True, status_code=response.status_code)

                if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END:
                    return NotificationResult(
                        success=False,
                        status_code=response.status_code,
                        error=f"Slack API error: {response.status_code} {response.text}",
                    )

                last_error = f"Slack API error: {response.status_code}"
            except httpx.HTTPError as e:
                last_error = f"Failed to reach Slack: {e!s}"

            if attempt < attempts - 1:
                logger.warning(
                    "Slack notification failed (attempt %d/%d): %s",
                    attempt + 1,
                    attempts,
                    last_error,
                )
                await asyncio.sleep(delay * (2**attempt))

        return NotificationResult(success=False, error=last_error)


async def notify_task_event(
    *,
    action: NotificationAction,
    task: Task,
    user_email: str,
    reminder_time: datetime | None = None,
) -> NotificationResult | None:
    """Send a task notification without ever failing the caller.

    Does nothing when no webhook is configured. Delivery failures are logged
    and absorbed.

    Returns:
        NotificationResult, or None if nothing was attempted or delivery failed
    """
    if not settings.slack_webhook_url:
        logger.debug("Slack webhook not configured, skipping notification")
        return None

    notification = SlackNotification(
        action=action,
        task=NotificationTask.from_task(task),
        user_email=user_email,
        reminder_time=reminder_time,
    )

    try:
        result = await send_slack_notification(notification)
        if not result.success:
            raise NotificationDeliveryError(result.error or "Slack notification failed")
        return result
    except Exception:
        logger.exception(
            "Failed to deliver task notification",
            extra={"task_id": task.id, "user_id": task.user_id, "action": str(action)},
        )
        return None
