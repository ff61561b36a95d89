"""Google Calendar event-creation links for tasks."""

from datetime import UTC, date, datetime, time, timedelta
from urllib.parse import urlencode

from src.domain.task import Task


GOOGLE_CALENDAR_BASE_URL = "https://calendar.google.com/calendar/render?action=TEMPLATE"
EVENT_DURATION = timedelta(hours=1)


def _format_utc(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def build_google_calendar_url(title: str, description: str | None, start: datetime, end: datetime) -> str:
    """Link that opens Google Calendar's new-event form prefilled.

    Naive datetimes are taken as UTC.
    """
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    if end.tzinfo is None:
        end = end.replace(tzinfo=UTC)

    params = urlencode(
        {
            "text": title,
            "details": description or "",
            "dates": f"{_format_utc(start)}/{_format_utc(end)}",
        }
    )
    return f"{GOOGLE_CALENDAR_BASE_URL}&{params}"


def event_start(due_date: date | None, now: datetime | None = None) -> datetime:
    """Start of a task's calendar event: midnight (UTC) of the due day, else now."""
    if due_date is None:
        return now or datetime.now(UTC)
    return datetime.combine(due_date, time.min, tzinfo=UTC)


def calendar_url_for_task(task: Task, now: datetime | None = None) -> str:
    """One-hour calendar event for a task."""
    start = event_start(task.due_date, now)
    return build_google_calendar_url(task.title, task.description, start, start + EVENT_DURATION)
