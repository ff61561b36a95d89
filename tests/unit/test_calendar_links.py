"""Unit tests for Google Calendar links."""

from datetime import UTC, date, datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from src.services.calendar_links import build_google_calendar_url, calendar_url_for_task, event_start


def _query(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query, keep_blank_values=True).items()}


@pytest.mark.unit
class TestBuildGoogleCalendarUrl:
    """Test link construction."""

    def test_prefills_event_fields(self):
        """Title, details and UTC dates are encoded."""
        start = datetime(2025, 6, 10, 9, 30, tzinfo=UTC)
        url = build_google_calendar_url("Dentist & co", "Bring card", start, start + timedelta(hours=1))

        assert url.startswith("https://calendar.google.com/calendar/render?action=TEMPLATE&")
        query = _query(url)
        assert query["action"] == "TEMPLATE"
        assert query["text"] == "Dentist & co"
        assert query["details"] == "Bring card"
        assert query["dates"] == "20250610T093000Z/20250610T103000Z"

    def test_converts_to_utc(self):
        """Aware datetimes in other zones are converted."""
        tokyo = timezone(timedelta(hours=9))
        start = datetime(2025, 6, 10, 9, 0, tzinfo=tokyo)

        url = build_google_calendar_url("Standup", None, start, start + timedelta(minutes=15))

        assert _query(url)["dates"] == "20250610T000000Z/20250610T001500Z"
        assert _query(url)["details"] == ""

    def test_naive_datetimes_are_utc(self):
        """Naive datetimes are not shifted."""
        url = build_google_calendar_url("x", None, datetime(2025, 1, 1, 12), datetime(2025, 1, 1, 13))
        assert _query(url)["dates"] == "20250101T120000Z/20250101T130000Z"


@pytest.mark.unit
class TestTaskEvents:
    """Test event timing for tasks."""

    def test_due_task_starts_at_midnight_utc(self):
        """A due date maps to midnight of that day."""
        assert event_start(date(2025, 6, 12)) == datetime(2025, 6, 12, tzinfo=UTC)

    def test_undated_task_starts_now(self):
        """Without a due date the event starts at the given time."""
        now = datetime(2025, 6, 10, 15, 45, tzinfo=UTC)
        assert event_start(None, now) == now

    def test_task_event_lasts_one_hour(self, make_task):
        """The event spans one hour from its start."""
        task = make_task(title="Pay rent", description="Landlord", due_date=date(2025, 7, 1))

        query = _query(calendar_url_for_task(task))

        assert query["text"] == "Pay rent"
        assert query["details"] == "Landlord"
        assert query["dates"] == "20250701T000000Z/20250701T010000Z"
