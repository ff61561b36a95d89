"""Unit tests for filter query building and in-memory matching."""

from datetime import timedelta

import pytest

from src.core.db_client import parse_filter_conditions
from src.core.errors import TaskValidationError
from src.domain.task import DueFilter, FilterSpec, TaskPriority, TaskStatus
from src.modules.tasks.filters import build_filter_query, matches_search, parse_csv_set, task_matches


@pytest.mark.unit
class TestBuildFilterQuery:
    """Store filter construction."""

    def test_owner_clause_always_first(self):
        query = build_filter_query("user-alice", FilterSpec())
        assert query == 'user_id = "user-alice"'

    def test_owner_is_required(self):
        with pytest.raises(ValueError, match="Owner"):
            build_filter_query("", FilterSpec())

    def test_search_matches_title_or_description(self):
        query = build_filter_query("u1", FilterSpec(search="  milk "))
        assert '(title ~ "milk" || description ~ "milk")' in query

    def test_single_status_is_equality(self):
        query = build_filter_query("u1", FilterSpec(statuses=frozenset({TaskStatus.DONE})))
        assert query.endswith('status = "done"')

    def test_multiple_statuses_are_ored_in_fixed_order(self):
        spec = FilterSpec(statuses=frozenset({TaskStatus.DONE, TaskStatus.TODO}))
        query = build_filter_query("u1", spec)
        assert '(status = "todo" || status = "done")' in query

    def test_status_override_replaces_selection(self):
        spec = FilterSpec(statuses=frozenset({TaskStatus.DONE}))
        query = build_filter_query("u1", spec, status_override=TaskStatus.TODO)
        assert 'status = "todo"' in query
        assert "done" not in query

    def test_statuses_can_be_ignored(self):
        spec = FilterSpec(statuses=frozenset({TaskStatus.DONE}))
        assert "status" not in build_filter_query("u1", spec, apply_statuses=False)

    def test_priority_clause(self):
        query = build_filter_query("u1", FilterSpec(priority=TaskPriority.HIGH))
        assert query.endswith('priority = "high"')

    def test_due_filters_never_reach_the_store(self):
        spec = FilterSpec(due_filters=frozenset({DueFilter.OVERDUE}))
        assert "due" not in build_filter_query("u1", spec)

    def test_quotes_in_search_are_escaped(self):
        query = build_filter_query("u1", FilterSpec(search='say "hi" || x'))
        groups = parse_filter_conditions(query)

        assert len(groups) == 2
        assert [c.value for c in groups[1]] == ['say "hi" || x', 'say "hi" || x']

    def test_query_parses_into_and_of_or_groups(self):
        spec = FilterSpec(
            search="report",
            statuses=frozenset({TaskStatus.TODO, TaskStatus.IN_PROGRESS}),
            priority=TaskPriority.LOW,
        )
        groups = parse_filter_conditions(build_filter_query("u1", spec))

        assert [[c.field for c in group] for group in groups] == [
            ["user_id"],
            ["title", "description"],
            ["status", "status"],
            ["priority"],
        ]


@pytest.mark.unit
class TestParseCsvSet:
    """Comma-separated query parameters."""

    def test_empty_means_no_restriction(self):
        assert parse_csv_set(None, TaskStatus) == frozenset()
        assert parse_csv_set("", TaskStatus) == frozenset()
        assert parse_csv_set(" , ", TaskStatus) == frozenset()

    def test_parses_members(self):
        assert parse_csv_set("todo, done", TaskStatus) == {TaskStatus.TODO, TaskStatus.DONE}

    def test_unknown_value_is_rejected(self):
        with pytest.raises(TaskValidationError, match="archived"):
            parse_csv_set("todo,archived", TaskStatus)


@pytest.mark.unit
class TestTaskMatches:
    """In-memory equivalent of the store query."""

    def test_search_is_case_insensitive_over_title_and_description(self, make_task):
        task = make_task(title="Buy MILK", description="From the Corner shop")
        assert matches_search(task, "milk")
        assert matches_search(task, "corner")
        assert not matches_search(task, "bread")
        assert matches_search(task, "")

    def test_other_owners_never_match(self, make_task):
        task = make_task(user_id="user-bob")
        assert not task_matches(task, FilterSpec(), owner_id="user-alice")
        assert task_matches(task, FilterSpec(), owner_id="user-bob")

    def test_status_and_priority(self, make_task):
        task = make_task(status=TaskStatus.DONE, priority=TaskPriority.HIGH)
        assert task_matches(task, FilterSpec(statuses=frozenset({TaskStatus.DONE})))
        assert not task_matches(task, FilterSpec(statuses=frozenset({TaskStatus.TODO})))
        assert not task_matches(task, FilterSpec(priority=TaskPriority.LOW))

    def test_due_windows(self, make_task, today):
        overdue = make_task(due_date=today - timedelta(days=2))
        spec = FilterSpec(due_filters=frozenset({DueFilter.OVERDUE}))

        assert task_matches(overdue, spec, today=today)
        assert not task_matches(make_task(), spec, today=today)
