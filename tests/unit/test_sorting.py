"""Unit tests for task ordering."""

from datetime import timedelta

import pytest

from src.domain.task import SortKey, SortOrder, SortSpec, TaskPriority, TaskStatus
from src.modules.tasks.sorting import default_column_sorts, sort_columns, sort_tasks, title_key


def _titles(tasks):
    return [task.title for task in tasks]


@pytest.mark.unit
class TestSortByTitle:
    """Case-insensitive title ordering."""

    def test_ascending_ignores_case(self, make_task):
        tasks = [make_task(title="Banana"), make_task(title="apple"), make_task(title="Cherry")]
        result = sort_tasks(tasks, SortSpec(key=SortKey.TITLE, order=SortOrder.ASC))
        assert _titles(result) == ["apple", "Banana", "Cherry"]

    def test_descending(self, make_task):
        tasks = [make_task(title="Banana"), make_task(title="apple"), make_task(title="Cherry")]
        result = sort_tasks(tasks, SortSpec(key=SortKey.TITLE, order=SortOrder.DESC))
        assert _titles(result) == ["Cherry", "Banana", "apple"]

    def test_title_key_normalises_width(self):
        assert title_key("ＡＢＣ") == title_key("abc")


@pytest.mark.unit
class TestSortByPriority:
    """Priority rank ordering."""

    def test_descending_puts_high_first(self, make_task):
        tasks = [
            make_task(title="low", priority=TaskPriority.LOW),
            make_task(title="high", priority=TaskPriority.HIGH),
            make_task(title="medium", priority=TaskPriority.MEDIUM),
        ]
        result = sort_tasks(tasks, SortSpec(key=SortKey.PRIORITY, order=SortOrder.DESC))
        assert _titles(result) == ["high", "medium", "low"]

    def test_ascending_puts_low_first(self, make_task):
        tasks = [make_task(title="high", priority=TaskPriority.HIGH), make_task(title="low", priority=TaskPriority.LOW)]
        result = sort_tasks(tasks, SortSpec(key=SortKey.PRIORITY, order=SortOrder.ASC))
        assert _titles(result) == ["low", "high"]

    def test_equal_keys_keep_input_order_in_both_directions(self, make_task):
        tasks = [make_task(title=f"t{i}", priority=TaskPriority.HIGH) for i in range(4)]
        for order in SortOrder:
            result = sort_tasks(tasks, SortSpec(key=SortKey.PRIORITY, order=order))
            assert _titles(result) == ["t0", "t1", "t2", "t3"]


@pytest.mark.unit
class TestSortByDueDate:
    """Due date ordering with undated tasks last."""

    @pytest.fixture
    def tasks(self, make_task, today):
        return [
            make_task(title="none-1"),
            make_task(title="later", due_date=today + timedelta(days=4)),
            make_task(title="none-2"),
            make_task(title="sooner", due_date=today + timedelta(days=1)),
        ]

    def test_ascending(self, tasks):
        result = sort_tasks(tasks, SortSpec(key=SortKey.DUE_DATE, order=SortOrder.ASC))
        assert _titles(result) == ["sooner", "later", "none-1", "none-2"]

    def test_descending_still_puts_undated_last(self, tasks):
        result = sort_tasks(tasks, SortSpec(key=SortKey.DUE_DATE, order=SortOrder.DESC))
        assert _titles(result) == ["later", "sooner", "none-1", "none-2"]


@pytest.mark.unit
class TestSortByCreatedAt:
    """Default ordering."""

    def test_default_is_newest_first(self, make_task):
        first, second, third = make_task(title="a"), make_task(title="b"), make_task(title="c")
        assert _titles(sort_tasks([first, third, second])) == ["c", "b", "a"]

    def test_input_is_not_modified(self, make_task):
        tasks = [make_task(title="a"), make_task(title="b")]
        sort_tasks(tasks)
        assert _titles(tasks) == ["a", "b"]

    def test_accepts_any_iterable(self, make_task):
        tasks = (make_task(title=t) for t in ("a", "b"))
        assert _titles(sort_tasks(tasks, SortSpec(key=SortKey.TITLE, order=SortOrder.ASC))) == ["a", "b"]


@pytest.mark.unit
class TestSortColumns:
    """Per-status board columns."""

    def test_every_status_gets_a_column(self):
        assert set(sort_columns([], default_column_sorts())) == set(TaskStatus)

    def test_each_column_uses_its_own_sort(self, make_task):
        tasks = [
            make_task(title="b", status=TaskStatus.TODO),
            make_task(title="a", status=TaskStatus.TODO),
            make_task(title="x", status=TaskStatus.DONE, priority=TaskPriority.LOW),
            make_task(title="y", status=TaskStatus.DONE, priority=TaskPriority.HIGH),
        ]
        columns = sort_columns(
            tasks,
            {
                TaskStatus.TODO: SortSpec(key=SortKey.TITLE, order=SortOrder.ASC),
                TaskStatus.DONE: SortSpec(key=SortKey.PRIORITY, order=SortOrder.DESC),
            },
        )

        assert _titles(columns[TaskStatus.TODO]) == ["a", "b"]
        assert _titles(columns[TaskStatus.DONE]) == ["y", "x"]
        assert columns[TaskStatus.IN_PROGRESS] == []

    def test_missing_column_sort_uses_default(self, make_task):
        tasks = [make_task(title="old", status=TaskStatus.IN_PROGRESS), make_task(title="new", status=TaskStatus.IN_PROGRESS)]
        columns = sort_columns(tasks, {})
        assert _titles(columns[TaskStatus.IN_PROGRESS]) == ["new", "old"]
