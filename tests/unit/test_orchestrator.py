"""Unit tests for the task board refresh pipeline."""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from src.core.errors import DatabaseError, StatusCountError, TaskValidationError
from src.domain.create_models import TaskCreate
from src.domain.events import ChangeEvent, ChangeEventType
from src.domain.task import (
    FilterSpec,
    SortKey,
    SortOrder,
    SortSpec,
    StatusCounts,
    TaskListResult,
    TaskStatus,
)
from src.domain.update_models import TaskUpdate
from src.modules.tasks.aggregation import count_in_memory
from src.modules.tasks.orchestrator import LOCAL_ID_PREFIX, TaskBoard
from src.modules.tasks.sources import ServiceTaskSource


def _result(*tasks):
    return TaskListResult(tasks=list(tasks), status_counts=count_in_memory(tasks))


async def _until(condition, attempts=200):
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


class FakeSource:
    """Scriptable task source.

    With `hold` set, each list call parks on a future the test resolves.
    """

    def __init__(self, result=None):
        self.result = result or _result()
        self.hold = False
        self.held: list[asyncio.Future] = []
        self.list_calls: list[tuple[FilterSpec, int | None]] = []
        self.events: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.subscribed = False
        self.on_create = None
        self.on_update = None
        self.on_delete = None

    async def list_tasks(self, spec, *, page=None):
        self.list_calls.append((spec, page))
        if self.hold:
            future = asyncio.get_running_loop().create_future()
            self.held.append(future)
            return await future
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result

    async def create_task(self, data):
        return await self.on_create(data)

    async def update_task(self, task_id, data):
        return await self.on_update(task_id, data)

    async def delete_task(self, task_id):
        await self.on_delete(task_id)

    @asynccontextmanager
    async def subscribe(self):
        self.subscribed = True
        try:
            yield self._stream()
        finally:
            self.subscribed = False

    async def _stream(self):
        while True:
            yield await self.events.get()


@pytest.mark.unit
class TestRefresh:
    """Reloading the board."""

    @pytest.mark.asyncio
    async def test_commits_tasks_and_counts(self, make_task):
        tasks = [make_task(status=TaskStatus.TODO), make_task(status=TaskStatus.DONE)]
        board = TaskBoard(FakeSource(_result(*tasks)))

        view = await board.refresh()

        assert set(view.tasks) == set(tasks)
        assert view.status_counts == StatusCounts(total=2, todo=1, done=1)
        assert view.columns[TaskStatus.DONE] == (tasks[1],)

    @pytest.mark.asyncio
    async def test_newer_refresh_wins_when_older_finishes_last(self, make_task):
        source = FakeSource()
        source.hold = True
        board = TaskBoard(source)
        old, new = make_task(title="old"), make_task(title="new")

        first = asyncio.create_task(board.refresh())
        await _until(lambda: len(source.held) == 1)
        second = asyncio.create_task(board.refresh())
        await _until(lambda: len(source.held) == 2)

        source.held[1].set_result(_result(new))
        assert (await second).tasks == (new,)

        source.held[0].set_result(_result(old))
        assert await first is None
        assert board.view().tasks == (new,)

    @pytest.mark.asyncio
    async def test_stale_result_arriving_first_is_discarded(self, make_task):
        source = FakeSource()
        source.hold = True
        board = TaskBoard(source)

        first = asyncio.create_task(board.refresh())
        await _until(lambda: len(source.held) == 1)
        second = asyncio.create_task(board.refresh())
        await _until(lambda: len(source.held) == 2)

        source.held[0].set_result(_result(make_task(title="stale")))
        assert await first is None
        assert board.view().tasks == ()

        source.held[1].set_result(_result(make_task(title="fresh")))
        assert [t.title for t in (await second).tasks] == ["fresh"]

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_view(self, make_task):
        task = make_task()
        source = FakeSource(_result(task))
        board = TaskBoard(source)
        await board.refresh()

        source.result = StatusCountError("count failed")
        with pytest.raises(StatusCountError):
            await board.refresh()

        assert board.view().tasks == (task,)
        assert board.view().status_counts.total == 1

    @pytest.mark.asyncio
    async def test_failure_of_superseded_refresh_is_ignored(self):
        source = FakeSource()
        source.hold = True
        board = TaskBoard(source)

        first = asyncio.create_task(board.refresh())
        await _until(lambda: len(source.held) == 1)
        second = asyncio.create_task(board.refresh())
        await _until(lambda: len(source.held) == 2)

        source.held[0].set_exception(DatabaseError("timeout"))
        source.held[1].set_result(_result())

        assert await first is None
        assert await second is not None


@pytest.mark.unit
class TestStateChanges:
    """Filter, sort and page setters."""

    @pytest.mark.asyncio
    async def test_set_filter_resets_page_and_requeries(self):
        source = FakeSource()
        board = TaskBoard(source, page=3)

        spec = FilterSpec(search="milk")
        await board.set_filter(spec)

        assert source.list_calls[-1] == (spec, 1)
        assert board.page == 1

    @pytest.mark.asyncio
    async def test_set_filter_hides_non_matching_rows_immediately(self, make_task):
        todo, done = make_task(status=TaskStatus.TODO), make_task(status=TaskStatus.DONE)
        source = FakeSource(_result(todo, done))
        board = TaskBoard(source)
        await board.refresh()

        source.hold = True
        pending = asyncio.create_task(board.set_filter(FilterSpec(statuses=frozenset({TaskStatus.DONE}))))
        await _until(lambda: len(source.held) == 1)

        assert board.view().tasks == (done,)
        source.held[0].set_result(_result(done))
        await pending

    @pytest.mark.asyncio
    async def test_sorts_apply_to_list_and_columns(self, make_task):
        tasks = [make_task(title="b"), make_task(title="a"), make_task(title="c", status=TaskStatus.DONE)]
        board = TaskBoard(FakeSource(_result(*tasks)))

        await board.set_sort(SortSpec(key=SortKey.TITLE, order=SortOrder.ASC))
        view = await board.set_column_sort(TaskStatus.TODO, SortSpec(key=SortKey.TITLE, order=SortOrder.DESC))

        assert [t.title for t in view.tasks] == ["a", "b", "c"]
        assert [t.title for t in view.columns[TaskStatus.TODO]] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_set_page(self):
        source = FakeSource()
        board = TaskBoard(source)

        await board.set_page(2)

        assert source.list_calls[-1][1] == 2


@pytest.mark.unit
class TestOptimisticMutations:
    """Local changes shown before the store confirms, rolled back on failure."""

    @pytest.mark.asyncio
    async def test_create_shows_placeholder_then_server_task(self, make_task):
        source = FakeSource()
        board = TaskBoard(source)
        stored = make_task(title="Buy milk")
        seen_during_call = []

        async def create(data):
            seen_during_call.extend(board.view().tasks)
            source.result = _result(stored)
            return stored

        source.on_create = create
        task = await board.create_task(TaskCreate(title="Buy milk"))

        assert task == stored
        assert [t.title for t in seen_during_call] == ["Buy milk"]
        assert seen_during_call[0].id.startswith(LOCAL_ID_PREFIX)
        assert board.view().tasks == (stored,)

    @pytest.mark.asyncio
    async def test_failed_create_rolls_back(self, make_task):
        existing = make_task()
        source = FakeSource(_result(existing))
        board = TaskBoard(source)
        await board.refresh()

        async def create(data):
            raise TaskValidationError("Title is required")

        source.on_create = create
        with pytest.raises(TaskValidationError):
            await board.create_task(TaskCreate(title="x"))

        assert board.view().tasks == (existing,)

    @pytest.mark.asyncio
    async def test_failed_update_restores_previous_task(self, make_task):
        task = make_task(title="before")
        source = FakeSource(_result(task))
        board = TaskBoard(source)
        await board.refresh()
        seen_during_call = []

        async def update(task_id, data):
            seen_during_call.extend(board.view().tasks)
            raise DatabaseError("write failed")

        source.on_update = update
        with pytest.raises(DatabaseError):
            await board.update_task(task.id, TaskUpdate(title="after"))

        assert [t.title for t in seen_during_call] == ["after"]
        assert board.view().tasks == (task,)

    @pytest.mark.asyncio
    async def test_update_keeps_server_copy(self, make_task):
        task = make_task(title="before")
        source = FakeSource(_result(task))
        board = TaskBoard(source)
        await board.refresh()
        stored = task.model_copy(update={"title": "after", "updated_at": task.updated_at + timedelta(seconds=1)})

        async def update(task_id, data):
            source.result = _result(stored)
            return stored

        source.on_update = update
        assert await board.update_task(task.id, TaskUpdate(title="after")) == stored
        assert board.view().tasks == (stored,)

    @pytest.mark.asyncio
    async def test_failed_delete_restores_task(self, make_task):
        task = make_task()
        source = FakeSource(_result(task))
        board = TaskBoard(source)
        await board.refresh()

        async def delete(task_id):
            raise DatabaseError("write failed")

        source.on_delete = delete
        with pytest.raises(DatabaseError):
            await board.delete_task(task.id)

        assert board.view().tasks == (task,)

    @pytest.mark.asyncio
    async def test_failed_create_keeps_task_deleted_meanwhile(self, make_task):
        kept, gone = make_task(title="kept"), make_task(title="gone")
        source = FakeSource(_result(kept, gone))
        board = TaskBoard(source)
        await board.refresh()

        async def create(data):
            source.result = _result(kept)
            await board.handle_event(
                ChangeEvent(event_type=ChangeEventType.DELETE, row={"id": gone.id, "user_id": gone.user_id})
            )
            raise DatabaseError("write failed")

        source.on_create = create
        with pytest.raises(DatabaseError):
            await board.create_task(TaskCreate(title="draft"))

        assert board.view().tasks == (kept,)

    @pytest.mark.asyncio
    async def test_failed_update_keeps_task_deleted_meanwhile(self, make_task):
        task = make_task(title="before")
        source = FakeSource(_result(task))
        board = TaskBoard(source)
        await board.refresh()

        async def update(task_id, data):
            source.result = _result()
            await board.handle_event(
                ChangeEvent(event_type=ChangeEventType.DELETE, row={"id": task.id, "user_id": task.user_id})
            )
            raise DatabaseError("task not found")

        source.on_update = update
        with pytest.raises(DatabaseError):
            await board.update_task(task.id, TaskUpdate(title="after"))

        assert board.view().tasks == ()

    @pytest.mark.asyncio
    async def test_failed_update_keeps_newer_store_copy(self, make_task):
        task = make_task(title="before")
        source = FakeSource(_result(task))
        board = TaskBoard(source)
        await board.refresh()
        elsewhere = task.model_copy(update={"title": "elsewhere", "updated_at": task.updated_at + timedelta(seconds=1)})

        async def update(task_id, data):
            source.result = _result(elsewhere)
            await board.handle_event(ChangeEvent.for_task(ChangeEventType.UPDATE, elsewhere))
            raise DatabaseError("write conflict")

        source.on_update = update
        with pytest.raises(DatabaseError):
            await board.update_task(task.id, TaskUpdate(title="after"))

        assert board.view().tasks == (elsewhere,)
    @pytest.mark.asyncio
    async def test_refresh_failure_after_mutation_is_not_raised(self, make_task):
        task = make_task()
        source = FakeSource(_result(task))
        board = TaskBoard(source)
        await board.refresh()

        async def delete(task_id):
            source.result = DatabaseError("list failed")

        source.on_delete = delete
        await board.delete_task(task.id)

        assert board.view().tasks == ()


@pytest.mark.unit
class TestLive:
    """Following pushed change events."""

    @pytest.mark.asyncio
    async def test_event_is_merged_and_subscription_released(self, make_task):
        task = make_task()
        source = FakeSource()
        board = TaskBoard(source)

        async with board.live():
            assert source.subscribed
            source.result = _result(task)
            source.events.put_nowait(ChangeEvent.for_task(ChangeEventType.INSERT, task))
            await _until(lambda: board.view().tasks == (task,))
            assert len(source.list_calls) >= 2

        assert not source.subscribed

    @pytest.mark.asyncio
    async def test_malformed_event_does_not_stop_later_events(self, make_task):
        task = make_task()
        source = FakeSource()
        board = TaskBoard(source)

        async with board.live():
            source.events.put_nowait(
                ChangeEvent(event_type=ChangeEventType.INSERT, row={"id": "broken", "user_id": task.user_id})
            )
            source.result = _result(task)
            source.events.put_nowait(ChangeEvent.for_task(ChangeEventType.INSERT, task))
            await _until(lambda: board.view().tasks == (task,))

    @pytest.mark.asyncio
    async def test_subscription_released_when_block_raises(self):
        source = FakeSource()
        board = TaskBoard(source)

        with pytest.raises(RuntimeError):
            async with board.live():
                raise RuntimeError("boom")

        assert not source.subscribed


@pytest.mark.unit
class TestServiceSource:
    """Board running against the in-process service."""

    @pytest.mark.asyncio
    async def test_sees_tasks_created_elsewhere(self, patched_db, feed, alice):
        board = TaskBoard(ServiceTaskSource(alice, feed=feed))
        other_tab = ServiceTaskSource(alice, feed=feed)

        async with board.live():
            assert feed.subscriber_count(alice.id) == 1
            created = await other_tab.create_task(TaskCreate(title="From another tab"))
            await _until(lambda: any(t.id == created.id for t in board.view().tasks))

        assert feed.subscriber_count(alice.id) == 0
        assert board.view().status_counts.total == 1

    @pytest.mark.asyncio
    async def test_create_through_board(self, patched_db, feed, alice):
        board = TaskBoard(ServiceTaskSource(alice, feed=feed))

        task = await board.create_task(TaskCreate(title="Buy milk"))

        assert board.view().tasks == (task,)
        assert patched_db.records("tasks")[0]["title"] == "Buy milk"
