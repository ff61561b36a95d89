"""Local task collection kept consistent with store change events.

`TaskCollection` is the only writer of the locally held tasks. It merges full
reloads, optimistic local mutations and pushed change events, which may arrive
duplicated or out of order.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from src.core.errors import StaleRequestDiscardedError
from src.domain.events import ChangeEvent, ChangeEventType
from src.domain.task import Task


logger = logging.getLogger(__name__)

TaskPredicate = Callable[[Task], bool]


@dataclass(frozen=True)
class LocalChange:
    """An optimistic change to one task, kept until the store answers.

    `before` is the held copy the change replaced (None for a new task) and
    `revision` the collection revision when the change was made.
    """

    task_id: str
    before: Task | None
    position: int | None
    revision: int


class RefreshTokens:
    """Cancellation tokens for list refreshes: the last request wins.

    Issuing a token invalidates every token issued before it.
    """

    def __init__(self) -> None:
        self._current = 0

    def issue(self) -> int:
        """Allocate a token for a new refresh."""
        self._current += 1
        return self._current

    def is_current(self, token: int) -> bool:
        """Whether no newer refresh has been issued since `token`."""
        return token == self._current

    def ensure_current(self, token: int) -> None:
        """Raise if a newer refresh superseded `token`.

        Raises:
            StaleRequestDiscardedError: If the token is stale
        """
        if not self.is_current(token):
            msg = f"Refresh {token} superseded by {self._current}"
            raise StaleRequestDiscardedError(msg)


class TaskCollection:
    """Ordered, id-unique collection of tasks.

    Store writes (reloads and change events) always win over optimistic
    local changes: rolling back a failed local change only touches that one
    task, and only when no newer store write has replaced it.

    Args:
        tasks: Initial contents
        predicate: Optional membership test for the active filter; rows that
            fail it are dropped or never added
    """

    def __init__(self, tasks: Iterable[Task] = (), *, predicate: TaskPredicate | None = None) -> None:
        self._tasks: list[Task] = []
        self._deleted: set[str] = set()
        self._predicate = predicate
        # Store-write bookkeeping for rolling back local changes
        self._revision = 0
        self._reload_revision = 0
        self._event_revisions: dict[str, int] = {}
        # Local creates awaiting the store, kept across reloads
        self._pending_inserts: dict[str, Task] = {}
        # Locally deleted ids awaiting the store, with any store copy seen meanwhile
        self._hidden: set[str] = set()
        self._shadows: dict[str, Task] = {}
        self.replace_all(tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return self._index(str(task_id)) is not None

    def snapshot(self) -> tuple[Task, ...]:
        """Read-only view of the current contents."""
        return tuple(self._tasks)

    def get(self, task_id: str) -> Task | None:
        """Task with the given id, if held."""
        index = self._index(task_id)
        return None if index is None else self._tasks[index]

    def set_predicate(self, predicate: TaskPredicate | None) -> None:
        """Change the membership test and drop rows that no longer pass it."""
        self._predicate = predicate
        if predicate is not None:
            self._tasks = [task for task in self._tasks if predicate(task)]

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Commit an authoritative reload.

        Duplicate ids keep their first occurrence. Deletion markers are
        cleared since the reload already reflects them. Local creates still
        awaiting the store stay in front; locally deleted ids stay hidden.
        """
        self._revision += 1
        self._reload_revision = self._revision

        seen: set[str] = set()
        fresh = [task for task in self._pending_inserts.values() if self._predicate is None or self._predicate(task)]
        for task in tasks:
            if task.id in seen:
                continue
            seen.add(task.id)
            if task.id in self._hidden:
                self._shadows[task.id] = task
                continue
            fresh.append(task)
        self._tasks = fresh
        self._deleted.clear()
        self._event_revisions.clear()

    def apply_event(self, event: ChangeEvent) -> bool:
        """Merge one change event.

        INSERT prepends an unseen task (a duplicate keeps the newer copy);
        UPDATE replaces a held task and is ignored otherwise; DELETE removes
        the task and stops later events from bringing it back.

        Returns:
            True if the collection changed
        """
        self._revision += 1
        self._event_revisions[event.task_id] = self._revision

        if event.event_type == ChangeEventType.DELETE:
            self._shadows.pop(event.task_id, None)
            return self._remove(event.task_id)

        task = event.to_task()
        if task.id in self._deleted:
            logger.debug("Ignoring %s for deleted task %s", event.event_type, task.id)
            return False

        if task.id in self._hidden:
            shadow = self._shadows.get(task.id)
            if shadow is None or task.updated_at >= shadow.updated_at:
                self._shadows[task.id] = task
            return False

        if event.event_type == ChangeEventType.INSERT:
            return self._upsert(task, insert_if_absent=True)
        return self._upsert(task, insert_if_absent=False)

    def apply_local_insert(self, task: Task) -> LocalChange:
        """Optimistically add a task created by this client."""
        self._pending_inserts[task.id] = task
        self._upsert(task, insert_if_absent=True)
        return LocalChange(task_id=task.id, before=None, position=None, revision=self._revision)

    def apply_local_update(self, task_id: str, changes: Mapping[str, Any]) -> LocalChange | None:
        """Optimistically apply supplied field changes to a held task.

        `updated_at` is left alone so the server's copy always supersedes it.

        Returns:
            The change to hand to `revert` or `confirm`, or None if the task is not held
        """
        index = self._index(task_id)
        if index is None:
            return None
        before = self._tasks[index]
        updated = before.model_copy(update=dict(changes))
        if self._predicate is not None and not self._predicate(updated):
            del self._tasks[index]
        else:
            self._tasks[index] = updated
        return LocalChange(task_id=task_id, before=before, position=index, revision=self._revision)

    def apply_local_delete(self, task_id: str) -> LocalChange:
        """Optimistically hide a task deleted by this client.

        The id is only marked deleted once the store confirms.
        """
        index = self._index(task_id)
        before = None if index is None else self._tasks.pop(index)
        self._hidden.add(task_id)
        return LocalChange(task_id=task_id, before=before, position=index, revision=self._revision)

    def confirm(self, change: LocalChange) -> None:
        """Settle a local change the store accepted."""
        self._pending_inserts.pop(change.task_id, None)
        if change.task_id in self._hidden:
            self._hidden.discard(change.task_id)
            self._shadows.pop(change.task_id, None)
            self._remove(change.task_id)

    def revert(self, change: LocalChange) -> bool:
        """Undo a local change the store rejected.

        Only the changed task is touched. A store copy seen while the change
        was pending wins over the saved copy, and a store delete stays deleted.

        Returns:
            True if the collection changed
        """
        task_id = change.task_id
        if self._pending_inserts.pop(task_id, None) is not None:
            return self.discard(task_id)

        self._hidden.discard(task_id)
        shadow = self._shadows.pop(task_id, None)
        if task_id in self._deleted:
            return False
        if shadow is not None:
            return self._upsert(shadow, insert_if_absent=True)
        if change.before is None:
            return False

        superseded = (
            self._event_revisions.get(task_id, 0) > change.revision or self._reload_revision > change.revision
        )
        if superseded:
            logger.debug("Keeping store copy of task %s over rolled-back local change", task_id)
            return False
        if self._predicate is not None and not self._predicate(change.before):
            return self.discard(task_id)

        index = self._index(task_id)
        if index is None:
            self._tasks.insert(min(change.position or 0, len(self._tasks)), change.before)
        else:
            self._tasks[index] = change.before
        return True

    def discard(self, task_id: str) -> bool:
        """Drop a task without remembering it as deleted."""
        index = self._index(task_id)
        if index is None:
            return False
        del self._tasks[index]
        return True

    def _index(self, task_id: str) -> int | None:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return None

    def _remove(self, task_id: str) -> bool:
        self._deleted.add(task_id)
        return self.discard(task_id)

    def _upsert(self, task: Task, *, insert_if_absent: bool) -> bool:
        index = self._index(task.id)
        matches = self._predicate is None or self._predicate(task)

        if index is None:
            if not insert_if_absent or not matches:
                return False
            self._tasks.insert(0, task)
            return True

        current = self._tasks[index]
        if task.updated_at < current.updated_at:
            logger.debug("Ignoring older copy of task %s", task.id)
            return False
        if not matches:
            del self._tasks[index]
            return True
        if task == current:
            return False
        self._tasks[index] = task
        return True
