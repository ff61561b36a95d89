"""Where a TaskBoard gets its tasks and change events from.

`ServiceTaskSource` calls the task service in-process; `HttpTaskSource` talks
to the HTTP API and follows the Server-Sent Events stream.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from src.core.change_feed import ChangeFeed, change_feed
from src.core.config import constants
from src.core.errors import (
    AuthenticationRequiredError,
    DatabaseError,
    RecordNotFoundError,
    StatusCountError,
    TaskValidationError,
)
from src.domain.create_models import TaskCreate
from src.domain.events import ChangeEvent
from src.domain.task import FilterSpec, Task, TaskListResult, TaskStatus
from src.domain.update_models import TaskUpdate
from src.domain.user import AuthenticatedUser
from src.modules.tasks import service


logger = logging.getLogger(__name__)


class TaskSource(Protocol):
    """Store operations a TaskBoard depends on."""

    async def list_tasks(self, spec: FilterSpec, *, page: int | None = None) -> TaskListResult: ...

    async def create_task(self, data: TaskCreate) -> Task: ...

    async def update_task(self, task_id: str, data: TaskUpdate) -> Task: ...

    async def delete_task(self, task_id: str) -> None: ...

    def subscribe(self) -> AbstractAsyncContextManager[AsyncIterator[ChangeEvent]]: ...


class ServiceTaskSource:
    """Task source backed by the in-process task service."""

    def __init__(self, user: AuthenticatedUser, *, feed: ChangeFeed | None = None) -> None:
        self.user = user
        self._feed = feed or change_feed

    async def list_tasks(self, spec: FilterSpec, *, page: int | None = None) -> TaskListResult:
        return await service.list_tasks(self.user, spec, page=page)

    async def create_task(self, data: TaskCreate) -> Task:
        return await service.create_task(self.user, data)

    async def update_task(self, task_id: str, data: TaskUpdate) -> Task:
        return await service.update_task(self.user, task_id, data)

    async def delete_task(self, task_id: str) -> None:
        await service.delete_task(self.user, task_id)

    def subscribe(self) -> AbstractAsyncContextManager[AsyncIterator[ChangeEvent]]:
        return self._feed.subscribe(self.user.id)


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _raise_for_status(response: httpx.Response) -> None:
    """Translate an error response into the matching task error."""
    if response.is_success:
        return

    body = _error_body(response)
    message = str(body.get("error") or body.get("detail") or response.text or f"HTTP {response.status_code}")
    code = body.get("code")

    if response.status_code == 401:  # noqa: PLR2004
        raise AuthenticationRequiredError(message)
    if response.status_code == 404:  # noqa: PLR2004
        raise RecordNotFoundError(message)
    if code == "ERR_STATUS_COUNT_FAILED":
        raise StatusCountError(message)
    if response.status_code in (400, 422) and code != "ERR_STORE":
        raise TaskValidationError(message)
    raise DatabaseError(message)


def _list_params(spec: FilterSpec, page: int | None) -> dict[str, str]:
    params: dict[str, str] = {}
    if spec.search:
        params["search"] = spec.search
    if spec.statuses:
        params["statuses"] = ",".join(status.value for status in TaskStatus if status in spec.statuses)
    if spec.due_filters:
        params["dueFilters"] = ",".join(sorted(due.value for due in spec.due_filters))
    if spec.priority is not None:
        params["priority"] = spec.priority.value
    if page is not None:
        params["page"] = str(page)
    return params


def _decode_event(data_lines: list[str]) -> ChangeEvent | None:
    try:
        return ChangeEvent.model_validate(json.loads("\n".join(data_lines)))
    except (ValueError, ValidationError) as e:
        logger.warning("Discarding malformed change event: %s", e)
        return None


async def _iter_sse_events(response: httpx.Response) -> AsyncIterator[ChangeEvent]:
    """Parse `data:` frames of a Server-Sent Events stream into change events."""
    data_lines: list[str] = []
    async for line in response.aiter_lines():
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
            continue
        if line or not data_lines:
            # Comments (keepalives), event names and blank separators without data
            continue
        event = _decode_event(data_lines)
        data_lines = []
        if event is not None:
            yield event

    # A stream may end without the blank line closing its last frame
    if data_lines and (event := _decode_event(data_lines)) is not None:
        yield event


class HttpTaskSource:
    """Task source backed by the HTTP API.

    Args:
        base_url: Root URL of the service
        token: Signed session token sent as a Bearer credential
        client: Optional preconfigured client (closed by the caller)
    """

    def __init__(self, base_url: str, token: str, *, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=constants.API_TIMEOUT_SECONDS)
        self._owns_client = client is None
        self._headers = {"Authorization": f"Bearer {token}"}

    async def aclose(self) -> None:
        """Close the underlying client if this source created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:  # noqa: ANN401
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            msg = f"Task API unreachable: {e!s}"
            raise DatabaseError(msg) from e
        _raise_for_status(response)
        return response

    async def list_tasks(self, spec: FilterSpec, *, page: int | None = None) -> TaskListResult:
        response = await self._request("GET", "/api/tasks", params=_list_params(spec, page))
        return TaskListResult.model_validate(response.json())

    async def create_task(self, data: TaskCreate) -> Task:
        response = await self._request("POST", "/api/tasks", json=data.model_dump(mode="json"))
        return Task.model_validate(response.json())

    async def update_task(self, task_id: str, data: TaskUpdate) -> Task:
        response = await self._request(
            "PATCH", f"/api/tasks/{task_id}", json=data.model_dump(mode="json", exclude_unset=True)
        )
        return Task.model_validate(response.json())

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/api/tasks/{task_id}")

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[AsyncIterator[ChangeEvent]]:
        """Follow the caller's change events until the block exits."""
        try:
            async with self._client.stream(
                "GET", "/api/tasks/events", headers=self._headers, timeout=None
            ) as response:
                if not response.is_success:
                    await response.aread()
                    _raise_for_status(response)
                yield _iter_sse_events(response)
        except httpx.HTTPError as e:
            msg = f"Task event stream unavailable: {e!s}"
            raise DatabaseError(msg) from e
