"""Manual task provider backed by the Orkee REST API."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..errors import ResolutionError, TaskNotFoundError, TransportError
from ..model import Task, TaskEventType, TaskStatus, normalize_updates, validate_new_task
from .base import TaskPoller, TaskProvider, WatchCallback
from .fieldmap import payload_from_updates, task_from_wire
from .http import DEFAULT_API_BASE_URL, DEFAULT_TIMEOUT, ApiClient

POLL_INTERVAL_SECONDS = 5.0

# Responses that mean the cached project id can no longer be trusted.
EVICTING_STATUS_CODES = frozenset({401, 404})


class ManualProviderOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_base_url: str = Field(default=DEFAULT_API_BASE_URL, alias="apiBaseUrl")
    token: Optional[str] = None
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    poll_interval: float = Field(default=POLL_INTERVAL_SECONDS, gt=0, alias="pollInterval")


class ProjectIdCache:
    """Project path -> backend project id, private to one provider instance."""

    def __init__(self) -> None:
        self._ids: dict[str, str] = {}

    def get(self, project_path: str) -> Optional[str]:
        return self._ids.get(project_path)

    def put(self, project_path: str, project_id: str) -> None:
        self._ids[project_path] = project_id

    def evict(self, project_path: str) -> bool:
        return self._ids.pop(project_path, None) is not None

    def __contains__(self, project_path: object) -> bool:
        return project_path in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class ManualTaskProvider(TaskProvider):
    """Tasks stored in Orkee's own database, reached over HTTP.

    The API addresses projects by an opaque id, so the provider resolves each
    project path once through ``POST /api/projects/by-path`` and caches the
    result.  A 401 or 404 from any call evicts the cached id so the next call
    resolves again.
    """

    name = "Manual Tasks"
    type = "manual"

    def __init__(
        self,
        api_base_url: str = DEFAULT_API_BASE_URL,
        *,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self._api = ApiClient(api_base_url, token=token, timeout=timeout, transport=transport)
        self._project_ids = ProjectIdCache()
        self._poller = TaskPoller(self.get_tasks, poll_interval)
        # Last status seen per (project path, task id); feeds previous_status.
        self._known_status: dict[tuple[str, str], TaskStatus] = {}

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "ManualTaskProvider":
        opts = ManualProviderOptions.model_validate(dict(options))
        return cls(
            opts.api_base_url,
            token=opts.token,
            timeout=opts.timeout,
            poll_interval=opts.poll_interval,
        )

    @property
    def project_ids(self) -> ProjectIdCache:
        return self._project_ids

    # -- lifecycle ----------------------------------------------------------

    async def _do_initialize(self) -> None:
        await self._api.ping()

    async def aclose(self) -> None:
        self._poller.cancel_all()
        await self._api.aclose()

    # -- CRUD -----------------------------------------------------------------

    async def get_tasks(self, project_path: str) -> list[Task]:
        project_id = await self._resolve_project_id(project_path)
        data = await self._call(project_path, "GET", f"/api/projects/{project_id}/tasks")
        if data is None:
            data = []
        if not isinstance(data, list):
            raise TransportError("Malformed task list from API: expected an array")
        tasks = [task_from_wire(record) for record in data]
        self._forget_project(project_path)
        for task in tasks:
            self._remember(project_path, task)
        return tasks

    async def create_task(self, project_path: str, task: Mapping[str, Any]) -> Task:
        values = validate_new_task(task)
        project_id = await self._resolve_project_id(project_path)
        data = await self._call(
            project_path,
            "POST",
            f"/api/projects/{project_id}/tasks",
            json=payload_from_updates(values),
        )
        created = task_from_wire(data)
        self._remember(project_path, created)
        self._emit(TaskEventType.CREATED, created)
        return created

    async def _apply_update(
        self,
        project_path: str,
        task_id: str,
        updates: Mapping[str, Any],
        event_type: TaskEventType,
    ) -> Task:
        values = normalize_updates(updates)
        project_id = await self._resolve_project_id(project_path)
        data = await self._call(
            project_path,
            "PUT",
            f"/api/projects/{project_id}/tasks/{task_id}",
            json=payload_from_updates(values),
            task_id=task_id,
        )
        updated = task_from_wire(data)
        previous = self._known_status.get((project_path, updated.id))
        self._remember(project_path, updated)
        previous_status = previous if previous is not None and previous != updated.status else None
        self._emit(event_type, updated, previous_status=previous_status)
        return updated

    async def delete_task(self, project_path: str, task_id: str) -> None:
        project_id = await self._resolve_project_id(project_path)
        await self._call(
            project_path,
            "DELETE",
            f"/api/projects/{project_id}/tasks/{task_id}",
            task_id=task_id,
        )
        self._known_status.pop((project_path, task_id), None)
        self._emit(TaskEventType.DELETED, Task.stub(task_id))

    # -- watch ----------------------------------------------------------------

    def watch_tasks(self, project_path: str, callback: WatchCallback) -> Callable[[], None]:
        return self._poller.watch(project_path, callback)

    # -- internals ------------------------------------------------------------

    def _remember(self, project_path: str, task: Task) -> None:
        self._known_status[(project_path, task.id)] = task.status

    def _forget_project(self, project_path: str) -> None:
        # A full listing replaces everything previously observed for the project.
        for key in [k for k in self._known_status if k[0] == project_path]:
            del self._known_status[key]

    async def _resolve_project_id(self, project_path: str) -> str:
        cached = self._project_ids.get(project_path)
        if cached is not None:
            return cached

        try:
            data = await self._api.request("POST", "/api/projects/by-path", json={"projectRoot": project_path})
        except TransportError as exc:
            if exc.status_code is None:
                # No answer from the server; the path itself may be fine.
                raise
            raise ResolutionError(
                f"Project not found for path {project_path}: {exc.message}",
                project_path=project_path,
                status_code=exc.status_code,
            ) from exc

        project_id = data.get("id") if isinstance(data, dict) else None
        if not project_id:
            raise ResolutionError(f"Project not found for path {project_path}", project_path=project_path)

        self._project_ids.put(project_path, str(project_id))
        logger.debug("Resolved project {} -> {}", project_path, project_id)
        return str(project_id)

    async def _call(
        self,
        project_path: str,
        method: str,
        path: str,
        *,
        json: Any = None,
        task_id: Optional[str] = None,
    ) -> Any:
        try:
            return await self._api.request(method, path, json=json)
        except TransportError as exc:
            if exc.status_code in EVICTING_STATUS_CODES and self._project_ids.evict(project_path):
                logger.info(
                    "Evicted cached project id for {} after HTTP {}", project_path, exc.status_code
                )
            if task_id is not None and exc.status_code == 404:
                raise TaskNotFoundError(task_id, exc.message) from exc
            raise
