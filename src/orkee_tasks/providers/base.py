"""The task provider contract.

A provider adapts one backend technology to the normalized :class:`Task`
model.  Callers obtain providers from :mod:`orkee_tasks.providers.registry`
and never construct a concrete adapter themselves.

Lifecycle::

    provider = create_provider(config)      # no I/O
    await provider.initialize()             # connectivity check, idempotent
    tasks = await provider.get_tasks(path)
    cancel = provider.watch_tasks(path, on_snapshot)   # optional capability
    ...
    cancel()
    await provider.aclose()
"""

from __future__ import annotations

import abc
import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, runtime_checkable

from loguru import logger

from ..events import TaskEventBus, TaskEventListener
from ..model import Task, TaskEvent, TaskEventType, TaskStatus

WatchCallback = Callable[[list[Task]], None]

_UNSET: Any = object()


class TaskProvider(abc.ABC):
    """Abstract base for backend adapters.

    Subclasses implement the CRUD coroutines and may override
    :meth:`_do_initialize`.  Every mutating operation emits exactly one
    :class:`TaskEvent` on :attr:`events`.
    """

    #: Human-readable name shown in the dashboard.
    name: str = "base"

    #: Provider-type tag used by the factory.
    type: str = "base"

    def __init__(self) -> None:
        self.events = TaskEventBus()
        self._initialized = False

    # -- lifecycle ----------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Prepare the provider; a no-op once it has succeeded."""
        if self._initialized:
            return
        await self._do_initialize()
        self._initialized = True
        logger.info("Task provider '{}' initialized", self.type)

    async def _do_initialize(self) -> None:
        return None

    async def aclose(self) -> None:
        return None

    async def __aenter__(self) -> "TaskProvider":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # -- CRUD -----------------------------------------------------------------

    @abc.abstractmethod
    async def get_tasks(self, project_path: str) -> list[Task]:
        """Return the full current snapshot of tasks for *project_path*."""
        ...

    @abc.abstractmethod
    async def create_task(self, project_path: str, task: Mapping[str, Any]) -> Task:
        """Create a task from a partial mapping.

        Raises :class:`~orkee_tasks.errors.ValidationError` before any I/O
        when the title is missing or blank.
        """
        ...

    async def update_task(self, project_path: str, task_id: str, updates: Mapping[str, Any]) -> Task:
        """Apply *updates* field by field and emit an ``updated`` event."""
        return await self._apply_update(project_path, task_id, updates, TaskEventType.UPDATED)

    @abc.abstractmethod
    async def delete_task(self, project_path: str, task_id: str) -> None:
        ...

    async def move_task(
        self,
        project_path: str,
        task_id: str,
        *,
        parent_id: Optional[str] = _UNSET,
        position: Optional[int] = _UNSET,
    ) -> Task:
        """Reparent and/or reorder a task, emitting a single ``moved`` event."""
        changes: dict[str, Any] = {}
        if parent_id is not _UNSET:
            changes["parent_id"] = parent_id
        if position is not _UNSET:
            changes["position"] = position
        return await self._apply_update(project_path, task_id, changes, TaskEventType.MOVED)

    @abc.abstractmethod
    async def _apply_update(
        self,
        project_path: str,
        task_id: str,
        updates: Mapping[str, Any],
        event_type: TaskEventType,
    ) -> Task:
        """Shared implementation of :meth:`update_task` and :meth:`move_task`."""
        ...

    # -- events ---------------------------------------------------------------

    def subscribe(self, listener: TaskEventListener) -> Callable[[], None]:
        return self.events.subscribe(listener)

    def _emit(
        self,
        event_type: TaskEventType,
        task: Task,
        previous_status: Optional[TaskStatus] = None,
    ) -> TaskEvent:
        return self.events.emit(TaskEvent(type=event_type, task=task, previous_status=previous_status))

    @property
    def supports_watch(self) -> bool:
        return isinstance(self, WatchableProvider)


@runtime_checkable
class WatchableProvider(Protocol):
    """Optional capability: polling-based change notification."""

    def watch_tasks(self, project_path: str, callback: WatchCallback) -> Callable[[], None]:
        ...


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

class _Watch:
    """One polling loop and its cancellation state."""

    def __init__(self, project_path: str) -> None:
        self.project_path = project_path
        self.cancelled = False
        self.task: Optional[asyncio.Task[None]] = None
        self.on_cancel: Optional[Callable[["_Watch"], None]] = None

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self.task is not None:
            self.task.cancel()
        if self.on_cancel is not None:
            self.on_cancel(self)


class TaskPoller:
    """Fixed-interval snapshot polling shared by the concrete providers.

    Each :meth:`watch` call starts an independent loop on the running event
    loop.  A tick fetches the full snapshot and hands it to the callback with
    no diffing.  Fetch and callback failures are logged and the loop keeps
    going.  The returned function cancels synchronously: once it returns the
    callback is never invoked again, even if a fetch was in flight.
    """

    def __init__(self, fetch: Callable[[str], Awaitable[list[Task]]], interval: float) -> None:
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self._fetch = fetch
        self.interval = interval
        self._watches: set[_Watch] = set()

    @property
    def active_count(self) -> int:
        return len(self._watches)

    def watch(self, project_path: str, callback: WatchCallback) -> Callable[[], None]:
        loop = asyncio.get_running_loop()
        watch = _Watch(project_path)
        watch.on_cancel = self._watches.discard
        watch.task = loop.create_task(self._run(watch, callback), name=f"watch-tasks:{project_path}")
        self._watches.add(watch)
        logger.debug("Watching tasks for {} every {}s", project_path, self.interval)
        return watch.cancel

    def cancel_all(self) -> None:
        for watch in list(self._watches):
            watch.cancel()

    async def _run(self, watch: _Watch, callback: WatchCallback) -> None:
        while not watch.cancelled:
            await asyncio.sleep(self.interval)
            try:
                tasks = await self._fetch(watch.project_path)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Error watching tasks for {}: {}", watch.project_path, exc)
                continue
            # No await between this check and the callback.
            if watch.cancelled:
                return
            try:
                callback(tasks)
            except Exception:
                logger.exception("Task watch callback failed for {}", watch.project_path)
