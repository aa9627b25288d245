"""Taskmaster provider backed by a ``tasks.json`` document.

Read compatibility
------------------
The document format has changed over time.  All of these are accepted::

    [ {task}, ... ]                                    # bare array
    {"tasks": [ {task}, ... ], "metadata": {...}}      # legacy flat
    {"master": {"tasks": [...], "metadata": {...}},    # tagged contexts
     "feature-x": {"tasks": [...], "metadata": {...}}}

Tasks from every context are flattened into one collection and tagged with
their context name.  The tag comes from the enclosing context and is not
stored in the record; tasks returned by create and update already carry
the tag of the context they were saved under.

Subtasks
--------
Nested ``subtasks`` records decode into ``Task.subtasks`` with ids of the form
``<parent>.<local>`` and are written back unchanged.  Update, delete and move
only address top-level tasks; a subtask id raises ``TaskNotFoundError``.

Write policy
------------
Saves always produce a single context (``master`` unless configured)::

    {"master": {"tasks": [...], "metadata": {"created", "updated", "description"}}}

Other contexts and unknown top-level keys are folded into it or dropped.
This normalizes legacy documents and does not preserve multi-context layout.
"""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..errors import TaskNotFoundError, TransportError, ValidationError
from ..model import (
    Task,
    TaskEventType,
    TaskPriority,
    TaskStatus,
    normalize_updates,
    parse_timestamp,
    format_timestamp,
    to_camel,
    utcnow,
    validate_new_task,
    would_create_cycle,
)
from .base import TaskPoller, TaskProvider, WatchCallback
from .documents import LOCK_TIMEOUT, ApiDocumentTransport, DocumentTransport, FileDocumentTransport
from .fieldmap import FLOAT, INT, OBJECT, TEXT, TIMESTAMP, UNTITLED, Codec
from .http import DEFAULT_API_BASE_URL, DEFAULT_TIMEOUT, ApiClient

DEFAULT_CONTEXT = "master"
POLL_INTERVAL_SECONDS = 2.0


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

STATUS_FROM_DOCUMENT: dict[str, TaskStatus] = {
    "pending": TaskStatus.PENDING,
    "todo": TaskStatus.PENDING,
    "in-progress": TaskStatus.IN_PROGRESS,
    "in_progress": TaskStatus.IN_PROGRESS,
    "review": TaskStatus.REVIEW,
    "done": TaskStatus.DONE,
    "completed": TaskStatus.DONE,
    "cancelled": TaskStatus.CANCELLED,
    "canceled": TaskStatus.CANCELLED,
    "deferred": TaskStatus.DEFERRED,
    "blocked": TaskStatus.BLOCKED,
}

STATUS_TO_DOCUMENT: dict[TaskStatus, str] = {
    TaskStatus.PENDING: "pending",
    TaskStatus.IN_PROGRESS: "in-progress",
    TaskStatus.REVIEW: "review",
    TaskStatus.DONE: "done",
    TaskStatus.CANCELLED: "cancelled",
    TaskStatus.DEFERRED: "deferred",
    TaskStatus.BLOCKED: "blocked",
}

PRIORITY_FROM_DOCUMENT: dict[str, TaskPriority] = {
    "low": TaskPriority.LOW,
    "medium": TaskPriority.MEDIUM,
    "high": TaskPriority.HIGH,
    "critical": TaskPriority.CRITICAL,
}

PRIORITY_TO_DOCUMENT: dict[TaskPriority, str] = {v: k for k, v in PRIORITY_FROM_DOCUMENT.items()}


def map_status(value: Any) -> TaskStatus:
    """Document status -> domain status; unknown values become ``pending``."""
    key = str(value or "").strip().lower()
    status = STATUS_FROM_DOCUMENT.get(key)
    if status is None:
        if key:
            logger.debug("Unmapped taskmaster status '{}', using pending", value)
        return TaskStatus.PENDING
    return status


def map_priority(value: Any) -> Optional[TaskPriority]:
    """Document priority -> domain priority; unknown values are absent."""
    if value is None:
        return None
    return PRIORITY_FROM_DOCUMENT.get(str(value).strip().lower())


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

_CANONICAL_INT = re.compile(r"^(0|[1-9][0-9]*)$")


def coerce_identifier(value: Any) -> Any:
    """Write canonical integer ids back as numbers, everything else as text."""
    if value is None:
        return None
    text = str(value)
    return int(text) if _CANONICAL_INT.match(text) else text


def generate_task_id(existing: set[str]) -> str:
    """``<epoch-ms>-<hex>``; never collides with *existing*."""
    while True:
        candidate = f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"
        if candidate not in existing:
            return candidate


def _decode_id(value: Any) -> Optional[str]:
    return None if value is None or value == "" else str(value)


def _decode_id_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"expected a list, got {type(value).__name__}")
    return [str(item) for item in value]


ID = Codec(_decode_id, coerce_identifier)
ID_LIST = Codec(_decode_id_list, lambda value: [coerce_identifier(v) for v in value])
STRING_LIST = Codec(_decode_id_list, lambda value: list(value))
STATUS = Codec(map_status, lambda status: STATUS_TO_DOCUMENT[status])
PRIORITY = Codec(map_priority, lambda priority: None if priority is None else PRIORITY_TO_DOCUMENT[priority])


# ---------------------------------------------------------------------------
# Record mapping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DocumentField:
    attr: str
    key: str
    codec: Codec = TEXT


#: Task attribute <-> tasks.json key.  ``subtasks`` is handled separately.
DOCUMENT_FIELDS: tuple[DocumentField, ...] = (
    DocumentField("id", "id", ID),
    DocumentField("title", "title"),
    DocumentField("description", "description"),
    DocumentField("status", "status", STATUS),
    DocumentField("priority", "priority", PRIORITY),
    DocumentField("tags", "tags", STRING_LIST),
    DocumentField("category", "category"),
    DocumentField("parent_id", "parent", ID),
    DocumentField("position", "position", INT),
    DocumentField("dependencies", "dependencies", ID_LIST),
    DocumentField("blockers", "blockers", ID_LIST),
    DocumentField("project_id", "projectId"),
    DocumentField("assignee", "assignee"),
    DocumentField("assigned_agent_id", "assignedAgentId"),
    DocumentField("reviewed_by_agent_id", "reviewedByAgentId"),
    DocumentField("created_by_user_id", "createdByUserId"),
    DocumentField("details", "details"),
    DocumentField("test_strategy", "testStrategy"),
    DocumentField("acceptance_criteria", "acceptanceCriteria"),
    DocumentField("due_date", "due", TIMESTAMP),
    DocumentField("estimated_hours", "estimatedHours", FLOAT),
    DocumentField("actual_hours", "actualHours", FLOAT),
    DocumentField("complexity_score", "complexityScore", FLOAT),
    DocumentField("retry_count", "retryCount", INT),
    DocumentField("started_at", "startedAt", TIMESTAMP),
    DocumentField("completed_at", "completedAt", TIMESTAMP),
    DocumentField("created_at", "created", TIMESTAMP),
    DocumentField("updated_at", "updated", TIMESTAMP),
    DocumentField("metadata", "metadata", OBJECT),
)

_ALWAYS_DECODE = frozenset({"status", "tags", "dependencies", "blockers", "metadata"})


def _describe(record: Mapping[str, Any]) -> str:
    return f"task {record.get('id')!r}" if "id" in record else "task without id"


def task_from_record(
    record: Any,
    *,
    context: Optional[str] = None,
    parent_id: Optional[str] = None,
    fallback_created: Optional[Any] = None,
    fallback_updated: Optional[Any] = None,
) -> Task:
    """Decode one ``tasks.json`` record (and its nested subtasks)."""
    if not isinstance(record, Mapping):
        raise TransportError(f"Malformed Taskmaster document: expected task object, got {type(record).__name__}")

    values: dict[str, Any] = {}
    try:
        for entry in DOCUMENT_FIELDS:
            raw = record.get(entry.key)
            if raw is None:
                raw = record.get(to_camel(entry.attr))
            if raw is None and entry.attr not in _ALWAYS_DECODE:
                continue
            values[entry.attr] = entry.codec.decode(raw)
    except (TypeError, ValueError) as exc:
        raise TransportError(f"Malformed Taskmaster document: {_describe(record)}: {exc}") from exc

    local_id = values.get("id")
    if not local_id:
        raise TransportError("Malformed Taskmaster document: task without id")
    if parent_id is not None:
        values["id"] = f"{parent_id}.{local_id}"
        values.setdefault("parent_id", parent_id)

    values["title"] = (values.get("title") or "").strip() or UNTITLED
    if context and context not in values["tags"]:
        values["tags"].append(context)

    created = values.get("created_at") or fallback_created or values.get("updated_at") or utcnow()
    updated = values.get("updated_at") or fallback_updated or created
    values["created_at"] = created
    values["updated_at"] = max(created, updated)

    task = Task(**values)
    nested = record.get("subtasks") or []
    if not isinstance(nested, list):
        raise TransportError(f"Malformed Taskmaster document: {_describe(record)}: subtasks must be a list")
    for sub in nested:
        if not isinstance(sub, Mapping):
            # Bare id references carry nothing to display.
            logger.debug("Skipping non-object subtask entry {!r} under {}", sub, task.id)
            continue
        task.subtasks.append(
            task_from_record(sub, parent_id=task.id, fallback_created=created, fallback_updated=updated)
        )
    return task


def task_to_record(task: Task, *, parent_id: Optional[str] = None, context: Optional[str] = None) -> dict[str, Any]:
    """Encode a Task as a ``tasks.json`` record.  ``None``/empty values are omitted.

    The *context* tag is implied by the record's position and is not stored.
    """
    record: dict[str, Any] = {}
    for entry in DOCUMENT_FIELDS:
        value = getattr(task, entry.attr)
        if entry.attr == "tags" and context:
            value = [tag for tag in value if tag != context]
        if value is None or value == [] or value == {}:
            continue
        if entry.attr == "retry_count" and value == 0:
            continue
        if entry.attr == "id" and parent_id is not None and task.id.startswith(f"{parent_id}."):
            value = task.id[len(parent_id) + 1:]
        if entry.attr == "parent_id" and parent_id is not None:
            continue
        record[entry.key] = entry.codec.encode(value)
    if task.subtasks:
        record["subtasks"] = [task_to_record(sub, parent_id=task.id) for sub in task.subtasks]
    return record


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

def _with_context_tag(task: Task, context: str) -> Task:
    """Tag *task* with the context it is saved under, as a re-read would."""
    if context in task.tags:
        return task
    return task.copy(tags=[*task.tags, context])


def _safe_timestamp(value: Any) -> Any:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        return None


@dataclass
class TaskmasterDocument:
    """Parsed view of a tasks.json document."""

    tasks: list[Task] = field(default_factory=list)
    contexts: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Any, *, context: str = DEFAULT_CONTEXT) -> "TaskmasterDocument":
        if raw is None:
            return cls()
        if isinstance(raw, list):
            return cls(tasks=[task_from_record(r) for r in raw])
        if not isinstance(raw, Mapping):
            raise TransportError(f"Malformed Taskmaster document: expected object or array, got {type(raw).__name__}")

        if isinstance(raw.get("tasks"), list):
            metadata = raw.get("metadata") if isinstance(raw.get("metadata"), Mapping) else {}
            return cls(tasks=cls._decode_all(raw["tasks"], None, metadata), metadata=dict(metadata))

        doc = cls()
        for name, group in raw.items():
            if not isinstance(group, Mapping) or not isinstance(group.get("tasks"), list):
                logger.debug("Ignoring non-context key '{}' in taskmaster document", name)
                continue
            metadata = group.get("metadata") if isinstance(group.get("metadata"), Mapping) else {}
            doc.contexts.append(str(name))
            doc.tasks.extend(cls._decode_all(group["tasks"], str(name), metadata))
            if str(name) == context or not doc.metadata:
                doc.metadata = dict(metadata)
        return doc

    @staticmethod
    def _decode_all(records: list[Any], context: Optional[str], metadata: Mapping[str, Any]) -> list[Task]:
        created = _safe_timestamp(metadata.get("created"))
        updated = _safe_timestamp(metadata.get("updated"))
        return [
            task_from_record(r, context=context, fallback_created=created, fallback_updated=updated)
            for r in records
        ]

    def render(self, context: str = DEFAULT_CONTEXT) -> dict[str, Any]:
        now = format_timestamp(utcnow())
        metadata = dict(self.metadata)
        metadata["created"] = metadata.get("created") or now
        metadata["updated"] = now
        metadata.setdefault("description", f"Tasks for {context} context")
        return {context: {"tasks": [task_to_record(t, context=context) for t in self.tasks], "metadata": metadata}}

    def index_of(self, task_id: str) -> int:
        for idx, task in enumerate(self.tasks):
            if task.id == task_id:
                return idx
        raise TaskNotFoundError(task_id)


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class TaskmasterProviderOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transport: Literal["file", "api"] = "file"
    context: str = Field(default=DEFAULT_CONTEXT, min_length=1)
    poll_interval: float = Field(default=POLL_INTERVAL_SECONDS, gt=0, alias="pollInterval")
    lock_timeout: float = Field(default=LOCK_TIMEOUT, gt=0, alias="lockTimeout")
    api_base_url: str = Field(default=DEFAULT_API_BASE_URL, alias="apiBaseUrl")
    token: Optional[str] = None
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)


class TaskmasterProvider(TaskProvider):
    """Tasks stored in a project's ``.taskmaster/tasks/tasks.json``."""

    name = "Taskmaster"
    type = "taskmaster"

    def __init__(
        self,
        transport: Optional[DocumentTransport] = None,
        *,
        context: str = DEFAULT_CONTEXT,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        super().__init__()
        self._transport = transport or FileDocumentTransport()
        self.context = context
        self._poller = TaskPoller(self.get_tasks, poll_interval)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "TaskmasterProvider":
        opts = TaskmasterProviderOptions.model_validate(dict(options))
        transport: DocumentTransport
        if opts.transport == "api":
            transport = ApiDocumentTransport(ApiClient(opts.api_base_url, token=opts.token, timeout=opts.timeout))
        else:
            transport = FileDocumentTransport(lock_timeout=opts.lock_timeout)
        return cls(transport, context=opts.context, poll_interval=opts.poll_interval)

    @property
    def transport(self) -> DocumentTransport:
        return self._transport

    # -- lifecycle ----------------------------------------------------------

    async def _do_initialize(self) -> None:
        await self._transport.check()

    async def aclose(self) -> None:
        self._poller.cancel_all()
        await self._transport.aclose()

    # -- CRUD -----------------------------------------------------------------

    async def get_tasks(self, project_path: str) -> list[Task]:
        raw = await self._transport.read(project_path)
        return TaskmasterDocument.parse(raw, context=self.context).tasks

    async def create_task(self, project_path: str, task: Mapping[str, Any]) -> Task:
        values = validate_new_task(task)

        def create(doc: TaskmasterDocument) -> Task:
            now = utcnow()
            new_task = Task(
                **values,
                id=generate_task_id({t.id for t in doc.tasks}),
                created_at=now,
                updated_at=now,
            )
            new_task = _with_context_tag(new_task, self.context)
            doc.tasks.append(new_task)
            return new_task

        created = await self._mutate(project_path, create)
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

        def update(doc: TaskmasterDocument) -> tuple[Task, Task]:
            idx = doc.index_of(task_id)
            if "parent_id" in values and would_create_cycle(doc.tasks, task_id, values["parent_id"]):
                raise ValidationError(f"Task {task_id} cannot be moved under its own descendant")
            previous = doc.tasks[idx]
            doc.tasks[idx] = _with_context_tag(previous.copy(**values, updated_at=utcnow()), self.context)
            return previous, doc.tasks[idx]

        previous, updated = await self._mutate(project_path, update)
        previous_status = previous.status if previous.status != updated.status else None
        self._emit(event_type, updated, previous_status=previous_status)
        return updated

    async def delete_task(self, project_path: str, task_id: str) -> None:
        def delete(doc: TaskmasterDocument) -> None:
            del doc.tasks[doc.index_of(task_id)]

        await self._mutate(project_path, delete)
        self._emit(TaskEventType.DELETED, Task.stub(task_id))

    # -- watch ----------------------------------------------------------------

    def watch_tasks(self, project_path: str, callback: WatchCallback) -> Callable[[], None]:
        return self._poller.watch(project_path, callback)

    # -- internals ------------------------------------------------------------

    async def _mutate(self, project_path: str, change: Callable[[TaskmasterDocument], Any]) -> Any:
        def apply(raw: Optional[Any]) -> tuple[dict[str, Any], Any]:
            doc = TaskmasterDocument.parse(raw, context=self.context)
            result = change(doc)
            return doc.render(self.context), result

        return await self._transport.update(project_path, apply)
