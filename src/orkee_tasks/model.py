"""Normalized task model shared by every task provider.

Providers translate their native representation into :class:`Task` on read and
back on write.  Python attributes are snake_case; :meth:`Task.to_dict` emits
the camelCase JSON form consumed by the dashboard.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from .errors import ValidationError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Closed set of task states every provider maps into."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    DONE = "done"
    CANCELLED = "cancelled"
    DEFERRED = "deferred"
    BLOCKED = "blocked"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def sort_key(self) -> int:
        return {"critical": 0, "high": 1, "medium": 2, "low": 3}[self.value]


class TaskEventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    MOVED = "moved"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as aware UTC.

    ``None`` and empty strings yield ``None``.  Anything else that cannot be
    parsed raises :class:`ValueError`.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Expected an ISO-8601 timestamp, got {type(value).__name__}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Task:
    """The canonical unit of work, normalized across providers."""

    # Identity / content
    id: str = ""
    title: str = ""
    description: Optional[str] = None

    # Classification
    status: TaskStatus = TaskStatus.PENDING
    priority: Optional[TaskPriority] = None
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = None

    # Hierarchy (subtasks is a derived view, see build_hierarchy)
    parent_id: Optional[str] = None
    subtasks: list["Task"] = field(default_factory=list)
    position: Optional[int] = None

    # Relationships
    dependencies: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)

    # Ownership
    project_id: Optional[str] = None
    assignee: Optional[str] = None
    assigned_agent_id: Optional[str] = None
    reviewed_by_agent_id: Optional[str] = None
    created_by_user_id: Optional[str] = None

    # Work definition
    details: Optional[str] = None
    test_strategy: Optional[str] = None
    acceptance_criteria: Optional[str] = None

    # Scheduling / metrics
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    complexity_score: Optional[float] = None
    retry_count: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # Opaque, round-tripped verbatim
    metadata: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Equality
    # ------------------------------------------------------------------

    def _comparable(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "subtasks"}
        for name in _SET_FIELDS:
            data[name] = sorted(set(data[name]))
        return data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Task):
            return NotImplemented
        return self._comparable() == other._comparable()

    __hash__ = None  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def stub(cls, task_id: str) -> "Task":
        """Id-only snapshot, as carried by ``deleted`` events."""
        return cls(id=task_id)

    def copy(self, **changes: Any) -> "Task":
        task = dataclasses.replace(self, **changes)
        if task.updated_at < task.created_at:
            task.updated_at = task.created_at
        return task

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """camelCase, JSON-ready representation."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = format_timestamp(value)
            elif f.name == "subtasks":
                value = [sub.to_dict() for sub in value]
            elif isinstance(value, (list, dict)):
                value = type(value)(value)
            data[to_camel(f.name)] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        """Inverse of :meth:`to_dict`; snake_case keys are accepted too."""
        values = normalize_updates(data, allow_read_only=True)
        subtasks = values.pop("subtasks", None) or []
        task = cls(**values)
        task.subtasks = [sub if isinstance(sub, Task) else cls.from_dict(sub) for sub in subtasks]
        if task.updated_at < task.created_at:
            task.updated_at = task.created_at
        return task


@dataclass(frozen=True)
class TaskEvent:
    """Notification of a single task state transition."""

    type: TaskEventType
    task: Task
    timestamp: datetime = field(default_factory=utcnow)
    previous_status: Optional[TaskStatus] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "task": self.task.to_dict(),
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.previous_status is not None:
            data["previousStatus"] = self.previous_status.value
        return data


# ---------------------------------------------------------------------------
# Partial updates
# ---------------------------------------------------------------------------

TASK_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(Task))
READ_ONLY_FIELDS = frozenset({"id", "created_at", "updated_at", "subtasks"})
MOVE_FIELDS = frozenset({"parent_id", "position"})

_SET_FIELDS = ("tags", "dependencies", "blockers")
_TIMESTAMP_FIELDS = frozenset({"due_date", "started_at", "completed_at", "created_at", "updated_at"})
_FLOAT_FIELDS = frozenset({"estimated_hours", "actual_hours", "complexity_score"})
_INT_FIELDS = frozenset({"position", "retry_count"})
_REQUIRED_FIELDS = frozenset({"title", "status", "created_at", "updated_at", "retry_count", "id"})
_FIELD_ALIASES: dict[str, str] = {to_camel(name): name for name in TASK_FIELDS}


def canonical_field_name(key: str) -> Optional[str]:
    if key in TASK_FIELDS:
        return key
    return _FIELD_ALIASES.get(key)


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        if name in _SET_FIELDS:
            return []
        if name == "metadata":
            return {}
        if name in _REQUIRED_FIELDS:
            raise ValidationError(f"'{to_camel(name)}' cannot be null")
        return None
    if name == "status":
        try:
            return TaskStatus(value)
        except ValueError:
            valid = ", ".join(s.value for s in TaskStatus)
            raise ValidationError(f"'status' must be one of {valid}, got '{value}'") from None
    if name == "priority":
        try:
            return TaskPriority(value)
        except ValueError:
            valid = ", ".join(p.value for p in TaskPriority)
            raise ValidationError(f"'priority' must be one of {valid}, got '{value}'") from None
    if name in _SET_FIELDS:
        if isinstance(value, str) or not isinstance(value, Iterable):
            raise ValidationError(f"'{to_camel(name)}' must be a list of strings")
        return [str(item) for item in value]
    if name == "metadata":
        if not isinstance(value, Mapping):
            raise ValidationError("'metadata' must be an object")
        return dict(value)
    if name in _TIMESTAMP_FIELDS:
        try:
            return parse_timestamp(value)
        except ValueError as exc:
            raise ValidationError(f"'{to_camel(name)}' is not a valid timestamp: {exc}") from None
    if name in _FLOAT_FIELDS or name in _INT_FIELDS:
        if isinstance(value, bool):
            raise ValidationError(f"'{to_camel(name)}' must be a number")
        try:
            return int(value) if name in _INT_FIELDS else float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"'{to_camel(name)}' must be a number, got '{value}'") from None
    if name == "subtasks":
        return list(value)
    return str(value)


def normalize_updates(partial: Mapping[str, Any], *, allow_read_only: bool = False) -> dict[str, Any]:
    """Translate a partial task mapping into coerced :class:`Task` attributes.

    Keys may be attribute names or their camelCase aliases.  Read-only fields
    are dropped unless *allow_read_only* is set.
    """
    if not isinstance(partial, Mapping):
        raise ValidationError("Task fields must be given as a mapping")
    values: dict[str, Any] = {}
    for key, value in partial.items():
        name = canonical_field_name(key)
        if name is None:
            raise ValidationError(f"Unknown task field '{key}'")
        if name in READ_ONLY_FIELDS and not allow_read_only:
            continue
        values[name] = _coerce(name, value)
    if "title" in values:
        values["title"] = values["title"].strip()
        if not values["title"]:
            raise ValidationError("Task title cannot be empty")
    return values


def validate_new_task(partial: Mapping[str, Any]) -> dict[str, Any]:
    """Check a create payload before any I/O happens."""
    if not isinstance(partial, Mapping):
        raise ValidationError("Task fields must be given as a mapping")
    title = partial.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Task title is required")
    return normalize_updates(partial)


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------

def would_create_cycle(tasks: Iterable[Task], task_id: str, parent_id: Optional[str]) -> bool:
    """Return True if making *parent_id* the parent of *task_id* forms a cycle."""
    if parent_id is None:
        return False
    parents = {t.id: t.parent_id for t in tasks}
    seen: set[str] = set()
    node: Optional[str] = parent_id
    while node is not None and node not in seen:
        if node == task_id:
            return True
        seen.add(node)
        node = parents.get(node)
    return False


def build_hierarchy(tasks: Iterable[Task]) -> list[Task]:
    """Return root tasks with ``subtasks`` populated from ``parent_id``.

    Works on copies; the flat input list stays authoritative.  Tasks whose
    parent is missing are treated as roots.
    """
    copies = {t.id: dataclasses.replace(t, subtasks=[]) for t in tasks}
    for task in copies.values():
        if would_create_cycle(copies.values(), task.id, task.parent_id):
            raise ValidationError(f"Task {task.id} is its own ancestor")
    roots: list[Task] = []
    for task in copies.values():
        parent = copies.get(task.parent_id) if task.parent_id else None
        if parent is None:
            roots.append(task)
        else:
            parent.subtasks.append(task)
    return roots
