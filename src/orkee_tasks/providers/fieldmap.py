"""Field mapping between the Orkee REST wire schema and :class:`Task`.

The API speaks underscored column names (``parent_id``, ``due_date``) and the
hyphenated status vocabulary of :class:`TaskStatus` (``in-progress``).
Statuses are read case-insensitively with ``_`` or ``-`` as separator.  :data:`WIRE_FIELDS` is the
single table both directions are driven from; every Task attribute except the
derived ``subtasks`` view appears in it exactly once.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from loguru import logger

from ..errors import TransportError
from ..model import Task, TaskPriority, TaskStatus, format_timestamp, parse_timestamp, to_camel, utcnow

UNTITLED = "Untitled task"


# ---------------------------------------------------------------------------
# Codecs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Codec:
    decode: Callable[[Any], Any]
    encode: Callable[[Any], Any]


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _decode_list(value: Any) -> list[str]:
    # Older rows store JSON-encoded strings instead of arrays.
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        raise ValueError(f"expected a list, got {type(value).__name__}")
    return [str(item) for item in value]


def _decode_object(value: Any) -> dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, dict):
        raise ValueError(f"expected an object, got {type(value).__name__}")
    return value


def _decode_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _decode_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def decode_status(value: Any) -> TaskStatus:
    key = str(value or "").strip().lower().replace("_", "-")
    try:
        return TaskStatus(key)
    except ValueError:
        logger.warning("Unknown task status '{}' from API, treating as pending", value)
        return TaskStatus.PENDING


def encode_status(status: TaskStatus) -> str:
    return status.value


def decode_priority(value: Any) -> Optional[TaskPriority]:
    if value is None or value == "":
        return None
    try:
        return TaskPriority(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown task priority '{}' from API, ignoring", value)
        return None


def _encode_priority(priority: Optional[TaskPriority]) -> Optional[str]:
    return None if priority is None else priority.value


TEXT = Codec(_text, _text)
STRING_LIST = Codec(_decode_list, lambda value: list(value or []))
OBJECT = Codec(_decode_object, lambda value: dict(value or {}))
FLOAT = Codec(_decode_float, lambda value: value)
INT = Codec(_decode_int, lambda value: value)
TIMESTAMP = Codec(parse_timestamp, format_timestamp)
STATUS = Codec(decode_status, encode_status)
PRIORITY = Codec(decode_priority, _encode_priority)


# ---------------------------------------------------------------------------
# Mapping table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WireField:
    attr: str
    wire: str
    codec: Codec = TEXT
    writable: bool = True


WIRE_FIELDS: tuple[WireField, ...] = (
    WireField("id", "id", writable=False),
    WireField("project_id", "project_id", writable=False),
    WireField("title", "title"),
    WireField("description", "description"),
    WireField("status", "status", STATUS),
    WireField("priority", "priority", PRIORITY),
    WireField("tags", "tags", STRING_LIST),
    WireField("category", "category"),
    WireField("parent_id", "parent_id"),
    WireField("position", "position", INT),
    WireField("dependencies", "dependencies", STRING_LIST),
    WireField("blockers", "blockers", STRING_LIST),
    WireField("assignee", "assignee"),
    WireField("assigned_agent_id", "assigned_agent_id"),
    WireField("reviewed_by_agent_id", "reviewed_by_agent_id"),
    WireField("created_by_user_id", "created_by_user_id", writable=False),
    WireField("details", "details"),
    WireField("test_strategy", "test_strategy"),
    WireField("acceptance_criteria", "acceptance_criteria"),
    WireField("due_date", "due_date", TIMESTAMP),
    WireField("estimated_hours", "estimated_hours", FLOAT),
    WireField("actual_hours", "actual_hours", FLOAT),
    WireField("complexity_score", "complexity_score", FLOAT),
    WireField("retry_count", "retry_count", INT, writable=False),
    WireField("started_at", "started_at", TIMESTAMP, writable=False),
    WireField("completed_at", "completed_at", TIMESTAMP, writable=False),
    WireField("created_at", "created_at", TIMESTAMP, writable=False),
    WireField("updated_at", "updated_at", TIMESTAMP, writable=False),
    WireField("metadata", "metadata", OBJECT),
)

WIRE_BY_ATTR: dict[str, WireField] = {f.attr: f for f in WIRE_FIELDS}


def _lookup(record: Mapping[str, Any], entry: WireField) -> Any:
    value = record.get(entry.wire)
    if value is None:
        value = record.get(to_camel(entry.attr))
    return value


def task_from_wire(record: Any) -> Task:
    """Decode one API record into a :class:`Task`.

    Raises :class:`TransportError` for records that cannot be decoded.
    """
    if not isinstance(record, Mapping):
        raise TransportError(f"Malformed task record from API: expected an object, got {type(record).__name__}")
    values: dict[str, Any] = {}
    try:
        for entry in WIRE_FIELDS:
            raw = _lookup(record, entry)
            if raw is None and entry.codec not in (STRING_LIST, OBJECT, STATUS):
                continue
            values[entry.attr] = entry.codec.decode(raw)
    except (TypeError, ValueError) as exc:
        raise TransportError(f"Malformed task record from API: {exc}") from exc

    if not values.get("id"):
        raise TransportError("Malformed task record from API: missing id")
    values["title"] = (values.get("title") or "").strip() or UNTITLED
    created: datetime = values.get("created_at") or values.get("updated_at") or utcnow()
    updated: datetime = values.get("updated_at") or created
    values["created_at"] = created
    values["updated_at"] = max(created, updated)
    return Task(**values)


def task_to_wire(task: Task) -> dict[str, Any]:
    """Encode every mapped field of *task* as the API would return it."""
    return {entry.wire: entry.codec.encode(getattr(task, entry.attr)) for entry in WIRE_FIELDS}


def payload_from_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Encode normalized Task attributes into an outbound create/update body.

    Only the supplied, writable fields are included so that a partial update
    never clears fields it did not mention.
    """
    payload: dict[str, Any] = {}
    for attr, value in updates.items():
        entry = WIRE_BY_ATTR.get(attr)
        if entry is None or not entry.writable:
            continue
        payload[entry.wire] = entry.codec.encode(value)
    return payload
