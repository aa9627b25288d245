from __future__ import annotations

from orkee_tasks.events import TaskEventBus
from orkee_tasks.model import Task, TaskEvent, TaskEventType


def _event(task_id: str = "1") -> TaskEvent:
    return TaskEvent(TaskEventType.CREATED, Task(id=task_id, title="A"))


def test_listeners_run_in_subscription_order() -> None:
    bus = TaskEventBus()
    seen: list[str] = []
    bus.subscribe(lambda e: seen.append("first"))
    bus.subscribe(lambda e: seen.append("second"))

    bus.emit(_event())

    assert seen == ["first", "second"]


def test_failing_listener_does_not_block_others() -> None:
    bus = TaskEventBus()
    seen: list[TaskEvent] = []

    def broken(event: TaskEvent) -> None:
        raise RuntimeError("listener exploded")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    event = _event()

    assert bus.emit(event) is event
    assert seen == [event]


def test_unsubscribe() -> None:
    bus = TaskEventBus()
    seen: list[TaskEvent] = []
    unsubscribe = bus.subscribe(seen.append)
    assert bus.listener_count == 1

    unsubscribe()
    bus.emit(_event())

    assert seen == []
    assert bus.listener_count == 0
    assert bus.unsubscribe(seen.append) is False
