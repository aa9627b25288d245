from __future__ import annotations

from typing import Callable

from loguru import logger

from .model import TaskEvent

TaskEventListener = Callable[[TaskEvent], None]


class TaskEventBus:
    """Per-provider listener registry.

    ``emit`` runs every listener synchronously, in subscription order, before
    returning to the operation that produced the event.
    """

    def __init__(self) -> None:
        self._listeners: list[TaskEventListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: TaskEventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: TaskEventListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def emit(self, event: TaskEvent) -> TaskEvent:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Task event listener failed for {} event on {}", event.type.value, event.task.id)
        return event
