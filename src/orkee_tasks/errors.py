"""Typed failures raised by task providers.

Every error carries a ``message`` that is safe to show to a user as-is.
"""

from __future__ import annotations

from typing import Optional


class TaskProviderError(Exception):
    """Base class for all task provider failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(TaskProviderError, ValueError):
    """A required field is missing/blank or a value is not acceptable."""


class ResolutionError(TaskProviderError):
    """The backend could not map a project path to a project identifier."""

    def __init__(
        self,
        message: str,
        *,
        project_path: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.project_path = project_path
        self.status_code = status_code


class TransportError(TaskProviderError):
    """A non-success response from the backend or the task document I/O."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TaskNotFoundError(TransportError):
    """The addressed task does not exist in the backing store."""

    def __init__(self, task_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Task with id {task_id} not found", status_code=404)
        self.task_id = task_id


class UnknownProviderTypeError(TaskProviderError, LookupError):
    """The factory has no constructor registered for the requested type."""

    def __init__(self, provider_type: str, available: list[str]) -> None:
        listed = ", ".join(available) or "none"
        super().__init__(f"Unknown task provider type '{provider_type}'. Available: {listed}")
        self.provider_type = provider_type
        self.available = available


class ProviderConnectionError(TaskProviderError, ConnectionError):
    """``initialize()`` could not reach the backend."""
