"""Backend-agnostic task providers for the Orkee dashboard."""

from .config import ProviderConfig, load_provider_config
from .errors import (
    ProviderConnectionError,
    ResolutionError,
    TaskNotFoundError,
    TaskProviderError,
    TransportError,
    UnknownProviderTypeError,
    ValidationError,
)
from .events import TaskEventBus
from .model import Task, TaskEvent, TaskEventType, TaskPriority, TaskStatus, build_hierarchy
from .providers import (
    ManualTaskProvider,
    ProviderFactory,
    TaskmasterProvider,
    TaskProvider,
    WatchableProvider,
    create_provider,
    register_provider,
)

__version__ = "0.1.0"

__all__ = [
    "ManualTaskProvider",
    "ProviderConfig",
    "ProviderConnectionError",
    "ProviderFactory",
    "ResolutionError",
    "Task",
    "TaskEvent",
    "TaskEventBus",
    "TaskEventType",
    "TaskNotFoundError",
    "TaskPriority",
    "TaskProvider",
    "TaskProviderError",
    "TaskStatus",
    "TaskmasterProvider",
    "TransportError",
    "UnknownProviderTypeError",
    "ValidationError",
    "WatchableProvider",
    "build_hierarchy",
    "create_provider",
    "load_provider_config",
    "register_provider",
]
