"""Backend adapters behind the task provider contract."""

from .base import TaskPoller, TaskProvider, WatchableProvider, WatchCallback
from .manual import ManualTaskProvider, ProjectIdCache
from .registry import ProviderFactory, create_provider, default_factory, register_provider
from .taskmaster import TaskmasterProvider

__all__ = [
    "ManualTaskProvider",
    "ProjectIdCache",
    "ProviderFactory",
    "TaskPoller",
    "TaskProvider",
    "TaskmasterProvider",
    "WatchCallback",
    "WatchableProvider",
    "create_provider",
    "default_factory",
    "register_provider",
]
