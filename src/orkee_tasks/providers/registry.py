"""Provider factory: maps a provider-type tag to a constructor.

Starts with the built-in ``manual`` and ``taskmaster`` adapters and allows
registration of custom ones.  Construction never performs I/O; callers run
``await provider.initialize()`` afterwards.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from ..config import ProviderConfig
from ..errors import UnknownProviderTypeError, ValidationError
from .base import TaskProvider
from .manual import ManualTaskProvider
from .taskmaster import TaskmasterProvider

ProviderConstructor = Callable[[Mapping[str, Any]], TaskProvider]

BUILTIN_PROVIDERS: dict[str, ProviderConstructor] = {
    ManualTaskProvider.type: ManualTaskProvider.from_options,
    TaskmasterProvider.type: TaskmasterProvider.from_options,
}


class ProviderFactory:
    """Registry of provider constructors."""

    def __init__(self, *, include_builtins: bool = True) -> None:
        self._constructors: dict[str, ProviderConstructor] = dict(BUILTIN_PROVIDERS) if include_builtins else {}

    # -- query ---------------------------------------------------------------

    def list_registered_types(self) -> list[str]:
        return sorted(self._constructors)

    def is_registered(self, provider_type: str) -> bool:
        return provider_type in self._constructors

    # -- mutation ------------------------------------------------------------

    def register(self, provider_type: str, constructor: ProviderConstructor) -> None:
        """Add or replace the constructor for *provider_type*."""
        if not provider_type:
            raise ValidationError("Provider type must be a non-empty string")
        self._constructors[provider_type] = constructor

    def unregister(self, provider_type: str) -> None:
        self._constructors.pop(provider_type, None)

    # -- construction --------------------------------------------------------

    def create(self, config: Union[ProviderConfig, Mapping[str, Any]]) -> TaskProvider:
        if not isinstance(config, ProviderConfig):
            try:
                config = ProviderConfig.model_validate(dict(config))
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid provider config: {exc}") from exc

        constructor = self._constructors.get(config.type)
        if constructor is None:
            raise UnknownProviderTypeError(config.type, self.list_registered_types())

        try:
            provider = constructor(dict(config.options))
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid options for provider '{config.type}': {exc}") from exc
        logger.debug("Created task provider '{}'", config.type)
        return provider


default_factory = ProviderFactory()


def create_provider(config: Union[ProviderConfig, Mapping[str, Any]]) -> TaskProvider:
    return default_factory.create(config)


def register_provider(provider_type: str, constructor: ProviderConstructor) -> None:
    default_factory.register(provider_type, constructor)
