"""Tests for the provider factory (providers/registry.py)."""

from __future__ import annotations

import asyncio
from unittest import mock

import pytest

from orkee_tasks.config import ProviderConfig
from orkee_tasks.errors import UnknownProviderTypeError, ValidationError
from orkee_tasks.providers import ManualTaskProvider, TaskmasterProvider
from orkee_tasks.providers.registry import ProviderFactory, create_provider


class TestProviderFactory:
    def test_builtins(self) -> None:
        factory = ProviderFactory()
        assert factory.list_registered_types() == ["manual", "taskmaster"]
        assert factory.is_registered("manual")
        assert not factory.is_registered("jira")

    def test_unknown_type_constructs_nothing(self) -> None:
        factory = ProviderFactory()
        constructor = mock.Mock()
        factory.register("custom", constructor)

        with pytest.raises(UnknownProviderTypeError) as excinfo:
            factory.create({"type": "unregistered-type", "projectPath": "/p"})

        constructor.assert_not_called()
        assert excinfo.value.provider_type == "unregistered-type"
        assert "custom, manual, taskmaster" in excinfo.value.message
        assert isinstance(excinfo.value, LookupError)

    def test_register_passes_options_and_replaces(self) -> None:
        factory = ProviderFactory(include_builtins=False)
        first, second = mock.Mock(), mock.Mock()
        factory.register("jira", first)
        factory.register("jira", second)

        provider = factory.create(ProviderConfig(type="jira", options={"board": "ENG"}))

        first.assert_not_called()
        second.assert_called_once_with({"board": "ENG"})
        assert provider is second.return_value

    def test_unregister(self) -> None:
        factory = ProviderFactory()
        factory.unregister("manual")
        assert factory.list_registered_types() == ["taskmaster"]

    def test_create_manual_without_io(self) -> None:
        provider = ProviderFactory().create({"type": "manual", "options": {"apiBaseUrl": "http://x.test", "token": "t"}})
        assert isinstance(provider, ManualTaskProvider)
        assert not provider.initialized
        asyncio.run(provider.aclose())

    def test_invalid_options(self) -> None:
        with pytest.raises(ValidationError, match="manual"):
            ProviderFactory().create({"type": "manual", "options": {"timeout": -1}})

    def test_missing_type(self) -> None:
        with pytest.raises(ValidationError):
            ProviderFactory().create({"projectPath": "/p"})


def test_default_factory() -> None:
    provider = create_provider({"type": "taskmaster", "projectPath": "/p", "options": {"pollInterval": 0.5}})
    assert isinstance(provider, TaskmasterProvider)
    assert provider.supports_watch
