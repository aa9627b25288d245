"""Load the task provider selection from `.orkee/tasks.yaml`.

Example::

    provider:
      type: taskmaster
      options:
        transport: file
        context: master
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

STATE_DIR_NAME = ".orkee"
CONFIG_FILE = "tasks.yaml"
TASKMASTER_DIR_NAME = ".taskmaster"

ENV_API_URL = "ORKEE_API_URL"
ENV_API_TOKEN = "ORKEE_API_TOKEN"


class ProviderConfig(BaseModel):
    """Which provider to build and the options handed to its constructor."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = Field(min_length=1)
    project_path: Optional[str] = Field(default=None, alias="projectPath")
    options: dict[str, Any] = Field(default_factory=dict)


def config_path(project_dir: Path) -> Path:
    return Path(project_dir) / STATE_DIR_NAME / CONFIG_FILE


def detect_provider_type(project_dir: Path) -> str:
    """Guess the provider for a project that has no config file."""
    if (Path(project_dir) / TASKMASTER_DIR_NAME).is_dir():
        return "taskmaster"
    return "manual"


def _apply_env(options: dict[str, Any]) -> dict[str, Any]:
    url = os.environ.get(ENV_API_URL)
    token = os.environ.get(ENV_API_TOKEN)
    if url and "apiBaseUrl" not in options and "api_base_url" not in options:
        options["apiBaseUrl"] = url
    if token and "token" not in options:
        options["token"] = token
    return options


def load_provider_config(project_dir: Path, *, path: Optional[Path] = None) -> ProviderConfig:
    """Build the :class:`ProviderConfig` for *project_dir*.

    Args:
        project_dir: Project root; becomes ``project_path`` unless the file sets one.
        path: Explicit config file; defaults to ``<project_dir>/.orkee/tasks.yaml``.

    Returns:
        The parsed config.  A missing file yields an auto-detected provider type.

    Raises:
        ValidationError: The file is not valid YAML or does not have the expected shape.
    """
    project_dir = Path(project_dir).expanduser().resolve()
    path = Path(path) if path is not None else config_path(project_dir)

    if not path.exists():
        provider_type = detect_provider_type(project_dir)
        logger.debug("No task config at {}, detected provider '{}'", path, provider_type)
        return ProviderConfig(type=provider_type, project_path=str(project_dir), options=_apply_env({}))

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError(f"Failed to read task config {path}: {exc}") from exc

    raw = data.get("provider") if isinstance(data, dict) else None
    if not isinstance(raw, dict):
        raise ValidationError(f"Task config {path} must contain a 'provider' mapping")

    raw = dict(raw)
    raw.setdefault("type", detect_provider_type(project_dir))
    options = raw.get("options")
    if options is None:
        options = {}
    if not isinstance(options, dict):
        raise ValidationError(f"Task config {path}: 'provider.options' must be a mapping")
    raw["options"] = _apply_env(dict(options))
    if not raw.get("project_path") and not raw.get("projectPath"):
        raw["project_path"] = str(project_dir)

    try:
        return ProviderConfig.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid task config {path}: {exc}") from exc
