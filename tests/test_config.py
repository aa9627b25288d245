from __future__ import annotations

from pathlib import Path

import pytest

from orkee_tasks.config import ENV_API_TOKEN, ENV_API_URL, detect_provider_type, load_provider_config
from orkee_tasks.errors import ValidationError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_API_URL, raising=False)
    monkeypatch.delenv(ENV_API_TOKEN, raising=False)


def _write_config(project: Path, text: str) -> Path:
    path = project / ".orkee" / "tasks.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_detects_taskmaster_directory(tmp_path: Path) -> None:
    assert detect_provider_type(tmp_path) == "manual"
    (tmp_path / ".taskmaster").mkdir()
    assert detect_provider_type(tmp_path) == "taskmaster"


def test_missing_file_uses_detection(tmp_path: Path) -> None:
    config = load_provider_config(tmp_path)
    assert config.type == "manual"
    assert config.options == {}
    assert config.project_path == str(tmp_path.resolve())


def test_reads_yaml(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        "provider:\n  type: taskmaster\n  options:\n    context: feature\n    pollInterval: 0.5\n",
    )

    config = load_provider_config(tmp_path)

    assert config.type == "taskmaster"
    assert config.options == {"context": "feature", "pollInterval": 0.5}


def test_explicit_path_and_project_path(tmp_path: Path) -> None:
    path = tmp_path / "elsewhere.yaml"
    path.write_text("provider:\n  type: manual\n  projectPath: /srv/app\n", encoding="utf-8")

    config = load_provider_config(tmp_path, path=path)

    assert config.project_path == "/srv/app"


def test_environment_fills_missing_options(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ENV_API_URL, "http://api.test")
    monkeypatch.setenv(ENV_API_TOKEN, "from-env")
    _write_config(tmp_path, "provider:\n  type: manual\n  options:\n    token: from-file\n")

    config = load_provider_config(tmp_path)

    assert config.options == {"token": "from-file", "apiBaseUrl": "http://api.test"}


@pytest.mark.parametrize(
    "text",
    [
        "provider: [unclosed\n",
        "provider: manual\n",
        "provider:\n  type: manual\n  options: [1, 2]\n",
        "provider:\n  type: ''\n",
    ],
)
def test_invalid_config(tmp_path: Path, text: str) -> None:
    _write_config(tmp_path, text)
    with pytest.raises(ValidationError):
        load_provider_config(tmp_path)
