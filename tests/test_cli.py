from __future__ import annotations

import json
from pathlib import Path

import pytest

from orkee_tasks.cli import main


@pytest.fixture
def project(tmp_path: Path) -> Path:
    config = tmp_path / ".orkee" / "tasks.yaml"
    config.parent.mkdir()
    config.write_text("provider:\n  type: taskmaster\n  options:\n    pollInterval: 0.01\n", encoding="utf-8")
    return tmp_path


def _run(project: Path, capsys: pytest.CaptureFixture[str], *argv: str) -> tuple[int, str, str]:
    code = main(["--project-dir", str(project), *argv])
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_providers_command(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, out, _ = _run(project, capsys, "providers")
    assert code == 0
    assert json.loads(out) == {"providers": ["manual", "taskmaster"], "selected": "taskmaster"}


def test_task_crud_flow(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, out, _ = _run(project, capsys, "create", "Write docs", "--priority", "high", "--tag", "docs")
    assert code == 0
    task = json.loads(out)["task"]
    assert task["title"] == "Write docs"
    assert task["priority"] == "high"
    assert task["tags"] == ["docs", "master"]

    code, out, _ = _run(project, capsys, "update", task["id"], "--status", "done")
    assert code == 0
    assert json.loads(out)["task"]["status"] == "done"

    code, out, _ = _run(project, capsys, "list", "--json", "--status", "done")
    assert code == 0
    listed = json.loads(out)
    assert listed["provider"] == "taskmaster"
    assert [t["id"] for t in listed["tasks"]] == [task["id"]]

    code, out, _ = _run(project, capsys, "delete", task["id"])
    assert code == 0
    assert json.loads(out) == {"deleted": task["id"]}

    code, out, _ = _run(project, capsys, "list", "--json")
    assert json.loads(out)["tasks"] == []


def test_list_table(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(project, capsys, "create", "Fix login")
    code, out, _ = _run(project, capsys, "list")
    assert code == 0
    assert "Fix login" in out
    assert "pending" in out


def test_provider_errors_exit_nonzero(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, _, err = _run(project, capsys, "update", "404", "--title", "Nope")
    assert code == 1
    assert "Task with id 404 not found" in err


def test_update_requires_fields(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, _, err = _run(project, capsys, "update", "1")
    assert code == 1
    assert "Nothing to update" in err


def test_watch_stops_after_ticks(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(project, capsys, "create", "Watched")
    code, out, _ = _run(project, capsys, "watch", "--ticks", "2")
    assert code == 0
    lines = [json.loads(line) for line in out.splitlines()]
    assert lines == [{"tick": 1, "count": 1}, {"tick": 2, "count": 1}]
