"""Tests for polling watches (TaskPoller and provider watch_tasks)."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from orkee_tasks.errors import TransportError
from orkee_tasks.model import Task
from orkee_tasks.providers.base import TaskPoller, WatchableProvider
from orkee_tasks.providers.taskmaster import TaskmasterProvider


def test_interval_must_be_positive() -> None:
    async def fetch(path: str) -> list[Task]:
        return []

    with pytest.raises(ValueError):
        TaskPoller(fetch, 0)


def test_failing_tick_does_not_stop_the_watch() -> None:
    calls = 0

    async def fetch(path: str) -> list[Task]:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise TransportError("backend down")
        return [Task(id="1", title="A")]

    async def main() -> list[list[Task]]:
        poller = TaskPoller(fetch, 0.01)
        received = asyncio.Event()
        snapshots: list[list[Task]] = []

        def on_snapshot(tasks: list[Task]) -> None:
            snapshots.append(tasks)
            received.set()

        cancel = poller.watch("/p", on_snapshot)
        await asyncio.wait_for(received.wait(), timeout=2)
        cancel()
        return snapshots

    snapshots = asyncio.run(main())
    assert calls >= 2
    assert snapshots[0][0].id == "1"


def test_failing_callback_does_not_stop_the_watch() -> None:
    async def fetch(path: str) -> list[Task]:
        return []

    async def main() -> int:
        poller = TaskPoller(fetch, 0.01)
        done = asyncio.Event()
        calls = 0

        def on_snapshot(tasks: list[Task]) -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("ui crashed")
            done.set()

        cancel = poller.watch("/p", on_snapshot)
        await asyncio.wait_for(done.wait(), timeout=2)
        cancel()
        return calls

    assert asyncio.run(main()) >= 2


def test_no_callback_after_cancel_even_mid_fetch() -> None:
    async def main() -> tuple[int, int]:
        entered = asyncio.Event()
        release = asyncio.Event()

        async def fetch(path: str) -> list[Task]:
            entered.set()
            await release.wait()
            return [Task(id="1", title="A")]

        poller = TaskPoller(fetch, 0.01)
        callbacks = 0

        def on_snapshot(tasks: list[Task]) -> None:
            nonlocal callbacks
            callbacks += 1

        cancel = poller.watch("/p", on_snapshot)
        await asyncio.wait_for(entered.wait(), timeout=2)
        cancel()
        cancel()  # idempotent
        release.set()
        await asyncio.sleep(0.05)
        return callbacks, poller.active_count

    callbacks, active = asyncio.run(main())
    assert callbacks == 0
    assert active == 0


def test_watches_are_independent() -> None:
    async def fetch(path: str) -> list[Task]:
        return [Task(id=path, title=path)]

    async def main() -> list[str]:
        poller = TaskPoller(fetch, 0.01)
        seen: list[str] = []
        second = asyncio.Event()

        def on_b(tasks: list[Task]) -> None:
            seen.append(tasks[0].id)
            second.set()

        cancel_a = poller.watch("/a", lambda tasks: seen.append(tasks[0].id))
        cancel_b = poller.watch("/b", on_b)
        cancel_a()
        await asyncio.wait_for(second.wait(), timeout=2)
        cancel_b()
        return seen

    assert set(asyncio.run(main())) == {"/b"}


def test_taskmaster_watch_delivers_snapshots(tmp_path: Path) -> None:
    path = tmp_path / ".taskmaster" / "tasks" / "tasks.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"master": {"tasks": [{"id": 1, "title": "A"}]}}), encoding="utf-8")

    async def main() -> list[Task]:
        provider = TaskmasterProvider(poll_interval=0.01)
        assert isinstance(provider, WatchableProvider)
        received: asyncio.Queue = asyncio.Queue()
        async with provider:
            cancel = provider.watch_tasks(str(tmp_path), received.put_nowait)
            tasks = await asyncio.wait_for(received.get(), timeout=2)
            cancel()
        return tasks

    tasks = asyncio.run(main())
    assert [t.id for t in tasks] == ["1"]


def test_aclose_cancels_live_watches(tmp_path: Path) -> None:
    async def main() -> int:
        provider = TaskmasterProvider(poll_interval=10)
        provider.watch_tasks(str(tmp_path), lambda tasks: None)
        provider.watch_tasks(str(tmp_path), lambda tasks: None)
        await provider.aclose()
        return provider._poller.active_count

    assert asyncio.run(main()) == 0
