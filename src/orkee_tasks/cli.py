from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

from .config import load_provider_config
from .errors import TaskProviderError
from .model import TaskPriority, TaskStatus
from .providers import TaskProvider, default_factory

ProviderAction = Callable[[TaskProvider, str, argparse.Namespace], Awaitable[int]]

_STATUS_STYLES = {
    TaskStatus.DONE: "green",
    TaskStatus.IN_PROGRESS: "cyan",
    TaskStatus.REVIEW: "magenta",
    TaskStatus.BLOCKED: "red",
    TaskStatus.CANCELLED: "dim",
}


def _configure_logging(level: str = "WARNING") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan> - {message}"
        ),
    )


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")


async def _with_provider(args: argparse.Namespace, action: ProviderAction) -> int:
    project_dir = _resolve_project_dir(args.project_dir)
    config = load_provider_config(project_dir, path=Path(args.config) if args.config else None)
    provider = default_factory.create(config)
    async with provider:
        return await action(provider, config.project_path or str(project_dir), args)


def _provider_command(action: ProviderAction) -> Callable[[argparse.Namespace], int]:
    def handler(args: argparse.Namespace) -> int:
        return asyncio.run(_with_provider(args, action))

    return handler


def _fields_from_args(args: argparse.Namespace) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name in ("title", "description", "status", "priority", "details"):
        value = getattr(args, name, None)
        if value is not None:
            fields[name] = value
    if getattr(args, "tags", None):
        fields["tags"] = list(args.tags)
    if getattr(args, "parent", None) is not None:
        fields["parent_id"] = args.parent or None
    return fields


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _providers(args: argparse.Namespace) -> int:
    project_dir = _resolve_project_dir(args.project_dir)
    config = load_provider_config(project_dir, path=Path(args.config) if args.config else None)
    _write_json({"providers": default_factory.list_registered_types(), "selected": config.type})
    return 0


async def _list(provider: TaskProvider, project_path: str, args: argparse.Namespace) -> int:
    tasks = await provider.get_tasks(project_path)
    if args.status:
        tasks = [task for task in tasks if task.status.value == args.status]
    if args.json:
        _write_json({"provider": provider.type, "tasks": [task.to_dict() for task in tasks]})
        return 0

    table = Table(title=f"{provider.name} ({len(tasks)})")
    table.add_column("ID", style="bold")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Tags")
    for task in tasks:
        style = _STATUS_STYLES.get(task.status, "")
        table.add_row(
            task.id,
            task.title,
            f"[{style}]{task.status.value}[/{style}]" if style else task.status.value,
            task.priority.value if task.priority else "-",
            ", ".join(task.tags),
        )
    Console().print(table)
    return 0


async def _create(provider: TaskProvider, project_path: str, args: argparse.Namespace) -> int:
    task = await provider.create_task(project_path, _fields_from_args(args))
    _write_json({"task": task.to_dict()})
    return 0


async def _update(provider: TaskProvider, project_path: str, args: argparse.Namespace) -> int:
    fields = _fields_from_args(args)
    if not fields:
        sys.stderr.write("Nothing to update\n")
        return 1
    task = await provider.update_task(project_path, args.task_id, fields)
    _write_json({"task": task.to_dict()})
    return 0


async def _delete(provider: TaskProvider, project_path: str, args: argparse.Namespace) -> int:
    await provider.delete_task(project_path, args.task_id)
    _write_json({"deleted": args.task_id})
    return 0


async def _watch(provider: TaskProvider, project_path: str, args: argparse.Namespace) -> int:
    if not provider.supports_watch:
        sys.stderr.write(f"Provider '{provider.type}' does not support watching\n")
        return 1

    snapshots: asyncio.Queue = asyncio.Queue()
    cancel = provider.watch_tasks(project_path, snapshots.put_nowait)  # type: ignore[attr-defined]
    seen = 0
    try:
        while not args.ticks or seen < args.ticks:
            tasks = await snapshots.get()
            seen += 1
            sys.stdout.write(json.dumps({"tick": seen, "count": len(tasks)}) + "\n")
            sys.stdout.flush()
    finally:
        cancel()
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_field_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--description", default=None)
    parser.add_argument("--details", default=None)
    parser.add_argument("--status", default=None, choices=[s.value for s in TaskStatus])
    parser.add_argument("--priority", default=None, choices=[p.value for p in TaskPriority])
    parser.add_argument("--tag", dest="tags", action="append", default=None, help="Repeatable")
    parser.add_argument("--parent", default=None, help="Parent task id ('' clears it)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Orkee task provider CLI")
    parser.add_argument("--project-dir", default=None, help="Target project directory (default: current working directory)")
    parser.add_argument("--config", default=None, help="Provider config file (default: <project>/.orkee/tasks.yaml)")
    parser.add_argument("--log-level", default="WARNING", help="Loguru level for stderr output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    providers = subparsers.add_parser("providers", help="List registered provider types")
    providers.set_defaults(func=_providers)

    tlist = subparsers.add_parser("list", help="List tasks")
    tlist.add_argument("--status", default=None, choices=[s.value for s in TaskStatus])
    tlist.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    tlist.set_defaults(func=_provider_command(_list))

    create = subparsers.add_parser("create", help="Create a task")
    create.add_argument("title")
    _add_field_arguments(create)
    create.set_defaults(func=_provider_command(_create))

    update = subparsers.add_parser("update", help="Update a task")
    update.add_argument("task_id")
    update.add_argument("--title", default=None)
    _add_field_arguments(update)
    update.set_defaults(func=_provider_command(_update))

    delete = subparsers.add_parser("delete", help="Delete a task")
    delete.add_argument("task_id")
    delete.set_defaults(func=_provider_command(_delete))

    watch = subparsers.add_parser("watch", help="Print a line per polled snapshot")
    watch.add_argument("--ticks", type=int, default=0, help="Stop after N snapshots (0 = until interrupted)")
    watch.set_defaults(func=_provider_command(_watch))

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except TaskProviderError as exc:
        sys.stderr.write(exc.message + "\n")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
