"""Low-level access to the taskmaster ``tasks.json`` document.

The taskmaster provider only ever reads a raw document or applies a
read-modify-write mutation to it.  Where the document lives is decided by the
transport: directly on disk, or forwarded through the Orkee API when the
caller cannot touch the filesystem.
"""

from __future__ import annotations

import abc
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Callable, Optional

from filelock import FileLock, Timeout
from loguru import logger

from ..errors import TransportError
from .http import ApiClient

#: Mutation callback: receives the current raw document (``None`` when there
#: is none yet) and returns ``(new_document, result)``.
DocumentMutator = Callable[[Optional[Any]], tuple[Any, Any]]

TASKS_RELATIVE_PATH = Path(".taskmaster") / "tasks" / "tasks.json"
LOCK_TIMEOUT = 30  # seconds

READ_PATH = "/api/taskmaster/read"
SAVE_PATH = "/api/taskmaster/save"


class DocumentTransport(abc.ABC):
    """How the taskmaster document is read and saved."""

    #: Short tag used in option parsing and logs.
    kind: str = "base"

    async def check(self) -> None:
        """Verify the transport is usable; called from ``initialize()``."""
        return None

    async def aclose(self) -> None:
        return None

    @abc.abstractmethod
    async def read(self, project_path: str) -> Optional[Any]:
        """Return the parsed document, or ``None`` if it does not exist."""
        ...

    @abc.abstractmethod
    async def update(self, project_path: str, mutator: DocumentMutator) -> Any:
        """Apply *mutator* to the current document, persist, and return its result."""
        ...


# ---------------------------------------------------------------------------
# File transport
# ---------------------------------------------------------------------------

def _atomic_write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2)
        handle.write("\n")
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class FileDocumentTransport(DocumentTransport):
    """Reads and writes ``<project>/.taskmaster/tasks/tasks.json`` directly.

    Writes hold an exclusive :class:`filelock.FileLock` for the whole
    read-modify-write cycle, so two providers pointed at the same project
    cannot interleave their saves.  Blocking I/O runs in a worker thread.
    """

    kind = "file"

    def __init__(self, relative_path: Path = TASKS_RELATIVE_PATH, *, lock_timeout: float = LOCK_TIMEOUT) -> None:
        self.relative_path = Path(relative_path)
        self.lock_timeout = lock_timeout

    def document_path(self, project_path: str) -> Path:
        return Path(project_path).expanduser() / self.relative_path

    def lock_path(self, project_path: str) -> Path:
        path = self.document_path(project_path)
        return path.with_suffix(path.suffix + ".lock")

    async def read(self, project_path: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read_sync, self.document_path(project_path))

    async def update(self, project_path: str, mutator: DocumentMutator) -> Any:
        return await asyncio.to_thread(self._update_sync, project_path, mutator)

    @staticmethod
    def _read_sync(path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise TransportError(f"Failed to read Taskmaster tasks: {path.name}: {exc}") from exc
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise TransportError(f"Failed to read Taskmaster tasks: {path.name}: JSONDecodeError: {exc}") from exc

    def _update_sync(self, project_path: str, mutator: DocumentMutator) -> Any:
        path = self.document_path(project_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(str(self.lock_path(project_path)), timeout=self.lock_timeout):
                document, result = mutator(self._read_sync(path))
                try:
                    _atomic_write_json(path, document)
                except OSError as exc:
                    raise TransportError(f"Failed to save Taskmaster tasks: {path.name}: {exc}") from exc
        except Timeout as exc:
            raise TransportError(f"Timed out waiting for lock on {path}") from exc
        except OSError as exc:
            raise TransportError(f"Failed to prepare Taskmaster tasks: {path.parent}: {exc}") from exc
        logger.debug("Saved taskmaster document {}", path)
        return result


# ---------------------------------------------------------------------------
# API transport
# ---------------------------------------------------------------------------

class ApiDocumentTransport(DocumentTransport):
    """Forwards document reads and saves through the Orkee API.

    ``POST /api/taskmaster/read``  ``{projectRoot}``        -> ``data: <document|null>``
    ``POST /api/taskmaster/save``  ``{projectRoot, data}``  -> ``success``
    """

    kind = "api"

    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def check(self) -> None:
        await self._api.ping()

    async def aclose(self) -> None:
        await self._api.aclose()

    async def read(self, project_path: str) -> Optional[Any]:
        return await self._api.request("POST", READ_PATH, json={"projectRoot": project_path})

    async def update(self, project_path: str, mutator: DocumentMutator) -> Any:
        document, result = mutator(await self.read(project_path))
        await self._api.request("POST", SAVE_PATH, json={"projectRoot": project_path, "data": document})
        return result
