# src/taskqueue_mcp/tasks/task_store.py

from __future__ import annotations

import asyncio
import contextlib
import errno
import json
import logging
import os
import uuid
from pathlib import Path

from ..core.errors import AppError, ErrorCode
from .task_models import PROJECT_ID_PREFIX, TASK_ID_PREFIX, TaskFile

logger = logging.getLogger(__name__)


def _id_number(raw: str, prefix: str) -> int | None:
    if not raw.startswith(prefix):
        return None
    try:
        return int(raw[len(prefix):])
    except ValueError:
        return None


class TaskFileStore:
    """
    JSON file task store.

    One file holds every project and task. The file is shared with other
    processes (server + CLI) without any file lock:
    - within this instance, every file operation runs under an asyncio.Lock,
      so operations never interleave and waiters resume in arrival order
    - across processes there is no ordering at all; callers narrow the
      lost-update window by calling reload() right before a mutation

    Writes go to a uniquely named temp file first and are moved over the target
    with os.replace, so a crash mid-write leaves the previous file intact.
    """

    def __init__(self, file_path: str | Path) -> None:
        self._path = Path(file_path).expanduser()
        self._lock = asyncio.Lock()
        logger.info("TaskFileStore ready path=%s exists=%s", self._path, self._path.exists())

    @property
    def path(self) -> Path:
        return self._path

    # ---- low-level helpers (run in a worker thread) ----

    def _read_file(self) -> TaskFile:
        try:
            raw = self._path.read_text("utf-8")
        except FileNotFoundError:
            logger.debug("Tasks file %s does not exist yet; starting empty", self._path)
            return TaskFile()
        except OSError as e:
            raise AppError(f"Failed to read tasks file: {e}", ErrorCode.FILE_READ_ERROR, e) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AppError(
                f"Failed to read tasks file: invalid JSON in {self._path} ({e})",
                ErrorCode.FILE_READ_ERROR,
                e,
            ) from e

        if not isinstance(data, dict):
            raise AppError(
                f"Failed to read tasks file: {self._path} does not contain a JSON object",
                ErrorCode.FILE_READ_ERROR,
            )
        return TaskFile.from_dict(data)

    def _write_file(self, payload: str) -> None:
        # Unique per write: several stores in one process may share the target.
        tmp = self._path.with_name(f".{self._path.name}.{os.getpid()}.{uuid.uuid4().hex}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, "utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp.unlink()
            if e.errno == errno.EROFS:
                raise AppError(
                    "Cannot save tasks: read-only file system",
                    ErrorCode.READ_ONLY_FILE_SYSTEM,
                    e,
                ) from e
            raise AppError(f"Failed to save tasks file: {e}", ErrorCode.FILE_WRITE_ERROR, e) from e

    @staticmethod
    def _read_side(path: Path, name: str) -> str:
        try:
            return path.read_text("utf-8")
        except FileNotFoundError as e:
            raise AppError(f"Attachment file not found: {name}", ErrorCode.FILE_READ_ERROR, e) from e
        except (OSError, UnicodeDecodeError) as e:
            raise AppError(f"Failed to read attachment file: {name}", ErrorCode.FILE_READ_ERROR, e) from e

    # ---- public API ----

    async def load(self) -> TaskFile:
        """Read the whole file. A missing file is an empty store, not an error."""
        async with self._lock:
            data = await asyncio.to_thread(self._read_file)
        logger.debug("Loaded %d projects from %s", len(data.projects), self._path)
        return data

    async def reload(self) -> TaskFile:
        """Same as load(); called right before a mutation to pick up other writers."""
        async with self._lock:
            return await asyncio.to_thread(self._read_file)

    async def save(self, data: TaskFile) -> None:
        # Snapshot at call time; later in-memory edits are not part of this write.
        payload = json.dumps(data.to_dict(), ensure_ascii=False, indent=2)
        async with self._lock:
            await asyncio.to_thread(self._write_file, payload)
        logger.debug("Saved %d projects to %s", len(data.projects), self._path)

    async def read_side_file(self, name: str | Path) -> str:
        """Read an auxiliary text file (attachments), relative to the working directory."""
        path = Path(name).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        async with self._lock:
            return await asyncio.to_thread(self._read_side, path, str(name))

    @staticmethod
    def calculate_max_ids(data: TaskFile) -> tuple[int, int]:
        """
        Highest numeric suffix of proj-<N> and task-<N> ids in the file.

        Malformed ids are ignored. Returns (0, 0) for an empty store.
        """
        max_project = 0
        max_task = 0
        for proj in data.projects:
            n = _id_number(proj.project_id, PROJECT_ID_PREFIX)
            if n is not None:
                max_project = max(max_project, n)
            for t in proj.tasks:
                m = _id_number(t.id, TASK_ID_PREFIX)
                if m is not None:
                    max_task = max(max_task, m)
        return max_project, max_task
