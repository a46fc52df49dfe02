"""Durable per-task artifacts.

Directory layout::

    <results_dir>/
    └── task-xxxx/
        ├── task-meta.json         # Current TaskRecord
        ├── raw-output.json        # Agent stdout, verbatim (written at completion)
        └── response.txt           # Derived response text (written at completion)
    <logs_dir>/
    └── task-xxxx.log              # Agent stderr, appended while the task runs

Each task's files are only written by that task's own completion step,
so no cross-task locking is needed here.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Optional

from claudetasks.core.errors import TaskNotFoundError
from claudetasks.core.records import TASK_ID_PREFIX, TaskRecord, is_safe_task_id

logger = logging.getLogger("claudetasks.artifacts")

META_FILE = "task-meta.json"
RAW_OUTPUT_FILE = "raw-output.json"
RESPONSE_FILE = "response.txt"


class LogAppender:
    """Append-only handle on a task's log file.

    Writes may come from the stderr pump thread while the owner closes the
    handle, so both go through a lock. ``close`` is idempotent and writes
    after close are dropped.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._handle = open(path, "ab")

    def write(self, data: bytes) -> None:
        with self._lock:
            if self._handle is None:
                return
            self._handle.write(data)
            self._handle.flush()

    def write_line(self, line: str) -> None:
        self.write((line.rstrip("\n") + "\n").encode("utf-8"))

    def close(self) -> None:
        with self._lock:
            if self._handle is None:
                return
            self._handle.close()
            self._handle = None


class ArtifactStore:
    """File-system store for task metadata, output and logs."""

    def __init__(self, results_dir: str, logs_dir: str) -> None:
        self.results_dir = results_dir
        self.logs_dir = logs_dir
        os.makedirs(self.results_dir, exist_ok=True)
        os.makedirs(self.logs_dir, exist_ok=True)

    # ── paths ────────────────────────────────────────────────

    def scope_path(self, task_id: str) -> str:
        if not is_safe_task_id(task_id):
            raise TaskNotFoundError(task_id)
        return os.path.join(self.results_dir, task_id)

    def log_path(self, task_id: str) -> str:
        if not is_safe_task_id(task_id):
            raise TaskNotFoundError(task_id)
        return os.path.join(self.logs_dir, f"{task_id}.log")

    def _existing_scope(self, task_id: str) -> str:
        path = self.scope_path(task_id)
        if not os.path.isdir(path):
            raise TaskNotFoundError(task_id)
        return path

    # ── writes ───────────────────────────────────────────────

    def create_scope(self, task_id: str) -> str:
        """Create the task directory.

        Raises ``FileExistsError`` if the scope is already taken, which is
        how callers detect an id collision.
        """
        path = self.scope_path(task_id)
        os.makedirs(self.results_dir, exist_ok=True)
        os.mkdir(path)
        return path

    def write_metadata(self, record: TaskRecord) -> None:
        path = os.path.join(self._existing_scope(record.task_id), META_FILE)
        self._write_json_atomic(path, record.to_dict())

    def write_raw_output(self, task_id: str, data: bytes) -> None:
        path = os.path.join(self._existing_scope(task_id), RAW_OUTPUT_FILE)
        with open(path, "wb") as handle:
            handle.write(data)

    def write_response(self, task_id: str, text: str) -> None:
        path = os.path.join(self._existing_scope(task_id), RESPONSE_FILE)
        with open(path, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)

    def open_log(self, task_id: str) -> LogAppender:
        os.makedirs(self.logs_dir, exist_ok=True)
        return LogAppender(self.log_path(task_id))

    @staticmethod
    def _write_json_atomic(path: str, payload: dict[str, Any]) -> None:
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)

    # ── reads ────────────────────────────────────────────────

    def read_metadata(self, task_id: str) -> dict[str, Any]:
        path = os.path.join(self._existing_scope(task_id), META_FILE)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError as exc:
            raise TaskNotFoundError(task_id) from exc

    def read_response(self, task_id: str) -> Optional[str]:
        path = os.path.join(self._existing_scope(task_id), RESPONSE_FILE)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8", newline="") as handle:
            return handle.read()

    def list_files(self, task_id: str) -> list[str]:
        return sorted(os.listdir(self._existing_scope(task_id)))

    def list_metadata(self) -> list[dict[str, Any]]:
        """Read every task's metadata from disk.

        Unreadable entries are skipped; an unreadable results root yields an
        empty list.
        """
        try:
            names = sorted(os.listdir(self.results_dir))
        except OSError as exc:
            logger.warning("Cannot list results dir %s: %s", self.results_dir, exc)
            return []

        records: list[dict[str, Any]] = []
        for name in names:
            if not name.startswith(TASK_ID_PREFIX):
                continue
            path = os.path.join(self.results_dir, name, META_FILE)
            if not os.path.isfile(path):
                continue
            try:
                with open(path, "r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable metadata %s: %s", path, exc)
                continue
            if isinstance(data, dict):
                records.append(data)
        return records
