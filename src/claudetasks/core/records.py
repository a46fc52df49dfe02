"""Task record model and its on-disk / wire representation."""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
import os
import secrets
import time
from typing import Any, Optional

from claudetasks.core.errors import TaskStateError

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TASK_STATUSES = {STATUS_RUNNING, STATUS_COMPLETED, STATUS_FAILED}
TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_FAILED}

TASK_ID_PREFIX = "task-"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_task_id() -> str:
    """Return ``task-<epoch ms>-<6 hex chars>``."""
    return f"{TASK_ID_PREFIX}{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def is_safe_task_id(task_id: str) -> bool:
    """True if *task_id* can be used as a single directory name."""
    if not task_id or task_id.startswith("."):
        return False
    if os.sep in task_id or (os.altsep and os.altsep in task_id):
        return False
    return "\x00" not in task_id


@dataclass
class TaskRecord:
    """One submitted task.

    ``status`` moves from ``running`` to ``completed`` or ``failed`` exactly
    once; use :meth:`finish` to produce the terminal copy.
    """
    task_id: str
    prompt: str
    model: str
    started_at: datetime
    status: str = STATUS_RUNNING
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    exit_code: Optional[int] = None

    @classmethod
    def start(cls, task_id: str, prompt: str, model: str) -> TaskRecord:
        return cls(task_id=task_id, prompt=prompt, model=model, started_at=_now())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def finish(self, exit_code: Optional[int], completed_at: Optional[datetime] = None) -> TaskRecord:
        """Return the terminal copy of this record.

        Exit code 0 means ``completed``; anything else, including a missing
        exit code, means ``failed``.
        """
        if self.is_terminal:
            raise TaskStateError(f"Task {self.task_id} is already {self.status}")
        done = completed_at or _now()
        return replace(
            self,
            status=STATUS_COMPLETED if exit_code == 0 else STATUS_FAILED,
            completed_at=done,
            duration_seconds=round((done - self.started_at).total_seconds()),
            exit_code=exit_code,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "task_id": self.task_id,
            "task": self.prompt,
            "model": self.model,
            "started_at": self.started_at.isoformat(),
            "status": self.status,
        }
        if self.completed_at is not None:
            data["completed_at"] = self.completed_at.isoformat()
        if self.duration_seconds is not None:
            data["duration_seconds"] = self.duration_seconds
        if self.exit_code is not None:
            data["exit_code"] = self.exit_code
        return data

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TaskRecord:
        status = d.get("status", STATUS_RUNNING)
        if status not in TASK_STATUSES:
            raise ValueError(f"Unknown task status: {status!r}")
        return cls(
            task_id=d["task_id"],
            prompt=d["task"],
            model=d["model"],
            started_at=parse_timestamp(d["started_at"]),
            status=status,
            completed_at=parse_timestamp(d["completed_at"]) if d.get("completed_at") else None,
            duration_seconds=d.get("duration_seconds"),
            exit_code=d.get("exit_code"),
        )
