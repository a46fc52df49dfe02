"""In-memory cache of the latest TaskRecord per task id."""
from __future__ import annotations

from dataclasses import replace
import threading
from typing import Dict, List

from claudetasks.core.errors import TaskNotFoundError
from claudetasks.core.records import STATUS_RUNNING, TaskRecord


class TaskRegistry:
    """Thread-safe ``task_id -> TaskRecord`` map.

    Records go in and come out as copies, so a reader never observes a
    record that someone else is still mutating. The lock only guards dict
    operations and is never held across I/O.
    """

    def __init__(self) -> None:
        self._records: Dict[str, TaskRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: TaskRecord) -> None:
        snapshot = replace(record)
        with self._lock:
            self._records[snapshot.task_id] = snapshot

    def get(self, task_id: str) -> TaskRecord:
        with self._lock:
            record = self._records.get(task_id)
        if record is None:
            raise TaskNotFoundError(task_id)
        return replace(record)

    def list_all(self) -> List[TaskRecord]:
        """Return all records, newest ``started_at`` first."""
        with self._lock:
            records = [replace(r) for r in self._records.values()]
        records.sort(key=lambda r: r.started_at, reverse=True)
        return records

    def running_count(self) -> int:
        with self._lock:
            return sum(1 for r in self._records.values() if r.status == STATUS_RUNNING)

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._records
