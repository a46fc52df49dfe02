"""Domain errors shared by the artifact store, registry and task manager."""
from __future__ import annotations


class TaskError(Exception):
    """Base class for task lifecycle errors."""


class InvalidTaskError(TaskError, ValueError):
    """A submission was rejected before anything was created."""


class TaskNotFoundError(TaskError):
    """No task (or task scope) exists for the given id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class TaskStateError(TaskError):
    """An illegal status transition was attempted."""
