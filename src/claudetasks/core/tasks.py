"""Task lifecycle: submission, supervision hand-off and finalization.

A task is created ``running`` and finalized exactly once, when its agent
process ends (or fails to start). Every state change is written to the
artifact store first and then published to the registry, so the files on
disk are never behind what the registry reports.
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading
from typing import Any, Dict, List, Optional

from claudetasks.core.artifacts import ArtifactStore, LogAppender
from claudetasks.core.config import DEFAULT_MODEL
from claudetasks.core.errors import InvalidTaskError, TaskError, TaskNotFoundError
from claudetasks.core.logging_config import log_task_event
from claudetasks.core.output import derive_response, parse_agent_output
from claudetasks.core.records import STATUS_RUNNING, TaskRecord, new_task_id, parse_timestamp
from claudetasks.core.registry import TaskRegistry
from claudetasks.core.worker import AgentResult, WorkerPool
from claudetasks.integrations.claude_cli import ClaudeCli

logger = logging.getLogger("claudetasks.tasks")

_MAX_ID_ATTEMPTS = 5
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _started_at_key(data: dict[str, Any]) -> datetime:
    try:
        return parse_timestamp(str(data["started_at"]))
    except (KeyError, ValueError):
        return _OLDEST


class TaskManager:
    """Creates tasks, launches their agents and records how they end."""

    def __init__(
        self,
        store: ArtifactStore,
        registry: TaskRegistry,
        cli: ClaudeCli,
        worker_pool: Optional[WorkerPool] = None,
        default_model: str = DEFAULT_MODEL,
    ) -> None:
        self.store = store
        self.registry = registry
        self.cli = cli
        self.worker_pool = worker_pool or WorkerPool()
        self.default_model = default_model
        # task_id -> set once the task's final state has been published
        self._pending: Dict[str, threading.Event] = {}
        self._pending_lock = threading.Lock()

    # ── submission ───────────────────────────────────────────

    def submit(self, prompt: str, model: Optional[str] = None) -> TaskRecord:
        """Create a task and launch its agent. Does not wait for it to finish."""
        if not isinstance(prompt, str) or not prompt:
            raise InvalidTaskError("Missing 'task' in request body")

        task_id = self._allocate_scope()
        record = TaskRecord.start(task_id, prompt, model or self.default_model)
        self.store.write_metadata(record)
        self.registry.put(record)

        done = threading.Event()
        with self._pending_lock:
            self._pending[task_id] = done

        logger.info("%s started (model=%s): %s", task_id, record.model, prompt[:60])
        log_task_event(task_id, "submitted", model=record.model, prompt=prompt[:200])

        try:
            log = self.store.open_log(task_id)
        except OSError as exc:
            logger.error("Cannot open log for %s: %s", task_id, exc)
            self._finalize(record, None, AgentResult(exit_code=None, error=f"cannot open log: {exc}"))
            return record

        cmd = self.cli.build_command(prompt, record.model)
        try:
            proc = self.worker_pool.start(
                task_id,
                cmd,
                cwd=self.cli.workspace_dir,
                env=self.cli.make_env(),
                on_stderr=log.write,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not launch agent for %s: %s", task_id, exc, exc_info=True)
            self._finalize(record, log, AgentResult(exit_code=None, error=str(exc)))
            return record
        proc.add_done_callback(lambda result: self._finalize(record, log, result))
        return record

    def _allocate_scope(self) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            task_id = new_task_id()
            try:
                self.store.create_scope(task_id)
            except FileExistsError:
                logger.debug("Task id collision on %s, retrying", task_id)
                continue
            return task_id
        raise TaskError("Could not allocate a unique task id")

    # ── completion ───────────────────────────────────────────

    def _finalize(self, record: TaskRecord, log: Optional[LogAppender], result: AgentResult) -> None:
        """Persist the agent's output and the terminal record. Runs once per task."""
        task_id = record.task_id
        published = False
        try:
            if log is not None:
                if not result.started:
                    log.write_line(f"Failed to start agent: {result.error}")
                log.close()

            self.store.write_raw_output(task_id, result.stdout)
            self.store.write_response(task_id, derive_response(parse_agent_output(result.stdout)))

            final = record.finish(result.exit_code)
            self.store.write_metadata(final)
            self.registry.put(final)
            published = True

            logger.info(
                "%s %s (%ss, exit_code=%s): %s",
                task_id, final.status, final.duration_seconds, final.exit_code, record.prompt[:60],
            )
            log_task_event(
                task_id,
                "finished",
                status=final.status,
                exit_code=final.exit_code,
                duration_seconds=final.duration_seconds,
                error=result.error,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to finalize %s: %s", task_id, exc, exc_info=True)
            if not published:
                self._finalize_failed(record)
        finally:
            if log is not None:
                log.close()
            with self._pending_lock:
                done = self._pending.pop(task_id, None)
            if done is not None:
                done.set()

    def _finalize_failed(self, record: TaskRecord) -> None:
        """Last resort: make sure the task does not stay ``running`` forever."""
        final = record.finish(None)
        try:
            self.store.write_metadata(final)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not write failed metadata for %s: %s", record.task_id, exc)
        self.registry.put(final)
        log_task_event(record.task_id, "finished", status=final.status, error="finalize failed")

    # ── startup ──────────────────────────────────────────────

    def recover(self) -> int:
        """Load on-disk tasks into the registry.

        Tasks still ``running`` on disk belonged to a previous process whose
        agents are gone; they are finalized as ``failed`` with no exit code.
        Returns the number of records loaded.
        """
        loaded = 0
        for data in self.store.list_metadata():
            try:
                record = TaskRecord.from_dict(data)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed task metadata: %s", exc)
                continue
            if record.task_id in self.registry:
                continue
            if record.status == STATUS_RUNNING:
                record = record.finish(None)
                try:
                    self.store.write_metadata(record)
                except (OSError, TaskNotFoundError) as exc:
                    logger.warning("Could not finalize orphaned %s: %s", record.task_id, exc)
                    continue
                logger.warning("Orphaned task %s marked failed", record.task_id)
                log_task_event(record.task_id, "recovered", status=record.status)
            self.registry.put(record)
            loaded += 1
        if loaded:
            logger.info("Recovered %d task(s) from %s", loaded, self.store.results_dir)
        return loaded

    # ── queries ──────────────────────────────────────────────

    def list_tasks(self) -> List[dict[str, Any]]:
        """All task metadata as stored on disk, newest first."""
        records = self.store.list_metadata()
        records.sort(key=_started_at_key, reverse=True)
        return records

    def get_task(self, task_id: str) -> dict[str, Any]:
        """On-disk metadata plus the response text (None until written)."""
        meta = self.store.read_metadata(task_id)
        return {**meta, "response": self.store.read_response(task_id)}

    def list_files(self, task_id: str) -> List[str]:
        return self.store.list_files(task_id)

    def running_count(self) -> int:
        return self.registry.running_count()

    def running_tasks(self) -> List[TaskRecord]:
        """Tasks this process still considers running, newest first."""
        return [r for r in self.registry.list_all() if r.status == STATUS_RUNNING]

    def wait(self, task_id: str, timeout: Optional[float] = None) -> TaskRecord:
        """Block until *task_id* is finalized (or *timeout* passes); return its record."""
        with self._pending_lock:
            done = self._pending.get(task_id)
        if done is not None:
            done.wait(timeout)
        return self.registry.get(task_id)

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """Wait for every in-flight task; True if all finished in time."""
        with self._pending_lock:
            events = list(self._pending.values())
        return all(ev.wait(timeout) for ev in events)
