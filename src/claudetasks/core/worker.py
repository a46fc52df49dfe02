"""Agent process supervision: one background thread per task.

Each :class:`AgentProcess` owns a child process and two drains:

- stdout is read to EOF by the supervising thread and kept in memory;
- stderr is read by a second thread and forwarded chunk by chunk to the
  ``on_stderr`` callback (the task's log appender) as it arrives.

When both streams are drained and the child has exited, ``future`` resolves
with an :class:`AgentResult`. That happens exactly once per process, also
when the child could not be started at all.
"""
from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
import logging
import subprocess
import threading
from typing import Callable, Dict, Optional

logger = logging.getLogger("claudetasks.worker")

_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class AgentResult:
    """How an agent process ended.

    ``exit_code`` is None when the process never started (``error`` is set)
    or was terminated by a signal.
    """
    exit_code: Optional[int]
    stdout: bytes = b""
    error: Optional[str] = None

    @property
    def started(self) -> bool:
        return self.error is None


class AgentProcess:
    """Handle on one supervised agent process."""

    def __init__(
        self,
        task_id: str,
        cmd: list[str],
        cwd: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        on_stderr: Optional[Callable[[bytes], None]] = None,
    ) -> None:
        self.task_id = task_id
        self.cmd = cmd
        self.cwd = cwd
        self.env = env
        self.on_stderr = on_stderr
        self.future: Future[AgentResult] = Future()

        self._process: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return not self.future.done()

    def start(self) -> None:
        """Spawn the child and the supervising thread.

        A spawn failure resolves ``future`` immediately instead of raising.
        That includes arguments ``Popen`` rejects outright, such as a prompt
        with an embedded NUL byte.
        """
        try:
            self._process = subprocess.Popen(
                self.cmd,
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.env,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Agent for task %s could not start: %s", self.task_id, exc)
            self.future.set_result(AgentResult(exit_code=None, error=str(exc)))
            return

        logger.info("Agent process started for task %s (pid=%s)", self.task_id, self._process.pid)
        self._thread = threading.Thread(
            target=self._run,
            name=f"agent-{self.task_id}",
            daemon=True,
        )
        try:
            self._thread.start()
        except RuntimeError as exc:
            logger.error("No supervisor thread for task %s: %s", self.task_id, exc)
            self._process.kill()
            self._process.wait()
            for stream in (self._process.stdout, self._process.stderr):
                if stream is not None:
                    stream.close()
            self.future.set_result(AgentResult(exit_code=None, error=f"supervisor error: {exc}"))

    def add_done_callback(self, fn: Callable[[AgentResult], None]) -> None:
        """Call ``fn(result)`` once the process has ended (immediately if it already has)."""
        self.future.add_done_callback(lambda fut: fn(fut.result()))

    def _forward_stderr(self, chunk: bytes) -> None:
        if not self.on_stderr:
            return
        try:
            self.on_stderr(chunk)
        except Exception as exc:  # noqa: BLE001
            # Keep draining; a stalled pipe would block the child.
            logger.error("stderr handler failed for task %s: %s", self.task_id, exc)

    def _pump_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stream = self._process.stderr
        while True:
            chunk = stream.read1(_READ_CHUNK)
            if not chunk:
                break
            self._forward_stderr(chunk)

    def _run(self) -> None:
        process = self._process
        assert process is not None and process.stdout is not None
        stdout = b""
        exit_code: Optional[int] = None
        error: Optional[str] = None
        stderr_thread = threading.Thread(
            target=self._pump_stderr,
            name=f"agent-{self.task_id}-stderr",
            daemon=True,
        )
        try:
            stderr_thread.start()
            stdout = process.stdout.read()
            returncode = process.wait()
            stderr_thread.join()
            # Negative return codes mean the child was killed by a signal.
            exit_code = returncode if returncode >= 0 else None
            logger.info(
                "Agent process for task %s exited (code=%s, stdout_bytes=%d)",
                self.task_id, returncode, len(stdout),
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Supervisor for task %s failed: %s", self.task_id, exc, exc_info=True)
            error = f"supervisor error: {exc}"
            if process.poll() is None:
                try:
                    process.kill()
                except OSError:
                    pass
        finally:
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    try:
                        stream.close()
                    except OSError:
                        pass
            self.future.set_result(AgentResult(exit_code=exit_code, stdout=stdout, error=error))


class WorkerPool:
    """Tracks every live agent process."""

    def __init__(self) -> None:
        self._processes: Dict[str, AgentProcess] = {}
        self._lock = threading.Lock()

    def start(
        self,
        task_id: str,
        cmd: list[str],
        cwd: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        on_stderr: Optional[Callable[[bytes], None]] = None,
    ) -> AgentProcess:
        """Launch an agent process for a task."""
        with self._lock:
            if task_id in self._processes:
                raise RuntimeError(f"Agent already running for task {task_id}")
            proc = AgentProcess(task_id=task_id, cmd=cmd, cwd=cwd, env=env, on_stderr=on_stderr)
            self._processes[task_id] = proc
        try:
            proc.start()
        except BaseException:
            self._forget(task_id)
            raise
        proc.add_done_callback(lambda _result: self._forget(task_id))
        return proc

    def _forget(self, task_id: str) -> None:
        with self._lock:
            self._processes.pop(task_id, None)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for p in self._processes.values() if p.is_running)
