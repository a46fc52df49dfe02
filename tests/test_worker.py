from __future__ import annotations

import threading

from claudetasks.core.worker import AgentProcess, AgentResult, WorkerPool


def _run(cmd: list[str], **kwargs) -> tuple[AgentProcess, list[bytes]]:
    chunks: list[bytes] = []
    proc = AgentProcess(task_id="task-test", cmd=cmd, on_stderr=chunks.append, **kwargs)
    proc.start()
    return proc, chunks


def test_captures_stdout_and_streams_stderr(fake_agent):
    proc, chunks = _run([fake_agent(stdout='{"result": "hi"}', stderr="warming up\n")])
    result = proc.future.result(timeout=30)
    assert result == AgentResult(exit_code=0, stdout=b'{"result": "hi"}')
    assert result.started
    assert b"".join(chunks) == b"warming up\n"
    assert not proc.is_running


def test_nonzero_exit_code(fake_agent):
    proc, _ = _run([fake_agent(stdout="partial", exit_code=3)])
    result = proc.future.result(timeout=30)
    assert result.exit_code == 3
    assert result.stdout == b"partial"


def test_missing_binary_resolves_immediately(tmp_path):
    proc, chunks = _run([str(tmp_path / "missing-claude"), "--print"])
    assert proc.future.done()
    result = proc.future.result(timeout=0)
    assert result.exit_code is None
    assert not result.started
    assert result.error
    assert chunks == []


def test_not_executable_is_a_start_failure(tmp_path):
    script = tmp_path / "claude"
    script.write_text("#!/bin/sh\necho hi\n")
    proc, _ = _run([str(script)])
    result = proc.future.result(timeout=5)
    assert result.exit_code is None
    assert not result.started


def test_killed_by_signal_has_no_exit_code(fake_agent):
    proc, _ = _run([fake_agent(stdout="before", kill_self=True)])
    result = proc.future.result(timeout=30)
    assert result.exit_code is None
    assert result.started
    assert result.stdout == b"before"


def test_large_stderr_does_not_block(fake_agent):
    big = "x" * (1024 * 1024)
    proc, chunks = _run([fake_agent(stdout="done", stderr=big)])
    result = proc.future.result(timeout=60)
    assert result.stdout == b"done"
    assert len(b"".join(chunks)) == len(big)


def test_failing_stderr_handler_does_not_stall(fake_agent):
    def boom(_chunk: bytes) -> None:
        raise OSError("disk full")

    proc = AgentProcess(task_id="t", cmd=[fake_agent(stdout="ok", stderr="noise")], on_stderr=boom)
    proc.start()
    assert proc.future.result(timeout=30).exit_code == 0


def test_callback_added_after_completion_runs_immediately(fake_agent):
    calls: list[AgentResult] = []
    proc, _ = _run([fake_agent(stdout="x")])
    result = proc.future.result(timeout=30)
    proc.add_done_callback(calls.append)
    assert calls == [result]


def test_pool_tracks_active_processes(fake_agent):
    pool = WorkerPool()
    release = threading.Event()
    proc = pool.start("task-a", [fake_agent(stdout="slow", sleep=1.0)])
    assert pool.active_count() == 1
    proc.add_done_callback(lambda _r: release.set())
    assert release.wait(timeout=30)
    assert pool.active_count() == 0


def test_pool_start_failure_is_not_tracked(tmp_path):
    pool = WorkerPool()
    proc = pool.start("task-b", [str(tmp_path / "missing")])
    assert proc.future.result(timeout=0).error
    assert pool.active_count() == 0


def test_argument_rejected_by_popen_is_a_start_failure(fake_agent):
    proc, _ = _run([fake_agent(), "hi\x00there"])
    assert proc.future.done()
    result = proc.future.result(timeout=0)
    assert result.exit_code is None
    assert "null" in result.error


def test_pool_forgets_process_that_never_started(fake_agent):
    pool = WorkerPool()
    proc = pool.start("task-c", [fake_agent(), "bad\x00arg"])
    assert not proc.future.result(timeout=0).started
    assert pool.active_count() == 0
    # the id is free again
    pool.start("task-c", [fake_agent(stdout="ok")]).future.result(timeout=30)
