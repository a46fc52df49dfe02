from __future__ import annotations

import logging
import os
import stat
import sys
from typing import Callable, Iterator

import pytest

from claudetasks.core.config import DEFAULT_MODEL, Settings

# Stand-in for the claude CLI. Answers --version, records its argv next to
# itself, then writes the configured stderr/stdout and exits.
_FAKE_AGENT = """#!{python}
import json
import os
import signal
import sys
import time

if sys.argv[1:2] == ["--version"]:
    print({version!r})
    sys.exit(0)

with open({argv_path!r}, "w", encoding="utf-8") as handle:
    json.dump(sys.argv[1:], handle)

time.sleep({sleep!r})
sys.stderr.write({stderr!r})
sys.stderr.flush()
sys.stdout.write({stdout!r})
sys.stdout.flush()
if {kill_self!r}:
    os.kill(os.getpid(), signal.SIGKILL)
sys.exit({exit_code!r})
"""


@pytest.fixture
def fake_agent(tmp_path) -> Callable[..., str]:
    counter = {"n": 0}

    def _make(
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        sleep: float = 0.0,
        kill_self: bool = False,
        version: str = "1.0.0 (Claude Code)",
    ) -> str:
        counter["n"] += 1
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        path = bin_dir / f"claude-{counter['n']}"
        path.write_text(
            _FAKE_AGENT.format(
                python=sys.executable,
                version=version,
                argv_path=str(path) + ".argv.json",
                sleep=sleep,
                stderr=stderr,
                stdout=stdout,
                kill_self=kill_self,
                exit_code=exit_code,
            ),
            encoding="utf-8",
        )
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        workspace = tmp_path / "workspace"
        workspace.mkdir(exist_ok=True)
        values = dict(
            log_level="debug",
            log_dir=str(tmp_path / "service-logs"),
            workspace_dir=str(workspace),
            results_dir=str(workspace / "results"),
            logs_dir=str(workspace / "logs"),
            claude_cli_path=str(tmp_path / "no-such-claude"),
            default_model=DEFAULT_MODEL,
            version_timeout=5,
            host="127.0.0.1",
            port=7680,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """create_app() reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def home(tmp_path, monkeypatch) -> str:
    path = tmp_path / "home"
    path.mkdir()
    monkeypatch.setenv("HOME", str(path))
    return os.fspath(path)
