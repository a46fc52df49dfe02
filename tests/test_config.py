from __future__ import annotations

import os

from claudetasks.core.config import DEFAULT_MODEL, Settings

_VARS = (
    "CLAUDETASKS_WORKSPACE_DIR",
    "CLAUDETASKS_RESULTS_DIR",
    "CLAUDETASKS_LOGS_DIR",
    "CLAUDETASKS_LOG_DIR",
    "CLAUDETASKS_LOG_LEVEL",
    "CLAUDETASKS_DEFAULT_MODEL",
    "CLAUDETASKS_VERSION_TIMEOUT",
    "CLAUDETASKS_HOST",
    "CLAUDETASKS_PORT",
    "CLAUDE_CLI_PATH",
)


def test_defaults(tmp_path, monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)

    settings = Settings.from_env()
    assert settings.workspace_dir == str(tmp_path)
    assert settings.results_dir == os.path.join(str(tmp_path), "results")
    assert settings.logs_dir == os.path.join(str(tmp_path), "logs")
    assert settings.log_dir == settings.logs_dir
    assert settings.default_model == DEFAULT_MODEL
    assert settings.claude_cli_path == "claude"
    assert settings.host == "0.0.0.0"
    assert settings.port == 7680
    assert settings.version_timeout == 15


def test_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("CLAUDETASKS_WORKSPACE_DIR", str(tmp_path / "ws"))
    monkeypatch.setenv("CLAUDETASKS_RESULTS_DIR", str(tmp_path / "out"))
    monkeypatch.setenv("CLAUDETASKS_DEFAULT_MODEL", "claude-other")
    monkeypatch.setenv("CLAUDETASKS_PORT", "9001")
    monkeypatch.setenv("CLAUDE_CLI_PATH", "/usr/local/bin/claude")

    settings = Settings.from_env()
    assert settings.workspace_dir == str(tmp_path / "ws")
    assert settings.results_dir == str(tmp_path / "out")
    assert settings.logs_dir == os.path.join(str(tmp_path / "ws"), "logs")
    assert settings.default_model == "claude-other"
    assert settings.port == 9001
    assert settings.claude_cli_path == "/usr/local/bin/claude"


def test_empty_model_falls_back(monkeypatch):
    monkeypatch.setenv("CLAUDETASKS_DEFAULT_MODEL", "")
    assert Settings.from_env().default_model == DEFAULT_MODEL
