from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_PORT = 7680


@dataclass
class Settings:
    log_level: str
    log_dir: str
    workspace_dir: str
    results_dir: str
    logs_dir: str
    claude_cli_path: str
    default_model: str
    version_timeout: int
    host: str
    port: int

    @staticmethod
    def from_env() -> "Settings":
        workspace = os.path.abspath(os.getenv("CLAUDETASKS_WORKSPACE_DIR") or os.getcwd())
        results_dir = os.getenv("CLAUDETASKS_RESULTS_DIR") or os.path.join(workspace, "results")
        logs_dir = os.getenv("CLAUDETASKS_LOGS_DIR") or os.path.join(workspace, "logs")
        return Settings(
            log_level=os.getenv("CLAUDETASKS_LOG_LEVEL", "info"),
            log_dir=os.getenv("CLAUDETASKS_LOG_DIR") or logs_dir,
            workspace_dir=workspace,
            results_dir=os.path.abspath(results_dir),
            logs_dir=os.path.abspath(logs_dir),
            claude_cli_path=os.getenv("CLAUDE_CLI_PATH", "claude"),
            default_model=os.getenv("CLAUDETASKS_DEFAULT_MODEL") or DEFAULT_MODEL,
            version_timeout=int(os.getenv("CLAUDETASKS_VERSION_TIMEOUT", "15")),
            host=os.getenv("CLAUDETASKS_HOST", "0.0.0.0"),
            port=int(os.getenv("CLAUDETASKS_PORT", str(DEFAULT_PORT))),
        )
