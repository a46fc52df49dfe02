from __future__ import annotations

import logging
import os
import shutil
import subprocess
from typing import Optional

logger = logging.getLogger("claudetasks.claude_cli")

DEFAULT_VERSION_TIMEOUT = 15  # seconds

# Either file existing means `claude` has been logged in on this machine.
CREDENTIAL_PATHS = (
    (".claude", ".credentials.json"),
    (".config", "claude-code", "auth.json"),
)


class ClaudeCliError(RuntimeError):
    pass


class ClaudeCli:
    """Adapter for the Claude Code CLI in headless mode.

    Each task is a single ``claude --print ... <prompt>`` invocation with
    permission prompts bypassed and JSON output, so the process never
    waits on a terminal and its stdout can be parsed once it exits.
    """

    def __init__(
        self,
        executable: Optional[str] = None,
        workspace_dir: Optional[str] = None,
        version_timeout: int = DEFAULT_VERSION_TIMEOUT,
    ) -> None:
        self.executable = executable or os.getenv("CLAUDE_CLI_PATH", "claude")
        self.workspace_dir = workspace_dir or os.getcwd()
        self.version_timeout = version_timeout

    # ── internal helpers ──────────────────────────────────────

    def _resolve_executable(self) -> str:
        path = shutil.which(self.executable)
        if not path:
            raise ClaudeCliError(f"claude CLI not found: {self.executable}")
        return path

    def make_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.setdefault("TERM", "dumb")
        return env

    # ── public API ────────────────────────────────────────────

    def build_command(self, prompt: str, model: str) -> list[str]:
        """Build the headless invocation; the prompt is always the last argument.

        The executable is not resolved here so that a missing binary shows
        up as a start failure of the task rather than a submission error.
        """
        return [
            self.executable,
            "--print",
            "--dangerously-skip-permissions",
            "--model",
            model,
            "--output-format",
            "json",
            prompt,
        ]

    def version(self) -> str:
        """Return the claude CLI version string."""
        exe = self._resolve_executable()
        try:
            result = subprocess.run(
                [exe, "--version"],
                capture_output=True,
                text=True,
                timeout=self.version_timeout,
                encoding="utf-8",
                errors="replace",
                env=self.make_env(),
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ClaudeCliError(f"failed to get version: {exc}") from exc
        if result.returncode != 0:
            raise ClaudeCliError(f"claude --version exited with code {result.returncode}")
        return result.stdout.strip()

    def version_or_unknown(self) -> str:
        try:
            return self.version() or "unknown"
        except ClaudeCliError as exc:
            logger.debug("claude version probe failed: %s", exc)
            return "unknown"

    @staticmethod
    def credential_paths(home: Optional[str] = None) -> list[str]:
        base = home or os.path.expanduser("~")
        return [os.path.join(base, *parts) for parts in CREDENTIAL_PATHS]

    @classmethod
    def is_authenticated(cls, home: Optional[str] = None) -> bool:
        return any(os.path.exists(p) for p in cls.credential_paths(home))
