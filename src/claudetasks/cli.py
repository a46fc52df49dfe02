from __future__ import annotations

import json
from typing import Any, Callable, Optional

import httpx
import typer
import uvicorn
from dotenv import load_dotenv

from claudetasks.integrations.api_client import DEFAULT_URL, TaskApiClient, TaskApiError

app = typer.Typer(add_completion=False)

_URL_OPTION = typer.Option(DEFAULT_URL, "--url", envvar="CLAUDETASKS_URL", help="Server base URL")


def _load_env() -> None:
    load_dotenv()


def _setup_logging() -> None:
    """Configure centralized logging to both stdout and log files."""
    from claudetasks.core.config import Settings
    from claudetasks.core.logging_config import setup_logging

    settings = Settings.from_env()
    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)


def _call(fn: Callable[[], dict[str, Any]]) -> None:
    try:
        payload = fn()
    except TaskApiError as exc:
        typer.secho(f"Error: {exc.message} (HTTP {exc.status_code})", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except httpx.HTTPError as exc:
        typer.secho(f"Error: cannot reach server: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (default: CLAUDETASKS_HOST or 0.0.0.0)"),
    port: Optional[int] = typer.Option(None, help="Bind port (default: CLAUDETASKS_PORT or 7680)"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Run the task API server."""
    _load_env()

    from claudetasks.core.config import Settings

    settings = Settings.from_env()
    _setup_logging()
    uvicorn.run(
        "claudetasks.core.gateway:create_app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        factory=True,
    )


@app.command()
def version() -> None:
    from claudetasks import __version__

    typer.echo(__version__)


@app.command()
def submit(
    task: str = typer.Argument(..., help="Task prompt"),
    model: Optional[str] = typer.Option(None, help="Model to run the task with"),
    url: str = _URL_OPTION,
) -> None:
    """Submit a task to a running server."""
    _call(lambda: TaskApiClient(url).submit(task, model=model))


@app.command("list")
def list_tasks(url: str = _URL_OPTION) -> None:
    """List all tasks, newest first."""
    _call(lambda: TaskApiClient(url).list_tasks())


@app.command()
def show(task_id: str = typer.Argument(...), url: str = _URL_OPTION) -> None:
    """Show a task's metadata and response."""
    _call(lambda: TaskApiClient(url).get_task(task_id))


@app.command()
def files(task_id: str = typer.Argument(...), url: str = _URL_OPTION) -> None:
    """List the artifact files of a task."""
    _call(lambda: TaskApiClient(url).list_files(task_id))


@app.command()
def health(url: str = _URL_OPTION) -> None:
    """Query the server health endpoint."""
    _call(lambda: TaskApiClient(url).health())


if __name__ == "__main__":
    app()
