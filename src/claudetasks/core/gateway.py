from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from claudetasks import __version__
from claudetasks.core.artifacts import ArtifactStore
from claudetasks.core.config import Settings
from claudetasks.core.errors import InvalidTaskError, TaskNotFoundError
from claudetasks.core.logging_config import setup_logging
from claudetasks.core.registry import TaskRegistry
from claudetasks.core.tasks import TaskManager
from claudetasks.core.worker import WorkerPool
from claudetasks.integrations.claude_cli import ClaudeCli

logger = logging.getLogger("claudetasks.gateway")

MISSING_TASK_ERROR = "Missing 'task' in request body"
TASK_NOT_FOUND_ERROR = "Task not found"


class SubmitTaskResponse(BaseModel):
    task_id: str
    status: str = "running"
    message: str = "Task submitted"


class TaskFilesResponse(BaseModel):
    task_id: str
    files: list[str]


class HealthResponse(BaseModel):
    status: str = "ok"
    claude_version: str
    authenticated: bool
    workspace: str
    running_tasks: int


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    # Ensure .env is loaded before anything reads os.getenv
    load_dotenv(override=False)

    settings = settings or Settings.from_env()

    # Handlers are cleared and re-created if cli.py already ran it
    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)

    store = ArtifactStore(results_dir=settings.results_dir, logs_dir=settings.logs_dir)
    registry = TaskRegistry()
    cli = ClaudeCli(
        executable=settings.claude_cli_path,
        workspace_dir=settings.workspace_dir,
        version_timeout=settings.version_timeout,
    )
    worker_pool = WorkerPool()
    task_manager = TaskManager(
        store=store,
        registry=registry,
        cli=cli,
        worker_pool=worker_pool,
        default_model=settings.default_model,
    )
    task_manager.recover()

    # ---- lifespan ----

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        logger.info(
            "claudetasks %s ready (workspace=%s, results=%s, logs=%s)",
            __version__, settings.workspace_dir, settings.results_dir, settings.logs_dir,
        )
        yield
        running = task_manager.running_tasks()
        if running:
            logger.warning(
                "Shutting down with %d task(s) still running (%s) and %d live agent process(es); "
                "they will be marked failed on next start",
                len(running),
                ", ".join(r.task_id for r in running),
                worker_pool.active_count(),
            )

    app = FastAPI(title="claudetasks", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.task_manager = task_manager
    app.state.cli = cli

    # ---- error mapping ----

    @app.exception_handler(InvalidTaskError)
    async def _invalid_task(request: Request, exc: InvalidTaskError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(TaskNotFoundError)
    async def _task_not_found(request: Request, exc: TaskNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": TASK_NOT_FOUND_ERROR})

    # ---- routes ----

    @app.post("/tasks", status_code=202, response_model=SubmitTaskResponse)
    async def submit_task(request: Request) -> SubmitTaskResponse:
        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise InvalidTaskError(MISSING_TASK_ERROR)
        task = body.get("task")
        model = body.get("model")
        if not isinstance(task, str) or not task:
            raise InvalidTaskError(MISSING_TASK_ERROR)
        if model is not None and not isinstance(model, str):
            raise InvalidTaskError("'model' must be a string")
        record = await run_in_threadpool(task_manager.submit, task, model or None)
        return SubmitTaskResponse(task_id=record.task_id)

    @app.get("/tasks")
    def list_tasks() -> dict[str, Any]:
        tasks = task_manager.list_tasks()
        return {"count": len(tasks), "tasks": tasks}

    @app.get("/tasks/{task_id}")
    def get_task(task_id: str) -> dict[str, Any]:
        return task_manager.get_task(task_id)

    @app.get("/tasks/{task_id}/files", response_model=TaskFilesResponse)
    def list_task_files(task_id: str) -> TaskFilesResponse:
        return TaskFilesResponse(task_id=task_id, files=task_manager.list_files(task_id))

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            claude_version=cli.version_or_unknown(),
            authenticated=cli.is_authenticated(),
            workspace=settings.workspace_dir,
            running_tasks=task_manager.running_count(),
        )

    return app
