"""FastAPI application factory for the task board."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..config import events_enabled, get_lock_timeout, get_log_level, load_board_config
from ..constants import EVENTS_FILENAME, STATE_DIR_NAME
from ..logging_utils import configure_logging
from ..task_engine.engine import TaskEngine
from ..task_engine.errors import (
    AssignmentError,
    ContentionError,
    HierarchyError,
    NotFoundError,
    TaskEngineError,
    ValidationError,
)
from ..task_engine.store import FileBoardStore
from .task_api import create_task_router

_STATUS_CODES: dict[type[TaskEngineError], int] = {
    ValidationError: 400,
    HierarchyError: 400,
    AssignmentError: 400,
    NotFoundError: 404,
    ContentionError: 409,
}


def status_code_for(exc: TaskEngineError) -> int:
    for exc_type, code in _STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return code
    return 500


def build_engine(state_dir: Path) -> TaskEngine:
    """Build a file-backed engine for *state_dir*, honouring ``config.yaml``."""
    config, err = load_board_config(state_dir)
    if err:
        logger.warning("Ignoring unreadable board config: {}", err)
    store = FileBoardStore(state_dir, lock_timeout=get_lock_timeout(config))
    events_path = state_dir / EVENTS_FILENAME if events_enabled(config) else None
    return TaskEngine(store, events_path=events_path)


def create_app(
    state_dir: Optional[Path] = None,
    engine: Optional[TaskEngine] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        state_dir: Board state directory; defaults to ``./.taskboard``.
        engine: Pre-built engine, mainly for tests. Overrides *state_dir*.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    state_dir = state_dir or Path.cwd() / STATE_DIR_NAME
    config, _ = load_board_config(state_dir)
    configure_logging(get_log_level(config))

    app = FastAPI(
        title="Task Board",
        description="Task hierarchy and Kanban ordering engine",
        version="0.1.0",
    )
    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.engine = engine or build_engine(state_dir)

    @app.exception_handler(TaskEngineError)
    async def _engine_error(request: Request, exc: TaskEngineError) -> JSONResponse:
        code = status_code_for(exc)
        logger.debug("{} {} -> {} {}", request.method, request.url.path, code, exc)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        loc = [str(part) for part in first.get("loc", ()) if part != "body"]
        field = ".".join(loc) or None
        return JSONResponse(
            status_code=400,
            content={"error": ValidationError.kind, "detail": first.get("msg", "invalid request"), "field": field},
        )

    @app.get("/")
    async def root():
        return {"name": "Task Board", "version": "0.1.0", "status": "running"}

    app.include_router(create_task_router(lambda: app.state.engine))
    return app
