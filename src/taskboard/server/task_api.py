"""Task API endpoints for project boards.

This module provides a FastAPI router over :class:`TaskEngine`: task
lifecycle, Kanban moves, board and metrics views, and task history. Engine
errors propagate to the handlers installed by ``create_app``.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Header, Query
from pydantic import BaseModel, Field

from ..task_engine.engine import TaskEngine
from ..task_engine.requests import TaskCreate, TaskUpdate


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class StatusChangeRequest(BaseModel):
    status: str
    position: Optional[int] = None


class TimeTrackingRequest(BaseModel):
    actual_hours: float = Field(ge=0)


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class ColumnMoveResponse(BaseModel):
    task: dict[str, Any]
    column: list[dict[str, Any]]
    source_column: Optional[list[dict[str, Any]]] = None


class BoardResponse(BaseModel):
    columns: dict[str, list[dict[str, Any]]]


class EventListResponse(BaseModel):
    events: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(get_engine: Callable[[], TaskEngine]) -> APIRouter:
    """Create the task API router.

    Parameters
    ----------
    get_engine:
        A zero-argument callable returning the engine bound to the app.

    The caller is already authenticated upstream; its id arrives in the
    ``X-User-Id`` header and is only recorded as the actor.
    """
    router = APIRouter(prefix="/api", tags=["tasks"])

    # ------------------------------------------------------------------
    # Project-scoped
    # ------------------------------------------------------------------

    @router.get("/projects/{project_id}/tasks", response_model=TaskListResponse)
    async def list_tasks(
        project_id: str,
        status: Optional[str] = Query(None),
        priority: Optional[str] = Query(None),
        assigned_to: Optional[str] = Query(None),
        parent_task_id: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        order_by: str = Query("created_at"),
        direction: str = Query("desc"),
    ) -> TaskListResponse:
        tasks = get_engine().list_by_project(
            project_id,
            status=status,
            priority=priority,
            assigned_to=assigned_to,
            parent_task_id=parent_task_id,
            search=search,
            order_by=order_by,
            direction=direction,
        )
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("/projects/{project_id}/tasks", response_model=TaskResponse, status_code=201)
    async def create_task(
        project_id: str,
        body: TaskCreate,
        x_user_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        task = get_engine().create_task(project_id, body, actor=x_user_id)
        return TaskResponse(task=task.to_dict())

    @router.get("/projects/{project_id}/board", response_model=BoardResponse)
    async def get_board(project_id: str) -> BoardResponse:
        columns = get_engine().get_board(project_id)
        return BoardResponse(columns={k: [t.to_dict() for t in v] for k, v in columns.items()})

    @router.get("/projects/{project_id}/metrics")
    async def get_metrics(project_id: str) -> dict[str, Any]:
        return get_engine().get_metrics(project_id)

    # ------------------------------------------------------------------
    # Task-scoped
    # ------------------------------------------------------------------

    @router.get("/tasks/{task_id}", response_model=TaskResponse)
    async def get_task(task_id: str) -> TaskResponse:
        return TaskResponse(task=get_engine().get_task(task_id).to_dict())

    @router.patch("/tasks/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: str,
        body: TaskUpdate,
        expected_version: Optional[int] = Query(None),
        x_user_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        task = get_engine().update_task(task_id, body, actor=x_user_id, expected_version=expected_version)
        return TaskResponse(task=task.to_dict())

    @router.delete("/tasks/{task_id}")
    async def delete_task(
        task_id: str,
        expected_version: Optional[int] = Query(None),
        x_user_id: Optional[str] = Header(None),
    ) -> dict[str, str]:
        get_engine().delete_task(task_id, actor=x_user_id, expected_version=expected_version)
        return {"status": "deleted"}

    @router.post("/tasks/{task_id}/status", response_model=ColumnMoveResponse)
    async def change_status(
        task_id: str,
        body: StatusChangeRequest,
        expected_version: Optional[int] = Query(None),
        x_user_id: Optional[str] = Header(None),
    ) -> ColumnMoveResponse:
        move = get_engine().change_status(
            task_id,
            body.status,
            body.position,
            actor=x_user_id,
            expected_version=expected_version,
        )
        return ColumnMoveResponse(**move.to_dict())

    @router.put("/tasks/{task_id}/time", response_model=TaskResponse)
    async def update_time(
        task_id: str,
        body: TimeTrackingRequest,
        x_user_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        task = get_engine().update_time(task_id, body.actual_hours, actor=x_user_id)
        return TaskResponse(task=task.to_dict())

    @router.get("/tasks/{task_id}/subtasks", response_model=TaskListResponse)
    async def get_subtasks(task_id: str) -> TaskListResponse:
        data = [t.to_dict() for t in get_engine().get_subtasks(task_id)]
        return TaskListResponse(tasks=data, total=len(data))

    @router.get("/tasks/{task_id}/events", response_model=EventListResponse)
    async def get_task_events(task_id: str, limit: int = Query(100, ge=1, le=1000)) -> EventListResponse:
        engine = get_engine()
        engine.get_task(task_id)
        return EventListResponse(events=engine.get_task_events(task_id, limit=limit))

    return router
