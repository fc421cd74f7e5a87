"""Tests for the task board HTTP endpoints."""

from __future__ import annotations

import pytest
from pathlib import Path

from httpx import AsyncClient, ASGITransport

from taskboard.server.api import create_app, status_code_for
from taskboard.task_engine.errors import (
    AssignmentError,
    ContentionError,
    HierarchyError,
    NotFoundError,
    RejectionReason,
    ValidationError,
)


@pytest.fixture
def app(tmp_path: Path):
    """Create a test app over a temp state directory with one seeded project."""
    state_dir = tmp_path / ".taskboard"
    state_dir.mkdir()
    app = create_app(state_dir=state_dir, enable_cors=False)
    engine = app.state.engine
    engine.register_user("Alice", user_id="alice")
    engine.register_user("Bob", user_id="bob")
    engine.register_project("Website", members=["alice"], project_id="web")
    engine.register_project("Mobile", members=["bob"], project_id="mobile")
    return app


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _create(client: AsyncClient, title: str, project: str = "web", **fields) -> dict:
    resp = await client.post(f"/api/projects/{project}/tasks", json={"title": title, **fields})
    assert resp.status_code == 201, resp.text
    return resp.json()["task"]


def test_status_codes() -> None:
    assert status_code_for(ValidationError("bad")) == 400
    assert status_code_for(HierarchyError(RejectionReason.SELF_PARENT, "loop")) == 400
    assert status_code_for(AssignmentError("bob", "web")) == 400
    assert status_code_for(NotFoundError("task", "t1")) == 404
    assert status_code_for(ContentionError("busy")) == 409


@pytest.mark.anyio
class TestTaskCRUD:
    async def test_root(self, client: AsyncClient) -> None:
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "running"

    async def test_list_empty(self, client: AsyncClient) -> None:
        resp = await client.get("/api/projects/web/tasks")
        assert resp.status_code == 200
        data = resp.json()
        assert data["tasks"] == []
        assert data["total"] == 0

    async def test_create_and_get(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/projects/web/tasks",
            json={"title": "Implement auth", "description": "OAuth2 login", "priority": "high"},
            headers={"X-User-Id": "alice"},
        )
        assert resp.status_code == 201
        task = resp.json()["task"]
        assert task["title"] == "Implement auth"
        assert task["status"] == "pending"
        assert task["priority"] == "high"
        assert task["position"] == 0
        assert task["created_by"] == "alice"

        resp = await client.get(f"/api/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json()["task"]["title"] == "Implement auth"

    async def test_get_nonexistent(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    async def test_create_in_unknown_project(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects/nope/tasks", json={"title": "T"})
        assert resp.status_code == 404
        assert resp.json()["entity"] == "project"

    async def test_blank_title_rejected(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects/web/tasks", json={"title": "   "})
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"
        assert resp.json()["field"] == "title"

    async def test_unknown_field_rejected(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects/web/tasks", json={"title": "T", "labels": ["x"]})
        assert resp.status_code == 400

    async def test_non_member_assignee(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects/web/tasks", json={"title": "T", "assigned_to": "bob"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "assignment_error"

    async def test_list_with_filters(self, client: AsyncClient) -> None:
        await _create(client, "Bug", priority="high")
        await _create(client, "Feature")

        resp = await client.get("/api/projects/web/tasks?priority=high")
        assert resp.status_code == 200
        assert resp.json()["total"] == 1
        assert resp.json()["tasks"][0]["title"] == "Bug"

        resp = await client.get("/api/projects/web/tasks?order_by=title")
        assert resp.status_code == 400

    async def test_update(self, client: AsyncClient) -> None:
        task = await _create(client, "Old", description="keep me")

        resp = await client.patch(f"/api/tasks/{task['id']}", json={"title": "New", "priority": "low"})
        assert resp.status_code == 200
        updated = resp.json()["task"]
        assert updated["title"] == "New"
        assert updated["priority"] == "low"
        assert updated["description"] == "keep me"

    async def test_update_explicit_null(self, client: AsyncClient) -> None:
        task = await _create(client, "T", description="old")

        resp = await client.patch(f"/api/tasks/{task['id']}", json={"description": None})
        assert resp.status_code == 200
        assert resp.json()["task"]["description"] is None

        resp = await client.patch(f"/api/tasks/{task['id']}", json={"title": None})
        assert resp.status_code == 400
        assert resp.json()["field"] == "title"

    async def test_update_cannot_move_project(self, client: AsyncClient) -> None:
        task = await _create(client, "T")
        resp = await client.patch(f"/api/tasks/{task['id']}", json={"project_id": "mobile"})
        assert resp.status_code == 400

    async def test_update_stale_version(self, client: AsyncClient) -> None:
        task = await _create(client, "T")
        resp = await client.patch(
            f"/api/tasks/{task['id']}?expected_version={task['version']}", json={"title": "A"}
        )
        assert resp.status_code == 200

        resp = await client.patch(
            f"/api/tasks/{task['id']}?expected_version={task['version']}", json={"title": "B"}
        )
        assert resp.status_code == 409
        assert resp.json()["retryable"] is True

    async def test_delete(self, client: AsyncClient) -> None:
        task = await _create(client, "Doomed")
        resp = await client.delete(f"/api/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"status": "deleted"}

        resp = await client.get(f"/api/tasks/{task['id']}")
        assert resp.status_code == 404


@pytest.mark.anyio
class TestHierarchy:
    async def test_cycle_rejected(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        b = await _create(client, "B", parent_task_id=a["id"])

        resp = await client.patch(f"/api/tasks/{a['id']}", json={"parent_task_id": b["id"]})
        assert resp.status_code == 400
        assert resp.json()["error"] == "hierarchy_error"
        assert resp.json()["reason"] == "cyclic_parent"

    async def test_cross_project_parent(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        resp = await client.post("/api/projects/mobile/tasks", json={"title": "B", "parent_task_id": a["id"]})
        assert resp.status_code == 400
        assert resp.json()["reason"] == "cross_project_parent"

    async def test_missing_parent(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects/web/tasks", json={"title": "B", "parent_task_id": "task-nope"})
        assert resp.status_code == 404
        assert resp.json()["entity"] == "parent"

    async def test_delete_with_children(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        b = await _create(client, "B", parent_task_id=a["id"])

        resp = await client.delete(f"/api/tasks/{a['id']}")
        assert resp.status_code == 400
        assert resp.json()["reason"] == "has_children"

        resp = await client.get(f"/api/tasks/{a['id']}/subtasks")
        assert resp.status_code == 200
        assert [t["id"] for t in resp.json()["tasks"]] == [b["id"]]


@pytest.mark.anyio
class TestBoard:
    async def test_move_within_column(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        b = await _create(client, "B")

        resp = await client.post(f"/api/tasks/{b['id']}/status", json={"status": "pending", "position": 0})
        assert resp.status_code == 200
        data = resp.json()
        assert [(t["id"], t["position"]) for t in data["column"]] == [(b["id"], 0), (a["id"], 1)]
        assert data["source_column"] is None

    async def test_move_across_columns(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        b = await _create(client, "B")

        resp = await client.post(f"/api/tasks/{a['id']}/status", json={"status": "completed"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["task"]["status"] == "completed"
        assert data["task"]["completed_at"] is not None
        assert [(t["id"], t["position"]) for t in data["source_column"]] == [(b["id"], 0)]

        resp = await client.get("/api/projects/web/board")
        assert resp.status_code == 200
        columns = resp.json()["columns"]
        assert [t["id"] for t in columns["completed"]] == [a["id"]]
        assert columns["in_progress"] == []

    async def test_invalid_status(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        resp = await client.post(f"/api/tasks/{a['id']}/status", json={"status": "archived"})
        assert resp.status_code == 400
        assert resp.json()["field"] == "status"

    async def test_time_and_metrics(self, client: AsyncClient) -> None:
        a = await _create(client, "A", estimated_hours=4)

        resp = await client.put(f"/api/tasks/{a['id']}/time", json={"actual_hours": 2.5})
        assert resp.status_code == 200
        assert resp.json()["task"]["actual_hours"] == 2.5

        resp = await client.put(f"/api/tasks/{a['id']}/time", json={"actual_hours": -1})
        assert resp.status_code == 400

        resp = await client.get("/api/projects/web/metrics")
        assert resp.status_code == 200
        metrics = resp.json()
        assert metrics["total_tasks"] == 1
        assert metrics["total_estimated_hours"] == 4.0
        assert metrics["total_actual_hours"] == 2.5

    async def test_events(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        await client.post(f"/api/tasks/{a['id']}/status", json={"status": "in_progress"}, headers={"X-User-Id": "alice"})

        resp = await client.get(f"/api/tasks/{a['id']}/events")
        assert resp.status_code == 200
        events = resp.json()["events"]
        assert [e["type"] for e in events] == ["task.created", "task.moved"]
        assert events[1]["actor"] == "alice"

        resp = await client.get("/api/tasks/nope/events")
        assert resp.status_code == 404
