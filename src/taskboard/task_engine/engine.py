"""Task engine: lifecycle operations, hierarchy rules and column ordering.

This is the primary entry-point for all task manipulation. Every operation
runs inside a single :meth:`BoardStore.transaction`, so the hierarchy
validation and the write it gates are applied together, and a rejected
operation leaves the board exactly as it was.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from loguru import logger

from ..io_utils import _append_event, _read_events
from .errors import (
    AssignmentError,
    ContentionError,
    HierarchyError,
    NotFoundError,
    RejectionReason,
    ValidationError,
)
from .hierarchy import validate_assignee, validate_deletable, validate_parent
from .model import Project, Task, TaskStatus, User
from .requests import TaskCreate, TaskUpdate, parse_request
from .store import BoardStore, BoardTx

_STATUS_RANK = {TaskStatus.PENDING: 0, TaskStatus.IN_PROGRESS: 1, TaskStatus.COMPLETED: 2}

ORDER_FIELDS = ("created_at", "due_date", "priority", "status", "position")
ORDER_DIRECTIONS = ("asc", "desc")

# Fields tracked in the task history log.
_HISTORY_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "position",
    "parent_task_id",
    "assigned_to",
    "due_date",
    "estimated_hours",
    "actual_hours",
)


@dataclass
class ColumnMove:
    """Result of a status change: the moved task plus the columns it touched."""

    task: Task
    column: list[Task]
    source_column: Optional[list[Task]] = None
    previous_status: Optional[TaskStatus] = None
    previous_position: Optional[int] = None

    @property
    def status_changed(self) -> bool:
        return self.previous_status is not None and self.previous_status != self.task.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "column": [t.to_dict() for t in self.column],
            "source_column": (
                [t.to_dict() for t in self.source_column] if self.source_column is not None else None
            ),
        }


@dataclass
class _PendingEvent:
    event_type: str
    task: Task
    actor: Optional[str]
    changes: dict[str, Any] = field(default_factory=dict)


def _iso(value: Optional[datetime]) -> Optional[str]:
    """Render as UTC so stored due dates compare by instant; naive values are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _coerce_status(raw: Union[str, TaskStatus, None]) -> TaskStatus:
    if isinstance(raw, TaskStatus):
        return raw
    try:
        return TaskStatus(str(raw))
    except ValueError:
        valid = [s.value for s in TaskStatus]
        raise ValidationError(f"'status' must be one of {valid}, got {raw!r}", field="status") from None


def _coerce_position(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValidationError(f"'position' must be an integer, got {raw!r}", field="position")
    return raw


def _diff(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {
        name: {"old": before.get(name), "new": after.get(name)}
        for name in _HISTORY_FIELDS
        if before.get(name) != after.get(name)
    }


class TaskEngine:
    """Manage the lifecycle of tasks on project boards.

    Parameters
    ----------
    store:
        Board storage backend.
    events_path:
        Optional JSONL file receiving the task history. ``None`` disables it.
    """

    def __init__(self, store: BoardStore, events_path: Optional[Path] = None) -> None:
        self.store = store
        self._events_path = events_path

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _emit_event(self, event: _PendingEvent) -> None:
        """Append a task history event."""
        if self._events_path is None:
            return
        payload: dict[str, Any] = {
            "type": event.event_type,
            "task_id": event.task.id,
            "project_id": event.task.project_id,
            "status": event.task.status.value,
            "actor": event.actor,
        }
        if event.changes:
            payload["changes"] = event.changes
        try:
            _append_event(self._events_path, payload)
        except OSError:
            logger.exception("Failed to append task event {} for {}", event.event_type, event.task.id)

    def get_task_events(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        if limit < 1 or self._events_path is None:
            return []
        events = [e for e in _read_events(self._events_path) if str(e.get("task_id")) == task_id]
        return events[-limit:]

    # ------------------------------------------------------------------
    # Referenced entities
    # ------------------------------------------------------------------

    def register_user(self, name: str, email: Optional[str] = None, user_id: Optional[str] = None) -> User:
        user = User(name=name, email=email) if user_id is None else User(id=user_id, name=name, email=email)
        with self.store.transaction() as tx:
            if tx.get_user(user.id) is not None:
                raise ValidationError(f"User {user.id} already exists", field="id")
            tx.add_user(user)
        logger.debug("Registered user {}", user.id)
        return user

    def register_project(
        self,
        name: str,
        members: Iterable[str] = (),
        project_id: Optional[str] = None,
    ) -> Project:
        member_ids = list(dict.fromkeys(members))
        project = Project(name=name, members=member_ids)
        if project_id is not None:
            project.id = project_id
        with self.store.transaction() as tx:
            if tx.get_project(project.id) is not None:
                raise ValidationError(f"Project {project.id} already exists", field="id")
            for user_id in member_ids:
                if tx.get_user(user_id) is None:
                    raise NotFoundError("user", user_id)
            tx.add_project(project)
        logger.debug("Registered project {} with {} member(s)", project.id, len(member_ids))
        return project

    def add_project_member(self, project_id: str, user_id: str) -> Project:
        with self.store.transaction() as tx:
            project = self._require_project(tx, project_id)
            if tx.get_user(user_id) is None:
                raise NotFoundError("user", user_id)
            if not project.is_member(user_id):
                project.members.append(user_id)
                tx.mark_dirty()
            return project

    # ------------------------------------------------------------------
    # Task lifecycle
    # ------------------------------------------------------------------

    def create_task(
        self,
        project_id: str,
        fields: Union[TaskCreate, dict[str, Any]],
        *,
        actor: Optional[str] = None,
    ) -> Task:
        """Create a task at the end of its status column."""
        req = parse_request(TaskCreate, fields)
        with self.store.transaction() as tx:
            project = self._require_project(tx, project_id)
            task = Task(
                project_id=project.id,
                title=req.title,
                description=req.description,
                status=req.status,
                priority=req.priority,
                assigned_to=req.assigned_to,
                due_date=_iso(req.due_date),
                estimated_hours=req.estimated_hours,
                actual_hours=req.actual_hours,
                parent_task_id=req.parent_task_id,
                created_by=actor,
            )
            if req.assigned_to is not None:
                self._check_assignee(tx, project, req.assigned_to)
            if req.parent_task_id is not None:
                self._check_parent(tx, task.id, req.parent_task_id, project.id)

            column = tx.column(project.id, task.status)
            task.position = max((t.position for t in column), default=-1) + 1
            if task.status == TaskStatus.COMPLETED:
                task.completed_at = task.created_at
            tx.add_task(task)

        self._emit_event(_PendingEvent("task.created", task, actor, _diff({}, task.to_dict())))
        logger.info("Created task {} in project {} ({} @ {})", task.id, project_id, task.status.value, task.position)
        return task

    def update_task(
        self,
        task_id: str,
        changes: Union[TaskUpdate, dict[str, Any], None],
        *,
        actor: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        """Apply a partial update: only fields present in *changes* are touched.

        A status change appends the task to its new column and compacts the
        old one, as :meth:`change_status` does without a position.
        """
        req = parse_request(TaskUpdate, changes)
        present = req.present_fields()
        with self.store.transaction() as tx:
            task = self._require_task(tx, task_id)
            self._check_version(task, expected_version)
            if not present:
                return task

            project = self._require_project(tx, task.project_id)
            if present.get("assigned_to") is not None:
                self._check_assignee(tx, project, present["assigned_to"])
            if present.get("parent_task_id") is not None:
                self._check_parent(tx, task.id, present["parent_task_id"], task.project_id)

            before = task.to_dict()
            new_status = present.pop("status", None)
            for name, value in present.items():
                if name == "due_date":
                    value = _iso(value)
                setattr(task, name, value)
            if new_status is not None and new_status != task.status:
                self._place(tx, task, new_status, None)
            task.touch()
            tx.mark_dirty()
            diff = _diff(before, task.to_dict())

        self._emit_event(_PendingEvent("task.updated", task, actor, diff))
        logger.info("Updated task {}: {}", task.id, sorted(diff) or "no changes")
        return task

    def update_time(self, task_id: str, actual_hours: float, *, actor: Optional[str] = None) -> Task:
        """Record time spent on a task."""
        return self.update_task(task_id, {"actual_hours": actual_hours}, actor=actor)

    def delete_task(
        self,
        task_id: str,
        *,
        actor: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> None:
        """Delete a childless task. Children are never removed implicitly."""
        with self.store.transaction() as tx:
            task = self._require_task(tx, task_id)
            self._check_version(task, expected_version)
            rejection = validate_deletable(task.id, tx.tasks)
            if rejection is not None:
                logger.warning("Refused to delete {}: {}", task.id, rejection.message)
                raise HierarchyError(rejection.reason, rejection.message)
            tx.remove_task(task.id)
            self._resequence(tx.column(task.project_id, task.status))

        self._emit_event(_PendingEvent("task.deleted", task, actor))
        logger.info("Deleted task {} from project {}", task.id, task.project_id)

    def change_status(
        self,
        task_id: str,
        new_status: Union[str, TaskStatus],
        new_position: Optional[int] = None,
        *,
        actor: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ColumnMove:
        """Move a task to *new_status*, optionally at index *new_position*.

        The destination column is renumbered 0..n-1 with the task at the
        clamped index; the source column is compacted when the status
        changed. Omitting the position appends to the destination.
        """
        status = _coerce_status(new_status)
        position = _coerce_position(new_position)
        with self.store.transaction() as tx:
            task = self._require_task(tx, task_id)
            self._check_version(task, expected_version)
            previous_status, previous_position = task.status, task.position
            before = task.to_dict()
            dest, source = self._place(tx, task, status, position)
            task.touch()
            move = ColumnMove(
                task=task,
                column=dest,
                source_column=source,
                previous_status=previous_status,
                previous_position=previous_position,
            )
            diff = _diff(before, task.to_dict())

        self._emit_event(_PendingEvent("task.moved", task, actor, diff))
        logger.info(
            "Moved task {}: {}@{} -> {}@{}",
            task.id,
            previous_status.value,
            previous_position,
            task.status.value,
            task.position,
        )
        return move

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Task:
        return self._require_task(self.store.read_snapshot(), task_id)

    def get_subtasks(self, task_id: str) -> list[Task]:
        """Direct children of a task, newest first."""
        snapshot = self.store.read_snapshot()
        self._require_task(snapshot, task_id)
        return self._ordered(snapshot, snapshot.children_of(task_id), "created_at", "desc")

    def list_by_project(
        self,
        project_id: str,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_to: Optional[str] = None,
        parent_task_id: Optional[str] = None,
        search: Optional[str] = None,
        order_by: str = "created_at",
        direction: str = "desc",
    ) -> list[Task]:
        if order_by not in ORDER_FIELDS:
            raise ValidationError(f"'order_by' must be one of {list(ORDER_FIELDS)}", field="order_by")
        if direction not in ORDER_DIRECTIONS:
            raise ValidationError(f"'direction' must be one of {list(ORDER_DIRECTIONS)}", field="direction")
        snapshot = self.store.read_snapshot()
        self._require_project(snapshot, project_id)
        tasks = snapshot.find(
            project_id,
            status=status,
            priority=priority,
            assigned_to=assigned_to,
            parent_task_id=parent_task_id,
            search=search,
        )
        return self._ordered(snapshot, tasks, order_by, direction)

    def get_board(self, project_id: str) -> dict[str, list[Task]]:
        """Return the project's tasks grouped by status column in position order."""
        snapshot = self.store.read_snapshot()
        self._require_project(snapshot, project_id)
        return {status.value: snapshot.column(project_id, status) for status in TaskStatus}

    def get_metrics(self, project_id: str) -> dict[str, Any]:
        snapshot = self.store.read_snapshot()
        self._require_project(snapshot, project_id)
        tasks = snapshot.tasks_in_project(project_id)
        by_status = {s.value: 0 for s in TaskStatus}
        by_priority: dict[str, int] = {}
        for t in tasks:
            by_status[t.status.value] += 1
            by_priority[t.priority.value] = by_priority.get(t.priority.value, 0) + 1
        return {
            "total_tasks": len(tasks),
            "total_estimated_hours": sum(t.estimated_hours or 0.0 for t in tasks),
            "total_actual_hours": sum(t.actual_hours or 0.0 for t in tasks),
            "by_status": by_status,
            "by_priority": by_priority,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_task(tx: BoardTx, task_id: str) -> Task:
        task = tx.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    @staticmethod
    def _require_project(tx: BoardTx, project_id: str) -> Project:
        project = tx.get_project(project_id)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    @staticmethod
    def _check_version(task: Task, expected_version: Optional[int]) -> None:
        if expected_version is not None and task.version != expected_version:
            logger.warning(
                "Stale write on {}: expected version {}, found {}", task.id, expected_version, task.version
            )
            raise ContentionError(
                f"Task {task.id} was modified concurrently (expected version {expected_version}, "
                f"found {task.version})"
            )

    @staticmethod
    def _check_assignee(tx: BoardTx, project: Project, user_id: str) -> None:
        if tx.get_user(user_id) is None:
            raise NotFoundError("user", user_id)
        rejection = validate_assignee(user_id, project.members)
        if rejection is not None:
            logger.warning("Rejected assignee {} for project {}", user_id, project.id)
            raise AssignmentError(user_id, project.id)

    @staticmethod
    def _check_parent(tx: BoardTx, task_id: str, parent_id: str, project_id: str) -> None:
        rejection = validate_parent(task_id, parent_id, project_id, tx.tasks)
        if rejection is None:
            return
        logger.warning("Rejected parent {} for task {}: {}", parent_id, task_id, rejection.reason.value)
        if rejection.reason == RejectionReason.PARENT_NOT_FOUND:
            raise NotFoundError("parent", parent_id)
        raise HierarchyError(rejection.reason, rejection.message)

    @staticmethod
    def _resequence(column: list[Task]) -> None:
        """Renumber *column* densely from 0 in its current list order."""
        for index, task in enumerate(column):
            if task.position != index:
                task.position = index
                task.touch()

    def _place(
        self,
        tx: BoardTx,
        task: Task,
        new_status: TaskStatus,
        new_position: Optional[int],
    ) -> tuple[list[Task], Optional[list[Task]]]:
        """Insert *task* into the (project, new_status) column at the clamped index.

        Returns the destination column and, when the status changed, the
        compacted source column.
        """
        source_status = task.status
        dest = [t for t in tx.column(task.project_id, new_status) if t.id != task.id]
        if new_position is None:
            index = len(dest)
        else:
            index = max(0, min(new_position, len(dest)))
        dest.insert(index, task)
        task.transition(new_status)
        self._resequence(dest)

        source: Optional[list[Task]] = None
        if source_status != new_status:
            source = tx.column(task.project_id, source_status)
            self._resequence(source)
        tx.mark_dirty()
        return dest, source

    @staticmethod
    def _ordered(tx: BoardTx, tasks: list[Task], order_by: str, direction: str) -> list[Task]:
        """Sort *tasks*; ties keep store insertion order, null due dates go last."""
        arrival = {task_id: i for i, task_id in enumerate(tx.tasks)}
        reverse = direction == "desc"

        def value(t: Task) -> Any:
            if order_by == "priority":
                return t.priority.rank
            if order_by == "status":
                return _STATUS_RANK[t.status]
            if order_by == "position":
                return (_STATUS_RANK[t.status], t.position)
            return getattr(t, order_by)

        by_arrival = sorted(tasks, key=lambda t: arrival.get(t.id, 0))
        dated = [t for t in by_arrival if value(t) is not None]
        undated = [t for t in by_arrival if value(t) is None]
        # list.sort is stable under reverse=True, so ties stay in arrival order.
        dated.sort(key=value, reverse=reverse)
        return dated + undated
