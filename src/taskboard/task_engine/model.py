"""Task model for the project board.

Tasks live in an arena indexed by id. The parent relationship is stored as a
plain ``parent_task_id`` reference; children are always derived by scanning
the arena, never stored on the parent.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Board-level status used for Kanban columns.

    Every status can move to every other one; there is no terminal state.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Ascending urgency: low < medium < high."""
        return {"low": 0, "medium": 1, "high": 2}[self.value]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id(prefix: str = "task") -> str:
    """Short human-friendly ID: ``<prefix>-<8hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _optional_float(raw: Any) -> Optional[float]:
    if raw is None:
        return None
    return float(raw)


# ---------------------------------------------------------------------------
# Referenced entities
# ---------------------------------------------------------------------------

@dataclass
class User:
    id: str = field(default_factory=lambda: _generate_id("user"))
    name: str = ""
    email: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=str(data.get("id") or _generate_id("user")),
            name=str(data.get("name", "")),
            email=data.get("email"),
        )


@dataclass
class Project:
    """A project as seen by the engine: an identity plus a membership set."""

    id: str = field(default_factory=lambda: _generate_id("proj"))
    name: str = ""
    members: list[str] = field(default_factory=list)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=str(data.get("id") or _generate_id("proj")),
            name=str(data.get("name", "")),
            members=[str(m) for m in data.get("members", []) or []],
        )


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A task on a project board.

    ``position`` ranks the task inside its (project, status) column.
    ``version`` is bumped on every mutation and backs compare-and-set
    updates from callers that read and write in separate requests.
    """

    # Identity
    id: str = field(default_factory=_generate_id)
    project_id: str = ""
    title: str = ""
    description: Optional[str] = None

    # Board placement
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    position: int = 0

    # Hierarchy & assignment
    parent_task_id: Optional[str] = None
    assigned_to: Optional[str] = None

    # Scheduling & effort
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None

    # Provenance
    created_by: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None
    version: int = 0

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            if isinstance(v, Enum):
                data[k] = v.value
            else:
                data[k] = v
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict.

        Unknown enum values raise ``ValueError``; a record the engine
        cannot classify is corrupt and must not be silently re-filed.
        """
        d = dict(data)
        return cls(
            id=str(d.get("id") or _generate_id()),
            project_id=str(d.get("project_id", "")),
            title=str(d.get("title", "")),
            description=d.get("description"),
            status=TaskStatus(d.get("status") or TaskStatus.PENDING.value),
            priority=TaskPriority(d.get("priority") or TaskPriority.MEDIUM.value),
            position=int(d.get("position", 0) or 0),
            parent_task_id=d.get("parent_task_id"),
            assigned_to=d.get("assigned_to"),
            due_date=d.get("due_date"),
            estimated_hours=_optional_float(d.get("estimated_hours")),
            actual_hours=_optional_float(d.get("actual_hours")),
            created_by=d.get("created_by"),
            created_at=str(d.get("created_at") or _now_iso()),
            updated_at=str(d.get("updated_at") or _now_iso()),
            completed_at=d.get("completed_at"),
            version=int(d.get("version", 0) or 0),
        )

    # ------------------------------------------------------------------
    # Mutation helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` and ``version``."""
        self.updated_at = _now_iso()
        self.version += 1

    def transition(self, new_status: TaskStatus) -> None:
        """Move to *new_status* with completion bookkeeping."""
        if new_status == self.status:
            return
        self.status = new_status
        if new_status == TaskStatus.COMPLETED:
            self.completed_at = _now_iso()
        else:
            self.completed_at = None
        self.touch()

    @property
    def column_sort_key(self) -> tuple[int, str, str]:
        """Ordering inside a column; ties on position fall back to age then id."""
        return (self.position, self.created_at, self.id)
