"""Error taxonomy for the task engine.

Every error is recoverable by the caller. The engine raises one of these
instead of coercing data; nothing is silently dropped.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class RejectionReason(str, Enum):
    """Why the hierarchy validator refused a proposed change."""

    SELF_PARENT = "self_parent"
    PARENT_NOT_FOUND = "parent_not_found"
    CROSS_PROJECT_PARENT = "cross_project_parent"
    CYCLIC_PARENT = "cyclic_parent"
    HAS_CHILDREN = "has_children"
    NOT_A_MEMBER = "not_a_member"


class TaskEngineError(Exception):
    """Base class for all engine errors."""

    kind = "error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": str(self)}


class ValidationError(TaskEngineError):
    """Malformed or missing input; ``field`` names the offending input."""

    kind = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class NotFoundError(TaskEngineError):
    """A referenced project, task, parent task or user does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, identifier: str) -> None:
        super().__init__(f"{entity.capitalize()} {identifier} not found")
        self.entity = entity
        self.identifier = identifier

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["entity"] = self.entity
        data["id"] = self.identifier
        return data


class HierarchyError(TaskEngineError):
    """A parent/child rule fired; ``reason`` says which one."""

    kind = "hierarchy_error"

    def __init__(self, reason: RejectionReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        return data


class AssignmentError(TaskEngineError):
    """The assignee is not a member of the task's project."""

    kind = "assignment_error"

    def __init__(self, user_id: str, project_id: str) -> None:
        super().__init__(f"User {user_id} is not a member of project {project_id}")
        self.user_id = user_id
        self.project_id = project_id


class ContentionError(TaskEngineError):
    """A concurrent conflicting write was detected; the caller should retry."""

    kind = "contention"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retryable"] = True
        return data
