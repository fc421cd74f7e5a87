"""Request types for task creation and partial updates.

``TaskUpdate`` relies on pydantic's ``model_fields_set`` to tell an omitted
field apart from one explicitly set to ``None``: only fields present in the
request are applied.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .model import TaskPriority, TaskStatus

# Fields that may be present in an update but never set to null.
NON_NULLABLE_FIELDS = frozenset({"title", "status", "priority"})


def _check_title(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    stripped = value.strip()
    if not stripped:
        raise ValueError("title must be non-empty")
    return stripped


class TaskCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(max_length=200)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    actual_hours: Optional[float] = Field(default=None, ge=0)
    parent_task_id: Optional[str] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, value: Optional[str]) -> Optional[str]:
        return _check_title(value)


class TaskUpdate(BaseModel):
    """Partial update; ``project_id`` is deliberately absent and rejected."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    actual_hours: Optional[float] = Field(default=None, ge=0)
    parent_task_id: Optional[str] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, value: Optional[str]) -> Optional[str]:
        return _check_title(value)

    def present_fields(self) -> dict[str, Any]:
        """Return only the fields the caller actually sent."""
        out: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name in NON_NULLABLE_FIELDS:
                raise ValidationError(f"'{name}' cannot be cleared", field=name)
            out[name] = value
        return out


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_request(model: type[ModelT], data: Any) -> ModelT:
    """Coerce *data* into *model*, translating pydantic errors into :class:`ValidationError`."""
    if isinstance(data, model):
        return data
    if data is None:
        data = {}
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        loc = first.get("loc") or ()
        field_name = ".".join(str(part) for part in loc) or None
        raise ValidationError(f"{field_name or 'request'}: {first.get('msg')}", field=field_name) from exc
