"""Hierarchy validator: pure decisions over a snapshot of the task arena.

None of these functions touch storage. The caller supplies a snapshot that is
consistent with the write being gated (the engine does this by validating
inside the same store transaction that applies the change).

Each check returns ``None`` when the change is allowed, otherwise a
:class:`Rejection` naming the rule that fired.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

from .errors import RejectionReason
from .model import Task

TaskArena = Union[Mapping[str, Task], Iterable[Task]]


@dataclass(frozen=True)
class Rejection:
    reason: RejectionReason
    message: str


def _index(existing_tasks: TaskArena) -> Mapping[str, Task]:
    if isinstance(existing_tasks, Mapping):
        return existing_tasks
    return {t.id: t for t in existing_tasks}


def validate_parent(
    candidate_task_id: str,
    proposed_parent_id: str,
    project_id: str,
    existing_tasks: TaskArena,
) -> Optional[Rejection]:
    """Decide whether *proposed_parent_id* may become the parent of *candidate_task_id*.

    The upward walk from the proposed parent is bounded by the number of
    tasks in the project. A chain that is still going after that many hops
    already contains a loop, so it is rejected as cyclic as well.
    """
    if proposed_parent_id == candidate_task_id:
        return Rejection(RejectionReason.SELF_PARENT, f"Task {candidate_task_id} cannot be its own parent")

    arena = _index(existing_tasks)
    parent = arena.get(proposed_parent_id)
    if parent is None:
        return Rejection(RejectionReason.PARENT_NOT_FOUND, f"Parent task {proposed_parent_id} not found")

    if parent.project_id != project_id:
        return Rejection(
            RejectionReason.CROSS_PROJECT_PARENT,
            f"Parent task {proposed_parent_id} belongs to project {parent.project_id}, not {project_id}",
        )

    max_hops = sum(1 for t in arena.values() if t.project_id == project_id)
    current: Optional[str] = proposed_parent_id
    hops = 0
    while current is not None:
        if current == candidate_task_id:
            return Rejection(
                RejectionReason.CYCLIC_PARENT,
                f"Making {proposed_parent_id} the parent of {candidate_task_id} would create a cycle",
            )
        node = arena.get(current)
        if node is None:
            break
        hops += 1
        if hops > max_hops:
            return Rejection(
                RejectionReason.CYCLIC_PARENT,
                f"Parent chain above {proposed_parent_id} does not terminate",
            )
        current = node.parent_task_id
    return None


def validate_deletable(task_id: str, existing_tasks: TaskArena) -> Optional[Rejection]:
    """A task may only be deleted once nothing references it as parent."""
    children = [t.id for t in _index(existing_tasks).values() if t.parent_task_id == task_id]
    if children:
        return Rejection(
            RejectionReason.HAS_CHILDREN,
            f"Task {task_id} still has {len(children)} child task(s): {sorted(children)}",
        )
    return None


def validate_assignee(user_id: str, project_members: Iterable[str]) -> Optional[Rejection]:
    if user_id not in set(project_members):
        return Rejection(RejectionReason.NOT_A_MEMBER, f"User {user_id} is not a project member")
    return None
