"""Transactional board stores.

A board holds projects, users and tasks. All reads and writes go through
:meth:`BoardStore.transaction`, which takes an exclusive lock, loads the
board, yields a :class:`BoardTx` and saves on exit. Nothing is written when
the block raises, so a rejected operation leaves the board untouched.

A lock that cannot be acquired within ``lock_timeout`` seconds surfaces as
:class:`~taskboard.task_engine.errors.ContentionError`.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from loguru import logger

from ..constants import DEFAULT_LOCK_TIMEOUT, LOCK_FILENAME, STORE_FILENAME, STORE_VERSION
from ..io_utils import FileLock, LockTimeout, _atomic_write_yaml, _load_data_with_error
from .errors import ContentionError
from .model import Project, Task, TaskStatus, User


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------

class BoardTx:
    """In-memory view of the whole board for the duration of one transaction.

    Tasks are kept in an arena keyed by id. Mutations made through the
    returned objects are flushed when the owning ``transaction`` exits and
    :attr:`dirty` is set.
    """

    def __init__(self, projects: list[Project], users: list[User], tasks: list[Task]) -> None:
        self.projects: dict[str, Project] = {p.id: p for p in projects}
        self.users: dict[str, User] = {u.id: u for u in users}
        self.tasks: dict[str, Task] = {t.id: t for t in tasks}
        self.dirty = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BoardTx":
        return cls(
            projects=[Project.from_dict(d) for d in payload.get("projects", []) or []],
            users=[User.from_dict(d) for d in payload.get("users", []) or []],
            tasks=[Task.from_dict(d) for d in payload.get("tasks", []) or []],
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": STORE_VERSION,
            "projects": [p.to_dict() for p in self.projects.values()],
            "users": [u.to_dict() for u in self.users.values()],
            "tasks": [t.to_dict() for t in self.tasks.values()],
        }

    # -- lookups ------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def get_project(self, project_id: str) -> Optional[Project]:
        return self.projects.get(project_id)

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def list_tasks(self) -> list[Task]:
        return list(self.tasks.values())

    def tasks_in_project(self, project_id: str) -> list[Task]:
        return [t for t in self.tasks.values() if t.project_id == project_id]

    def column(self, project_id: str, status: TaskStatus) -> list[Task]:
        """Tasks of one (project, status) column in board order."""
        tasks = [t for t in self.tasks.values() if t.project_id == project_id and t.status == status]
        tasks.sort(key=lambda t: t.column_sort_key)
        return tasks

    def children_of(self, task_id: str) -> list[Task]:
        return [t for t in self.tasks.values() if t.parent_task_id == task_id]

    def find(
        self,
        project_id: str,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_to: Optional[str] = None,
        parent_task_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        out: list[Task] = []
        for t in self.tasks.values():
            if t.project_id != project_id:
                continue
            if status and t.status.value != status:
                continue
            if priority and t.priority.value != priority:
                continue
            if assigned_to and t.assigned_to != assigned_to:
                continue
            if parent_task_id is not None and t.parent_task_id != parent_task_id:
                continue
            if search:
                q = search.lower()
                if q not in t.title.lower() and q not in (t.description or "").lower():
                    continue
            out.append(t)
        return out

    # -- mutations ----------------------------------------------------------

    def mark_dirty(self) -> None:
        self.dirty = True

    def add_task(self, task: Task) -> Task:
        if task.id in self.tasks:
            raise ValueError(f"Task {task.id} already exists")
        self.tasks[task.id] = task
        self.dirty = True
        return task

    def add_project(self, project: Project) -> Project:
        if project.id in self.projects:
            raise ValueError(f"Project {project.id} already exists")
        self.projects[project.id] = project
        self.dirty = True
        return project

    def add_user(self, user: User) -> User:
        if user.id in self.users:
            raise ValueError(f"User {user.id} already exists")
        self.users[user.id] = user
        self.dirty = True
        return user

    def remove_task(self, task_id: str) -> bool:
        """Physically remove a task from the arena."""
        if self.tasks.pop(task_id, None) is None:
            return False
        self.dirty = True
        return True


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class BoardStore(ABC):
    """Storage contract the engine relies on.

    Implementations provide an exclusive lock plus whole-payload load/save;
    the transaction protocol itself is shared.
    """

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.lock_timeout = lock_timeout

    @abstractmethod
    def _locked(self) -> Any:
        """Return a context manager holding the store lock (raises ContentionError)."""
        raise NotImplementedError

    @abstractmethod
    def _read_payload(self) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def _write_payload(self, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    @contextmanager
    def transaction(self) -> Iterator[BoardTx]:
        """Acquire the lock, load the board, yield a transaction, and save on exit.

        Usage::

            with store.transaction() as tx:
                task = tx.get_task("task-abc123")
                task.title = "Renamed"
                task.touch()
                tx.mark_dirty()
        """
        with self._locked():
            tx = BoardTx.from_payload(self._read_payload())
            yield tx
            if tx.dirty:
                self._write_payload(tx.to_payload())

    def read_snapshot(self) -> BoardTx:
        """Return a detached copy of the board; changes to it are never saved."""
        with self._locked():
            return BoardTx.from_payload(self._read_payload())


class FileBoardStore(BoardStore):
    """YAML file store guarded by an OS-level file lock.

    Parameters
    ----------
    state_dir:
        Directory that holds ``board.yaml`` and its lock file.
    lock_timeout:
        Seconds to wait for the lock before raising ``ContentionError``.
    """

    def __init__(self, state_dir: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        super().__init__(lock_timeout)
        self.state_dir = state_dir
        self._store_path = state_dir / STORE_FILENAME
        self._lock_path = state_dir / LOCK_FILENAME

    @contextmanager
    def _locked(self) -> Iterator[None]:
        # One FileLock per transaction: the lock object keeps the open handle.
        lock = FileLock(self._lock_path, timeout=self.lock_timeout)
        try:
            lock.__enter__()
        except LockTimeout as exc:
            logger.warning("Board store busy: {}", exc)
            raise ContentionError(f"Board store is busy, retry later ({exc})") from exc
        try:
            yield
        finally:
            lock.__exit__(None, None, None)

    def _read_payload(self) -> dict[str, Any]:
        data, err = _load_data_with_error(self._store_path, {})
        if err:
            raise RuntimeError(f"Cannot read board store {self._store_path}: {err}")
        return data

    def _write_payload(self, payload: dict[str, Any]) -> None:
        _atomic_write_yaml(self._store_path, payload)


class MemoryBoardStore(BoardStore):
    """Process-local store; each transaction works on a private copy."""

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        super().__init__(lock_timeout)
        self._mutex = threading.Lock()
        self._payload: dict[str, Any] = {"version": STORE_VERSION, "projects": [], "users": [], "tasks": []}

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._mutex.acquire(timeout=self.lock_timeout):
            logger.warning("Memory board store busy after {}s", self.lock_timeout)
            raise ContentionError("Board store is busy, retry later")
        try:
            yield
        finally:
            self._mutex.release()

    def _read_payload(self) -> dict[str, Any]:
        return copy.deepcopy(self._payload)

    def _write_payload(self, payload: dict[str, Any]) -> None:
        self._payload = payload
