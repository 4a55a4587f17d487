"""File-based board store with process-safe locking.

Stores every board table (projects, tasks, links, metadata, ...) in a single
YAML document (``board.yaml``) inside the project's ``.gantt_board/``
directory.  All reads and writes go through :meth:`BoardStore.transaction`,
which holds an exclusive :class:`filelock.FileLock` for its duration.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml
from filelock import FileLock

from ..constants import STORE_FILE, STORE_LOCK_FILE
from .model import Category, Column, Link, Project, Subtask, Task, User

try:
    from yaml import CSafeDumper as Dumper
    from yaml import CSafeLoader as Loader
except ImportError:
    from yaml import SafeDumper as Dumper  # type: ignore[assignment]
    from yaml import SafeLoader as Loader  # type: ignore[assignment]

LOCK_TIMEOUT = 30  # seconds

_TABLES = ("projects", "users", "columns", "categories", "tasks", "links", "subtasks")


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _load_raw(path: Path) -> dict[str, Any]:
    """Load the raw document from *path*, returning ``{}`` if missing."""
    if not path.exists():
        return {}
    data = yaml.load(path.read_text(encoding="utf-8"), Loader=Loader)
    return data if isinstance(data, dict) else {}


def _save_raw(path: Path, payload: dict[str, Any]) -> None:
    """Atomically write *payload* to *path* (write-tmp-then-rename)."""
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yaml.dump(payload, fh, Dumper=Dumper, default_flow_style=False, sort_keys=False)
        shutil.move(tmp, str(path))
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# Board state
# ---------------------------------------------------------------------------

class BoardState:
    """In-memory copy of every table plus the id counters."""

    def __init__(self, raw: Optional[dict[str, Any]] = None) -> None:
        raw = raw or {}
        self.projects = [Project.from_dict(d) for d in raw.get("projects") or []]
        self.users = [User.from_dict(d) for d in raw.get("users") or []]
        self.columns = [Column.from_dict(d) for d in raw.get("columns") or []]
        self.categories = [Category.from_dict(d) for d in raw.get("categories") or []]
        self.tasks = [Task.from_dict(d) for d in raw.get("tasks") or []]
        self.links = [Link.from_dict(d) for d in raw.get("links") or []]
        self.subtasks = [Subtask.from_dict(d) for d in raw.get("subtasks") or []]
        self.members: dict[int, list[int]] = {
            int(k): [int(u) for u in v or []] for k, v in (raw.get("members") or {}).items()
        }
        self.task_metadata: dict[int, dict[str, str]] = {
            int(k): {str(mk): str(mv) for mk, mv in (v or {}).items()}
            for k, v in (raw.get("task_metadata") or {}).items()
        }
        self.project_metadata: dict[int, dict[str, str]] = {
            int(k): {str(mk): str(mv) for mk, mv in (v or {}).items()}
            for k, v in (raw.get("project_metadata") or {}).items()
        }
        self.counters: dict[str, int] = {str(k): int(v) for k, v in (raw.get("counters") or {}).items()}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"version": 1}
        for table in _TABLES:
            payload[table] = [row.to_dict() for row in getattr(self, table)]
        payload["members"] = self.members
        payload["task_metadata"] = self.task_metadata
        payload["project_metadata"] = self.project_metadata
        payload["counters"] = self.counters
        return payload

    # -- lookups ------------------------------------------------------------

    def get_project(self, project_id: int) -> Optional[Project]:
        return next((p for p in self.projects if p.id == project_id), None)

    def get_task(self, task_id: int) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)

    def get_user(self, user_id: int) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    def get_category(self, category_id: int) -> Optional[Category]:
        return next((c for c in self.categories if c.id == category_id), None)

    def get_link(self, link_id: int) -> Optional[Link]:
        return next((link for link in self.links if link.id == link_id), None)

    def project_tasks(self, project_id: int) -> list[Task]:
        return [t for t in self.tasks if t.project_id == project_id]

    def project_columns(self, project_id: int) -> list[Column]:
        cols = [c for c in self.columns if c.project_id == project_id]
        return sorted(cols, key=lambda c: (c.position, c.id))

    def project_links(self, project_id: int) -> list[Link]:
        ids = {t.id for t in self.project_tasks(project_id)}
        return [link for link in self.links if link.task_id in ids or link.opposite_task_id in ids]

    def subtasks_of(self, task_id: int) -> list[Subtask]:
        return [s for s in self.subtasks if s.task_id == task_id]

    def metadata(self, task_id: int) -> dict[str, str]:
        return dict(self.task_metadata.get(task_id, {}))

    def task_type_of(self, task_id: int) -> str:
        return self.task_metadata.get(task_id, {}).get("task_type") or "task"


class _BoardTx(BoardState):
    """Mutable board state collected during a transaction.

    Mutations set :attr:`dirty`; the store writes the document back when
    the ``transaction`` context-manager exits.
    """

    def __init__(self, raw: Optional[dict[str, Any]] = None) -> None:
        super().__init__(raw)
        self.dirty = False

    def next_id(self, table: str) -> int:
        current = self.counters.get(table)
        if current is None:
            rows = getattr(self, table, [])
            current = max((row.id for row in rows), default=0)
        self.counters[table] = current + 1
        self.dirty = True
        return current + 1

    # -- mutations ----------------------------------------------------------

    def add_project(self, name: str) -> Project:
        project = Project(id=self.next_id("projects"), name=name)
        self.projects.append(project)
        return project

    def add_user(self, username: str, name: str = "") -> User:
        user = User(id=self.next_id("users"), username=username, name=name)
        self.users.append(user)
        return user

    def add_column(self, project_id: int, title: str) -> Column:
        position = len(self.project_columns(project_id)) + 1
        column = Column(id=self.next_id("columns"), project_id=project_id, title=title, position=position)
        self.columns.append(column)
        return column

    def add_category(self, project_id: int, name: str, color: str = "") -> Category:
        category = Category(id=self.next_id("categories"), project_id=project_id, name=name, color=color)
        self.categories.append(category)
        return category

    def add_task(self, task: Task) -> Task:
        if not task.id:
            task.id = self.next_id("tasks")
        elif self.get_task(task.id) is not None:
            raise ValueError(f"Task {task.id} already exists")
        self.tasks.append(task)
        self.dirty = True
        return task

    def update_task(self, task_id: int, changes: dict[str, Any]) -> Optional[Task]:
        task = self.get_task(task_id)
        if task is None:
            return None
        for key, value in changes.items():
            if hasattr(task, key) and key != "id":
                setattr(task, key, value)
        self.dirty = True
        return task

    def remove_task(self, task_id: int) -> bool:
        """Delete a task together with its metadata, subtasks and links."""
        task = self.get_task(task_id)
        if task is None:
            return False
        self.tasks = [t for t in self.tasks if t.id != task_id]
        self.links = [
            link for link in self.links
            if link.task_id != task_id and link.opposite_task_id != task_id
        ]
        self.subtasks = [s for s in self.subtasks if s.task_id != task_id]
        self.task_metadata.pop(task_id, None)
        for meta in self.task_metadata.values():
            if meta.get("sprint_id") == str(task_id):
                meta["sprint_id"] = "0"
        self.dirty = True
        return True

    def add_link(self, task_id: int, opposite_task_id: int, label: str) -> Link:
        link = Link(
            id=self.next_id("links"),
            task_id=task_id,
            opposite_task_id=opposite_task_id,
            label=label.strip().lower(),
        )
        self.links.append(link)
        self.dirty = True
        return link

    def remove_link(self, link_id: int) -> bool:
        before = len(self.links)
        self.links = [link for link in self.links if link.id != link_id]
        if len(self.links) == before:
            return False
        self.dirty = True
        return True

    def add_subtask(self, task_id: int, title: str, status: int = 0, due_date: Optional[int] = None) -> Subtask:
        subtask = Subtask(id=self.next_id("subtasks"), task_id=task_id, title=title, status=status, due_date=due_date)
        self.subtasks.append(subtask)
        return subtask

    def add_member(self, project_id: int, user_id: int) -> None:
        members = self.members.setdefault(project_id, [])
        if user_id not in members:
            members.append(user_id)
            self.dirty = True

    def save_metadata(self, task_id: int, values: dict[str, Any]) -> None:
        meta = self.task_metadata.setdefault(task_id, {})
        for key, value in values.items():
            meta[str(key)] = str(value)
        self.dirty = True

    def save_project_metadata(self, project_id: int, values: dict[str, Any]) -> None:
        meta = self.project_metadata.setdefault(project_id, {})
        for key, value in values.items():
            meta[str(key)] = str(value)
        self.dirty = True


# ---------------------------------------------------------------------------
# BoardStore
# ---------------------------------------------------------------------------

class BoardStore:
    """Process-safe, file-backed store for the board tables.

    Parameters
    ----------
    state_dir:
        Path to the ``.gantt_board/`` directory for the project.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / STORE_FILE
        self._lock_path = state_dir / STORE_LOCK_FILE
        state_dir.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(self._lock_path), timeout=LOCK_TIMEOUT)

    @contextmanager
    def transaction(self) -> Iterator[_BoardTx]:
        """Acquire the lock, load the board, yield a transaction, save on exit.

        Usage::

            with store.transaction() as tx:
                task = tx.get_task(12)
                tx.update_task(12, {"title": "Renamed"})
                # automatically saved on exit
        """
        with self._lock:
            tx = _BoardTx(_load_raw(self._store_path))
            yield tx
            if tx.dirty:
                _save_raw(self._store_path, tx.to_dict())

    def read_snapshot(self) -> BoardState:
        """Return a read-only snapshot (no lock held after return)."""
        with self._lock:
            return BoardState(_load_raw(self._store_path))
