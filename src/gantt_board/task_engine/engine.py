"""Gantt engine: high-level task, link and sprint operations.

This is the primary entry-point for chart mutations.  It wraps
:class:`BoardStore` with the chart's business rules (link validation,
sprint membership, successor shifting) and renders read snapshots through
the formatter.  Every mutating call runs inside a single store
transaction.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..config import DEFAULT_CONFIG
from ..constants import (
    COLOR_DEFAULT,
    EVENTS_FILE,
    LINK_IS_PARENT_OF,
    MSG_SPRINT_LINK,
    SECONDS_PER_DAY,
)
from ..utils import _now_ts, parse_chart_date
from .formatter import SORT_BOARD, format_project
from .grouping import workload
from .links import LinkIndex, hierarchy_edge
from .model import Category, Link, Project, Subtask, Task, TaskPriority, TaskType, User
from .shifting import plan_shift, plan_successor_shift
from .sprints import diff_children
from .store import BoardState, BoardStore, _BoardTx
from .validation import LinkRejected, LinkValidator, NoticeThrottle, RejectReason, label_for_kind

logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = ("Backlog", "Ready", "Work in progress", "Done")
DEFAULT_TASK_TITLE = "New Task"
MOVE_DEPENDENCIES_KEY = "move_dependencies_enabled"


class ProjectMismatch(ValueError):
    """A task referenced by a request belongs to a different project."""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class GanttEngine:
    """Manage tasks, links and sprints for the chart.

    Parameters
    ----------
    state_dir:
        Path to the ``.gantt_board/`` directory.
    config:
        Resolved chart configuration; defaults apply for missing keys.
    """

    def __init__(self, state_dir: Path, config: Optional[dict[str, Any]] = None) -> None:
        self.store = BoardStore(state_dir)
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.notices = NoticeThrottle()
        self._state_dir = state_dir
        self._events_path = state_dir / EVENTS_FILE

    def _emit_event(self, event_type: str, project_id: int, task_id: Optional[int] = None, **details: Any) -> None:
        """Append a mutation event to the JSONL log."""
        try:
            self._events_path.parent.mkdir(parents=True, exist_ok=True)
            payload: dict[str, Any] = {
                "ts": datetime.now(timezone.utc).isoformat(),
                "type": event_type,
                "project_id": project_id,
            }
            if task_id is not None:
                payload["task_id"] = task_id
            if details:
                payload["details"] = details
            with self._events_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(payload) + "\n")
        except Exception:
            logger.exception("Failed to append event %s for project %s", event_type, project_id)

    def get_recent_events(self, limit: int = 100, project_id: Optional[int] = None) -> list[dict[str, Any]]:
        if limit < 1:
            return []
        if not self._events_path.exists():
            return []
        lines = self._events_path.read_text(encoding="utf-8").splitlines()
        events: list[dict[str, Any]] = []
        for line in lines:
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict):
                continue
            if project_id is not None and payload.get("project_id") != project_id:
                continue
            events.append(payload)
        return events[-limit:]

    # ------------------------------------------------------------------
    # Projects, users, categories
    # ------------------------------------------------------------------

    def create_project(self, name: str, columns: tuple[str, ...] = DEFAULT_COLUMNS) -> Project:
        with self.store.transaction() as tx:
            project = tx.add_project(name)
            for title in columns:
                tx.add_column(project.id, title)
        logger.info("Created project %s: %s", project.id, name)
        return project

    def list_projects(self) -> list[Project]:
        return list(self.store.read_snapshot().projects)

    def get_project(self, project_id: int) -> Optional[Project]:
        return self.store.read_snapshot().get_project(project_id)

    def create_user(self, username: str, name: str = "") -> User:
        with self.store.transaction() as tx:
            return tx.add_user(username, name)

    def add_member(self, project_id: int, user_id: int) -> bool:
        with self.store.transaction() as tx:
            if tx.get_project(project_id) is None or tx.get_user(user_id) is None:
                return False
            tx.add_member(project_id, user_id)
            return True

    def create_category(self, project_id: int, name: str, color: str = "") -> Optional[Category]:
        with self.store.transaction() as tx:
            if tx.get_project(project_id) is None:
                return None
            return tx.add_category(project_id, name, color)

    def add_subtask(
        self, task_id: int, title: str, status: int = 0, due_date: Optional[int] = None
    ) -> Optional[Subtask]:
        with self.store.transaction() as tx:
            if tx.get_task(task_id) is None:
                return None
            return tx.add_subtask(task_id, title, status=status, due_date=due_date)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def get_task(self, task_id: int) -> Optional[Task]:
        return self.store.read_snapshot().get_task(task_id)

    def list_tasks(self, project_id: int) -> list[Task]:
        return self.store.read_snapshot().project_tasks(project_id)

    def create_task(self, project_id: int, payload: dict[str, Any]) -> Task:
        """Create a task from a chart payload and return it.

        Raises :class:`LinkRejected` if the requested sprint membership
        breaks the hierarchy rules; nothing is written in that case.
        """
        priority = TaskPriority.parse(payload.get("priority"))
        task_type = TaskType.coerce(payload.get("task_type"))

        with self.store.transaction() as tx:
            if tx.get_project(project_id) is None:
                raise ValueError(f"Project {project_id} not found")
            columns = tx.project_columns(project_id)
            task = Task(
                id=0,
                project_id=project_id,
                title=str(payload.get("text") or DEFAULT_TASK_TITLE),
                description=str(payload.get("description") or ""),
                date_started=parse_chart_date(payload.get("start_date")),
                date_due=parse_chart_date(payload.get("end_date")),
                priority=priority.host_value if priority else 0,
                owner_id=_as_int(payload.get("owner_id")),
                category_id=_as_int(payload.get("category_id")),
                column_id=columns[0].id if columns else 0,
                position=len(tx.project_tasks(project_id)) + 1,
                creator_id=_as_int(payload.get("creator_id")),
            )
            tx.add_task(task)
            meta: dict[str, Any] = {"task_type": task_type.value}
            if "is_milestone" in payload:
                meta["is_milestone"] = "1" if payload.get("is_milestone") else "0"
            tx.save_metadata(task.id, meta)

            index = LinkIndex(tx.project_links(project_id))
            if "sprint_id" in payload:
                sprint_id = _as_int(payload.get("sprint_id"))
                tx.save_metadata(task.id, {"sprint_id": sprint_id})
                if task_type != TaskType.SPRINT:
                    self._assign_to_sprint(tx, index, project_id, task.id, sprint_id)
            if task_type == TaskType.SPRINT and payload.get("child_tasks"):
                self._sync_sprint_children(tx, index, project_id, task.id, payload["child_tasks"])
            self._emit_event("task.created", project_id, task.id, task_type=task_type.value)

        logger.info("Created task %s in project %s: %s", task.id, project_id, task.title)
        return task

    def save_task(self, project_id: int, payload: dict[str, Any]) -> Optional[Task]:
        """Apply a partial chart payload to an existing task.

        Returns the updated task, or ``None`` if it does not exist.
        Raises :class:`ProjectMismatch` for a task of another project.
        """
        task_id = _as_int(payload.get("id"))
        with self.store.transaction() as tx:
            task = tx.get_task(task_id)
            if task is None:
                return None
            if task.project_id != project_id:
                raise ProjectMismatch(f"Task {task_id} does not belong to project {project_id}")

            index = LinkIndex(tx.project_links(project_id))
            previous_type = TaskType.coerce(tx.task_type_of(task_id))
            current_type = TaskType.coerce(payload["task_type"]) if payload.get("task_type") else previous_type
            if current_type == TaskType.SPRINT and previous_type != TaskType.SPRINT:
                # sprints never take part in dependencies
                if index.successors(task_id) or index.predecessors(task_id):
                    raise self._reject(LinkRejected(RejectReason.SPRINT_LINK, MSG_SPRINT_LINK))

            changes: dict[str, Any] = {}
            if payload.get("text"):
                changes["title"] = str(payload["text"])
            if "description" in payload and payload["description"] is not None:
                changes["description"] = str(payload["description"])
            start = parse_chart_date(payload.get("start_date"))
            if start is not None:
                changes["date_started"] = start
            end = parse_chart_date(payload.get("end_date"))
            if end is not None:
                changes["date_due"] = end
            if "priority" in payload:
                priority = TaskPriority.parse(payload.get("priority"))
                if priority is not None:
                    changes["priority"] = priority.host_value
            if payload.get("owner_id") is not None:
                changes["owner_id"] = _as_int(payload["owner_id"])
            if payload.get("category_id") is not None:
                changes["category_id"] = _as_int(payload["category_id"])
            if changes:
                tx.update_task(task_id, changes)

            meta: dict[str, Any] = {}
            if payload.get("is_milestone") is not None:
                meta["is_milestone"] = "1" if payload["is_milestone"] else "0"
            if payload.get("task_type"):
                meta["task_type"] = current_type.value
            if payload.get("progress") is not None:
                meta["gantt_progress"] = round(float(payload["progress"]) * 100)
            if meta:
                tx.save_metadata(task_id, meta)

            if isinstance(payload.get("child_tasks"), list) and current_type == TaskType.SPRINT:
                self._sync_sprint_children(tx, index, project_id, task_id, payload["child_tasks"])
            if payload.get("sprint_id") is not None:
                sprint_id = _as_int(payload["sprint_id"])
                tx.save_metadata(task_id, {"sprint_id": sprint_id})
                if current_type != TaskType.SPRINT:
                    self._assign_to_sprint(tx, index, project_id, task_id, sprint_id)

            fields = sorted(set(changes) | set(meta) | {k for k in ("sprint_id", "child_tasks") if k in payload})
            self._emit_event("task.updated", project_id, task_id, fields=fields)
            return tx.get_task(task_id)

    def remove_task(self, project_id: int, task_id: int) -> bool:
        with self.store.transaction() as tx:
            task = tx.get_task(task_id)
            if task is None:
                return False
            if task.project_id != project_id:
                raise ProjectMismatch(f"Task {task_id} does not belong to project {project_id}")
            tx.remove_task(task_id)
            self._emit_event("task.removed", project_id, task_id)
        logger.info("Removed task %s from project %s", task_id, project_id)
        return True

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def add_link(self, project_id: int, source: int, target: int, kind: str = "blocks") -> Link:
        """Validate and store a link between two tasks of *project_id*.

        ``kind`` ``child`` (or ``1``) makes *source* a child of *target*;
        anything else makes *source* block *target*.

        Raises :class:`LinkRejected` when a rule is broken (reason
        ``unknown_task`` when a task does not exist) and
        :class:`ProjectMismatch` when a task belongs to another project.
        """
        label = label_for_kind(kind)
        with self.store.transaction() as tx:
            src, dst = tx.get_task(source), tx.get_task(target)
            if src is None or dst is None:
                raise self._reject(LinkRejected(RejectReason.UNKNOWN_TASK, "One or both tasks not found"))
            if src.project_id != project_id or dst.project_id != project_id:
                raise ProjectMismatch("Tasks must belong to the same project")
            index = LinkIndex(tx.project_links(project_id))
            rejection = self._validator(tx, index, project_id).check(source, target, label)
            if rejection is not None:
                raise self._reject(rejection)
            link = tx.add_link(source, target, label)
            self._emit_event("link.added", project_id, source, link_id=link.id, target=target, label=label)
        logger.info("Linked %s -[%s]-> %s (link %s)", source, label, target, link.id)
        return link

    def remove_link(self, project_id: int, link_id: int) -> bool:
        with self.store.transaction() as tx:
            link = tx.get_link(link_id)
            if link is None:
                return False
            owner = tx.get_task(link.task_id)
            if owner is not None and owner.project_id != project_id:
                raise ProjectMismatch(f"Link {link_id} does not belong to project {project_id}")
            tx.remove_link(link_id)
            edge = hierarchy_edge(link)
            if edge is not None:
                parent_id, child_id = edge
                if tx.metadata(child_id).get("sprint_id") == str(parent_id):
                    tx.save_metadata(child_id, {"sprint_id": 0})
            self._emit_event("link.removed", project_id, link.task_id, link_id=link_id, label=link.label)
        return True

    # ------------------------------------------------------------------
    # Shifting
    # ------------------------------------------------------------------

    def shift_task(self, project_id: int, task_id: int, delta: int) -> Optional[list[int]]:
        """Move a task by *delta* seconds and, if enabled, its successors.

        Returns the ids that moved (the task first), or ``None`` if the
        task does not exist.
        """
        with self.store.transaction() as tx:
            task = tx.get_task(task_id)
            if task is None:
                return None
            if task.project_id != project_id:
                raise ProjectMismatch(f"Task {task_id} does not belong to project {project_id}")
            now = _now_ts()
            spans = {t.id: _stored_span(t, now) for t in tx.project_tasks(project_id)}
            plan = plan_shift(spans, [task_id], delta)
            if self._move_dependencies(tx, project_id):
                index = LinkIndex(tx.project_links(project_id))
                plan.update(plan_successor_shift(index, spans, task_id, delta))
            for tid, (start, end) in plan.items():
                tx.update_task(tid, {"date_started": start, "date_due": end})
            ids = list(plan)
            self._emit_event("task.shifted", project_id, task_id, delta=delta, moved=ids)
        logger.info("Shifted task %s by %ss (%d task(s) moved)", task_id, delta, len(ids))
        return ids

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(
        self,
        project_id: int,
        group_by: Optional[str] = None,
        sorting: Optional[str] = None,
        search: str = "",
        now: Optional[int] = None,
    ) -> dict[str, Any]:
        """Chart payload for a project, plus the chart-level settings."""
        state = self.store.read_snapshot()
        payload = format_project(
            state,
            project_id,
            group_by=group_by or self.config["group_by"],
            sorting=sorting or self.config["task_sort"] or SORT_BOARD,
            search=search,
            now=now,
        )
        result = payload.to_dict()
        result["move_dependencies_enabled"] = self._move_dependencies(state, project_id)
        result["workload"] = workload(payload.tasks)
        result["default_view"] = self.config["default_view"]
        result["show_progress"] = self.config["show_progress"]
        return result

    def members(self, project_id: int) -> dict[str, Any]:
        """Assignable users and the categories used by the project's tasks."""
        state = self.store.read_snapshot()
        users = [{"key": 0, "label": "Unassigned"}]
        for user_id in state.members.get(project_id, []):
            user = state.get_user(user_id)
            if user is not None and user.id > 0:
                users.append({"key": user.id, "label": user.label})
        groups: list[dict[str, Any]] = [{"key": 0, "label": "No Category", "color": COLOR_DEFAULT}]
        used = sorted({t.category_id for t in state.project_tasks(project_id) if t.category_id})
        for category_id in used:
            category = state.get_category(category_id)
            if category is None:
                continue
            groups.append({"key": category.id, "label": category.name, "color": category.color or COLOR_DEFAULT})
        return {"users": users, "groups": groups}

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_move_dependencies(self, project_id: int) -> bool:
        return self._move_dependencies(self.store.read_snapshot(), project_id)

    def set_move_dependencies(self, project_id: int, enabled: bool) -> bool:
        with self.store.transaction() as tx:
            tx.save_project_metadata(project_id, {MOVE_DEPENDENCIES_KEY: "1" if enabled else "0"})
        return enabled

    def _move_dependencies(self, state: BoardState, project_id: int) -> bool:
        raw = state.project_metadata.get(project_id, {}).get(MOVE_DEPENDENCIES_KEY)
        if raw is None:
            return bool(self.config["move_dependencies_default"])
        return raw == "1"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validator(self, tx: BoardState, index: LinkIndex, project_id: int) -> LinkValidator:
        types = {t.id: TaskType.coerce(tx.task_type_of(t.id)) for t in tx.project_tasks(project_id)}
        return LinkValidator(index, types)

    def _reject(self, rejection: LinkRejected) -> LinkRejected:
        self.notices.notify(rejection.message)
        return rejection

    def _sprint_parent(self, tx: BoardState, index: LinkIndex, task_id: int) -> int:
        parent = index.parent(task_id)
        if parent and tx.task_type_of(parent) == TaskType.SPRINT.value:
            return parent
        return 0

    def _unlink_parent(self, tx: _BoardTx, index: LinkIndex, parent_id: int, child_id: int) -> None:
        for link_id in index.hierarchy_link_ids(parent_id, child_id):
            tx.remove_link(link_id)
            index.remove(link_id)

    def _assign_to_sprint(
        self, tx: _BoardTx, index: LinkIndex, project_id: int, task_id: int, sprint_id: int
    ) -> None:
        """Move *task_id* under *sprint_id*, dropping its previous sprint link."""
        current = self._sprint_parent(tx, index, task_id)
        if current and current != sprint_id:
            self._unlink_parent(tx, index, current, task_id)
        if sprint_id <= 0 or tx.task_type_of(sprint_id) != TaskType.SPRINT.value:
            return
        if current == sprint_id:
            return
        sprint = tx.get_task(sprint_id)
        if sprint is None or sprint.project_id != project_id:
            return
        rejection = self._validator(tx, index, project_id).check(sprint_id, task_id, LINK_IS_PARENT_OF)
        if rejection is not None:
            raise self._reject(rejection)
        index.add(tx.add_link(sprint_id, task_id, LINK_IS_PARENT_OF))

    def _sync_sprint_children(
        self, tx: _BoardTx, index: LinkIndex, project_id: int, sprint_id: int, requested: list[Any]
    ) -> None:
        wanted = [c for c in (_as_int(v) for v in requested) if c > 0 and c != sprint_id]
        to_add, to_remove = diff_children(index.children(sprint_id), wanted)
        for child_id in to_remove:
            self._unlink_parent(tx, index, sprint_id, child_id)
            if tx.metadata(child_id).get("sprint_id") == str(sprint_id):
                tx.save_metadata(child_id, {"sprint_id": 0})
        for child_id in to_add:
            child = tx.get_task(child_id)
            if child is None or child.project_id != project_id:
                logger.warning("Skipping unknown sprint child %s for sprint %s", child_id, sprint_id)
                continue
            self._assign_to_sprint(tx, index, project_id, child_id, sprint_id)
            tx.save_metadata(child_id, {"sprint_id": sprint_id})


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _stored_span(task: Task, now: int) -> tuple[int, int]:
    start = task.date_started or now
    return start, task.date_due or start + SECONDS_PER_DAY

