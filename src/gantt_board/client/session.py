"""Client-side chart session.

:class:`ChartSession` keeps a local copy of one project's chart (tasks,
links and a :class:`LinkIndex` over them) and talks to the Gantt API over
an :class:`httpx.Client`.  Every user action enters through
:meth:`ChartSession.dispatch`, which looks the event up in a single
handler table.  Edits are applied locally first; when the server refuses
or cannot be reached the local change is reverted.  Nothing is retried.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from ..constants import LINK_BLOCKS, LINK_IS_CHILD_OF, MSG_SPRINT_LINK, SECONDS_PER_DAY
from ..task_engine.form import EditForm
from ..task_engine.links import LinkIndex
from ..task_engine.model import (
    ChartId,
    ChartLink,
    ChartTask,
    Link,
    TaskPriority,
    TaskType,
)
from ..task_engine.shifting import plan_successor_shift
from ..task_engine.validation import LinkValidator, NoticeThrottle, label_for_kind
from ..utils import format_chart_date, parse_chart_date
from .save_queue import SaveQueue

# Ids below this are placeholders for links not yet confirmed by the server
_TEMP_LINK_BASE = -(10 ** 9)

# Form-controlled fields copied into a task update; dates travel as a span
_EDIT_FIELDS = (
    "text", "task_type", "is_milestone", "owner_id", "sprint_id",
    "child_tasks", "kind", "priority", "category_id", "progress",
)


class SessionEvent(str, Enum):
    RELOAD = "reload"
    TASK_ADD = "task_add"
    TASK_UPDATE = "task_update"
    TASK_EDIT = "task_edit"
    TASK_DELETE = "task_delete"
    LINK_ADD = "link_add"
    LINK_DELETE = "link_delete"
    SET_MOVE_DEPENDENCIES = "set_move_dependencies"
    TICK = "tick"


@dataclass(frozen=True)
class OperationContext:
    """State carried through one user operation.

    ``cascade`` marks updates produced by successor shifting; they are
    saved but never shift further.  ``origin`` is the task whose move
    started the cascade.
    """

    cascade: bool = False
    origin: Optional[ChartId] = None


class ChartSession:
    """Local chart state plus optimistic synchronisation with the server.

    Parameters
    ----------
    http:
        Client whose base URL points at the server.
    project_id:
        Project shown by this session.
    notices:
        Sink for user-facing rejection notices.
    save_queue:
        Debounced queue for task updates.
    """

    def __init__(
        self,
        http: httpx.Client,
        project_id: int,
        notices: Optional[NoticeThrottle] = None,
        save_queue: Optional[SaveQueue] = None,
    ) -> None:
        self.http = http
        self.project_id = project_id
        if notices is None:
            notices = NoticeThrottle(sink=lambda text: logger.warning("Notice: {}", text))
        self.notices = notices
        self.save_queue = save_queue if save_queue is not None else SaveQueue()
        self.tasks: dict[ChartId, ChartTask] = {}
        self.links: dict[int, ChartLink] = {}
        self.index = LinkIndex()
        self.move_dependencies = True
        self._temp_tasks = itertools.count(1)
        self._temp_links = itertools.count(1)
        self._handlers: dict[SessionEvent, Callable[..., Any]] = {
            SessionEvent.RELOAD: self._on_reload,
            SessionEvent.TASK_ADD: self._on_task_add,
            SessionEvent.TASK_UPDATE: self._on_task_update,
            SessionEvent.TASK_EDIT: self._on_task_edit,
            SessionEvent.TASK_DELETE: self._on_task_delete,
            SessionEvent.LINK_ADD: self._on_link_add,
            SessionEvent.LINK_DELETE: self._on_link_delete,
            SessionEvent.SET_MOVE_DEPENDENCIES: self._on_set_move_dependencies,
            SessionEvent.TICK: self._on_tick,
        }

    @property
    def base_path(self) -> str:
        return f"/api/projects/{self.project_id}/gantt"

    def dispatch(self, event: Any, ctx: Optional[OperationContext] = None, **kwargs: Any) -> Any:
        """Route *event* to its handler and return the handler's result."""
        handler = self._handlers.get(SessionEvent(event))
        if handler is None:
            raise ValueError(f"No handler for event {event!r}")
        return handler(ctx or OperationContext(), **kwargs)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None) -> Optional[dict[str, Any]]:
        """Send a request; return the JSON body, or ``None`` on any failure."""
        url = self.base_path + path
        try:
            resp = self.http.request(method, url, json=payload)
        except httpx.HTTPError as exc:
            logger.error("{} {} failed: {}", method, url, exc)
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.error("{} {} returned a malformed body (HTTP {})", method, url, resp.status_code)
            return None
        if not resp.is_success:
            detail = data.get("detail") if isinstance(data, dict) else None
            logger.warning("{} {} rejected (HTTP {}): {}", method, url, resp.status_code, detail)
            if resp.status_code == 400 and isinstance(detail, str):
                self.notices.notify(detail)
            return None
        if not isinstance(data, dict) or data.get("result", "ok") != "ok":
            logger.error("{} {} returned an unexpected body: {!r}", method, url, data)
            return None
        return data

    # ------------------------------------------------------------------
    # Local index
    # ------------------------------------------------------------------

    def _hierarchy_link(self, task: ChartTask) -> Optional[Link]:
        if not isinstance(task.id, int) or task.id <= 0:
            return None
        if not isinstance(task.parent, int) or task.parent <= 0:
            return None
        return Link(id=-task.id, task_id=task.id, opposite_task_id=task.parent, label=LINK_IS_CHILD_OF)

    def _index_task(self, task: ChartTask) -> None:
        link = self._hierarchy_link(task)
        if link is not None:
            self.index.add(link)

    def _rebuild_index(self) -> None:
        self.index = LinkIndex()
        for task in self.tasks.values():
            self._index_task(task)
        for link in self.links.values():
            self.index.add(_dependency_row(link))

    def validator(self) -> LinkValidator:
        types = {tid: t.task_type for tid, t in self.tasks.items() if isinstance(tid, int) and tid > 0}
        return LinkValidator(self.index, types)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def load(self) -> bool:
        return self.dispatch(SessionEvent.RELOAD)

    def _on_reload(self, ctx: OperationContext) -> bool:
        try:
            resp = self.http.get(self.base_path, params={"group_by": "none"})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to load chart for project {}: {}", self.project_id, exc)
            return False
        self.tasks = {}
        for row in data.get("data", []):
            task = ChartTask.from_dict(row)
            self.tasks[task.id] = task
        self.links = {}
        for row in data.get("links", []):
            link = ChartLink.from_dict(row)
            self.links[link.id] = link
        self.move_dependencies = bool(data.get("move_dependencies_enabled", True))
        self._rebuild_index()
        logger.info("Loaded {} task(s) and {} link(s)", len(self.tasks), len(self.links))
        return True

    def _on_link_add(
        self, ctx: OperationContext, source: int, target: int, kind: str = "0"
    ) -> Optional[ChartLink]:
        label = label_for_kind(kind)
        rejection = self.validator().check(source, target, label)
        if rejection is not None:
            self.notices.notify(rejection.message)
            return None
        if label != LINK_BLOCKS:
            return self._add_child_link(source, target, kind)

        temp = ChartLink(id=_TEMP_LINK_BASE - next(self._temp_links), source=source, target=target)
        self.links[temp.id] = temp
        self.index.add(_dependency_row(temp))

        data = self._request("POST", "/dependency", {"source": source, "target": target, "type": kind})
        self.links.pop(temp.id, None)
        self.index.remove(temp.id)
        if data is None or not isinstance(data.get("id"), int):
            logger.info("Rolled back link {} -> {}", source, target)
            return None
        link = replace(temp, id=data["id"])
        self.links[link.id] = link
        self.index.add(_dependency_row(link))
        return link

    def _add_child_link(self, child: int, parent: int, kind: str) -> Optional[ChartLink]:
        task = self.tasks[child]
        previous = task.parent
        self.index.remove(-child)
        task.parent = parent
        self._index_task(task)
        data = self._request("POST", "/dependency", {"source": child, "target": parent, "type": kind})
        if data is None:
            self.index.remove(-child)
            task.parent = previous
            self._index_task(task)
            return None
        return ChartLink(id=int(data.get("id") or 0), source=child, target=parent, type="1")

    def _on_link_delete(self, ctx: OperationContext, link_id: int) -> bool:
        link = self.links.pop(link_id, None)
        if link is None:
            return False
        self.index.remove(link_id)
        if link_id <= 0:
            return True
        # a failed removal leaves the arrow gone locally; the next reload restores it
        return self._request("POST", "/dependency/remove", {"id": link_id}) is not None

    def _on_task_add(self, ctx: OperationContext, task: ChartTask) -> Optional[ChartTask]:
        temp_id = f"${next(self._temp_tasks)}"
        local = replace(task, id=temp_id, child_tasks=list(task.child_tasks))
        self.tasks[temp_id] = local

        data = self._request("POST", "/create", self._payload(local, include_id=False))
        self.tasks.pop(temp_id, None)
        if data is None or not isinstance(data.get("id"), int):
            logger.info("Rolled back new task {!r}", task.text)
            return None
        created = replace(local, id=data["id"])
        self.tasks[created.id] = created
        self._index_task(created)
        return created

    def _on_task_delete(self, ctx: OperationContext, task_id: ChartId) -> bool:
        task = self.tasks.pop(task_id, None)
        if task is None:
            return False
        touching = {lid: lk for lid, lk in self.links.items() if task_id in (lk.source, lk.target)}
        for lid in touching:
            self.links.pop(lid)
            self.index.remove(lid)
        if isinstance(task_id, int):
            self.index.remove(-task_id)
        # subtask rows go with their owner; other children become top-level
        subtasks = {tid: t for tid, t in self.tasks.items() if t.is_subtask and t.parent == task_id}
        for tid in subtasks:
            self.tasks.pop(tid)
        children = [(t, t.sprint_id) for t in self.tasks.values() if t.parent == task_id]
        for child, _ in children:
            if isinstance(child.id, int):
                self.index.remove(-child.id)
            child.parent = 0
            if child.sprint_id == task_id:
                child.sprint_id = 0
        self.save_queue.discard(task_id)
        if not isinstance(task_id, int) or task_id <= 0:
            return True

        if self._request("POST", "/remove", {"id": task_id}) is not None:
            return True
        logger.info("Restoring task {} after failed delete", task_id)
        self.tasks[task_id] = task
        self._index_task(task)
        self.tasks.update(subtasks)
        for child, sprint_id in children:
            child.parent = task_id
            child.sprint_id = sprint_id
            self._index_task(child)
        for lid, lk in touching.items():
            self.links[lid] = lk
            self.index.add(_dependency_row(lk))
        return False

    def _on_task_update(self, ctx: OperationContext, task_id: ChartId, changes: dict[str, Any]) -> list[ChartId]:
        """Apply *changes* locally and queue a save.

        Returns the ids that were updated: the task followed by any
        successors it pushed along.
        """
        task = self.tasks.get(task_id)
        if task is None:
            return []
        old_start = task.start
        _apply_changes(task, changes)
        updated: list[ChartId] = [task_id]
        if self._is_persisted(task_id):
            self.save_queue.enqueue(task_id, self._payload(task))

        delta = task.start - old_start
        if ctx.cascade or not delta or not self.move_dependencies or not isinstance(task_id, int):
            return updated

        spans = {tid: (t.start, t.end) for tid, t in self.tasks.items()}
        plan = plan_successor_shift(self.index, spans, task_id, delta)
        cascade = OperationContext(cascade=True, origin=task_id)
        for sid, (start, end) in plan.items():
            updated += self.dispatch(SessionEvent.TASK_UPDATE, cascade, task_id=sid, changes={"start": start, "end": end})
        if plan:
            logger.info("Moved {} dependent task(s) with task {}", len(plan), task_id)
        return updated

    def _on_task_edit(
        self,
        ctx: OperationContext,
        task_id: ChartId,
        task_type: Any = None,
        values: Optional[dict[str, Any]] = None,
    ) -> list[ChartId]:
        """Submit the edit form for a task.

        The form decides which values survive for the chosen type; the
        result goes through ``TASK_UPDATE`` so it is saved and cascades
        like any other change.  Returns the updated ids, or ``[]`` when
        the edit is refused.
        """
        task = self.tasks.get(task_id)
        if task is None:
            return []
        form = EditForm.open(task)
        if task_type is not None:
            form.select_type(task_type)
        edited = form.apply(values)

        if edited.is_sprint and not task.is_sprint and isinstance(task_id, int):
            if self.index.successors(task_id) or self.index.predecessors(task_id):
                self.notices.notify(MSG_SPRINT_LINK)
                return []

        changes = {
            name: getattr(edited, name)
            for name in _EDIT_FIELDS
            if getattr(edited, name) != getattr(task, name)
        }
        if (edited.start, edited.end) != (task.start, task.end):
            changes["start"], changes["end"] = edited.start, edited.end
        if edited.is_sprint and isinstance(task_id, int):
            self._move_sprint_children(task_id, task.child_tasks, edited.child_tasks)
        if not changes:
            return []
        return self.dispatch(SessionEvent.TASK_UPDATE, ctx, task_id=task_id, changes=changes)

    def _move_sprint_children(self, sprint_id: int, before: list[int], after: list[int]) -> None:
        for child_id in set(before) - set(after):
            child = self.tasks.get(child_id)
            if child is not None and child.parent == sprint_id:
                self.index.remove(-child_id)
                child.parent = 0
                child.sprint_id = 0
        for child_id in set(after) - set(before):
            child = self.tasks.get(child_id)
            if child is None:
                continue
            self.index.remove(-child_id)
            child.parent = sprint_id
            child.sprint_id = sprint_id
            self._index_task(child)

    def _on_set_move_dependencies(self, ctx: OperationContext, enabled: bool) -> bool:
        previous = self.move_dependencies
        self.move_dependencies = enabled
        if self._request("POST", "/settings/move-dependencies", {"enabled": enabled}) is None:
            self.move_dependencies = previous
            return False
        return True

    def _on_tick(self, ctx: OperationContext, force: bool = False) -> dict[ChartId, bool]:
        """Flush due saves; returns per-task success."""
        results: dict[ChartId, bool] = {}
        for task_id, payload in self.save_queue.drain(force=force).items():
            results[task_id] = self._request("POST", "/save", payload) is not None
        failed = [tid for tid, ok in results.items() if not ok]
        if failed:
            logger.warning("Failed to save task(s): {}", failed)
        return results

    def flush(self, force: bool = False) -> dict[ChartId, bool]:
        return self.dispatch(SessionEvent.TICK, force=force)

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    @staticmethod
    def _is_persisted(task_id: ChartId) -> bool:
        return isinstance(task_id, int) and task_id > 0

    @staticmethod
    def _payload(task: ChartTask, include_id: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "text": task.text,
            "start_date": format_chart_date(task.start),
            "end_date": format_chart_date(task.end),
            "priority": task.priority,
            "owner_id": task.owner_id,
            "category_id": task.category_id,
            "task_type": task.task_type.value,
            "child_tasks": list(task.child_tasks),
            "is_milestone": task.is_milestone,
            "progress": task.progress,
            "sprint_id": task.sprint_id,
        }
        if include_id:
            payload["id"] = task.id
        return payload


def _dependency_row(link: ChartLink) -> Link:
    return Link(id=link.id, task_id=int(link.source), opposite_task_id=int(link.target), label=LINK_BLOCKS)


def _apply_changes(task: ChartTask, changes: dict[str, Any]) -> None:
    """Apply widget-style field changes to *task* in place."""
    changes = dict(changes)
    start = changes.pop("start", None)
    end = changes.pop("end", None)
    if "start_date" in changes:
        start = parse_chart_date(changes.pop("start_date"))
    if "end_date" in changes:
        end = parse_chart_date(changes.pop("end_date"))
    duration = changes.pop("duration", None)
    if "task_type" in changes:
        task.task_type = TaskType.coerce(changes.pop("task_type"))
    if "priority" in changes:
        priority = TaskPriority.parse(changes.pop("priority"))
        if priority is not None:
            task.priority = priority.value
    for key, value in changes.items():
        if hasattr(task, key) and key != "id":
            setattr(task, key, value)
    if start is not None or end is not None or duration is not None:
        new_start = task.start if start is None else int(start)
        if end is not None:
            new_end = int(end)
        elif duration is not None:
            new_end = new_start + int(duration) * SECONDS_PER_DAY
        else:
            new_end = task.end + (new_start - task.start)
        task.set_span(new_start, new_end)
