"""Tests for the Gantt engine (task_engine/engine.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from gantt_board.constants import SECONDS_PER_DAY
from gantt_board.task_engine.engine import GanttEngine, ProjectMismatch
from gantt_board.task_engine.links import LinkIndex
from gantt_board.task_engine.validation import LinkRejected, RejectReason
from gantt_board.utils import parse_chart_date

DAY = SECONDS_PER_DAY


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".gantt_board"
    d.mkdir()
    return d


@pytest.fixture
def engine(state_dir: Path) -> GanttEngine:
    return GanttEngine(state_dir)


@pytest.fixture
def project_id(engine: GanttEngine) -> int:
    return engine.create_project("Launch").id


def _dated(engine: GanttEngine, project_id: int, start: str, end: str, **extra):
    return engine.create_task(project_id, {"start_date": start, "end_date": end, **extra})


# ---------------------------------------------------------------------------
# Projects and tasks
# ---------------------------------------------------------------------------

class TestProjects:
    def test_create_project_adds_columns(self, engine: GanttEngine, project_id: int) -> None:
        columns = engine.store.read_snapshot().project_columns(project_id)
        assert [c.title for c in columns] == ["Backlog", "Ready", "Work in progress", "Done"]
        assert [p.name for p in engine.list_projects()] == ["Launch"]

    def test_members(self, engine: GanttEngine, project_id: int) -> None:
        user = engine.create_user("alice")
        assert engine.add_member(project_id, user.id)
        assert not engine.add_member(999, user.id)
        category = engine.create_category(project_id, "Design")
        engine.create_task(project_id, {"category_id": category.id})
        members = engine.members(project_id)
        assert members["users"] == [{"key": 0, "label": "Unassigned"}, {"key": user.id, "label": "alice"}]
        assert members["groups"][0] == {"key": 0, "label": "No Category", "color": "#bdc3c7"}
        assert members["groups"][1] == {"key": category.id, "label": "Design", "color": "#bdc3c7"}


class TestTasks:
    def test_create_task(self, engine: GanttEngine, project_id: int) -> None:
        task = _dated(engine, project_id, "2024-01-01 00:00", "2024-01-04 00:00", text="Plan", priority="medium")
        stored = engine.get_task(task.id)
        assert stored.title == "Plan"
        assert stored.priority == 2
        assert stored.date_due - stored.date_started == 3 * DAY
        assert engine.store.read_snapshot().task_type_of(task.id) == "task"

    def test_create_task_unknown_project(self, engine: GanttEngine) -> None:
        with pytest.raises(ValueError, match="not found"):
            engine.create_task(42, {})

    def test_save_task_partial(self, engine: GanttEngine, project_id: int) -> None:
        task = engine.create_task(project_id, {"text": "Old"})
        updated = engine.save_task(project_id, {
            "id": task.id,
            "text": "New",
            "end_date": "2024-05-01 00:00",
            "priority": "low",
            "is_milestone": True,
            "progress": 0.25,
        })
        assert updated.title == "New"
        assert updated.priority == 1
        assert updated.date_due == parse_chart_date("2024-05-01 00:00")
        meta = engine.store.read_snapshot().metadata(task.id)
        assert meta["is_milestone"] == "1"
        assert meta["gantt_progress"] == "25"

    def test_save_missing_task(self, engine: GanttEngine, project_id: int) -> None:
        assert engine.save_task(project_id, {"id": 99, "text": "x"}) is None

    def test_save_other_project(self, engine: GanttEngine, project_id: int) -> None:
        other = engine.create_project("Other").id
        task = engine.create_task(other, {})
        with pytest.raises(ProjectMismatch):
            engine.save_task(project_id, {"id": task.id, "text": "x"})

    def test_remove_task(self, engine: GanttEngine, project_id: int) -> None:
        a = engine.create_task(project_id, {})
        b = engine.create_task(project_id, {})
        engine.add_link(project_id, a.id, b.id)
        assert engine.remove_task(project_id, a.id)
        assert not engine.remove_task(project_id, a.id)
        assert engine.store.read_snapshot().links == []


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

class TestLinks:
    def test_add_and_remove(self, engine: GanttEngine, project_id: int) -> None:
        a = engine.create_task(project_id, {})
        b = engine.create_task(project_id, {})
        link = engine.add_link(project_id, a.id, b.id, "blocks")
        assert link.label == "blocks"
        assert engine.remove_link(project_id, link.id)
        assert not engine.remove_link(project_id, link.id)

    def test_cycle_rejected_and_not_stored(self, engine: GanttEngine, project_id: int) -> None:
        a, b, c = (engine.create_task(project_id, {}) for _ in range(3))
        engine.add_link(project_id, a.id, b.id)
        engine.add_link(project_id, b.id, c.id)
        with pytest.raises(LinkRejected) as exc:
            engine.add_link(project_id, c.id, a.id)
        assert exc.value.reason == RejectReason.CYCLE
        assert len(engine.store.read_snapshot().links) == 2

    def test_unknown_task(self, engine: GanttEngine, project_id: int) -> None:
        a = engine.create_task(project_id, {})
        with pytest.raises(LinkRejected) as exc:
            engine.add_link(project_id, a.id, 404)
        assert exc.value.reason == RejectReason.UNKNOWN_TASK

    def test_cross_project(self, engine: GanttEngine, project_id: int) -> None:
        other = engine.create_project("Other").id
        a = engine.create_task(project_id, {})
        b = engine.create_task(other, {})
        with pytest.raises(ProjectMismatch):
            engine.add_link(project_id, a.id, b.id)

    def test_child_link(self, engine: GanttEngine, project_id: int) -> None:
        parent = engine.create_task(project_id, {})
        child = engine.create_task(project_id, {})
        link = engine.add_link(project_id, child.id, parent.id, "child")
        assert link.label == "is a child of"
        index = LinkIndex(engine.store.read_snapshot().project_links(project_id))
        assert index.parent(child.id) == parent.id

    def test_sprint_cannot_be_linked(self, engine: GanttEngine, project_id: int) -> None:
        sprint = engine.create_task(project_id, {"task_type": "sprint"})
        task = engine.create_task(project_id, {})
        with pytest.raises(LinkRejected) as exc:
            engine.add_link(project_id, task.id, sprint.id)
        assert exc.value.message == "Sprints cannot be linked to other tasks"

    def test_task_with_dependencies_cannot_become_sprint(self, engine: GanttEngine, project_id: int) -> None:
        a = engine.create_task(project_id, {"text": "A"})
        b = engine.create_task(project_id, {})
        engine.add_link(project_id, a.id, b.id)
        with pytest.raises(LinkRejected) as exc:
            engine.save_task(project_id, {"id": a.id, "task_type": "sprint", "text": "Changed"})
        assert exc.value.reason == RejectReason.SPRINT_LINK
        state = engine.store.read_snapshot()
        assert state.task_type_of(a.id) == "task"
        assert state.get_task(a.id).title == "A"

    def test_task_without_dependencies_can_become_sprint(self, engine: GanttEngine, project_id: int) -> None:
        a = engine.create_task(project_id, {})
        engine.save_task(project_id, {"id": a.id, "task_type": "sprint"})
        assert engine.store.read_snapshot().task_type_of(a.id) == "sprint"


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------

class TestSprints:
    def _parent(self, engine: GanttEngine, project_id: int, task_id: int) -> int:
        return LinkIndex(engine.store.read_snapshot().project_links(project_id)).parent(task_id)

    def test_task_assigned_to_sprint(self, engine: GanttEngine, project_id: int) -> None:
        sprint = engine.create_task(project_id, {"task_type": "sprint"})
        task = engine.create_task(project_id, {"sprint_id": sprint.id})
        assert self._parent(engine, project_id, task.id) == sprint.id

    def test_moving_to_another_sprint_drops_old_link(self, engine: GanttEngine, project_id: int) -> None:
        first = engine.create_task(project_id, {"task_type": "sprint"})
        second = engine.create_task(project_id, {"task_type": "sprint"})
        task = engine.create_task(project_id, {"sprint_id": first.id})
        engine.save_task(project_id, {"id": task.id, "sprint_id": second.id})
        assert self._parent(engine, project_id, task.id) == second.id
        assert len(engine.store.read_snapshot().links) == 1

    def test_clearing_sprint(self, engine: GanttEngine, project_id: int) -> None:
        sprint = engine.create_task(project_id, {"task_type": "sprint"})
        task = engine.create_task(project_id, {"sprint_id": sprint.id})
        engine.save_task(project_id, {"id": task.id, "sprint_id": 0})
        assert self._parent(engine, project_id, task.id) == 0

    def test_sprint_child_list_sync(self, engine: GanttEngine, project_id: int) -> None:
        a, b, c = (engine.create_task(project_id, {}) for _ in range(3))
        sprint = engine.create_task(project_id, {"task_type": "sprint", "child_tasks": [a.id, b.id]})
        index = LinkIndex(engine.store.read_snapshot().project_links(project_id))
        assert index.children(sprint.id) == [a.id, b.id]

        engine.save_task(project_id, {"id": sprint.id, "child_tasks": [b.id, c.id]})
        state = engine.store.read_snapshot()
        index = LinkIndex(state.project_links(project_id))
        assert index.children(sprint.id) == [b.id, c.id]
        assert state.metadata(a.id)["sprint_id"] == "0"
        assert state.metadata(c.id)["sprint_id"] == str(sprint.id)

    def _row(self, engine: GanttEngine, project_id: int, task_id: int) -> dict:
        rows = engine.snapshot(project_id, group_by="none")["data"]
        return next(r for r in rows if r["id"] == task_id)

    def test_deleting_sprint_clears_membership(self, engine: GanttEngine, project_id: int) -> None:
        sprint = engine.create_task(project_id, {"task_type": "sprint"})
        task = engine.create_task(project_id, {"sprint_id": sprint.id})
        assert engine.remove_task(project_id, sprint.id)

        assert engine.store.read_snapshot().metadata(task.id)["sprint_id"] == "0"
        row = self._row(engine, project_id, task.id)
        assert row["sprint_id"] == 0
        assert row["parent"] == 0
        assert row["sprint"] == "No Sprint"

    def test_removing_sprint_link_clears_membership(self, engine: GanttEngine, project_id: int) -> None:
        sprint = engine.create_task(project_id, {"task_type": "sprint"})
        task = engine.create_task(project_id, {"sprint_id": sprint.id})
        link = engine.store.read_snapshot().project_links(project_id)[0]
        assert engine.remove_link(project_id, link.id)

        assert engine.store.read_snapshot().metadata(task.id)["sprint_id"] == "0"
        assert self._row(engine, project_id, task.id)["sprint_id"] == 0
        assert self._row(engine, project_id, sprint.id)["child_tasks"] == []

    def test_stale_sprint_metadata_is_ignored(self, engine: GanttEngine, project_id: int) -> None:
        plain = engine.create_task(project_id, {})
        task = engine.create_task(project_id, {})
        with engine.store.transaction() as tx:
            tx.save_metadata(task.id, {"sprint_id": plain.id})
        assert self._row(engine, project_id, task.id)["sprint_id"] == 0

    def test_rejected_sprint_assignment_writes_nothing(self, engine: GanttEngine, project_id: int) -> None:
        sprint = engine.create_task(project_id, {"task_type": "sprint"})
        parent = engine.create_task(project_id, {})
        child = engine.create_task(project_id, {})
        engine.add_link(project_id, child.id, parent.id, "child")
        before = len(engine.list_tasks(project_id))
        with pytest.raises(LinkRejected):
            engine.save_task(project_id, {"id": child.id, "sprint_id": sprint.id, "text": "Changed"})
        assert engine.get_task(child.id).title != "Changed"
        assert len(engine.list_tasks(project_id)) == before


# ---------------------------------------------------------------------------
# Shifting
# ---------------------------------------------------------------------------

class TestShift:
    def test_chain_moves_by_exact_delta(self, engine: GanttEngine, project_id: int) -> None:
        a = _dated(engine, project_id, "2024-01-01 00:00", "2024-01-02 00:00")
        b = _dated(engine, project_id, "2024-01-03 00:00", "2024-01-05 00:00")
        c = _dated(engine, project_id, "2024-01-06 00:00", "2024-01-07 00:00")
        engine.add_link(project_id, a.id, b.id)
        engine.add_link(project_id, b.id, c.id)
        before = {t.id: (t.date_started, t.date_due) for t in engine.list_tasks(project_id)}

        moved = engine.shift_task(project_id, a.id, 2 * DAY)

        assert moved == [a.id, b.id, c.id]
        for task in engine.list_tasks(project_id):
            start, end = before[task.id]
            assert task.date_started == start + 2 * DAY
            assert task.date_due == end + 2 * DAY

    def test_disabled_preference_moves_only_task(self, engine: GanttEngine, project_id: int) -> None:
        a = _dated(engine, project_id, "2024-01-01 00:00", "2024-01-02 00:00")
        b = _dated(engine, project_id, "2024-01-03 00:00", "2024-01-05 00:00")
        engine.add_link(project_id, a.id, b.id)
        engine.set_move_dependencies(project_id, False)
        assert not engine.get_move_dependencies(project_id)
        assert engine.shift_task(project_id, a.id, DAY) == [a.id]
        assert engine.get_task(b.id).date_started == parse_chart_date("2024-01-03 00:00")

    def test_config_default_applies(self, state_dir: Path) -> None:
        engine = GanttEngine(state_dir, config={"move_dependencies_default": False})
        project_id = engine.create_project("P").id
        assert not engine.get_move_dependencies(project_id)
        engine.set_move_dependencies(project_id, True)
        assert engine.get_move_dependencies(project_id)

    def test_missing_task(self, engine: GanttEngine, project_id: int) -> None:
        assert engine.shift_task(project_id, 77, DAY) is None


# ---------------------------------------------------------------------------
# Snapshot and events
# ---------------------------------------------------------------------------

class TestSnapshotAndEvents:
    def test_snapshot_settings(self, engine: GanttEngine, project_id: int) -> None:
        engine.create_task(project_id, {})
        snap = engine.snapshot(project_id)
        assert len(snap["data"]) == 1
        assert snap["links"] == []
        assert snap["move_dependencies_enabled"] is True
        assert snap["workload"][0]["task_count"] == 1
        assert snap["default_view"] == "day"

    def test_events_logged(self, engine: GanttEngine, project_id: int) -> None:
        a = engine.create_task(project_id, {})
        b = engine.create_task(project_id, {})
        link = engine.add_link(project_id, a.id, b.id)
        engine.remove_link(project_id, link.id)
        engine.shift_task(project_id, a.id, DAY)
        engine.remove_task(project_id, b.id)
        types = [e["type"] for e in engine.get_recent_events(project_id=project_id)]
        assert types == [
            "task.created",
            "task.created",
            "link.added",
            "link.removed",
            "task.shifted",
            "task.removed",
        ]
        assert engine.get_recent_events(limit=1)[0]["task_id"] == b.id
        assert engine.get_recent_events(project_id=999) == []
