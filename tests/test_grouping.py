"""Tests for the grouping projector and workload summary."""

from __future__ import annotations

import copy

from gantt_board.constants import SECONDS_PER_DAY
from gantt_board.task_engine.grouping import GroupBy, project_groups, workload, workload_status
from gantt_board.task_engine.model import ChartTask, TaskType

DAY = SECONDS_PER_DAY


def _dataset() -> list[ChartTask]:
    return [
        ChartTask(id=1, text="Design", start=0, end=2 * DAY, progress=0.5, assignee="alice", category="UX", sprint="S1"),
        ChartTask(id="subtask_7", text="Sketch", start=0, end=DAY, parent=1, assignee="alice"),
        ChartTask(id=2, text="Build", start=DAY, end=5 * DAY, progress=0.0, assignee="bob", category="Dev", sprint="S1"),
        ChartTask(id=3, text="Ship", start=4 * DAY, end=6 * DAY, progress=1.0, assignee="alice", category="", sprint=""),
        ChartTask(id=4, text="S1", start=0, end=6 * DAY, task_type=TaskType.SPRINT, kind="project", sprint=""),
    ]


class TestGroupByParse:
    def test_aliases(self) -> None:
        assert GroupBy.parse("group") == GroupBy.CATEGORY
        assert GroupBy.parse("Assignee") == GroupBy.ASSIGNEE
        assert GroupBy.parse("bogus") == GroupBy.NONE
        assert GroupBy.parse(None) == GroupBy.NONE


class TestProjectGroups:
    def test_none_returns_same_rows(self) -> None:
        data = _dataset()
        out = project_groups(data, "none")
        assert out == data
        assert out is not data

    def test_assignee_buckets(self) -> None:
        out = project_groups(_dataset(), "assignee")
        groups = [t for t in out if isinstance(t.id, int) and t.id < 0]
        assert [g.id for g in groups] == [-100000, -100001, -100002]
        assert [g.text for g in groups] == ["Assignee: alice", "Assignee: bob", "Assignee: None"]
        assert all(g.readonly and g.kind == "project" and g.parent == 0 for g in groups)

    def test_lossless_and_reparented(self) -> None:
        data = _dataset()
        out = project_groups(data, "category")
        real_ids = [t.id for t in out if not (isinstance(t.id, int) and t.id < 0)]
        assert sorted(map(str, real_ids)) == sorted(str(t.id) for t in data)
        by_id = {t.id: t for t in out}
        assert by_id[1].parent == -100000
        # subtasks keep their owner as parent and follow it
        assert by_id["subtask_7"].parent == 1
        ids = [t.id for t in out]
        assert ids.index("subtask_7") == ids.index(1) + 1

    def test_group_span_and_progress(self) -> None:
        out = project_groups(_dataset(), "assignee")
        alice = out[0]
        assert alice.start == 0
        assert alice.end == 6 * DAY
        assert alice.progress == (0.5 + 1.0) / 2

    def test_input_not_mutated(self) -> None:
        data = _dataset()
        before = copy.deepcopy(data)
        project_groups(data, "sprint")
        assert data == before

    def test_sprint_mode_buckets_sprint_under_own_name(self) -> None:
        out = project_groups(_dataset(), "sprint")
        labels = [t.text for t in out if isinstance(t.id, int) and t.id < 0]
        assert labels == ["Sprint: S1", "Sprint: No Sprint"]
        by_id = {t.id: t for t in out}
        assert by_id[4].parent == by_id[1].parent == by_id[2].parent

    def test_orphan_subtask_appended(self) -> None:
        data = [ChartTask(id="subtask_9", parent=42), ChartTask(id=1, assignee="x")]
        out = project_groups(data, "assignee")
        assert out[-1].id == "subtask_9"
        assert len(out) == 3


class TestWorkload:
    def test_status_thresholds(self) -> None:
        assert workload_status(0) == "available"
        assert workload_status(2) == "available"
        assert workload_status(3) == "busy"
        assert workload_status(5) == "busy"
        assert workload_status(6) == "overloaded"

    def test_counts_skip_subtasks_and_groups(self) -> None:
        rows = project_groups(_dataset(), "assignee")
        summary = {entry["name"]: entry for entry in workload(rows)}
        assert summary["alice"]["task_count"] == 2
        assert summary["alice"]["tasks"] == [1, 3]
        assert summary["bob"]["status"] == "available"
