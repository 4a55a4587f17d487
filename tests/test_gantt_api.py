"""Tests for the Gantt chart API endpoints."""

from __future__ import annotations

from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from gantt_board.server.api import create_app


@pytest.fixture
def app(tmp_path: Path):
    """Create a test app with a temp project directory."""
    project_dir = tmp_path / "board"
    project_dir.mkdir()
    return create_app(project_dir=project_dir, enable_cors=False)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _project(client: AsyncClient, name: str = "Roadmap") -> str:
    resp = await client.post("/api/projects", json={"name": name})
    assert resp.status_code == 201
    return f"/api/projects/{resp.json()['project']['id']}/gantt"


async def _task(client: AsyncClient, base: str, **fields) -> int:
    resp = await client.post(f"{base}/create", json=fields)
    assert resp.status_code == 201
    return resp.json()["id"]


@pytest.mark.anyio
class TestSnapshot:
    async def test_empty_project(self, client: AsyncClient) -> None:
        base = await _project(client)
        resp = await client.get(base)
        assert resp.status_code == 200
        data = resp.json()
        assert data["data"] == []
        assert data["links"] == []
        assert data["move_dependencies_enabled"] is True

    async def test_unknown_project(self, client: AsyncClient) -> None:
        resp = await client.get("/api/projects/99/gantt")
        assert resp.status_code == 404

    async def test_grouped(self, client: AsyncClient) -> None:
        base = await _project(client)
        await _task(client, base, text="A")
        resp = await client.get(base, params={"group_by": "assignee"})
        rows = resp.json()["data"]
        assert rows[0]["id"] == -100000
        assert rows[0]["type"] == "project"
        assert rows[1]["parent"] == -100000

    async def test_members(self, client: AsyncClient) -> None:
        base = await _project(client)
        resp = await client.get(f"{base}/members")
        assert resp.status_code == 200
        body = resp.json()
        assert body["result"] == "ok"
        assert body["users"][0] == {"key": 0, "label": "Unassigned"}


@pytest.mark.anyio
class TestTasks:
    async def test_create_and_save(self, client: AsyncClient) -> None:
        base = await _project(client)
        task_id = await _task(client, base, text="Write", start_date="2024-01-01 00:00", end_date="2024-01-03 00:00")

        resp = await client.post(f"{base}/save", json={"id": task_id, "text": "Rewrite", "progress": 0.5})
        assert resp.status_code == 200
        assert resp.json()["task"]["title"] == "Rewrite"

        row = (await client.get(base)).json()["data"][0]
        assert row["text"] == "Rewrite"
        assert row["progress"] == 0.5
        assert row["start_date"] == "2024-01-01 00:00"
        assert row["duration"] == 2

    async def test_save_requires_id(self, client: AsyncClient) -> None:
        base = await _project(client)
        resp = await client.post(f"{base}/save", json={"text": "x"})
        assert resp.status_code == 400
        resp = await client.post(f"{base}/save", json={"id": "$1", "text": "x"})
        assert resp.status_code == 400

    async def test_save_unknown_task(self, client: AsyncClient) -> None:
        base = await _project(client)
        resp = await client.post(f"{base}/save", json={"id": 55, "text": "x"})
        assert resp.status_code == 404

    async def test_progress_out_of_range(self, client: AsyncClient) -> None:
        base = await _project(client)
        task_id = await _task(client, base)
        resp = await client.post(f"{base}/save", json={"id": task_id, "progress": 1.5})
        assert resp.status_code == 422

    async def test_cross_project_save_forbidden(self, client: AsyncClient) -> None:
        first = await _project(client, "A")
        second = await _project(client, "B")
        task_id = await _task(client, second)
        resp = await client.post(f"{first}/save", json={"id": task_id, "text": "x"})
        assert resp.status_code == 403

    async def test_remove(self, client: AsyncClient) -> None:
        base = await _project(client)
        task_id = await _task(client, base)
        resp = await client.post(f"{base}/remove", json={"id": task_id})
        assert resp.status_code == 200
        resp = await client.post(f"{base}/remove", json={"id": task_id})
        assert resp.status_code == 404

    async def test_shift_moves_successors(self, client: AsyncClient) -> None:
        base = await _project(client)
        a = await _task(client, base, start_date="2024-01-01 00:00", end_date="2024-01-02 00:00")
        b = await _task(client, base, start_date="2024-01-02 00:00", end_date="2024-01-04 00:00")
        await client.post(f"{base}/dependency", json={"source": a, "target": b})

        resp = await client.post(f"{base}/shift", json={"id": a, "days": 2})
        assert resp.json() == {"result": "ok", "moved": [a, b]}
        rows = {r["id"]: r for r in (await client.get(base)).json()["data"]}
        assert rows[b]["start_date"] == "2024-01-04 00:00"
        assert rows[b]["end_date"] == "2024-01-06 00:00"


@pytest.mark.anyio
class TestDependencies:
    async def test_create_and_remove(self, client: AsyncClient) -> None:
        base = await _project(client)
        a = await _task(client, base)
        b = await _task(client, base)
        resp = await client.post(f"{base}/dependency", json={"source": a, "target": b, "type": "0"})
        assert resp.status_code == 201
        link_id = resp.json()["id"]
        links = (await client.get(base)).json()["links"]
        assert links == [{"id": link_id, "source": a, "target": b, "type": "0"}]

        resp = await client.post(f"{base}/dependency/remove", json={"id": link_id})
        assert resp.status_code == 200
        resp = await client.post(f"{base}/dependency/remove", json={"id": link_id})
        assert resp.status_code == 404

    async def test_missing_ids(self, client: AsyncClient) -> None:
        base = await _project(client)
        resp = await client.post(f"{base}/dependency", json={"source": 1})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing task IDs"
        resp = await client.post(f"{base}/dependency/remove", json={})
        assert resp.json()["detail"] == "Missing link ID"

    async def test_circular_rejected(self, client: AsyncClient) -> None:
        base = await _project(client)
        a = await _task(client, base)
        b = await _task(client, base)
        await client.post(f"{base}/dependency", json={"source": a, "target": b})
        resp = await client.post(f"{base}/dependency", json={"source": b, "target": a})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Circular dependency detected"

    async def test_linked_task_cannot_become_sprint(self, client: AsyncClient) -> None:
        base = await _project(client)
        a = await _task(client, base)
        b = await _task(client, base)
        await client.post(f"{base}/dependency", json={"source": a, "target": b})
        resp = await client.post(f"{base}/save", json={"id": a, "task_type": "sprint"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Sprints cannot be linked to other tasks"
        rows = {r["id"]: r for r in (await client.get(base)).json()["data"]}
        assert rows[a]["task_type"] == "task"

    async def test_unknown_task(self, client: AsyncClient) -> None:
        base = await _project(client)
        a = await _task(client, base)
        resp = await client.post(f"{base}/dependency", json={"source": a, "target": 999})
        assert resp.status_code == 404

    async def test_cross_project(self, client: AsyncClient) -> None:
        first = await _project(client, "A")
        second = await _project(client, "B")
        a = await _task(client, first)
        b = await _task(client, second)
        resp = await client.post(f"{first}/dependency", json={"source": a, "target": b})
        assert resp.status_code == 403


@pytest.mark.anyio
class TestSettingsAndEvents:
    async def test_move_dependencies_toggle(self, client: AsyncClient) -> None:
        base = await _project(client)
        resp = await client.post(f"{base}/settings/move-dependencies", json={"enabled": False})
        assert resp.json()["enabled"] is False
        assert (await client.get(base)).json()["move_dependencies_enabled"] is False

    async def test_events(self, client: AsyncClient) -> None:
        base = await _project(client)
        await _task(client, base)
        resp = await client.get(f"{base}/events", params={"limit": 10})
        assert [e["type"] for e in resp.json()["events"]] == ["task.created"]
