"""Gantt chart API endpoints.

This module provides a FastAPI router serving the chart widget: the data
snapshot, task create/save/remove, dependency links, successor shifting,
member lists and the per-project "move dependencies" preference.  It is
mounted under ``/api/projects/{project_id}/gantt`` by ``create_app``.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from fastapi import APIRouter, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..constants import SECONDS_PER_DAY
from ..task_engine.engine import GanttEngine, ProjectMismatch
from ..task_engine.validation import LinkRejected, RejectReason


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class TaskPayload(BaseModel):
    """Task fields as the chart widget sends them; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[int, str]] = None
    text: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    duration: Optional[int] = None
    progress: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    priority: Optional[str] = None
    owner_id: Optional[int] = None
    category_id: Optional[int] = None
    is_milestone: Optional[bool] = None
    task_type: Optional[str] = None
    sprint_id: Optional[int] = None
    child_tasks: Optional[list[int]] = None


class RemoveTaskRequest(BaseModel):
    id: int


class DependencyRequest(BaseModel):
    source: Optional[int] = None
    target: Optional[int] = None
    type: str = "blocks"


class RemoveDependencyRequest(BaseModel):
    id: Optional[int] = None


class ShiftRequest(BaseModel):
    id: int
    days: float = 0.0


class MoveDependenciesRequest(BaseModel):
    enabled: bool


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, ProjectMismatch):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, LinkRejected) and exc.reason == RejectReason.UNKNOWN_TASK:
        return HTTPException(status_code=404, detail=exc.message)
    return HTTPException(status_code=400, detail=str(exc))


def create_gantt_router(get_engine: Any) -> APIRouter:
    """Create the Gantt API router.

    Parameters
    ----------
    get_engine:
        A callable ``(project_dir_param: str | None) -> GanttEngine`` that
        resolves the engine for the current request's project directory.
    """
    router = APIRouter(prefix="/api/projects/{project_id}/gantt", tags=["gantt"])

    def _engine_for(project_id: int, project_dir: Optional[str]) -> GanttEngine:
        engine = get_engine(project_dir)
        if engine.get_project(project_id) is None:
            raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
        return engine

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @router.get("")
    async def get_data(
        project_id: int,
        project_dir: Optional[str] = Query(None),
        group_by: Optional[str] = Query(None),
        sorting: Optional[str] = Query(None),
        search: str = Query(""),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        return engine.snapshot(project_id, group_by=group_by, sorting=sorting, search=search)

    @router.get("/members")
    async def get_members(
        project_id: int,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        return {"result": "ok", **engine.members(project_id)}

    @router.get("/events")
    async def get_events(
        project_id: int,
        project_dir: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        return {"events": engine.get_recent_events(limit=limit, project_id=project_id)}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @router.post("/create", status_code=201)
    async def create_task(
        project_id: int,
        body: TaskPayload,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        try:
            task = engine.create_task(project_id, body.model_dump(exclude_none=True, exclude={"id"}))
        except ValueError as e:
            logger.warning("Create rejected in project {}: {}", project_id, e)
            raise _http_error(e)
        logger.info("Created task {} in project {}", task.id, project_id)
        return {"result": "ok", "id": task.id, "message": "Task created successfully"}

    @router.post("/save")
    async def save_task(
        project_id: int,
        body: TaskPayload,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        if body.id is None or not str(body.id).isdigit():
            raise HTTPException(status_code=400, detail="Missing task ID")
        try:
            task = engine.save_task(project_id, body.model_dump(exclude_none=True))
        except ValueError as e:
            logger.warning("Save rejected for task {}: {}", body.id, e)
            raise _http_error(e)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {body.id} not found")
        return {"result": "ok", "message": "Task updated successfully", "task": task.to_dict()}

    @router.post("/remove")
    async def remove_task(
        project_id: int,
        body: RemoveTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        try:
            removed = engine.remove_task(project_id, body.id)
        except ValueError as e:
            raise _http_error(e)
        if not removed:
            raise HTTPException(status_code=404, detail=f"Task {body.id} not found")
        return {"result": "ok", "message": "Task deleted successfully"}

    @router.post("/shift")
    async def shift_task(
        project_id: int,
        body: ShiftRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        try:
            moved = engine.shift_task(project_id, body.id, int(round(body.days * SECONDS_PER_DAY)))
        except ValueError as e:
            raise _http_error(e)
        if moved is None:
            raise HTTPException(status_code=404, detail=f"Task {body.id} not found")
        return {"result": "ok", "moved": moved}

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    @router.post("/dependency", status_code=201)
    async def add_dependency(
        project_id: int,
        body: DependencyRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        if not body.source or not body.target:
            raise HTTPException(status_code=400, detail="Missing task IDs")
        try:
            link = engine.add_link(project_id, body.source, body.target, body.type)
        except ValueError as e:
            logger.warning("Link {} -> {} rejected: {}", body.source, body.target, e)
            raise _http_error(e)
        return {"result": "ok", "id": link.id, "message": "Dependency created successfully"}

    @router.post("/dependency/remove")
    async def remove_dependency(
        project_id: int,
        body: RemoveDependencyRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        if not body.id:
            raise HTTPException(status_code=400, detail="Missing link ID")
        try:
            removed = engine.remove_link(project_id, body.id)
        except ValueError as e:
            raise _http_error(e)
        if not removed:
            raise HTTPException(status_code=404, detail=f"Link {body.id} not found")
        return {"result": "ok", "message": "Dependency removed successfully"}

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @router.post("/settings/move-dependencies")
    async def save_move_dependencies(
        project_id: int,
        body: MoveDependenciesRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = _engine_for(project_id, project_dir)
        enabled = engine.set_move_dependencies(project_id, body.enabled)
        return {"result": "ok", "project_id": project_id, "enabled": enabled}

    return router
