"""FastAPI web server for the Gantt board."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel

from .. import __version__
from ..config import load_board_config, resolve_config, update_board_config
from ..constants import STATE_DIR_NAME
from ..task_engine.engine import GanttEngine
from .gantt_api import create_gantt_router


class ConfigUpdateRequest(BaseModel):
    task_sort: Optional[str] = None
    default_view: Optional[str] = None
    group_by: Optional[str] = None
    move_dependencies_default: Optional[bool] = None
    show_progress: Optional[bool] = None


class CreateProjectRequest(BaseModel):
    name: str


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Gantt Board",
        description="Gantt chart data and rule engine for a project board",
        version=__version__,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir
    engines: dict[Path, GanttEngine] = {}

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        """Get project directory from parameter or default."""
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return app.state.default_project_dir
        return Path.cwd()

    def _state_dir(project_dir_param: Optional[str] = None) -> Path:
        return _get_project_dir(project_dir_param).resolve() / STATE_DIR_NAME

    def get_engine(project_dir_param: Optional[str] = None) -> GanttEngine:
        state_dir = _state_dir(project_dir_param)
        engine = engines.get(state_dir)
        if engine is None:
            raw, err = load_board_config(state_dir)
            if err:
                logger.warning("Failed to load config: {}", err)
            engine = GanttEngine(state_dir, config=resolve_config(raw))
            engines[state_dir] = engine
        return engine

    app.include_router(create_gantt_router(get_engine))

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Gantt Board",
            "version": __version__,
            "status": "running",
        }

    @app.get("/api/config")
    async def get_config(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        raw, err = load_board_config(_state_dir(project_dir))
        return {"config": resolve_config(raw), "error": err}

    @app.put("/api/config")
    async def put_config(
        body: ConfigUpdateRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        updates = body.model_dump(exclude_none=True)
        try:
            resolved = update_board_config(_state_dir(project_dir), updates)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        get_engine(project_dir).config = resolved
        logger.info("Updated config keys: {}", sorted(updates))
        return {"config": resolved, "error": None}

    @app.get("/api/projects")
    async def list_projects(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"projects": [p.to_dict() for p in engine.list_projects()]}

    @app.post("/api/projects", status_code=201)
    async def create_project(
        body: CreateProjectRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        name = body.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="Project name is required")
        project = get_engine(project_dir).create_project(name)
        logger.info("Created project {}: {}", project.id, name)
        return {"project": project.to_dict()}

    return app
