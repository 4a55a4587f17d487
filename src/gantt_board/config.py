"""Load and save the optional chart configuration in `.gantt_board/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .constants import CONFIG_FILE

VALID_TASK_SORTS = {"board", "date"}
VALID_VIEWS = {"day", "week", "month", "quarter"}
VALID_GROUP_BY = {"none", "assignee", "category", "group", "sprint"}

DEFAULT_CONFIG: dict[str, Any] = {
    "task_sort": "board",
    "default_view": "day",
    "group_by": "none",
    "move_dependencies_default": True,
    "show_progress": True,
}


def load_board_config(state_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        state_dir: The ``.gantt_board/`` directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = state_dir / CONFIG_FILE
    if not path.exists():
        return {}, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        return {}, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except yaml.YAMLError as exc:
        return {}, f"{path.name}: YAMLError: {exc}"
    if data is None:
        return {}, None
    if not isinstance(data, dict):
        return {}, f"{path.name}: expected object, got {type(data).__name__}"
    return data, None


def resolve_config(config: dict[str, Any]) -> dict[str, Any]:
    """Overlay the valid entries of *config* on the defaults.

    Unknown keys and invalid values are ignored.
    """
    resolved = dict(DEFAULT_CONFIG)
    for key, value in config.items():
        try:
            resolved.update(validate_config({key: value}))
        except ValueError:
            continue
    return resolved


def validate_config(updates: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial config update.

    Raises:
        ValueError: If a key is unknown or a value is out of range.
    """
    clean: dict[str, Any] = {}
    for key, value in updates.items():
        if key == "task_sort":
            if value not in VALID_TASK_SORTS:
                raise ValueError(f"task_sort must be one of {sorted(VALID_TASK_SORTS)}")
        elif key == "default_view":
            if value not in VALID_VIEWS:
                raise ValueError(f"default_view must be one of {sorted(VALID_VIEWS)}")
        elif key == "group_by":
            if value not in VALID_GROUP_BY:
                raise ValueError(f"group_by must be one of {sorted(VALID_GROUP_BY)}")
        elif key in {"move_dependencies_default", "show_progress"}:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
        else:
            raise ValueError(f"Unknown config key: {key}")
        clean[key] = value
    return clean


def save_board_config(state_dir: Path, config: dict[str, Any]) -> None:
    """Write *config* to ``config.yaml`` (write-tmp-then-rename)."""
    path = state_dir / CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(config, handle, sort_keys=False, default_flow_style=False)
    tmp_path.replace(path)


def update_board_config(state_dir: Path, updates: dict[str, Any]) -> dict[str, Any]:
    """Validate *updates*, merge them into the stored file and return the resolved config."""
    clean = validate_config(updates)
    current, err = load_board_config(state_dir)
    if err:
        raise ValueError(f"Refusing to overwrite unreadable config: {err}")
    current.update(clean)
    save_board_config(state_dir, current)
    return resolve_config(current)
