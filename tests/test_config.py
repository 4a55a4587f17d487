"""Tests for the optional chart configuration file."""

from __future__ import annotations

from pathlib import Path

import pytest

from gantt_board.config import (
    DEFAULT_CONFIG,
    load_board_config,
    resolve_config,
    update_board_config,
    validate_config,
)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / ".gantt_board"


class TestLoad:
    def test_missing_file(self, state_dir: Path) -> None:
        assert load_board_config(state_dir) == ({}, None)

    def test_invalid_yaml(self, state_dir: Path) -> None:
        state_dir.mkdir()
        (state_dir / "config.yaml").write_text("task_sort: [unclosed\n", encoding="utf-8")
        config, err = load_board_config(state_dir)
        assert config == {}
        assert "YAMLError" in err

    def test_non_mapping(self, state_dir: Path) -> None:
        state_dir.mkdir()
        (state_dir / "config.yaml").write_text("- a\n- b\n", encoding="utf-8")
        _, err = load_board_config(state_dir)
        assert "expected object" in err


class TestResolve:
    def test_defaults(self) -> None:
        assert resolve_config({}) == DEFAULT_CONFIG

    def test_invalid_entries_ignored(self) -> None:
        resolved = resolve_config({"task_sort": "date", "default_view": "year", "color": "red"})
        assert resolved["task_sort"] == "date"
        assert resolved["default_view"] == "day"
        assert "color" not in resolved


class TestUpdate:
    def test_validate_rejects(self) -> None:
        with pytest.raises(ValueError, match="Unknown config key"):
            validate_config({"colour": "red"})
        with pytest.raises(ValueError, match="boolean"):
            validate_config({"show_progress": "yes"})

    def test_round_trip(self, state_dir: Path) -> None:
        resolved = update_board_config(state_dir, {"group_by": "sprint"})
        assert resolved["group_by"] == "sprint"
        config, err = load_board_config(state_dir)
        assert err is None
        assert config == {"group_by": "sprint"}

    def test_refuses_to_overwrite_unreadable(self, state_dir: Path) -> None:
        state_dir.mkdir()
        (state_dir / "config.yaml").write_text("{bad", encoding="utf-8")
        with pytest.raises(ValueError, match="unreadable"):
            update_board_config(state_dir, {"task_sort": "date"})
