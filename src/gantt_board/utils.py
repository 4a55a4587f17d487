"""Provide utility helpers for timestamps and chart dates."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional

from .constants import DATE_FORMAT

_INPUT_FORMATS = (DATE_FORMAT, "%Y-%m-%d %H:%M:%S", "%Y-%m-%d", "%d-%m-%Y %H:%M")


def _now_ts() -> int:
    return int(time.time())


def format_chart_date(ts: int) -> str:
    """Render a unix timestamp the way the chart widget expects it."""
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).strftime(DATE_FORMAT)


def parse_chart_date(value: Any) -> Optional[int]:
    """Parse a chart date string (or timestamp) into unix seconds.

    Naive values are read as UTC. Returns ``None`` for empty or unparseable
    input; callers skip the field in that case.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        dt = None
        for fmt in _INPUT_FORMATS:
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if dt is None:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                dt = datetime.fromisoformat(text)
            except ValueError:
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())
