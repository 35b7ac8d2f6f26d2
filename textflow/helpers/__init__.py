from __future__ import annotations

from .background_task import BackgroundTasks, bg_tasks
from .strings import safe_json_dumps
from .time import Clock, ensure_utc, utcnow

__all__ = [
    "BackgroundTasks",
    "Clock",
    "bg_tasks",
    "ensure_utc",
    "safe_json_dumps",
    "utcnow",
]
