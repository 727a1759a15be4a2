from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from pubsearch.models.task import Task


class SourceStats(BaseModel):
    """Counters for a single task source."""

    received: int = 0
    processed: int = 0
    failed: int = 0
    last_task: Task | None = None
    finished: bool = False


class SchedulerStats(BaseModel):
    """Point-in-time view of scheduler health. Rebuilt on every read."""

    started_at: datetime | None
    processed: int
    failed: int
    queue_depth: int
    last_task: Task | None = None
    last_error: str | None = None
    sources: dict[str, SourceStats] = {}
