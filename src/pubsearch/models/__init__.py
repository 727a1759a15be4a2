from __future__ import annotations

from pubsearch.models.document import PackageDocument
from pubsearch.models.snapshot import SearchSnapshot
from pubsearch.models.stats import SchedulerStats, SourceStats
from pubsearch.models.task import ChangeRecord, Task, TaskSourceModel

__all__ = [
    # tasks
    "Task",
    "TaskSourceModel",
    "ChangeRecord",
    # documents
    "PackageDocument",
    "SearchSnapshot",
    # stats
    "SchedulerStats",
    "SourceStats",
]
