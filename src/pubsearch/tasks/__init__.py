from __future__ import annotations

from pubsearch.tasks.scheduler import TaskScheduler
from pubsearch.tasks.sources import (
    DatastoreHeadTaskSource,
    ManualTriggerTaskSource,
    PeriodicUpdateTaskSource,
    queue_stream,
    update_period_hours,
)

__all__ = [
    "TaskScheduler",
    "ManualTriggerTaskSource",
    "DatastoreHeadTaskSource",
    "PeriodicUpdateTaskSource",
    "queue_stream",
    "update_period_hours",
]
