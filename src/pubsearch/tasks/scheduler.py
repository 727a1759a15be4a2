"""Task scheduler.

Merges every task source into one bounded queue and drains it with a small
pool of workers:
- one pump coroutine per source pushes tasks into the queue,
- worker coroutines hand each task to the runner,
- a failing task is logged and counted, never fatal to the loop.

The scheduler has no view of document timestamps; dropping stale or duplicate
tasks is the runner's job.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from pubsearch.models import SchedulerStats, SourceStats

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pubsearch.models import Task
    from pubsearch.protocols import TaskRunner, TaskSource

log = structlog.get_logger()


class TaskScheduler:
    def __init__(
        self,
        runner: TaskRunner,
        sources: Sequence[TaskSource],
        *,
        queue_size: int = 1000,
        concurrency: int = 1,
    ) -> None:
        self._runner = runner
        self._sources = list(sources)
        self._queue: asyncio.Queue[tuple[str, Task]] = asyncio.Queue(maxsize=queue_size)
        self._concurrency = max(1, concurrency)
        self._pumps: list[asyncio.Task[None]] = []
        self._workers: list[asyncio.Task[None]] = []
        self._closed = asyncio.Event()

        self._started_at: datetime | None = None
        self._processed = 0
        self._failed = 0
        self._last_task: Task | None = None
        self._last_error: str | None = None
        self._source_stats = {source.name: SourceStats() for source in self._sources}

    @property
    def running(self) -> bool:
        return self._started_at is not None and not self._closed.is_set()

    def start(self) -> None:
        """Start streaming from every source and begin consuming the merged stream."""
        if self._started_at is not None:
            raise RuntimeError("TaskScheduler can only be started once")
        self._started_at = datetime.now(UTC)
        for source in self._sources:
            self._pumps.append(
                asyncio.create_task(self._pump(source), name=f"task-source:{source.name}")
            )
        for i in range(self._concurrency):
            self._workers.append(asyncio.create_task(self._work(), name=f"task-worker:{i}"))
        log.info(
            "scheduler_started",
            sources=[source.name for source in self._sources],
            concurrency=self._concurrency,
        )

    async def run(self) -> None:
        """Start the scheduler and wait until it is closed."""
        self.start()
        await self._closed.wait()

    async def close(self) -> None:
        """Cancel all source subscriptions and workers. In-flight work may be abandoned."""
        if self._closed.is_set():
            return
        self._closed.set()
        tasks = self._pumps + self._workers
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        log.info("scheduler_closed", processed=self._processed, failed=self._failed)

    def stats(self) -> SchedulerStats:
        """Snapshot of the running counters. Never awaits."""
        return SchedulerStats(
            started_at=self._started_at,
            processed=self._processed,
            failed=self._failed,
            queue_depth=self._queue.qsize(),
            last_task=self._last_task,
            last_error=self._last_error,
            sources={name: s.model_copy() for name, s in self._source_stats.items()},
        )

    async def _pump(self, source: TaskSource) -> None:
        stats = self._source_stats[source.name]
        try:
            async for task in source.start_streaming():
                stats.received += 1
                await self._queue.put((source.name, task))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._last_error = f"{source.name}: {exc!r}"
            log.error("task_source_failed", source=source.name, exc_info=True)
        stats.finished = True
        log.info("task_source_finished", source=source.name, received=stats.received)

    async def _work(self) -> None:
        while True:
            source_name, task = await self._queue.get()
            stats = self._source_stats[source_name]
            try:
                await self._runner.run_task(task)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._failed += 1
                stats.failed += 1
                self._last_error = f"{task.package}: {exc!r}"
                log.warning(
                    "task_failed", package=task.package, source=source_name, exc_info=True
                )
            else:
                self._processed += 1
                stats.processed += 1
                stats.last_task = task
                self._last_task = task
            finally:
                self._queue.task_done()
