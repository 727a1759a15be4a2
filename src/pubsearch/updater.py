"""Index updater: keeps the search snapshot and the live package index in sync.

Lifecycle::

    UNINITIALIZED → BOOTSTRAPPING → READY ⇄ PERSISTING → CLOSED

``init()`` restores the persisted snapshot (or bootstraps a minimal index),
``run_scheduler()`` starts consuming update tasks, and a jittered background
loop writes the snapshot back to storage unless another instance just did.
"""

from __future__ import annotations

import asyncio
import random
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from pubsearch.config import Settings
from pubsearch.errors import AnalysisMissingError, PackageRemovedError
from pubsearch.models import SearchSnapshot, TaskSourceModel
from pubsearch.tasks import (
    DatastoreHeadTaskSource,
    ManualTriggerTaskSource,
    PeriodicUpdateTaskSource,
    TaskScheduler,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Mapping

    from pubsearch.models import SchedulerStats, Task
    from pubsearch.protocols import (
        ChangeFeed,
        DocumentBackend,
        MarkerStorage,
        PackageIndex,
        SnapshotStorage,
    )

log = structlog.get_logger()


class UpdaterState(StrEnum):
    UNINITIALIZED = "uninitialized"
    BOOTSTRAPPING = "bootstrapping"
    READY = "ready"
    PERSISTING = "persisting"
    CLOSED = "closed"


class IndexUpdater:
    """Sole writer of the search snapshot and the package index."""

    def __init__(
        self,
        backend: DocumentBackend,
        package_index: PackageIndex,
        storage: SnapshotStorage,
        markers: MarkerStorage,
        feeds: Mapping[TaskSourceModel, ChangeFeed],
        *,
        settings: Settings | None = None,
        sdk_index: PackageIndex | None = None,
    ) -> None:
        self._backend = backend
        self._index = package_index
        self._storage = storage
        self._markers = markers
        self._feeds = feeds
        self._settings = settings or Settings()
        self._sdk_index = sdk_index

        self._snapshot = SearchSnapshot()
        # False until a trusted snapshot was restored; the package change feed
        # then replays from the start to upgrade minimal documents.
        self._restored = False
        self._state = UpdaterState.UNINITIALIZED
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

        self._scheduler: TaskScheduler | None = None
        self._snapshot_write_task: asyncio.Task[None] | None = None
        self._stats_task: asyncio.Task[None] | None = None
        self._sdk_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> UpdaterState:
        return self._state

    @property
    def snapshot(self) -> SearchSnapshot:
        return self._snapshot

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Load the snapshot into the index, or fall back to a minimal index.

        The minimal index holds package names and minimal metadata only; the
        scheduler replaces those documents with complete ones over time.
        """
        self._state = UpdaterState.BOOTSTRAPPING
        if not await self._init_snapshot():
            await self._load_minimal_index()
        self._state = UpdaterState.READY

        if self._snapshot_write_task is None:
            cfg = self._settings.updater
            jitter = random.SystemRandom().randint(0, cfg.snapshot_write_jitter_minutes)
            period = timedelta(hours=cfg.snapshot_write_hours, minutes=jitter)
            self._snapshot_write_task = asyncio.create_task(
                self._snapshot_write_loop(period.total_seconds()), name="snapshot-write"
            )
            log.info("snapshot_write_scheduled", period_seconds=period.total_seconds())

    async def _init_snapshot(self) -> bool:
        """Returns whether the snapshot was restored and the index marked ready."""
        try:
            log.info("snapshot_loading")
            snapshot = await self._storage.fetch()
            if snapshot is not None:
                # Restore in place: running task sources hold this instance.
                self._snapshot.documents = snapshot.documents
                self._snapshot.saved_at = snapshot.saved_at
                count = len(snapshot)
                log.info("snapshot_loaded", documents=count, saved_at=snapshot.saved_at)
                await self._index.add_packages(snapshot.values())
                # Arbitrary sanity check that the snapshot is not entirely bogus.
                if count > self._settings.updater.snapshot_min_documents:
                    await self._index.mark_ready()
                    log.info("snapshot_index_ready", documents=count)
                    self._restored = True
                    return True
                log.warning("snapshot_too_small", documents=count)
        except Exception:
            log.warning("snapshot_load_failed", exc_info=True)
        return False

    async def _load_minimal_index(self) -> None:
        log.info("minimal_index_loading")
        every = self._settings.updater.bootstrap_log_every
        count = 0
        try:
            async for doc in self._backend.load_minimal_documents():
                # Restored snapshot entries are more complete than minimal ones.
                if doc.package in self._snapshot:
                    continue
                await self._index.add_package(doc)
                count += 1
                if count % every == 0:
                    log.info("minimal_index_progress", loaded=count, package=doc.package)
        except Exception:
            log.error("minimal_index_load_failed", loaded=count, exc_info=True)
        await self._index.mark_ready()
        log.info("minimal_index_loaded", packages=count)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def run_scheduler(self, manual_triggers: AsyncIterable[Task] | None = None) -> TaskScheduler:
        """Start the scheduler that keeps the index up to date."""
        if self._scheduler is not None:
            raise RuntimeError("Scheduler is already running")
        cfg = self._settings.scheduler
        poll_seconds = cfg.change_feed_poll_minutes * 60
        scheduler = TaskScheduler(
            self,
            [
                ManualTriggerTaskSource(manual_triggers),
                DatastoreHeadTaskSource(
                    self._feeds[TaskSourceModel.PACKAGE],
                    TaskSourceModel.PACKAGE,
                    self._markers,
                    poll_seconds=poll_seconds,
                    resume=self._restored,
                ),
                DatastoreHeadTaskSource(
                    self._feeds[TaskSourceModel.SCORECARD],
                    TaskSourceModel.SCORECARD,
                    self._markers,
                    poll_seconds=poll_seconds,
                    skip_history=True,
                ),
                PeriodicUpdateTaskSource(
                    self._snapshot, interval_seconds=cfg.sweep_interval_hours * 3600
                ),
            ],
            queue_size=cfg.queue_size,
            concurrency=cfg.concurrency,
        )
        scheduler.start()
        self._scheduler = scheduler
        self._stats_task = asyncio.create_task(
            self._stats_loop(cfg.stats_interval_minutes * 60), name="scheduler-stats"
        )
        return scheduler

    def stats(self) -> SchedulerStats | None:
        return self._scheduler.stats() if self._scheduler is not None else None

    async def _stats_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            stats = self.stats()
            if stats is not None:
                log.info(
                    "scheduler_stats",
                    processed=stats.processed,
                    failed=stats.failed,
                    queue_depth=stats.queue_depth,
                    last_error=stats.last_error,
                )

    async def close(self) -> None:
        if self._state == UpdaterState.CLOSED:
            return
        tasks = [
            t for t in (self._snapshot_write_task, self._stats_task, self._sdk_task) if t
        ]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._snapshot_write_task = self._stats_task = self._sdk_task = None
        if self._scheduler is not None:
            await self._scheduler.close()
        self._state = UpdaterState.CLOSED
        log.info("index_updater_closed")

    # ------------------------------------------------------------------
    # Task runner
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _package_lock(self, package: str) -> AsyncIterator[None]:
        lock = self._locks.get(package)
        if lock is None:
            lock = self._locks[package] = asyncio.Lock()
        self._lock_users[package] = self._lock_users.get(package, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[package] -= 1
            if not self._lock_users[package]:
                del self._lock_users[package]
                del self._locks[package]

    async def run_task(self, task: Task) -> None:
        async with self._package_lock(task.package):
            existing = self._snapshot.get(task.package)

            # Skip tasks that originate before the current snapshot document.
            # This deduplicates overlapping sources and replayed change feeds.
            if existing is not None and existing.timestamp >= task.triggered_at:
                return

            # Analysis results are required unless the package is new, or its
            # content has not been refreshed within the grace window. In the
            # latter case a partial update beats a frozen entry.
            grace = timedelta(days=self._settings.updater.analysis_grace_days)
            require_analysis = (
                existing is not None
                and existing.updated is not None
                and datetime.now(UTC) - existing.updated < grace
            )

            try:
                doc = await self._backend.fetch_document(
                    task.package, require_analysis=require_analysis
                )
            except PackageRemovedError:
                log.info("package_removed", package=task.package)
                self._snapshot.remove(task.package)
                await self._index.remove_package(task.package)
                return
            except AnalysisMissingError:
                # Keep the old version, if any. A later sweep retries.
                log.debug("analysis_missing", package=task.package)
                return

            doc = doc.model_copy(
                update={"package": task.package, "timestamp": task.triggered_at}
            )
            self._snapshot.add(doc)
            await self._index.add_package(doc)

    async def update_all_packages(self) -> None:
        """Rebuild every package with a complete document.

        Slower than the minimal bootstrap; meant for maintenance runs.
        """
        count = 0
        async for package in self._backend.list_package_names():
            async with self._package_lock(package):
                try:
                    doc = await self._backend.fetch_document(package, require_analysis=False)
                except (PackageRemovedError, AnalysisMissingError) as exc:
                    log.info("update_all_skipped", package=package, reason=str(exc.code))
                    continue
                doc = doc.model_copy(update={"timestamp": datetime.now(UTC)})
                self._snapshot.add(doc)
                await self._index.add_package(doc)
                count += 1
        await self._index.mark_ready()
        log.info("update_all_completed", packages=count)

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    async def _snapshot_write_loop(self, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            await self._update_snapshot_if_needed()

    async def _update_snapshot_if_needed(self) -> None:
        if self._state == UpdaterState.READY:
            self._state = UpdaterState.PERSISTING
        try:
            if await self._storage.was_updated_recently():
                log.info("snapshot_update_skipped", reason="recent_snapshot")
            else:
                log.info("snapshot_updating", documents=len(self._snapshot))
                await self._storage.store(self._snapshot)
                log.info("snapshot_update_completed")
        except Exception:
            log.warning("snapshot_update_failed", exc_info=True)
        finally:
            if self._state == UpdaterState.PERSISTING:
                self._state = UpdaterState.READY

    # ------------------------------------------------------------------
    # SDK reference index
    # ------------------------------------------------------------------

    def init_sdk_index(self) -> None:
        """Start loading the SDK reference index in the background.

        Never blocks the package index: the docs may take a while to appear.
        """
        if self._sdk_index is None or self._sdk_task is not None:
            return
        self._sdk_task = asyncio.create_task(self._update_sdk_index(), name="sdk-index")

    async def cancel_sdk_index(self) -> None:
        if self._sdk_task is None:
            return
        self._sdk_task.cancel()
        await asyncio.gather(self._sdk_task, return_exceptions=True)
        self._sdk_task = None

    async def _update_sdk_index(self) -> None:
        assert self._sdk_index is not None
        retry = self._settings.updater.sdk_retry_seconds
        attempt = 0
        while True:
            try:
                log.info("sdk_index_loading", attempt=attempt)
                docs = await self._backend.fetch_sdk_documents()
                if docs is not None:
                    await self._sdk_index.add_packages(docs)
                    await self._sdk_index.mark_ready()
                    log.info("sdk_index_loaded", documents=len(docs))
                    return
            except Exception:
                log.info("sdk_index_load_failed", attempt=attempt, exc_info=True)
            if attempt % 10 == 0:
                log.warning("sdk_index_unavailable", attempt=attempt)
            attempt += 1
            await asyncio.sleep(retry)
