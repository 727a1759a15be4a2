"""Task sources feeding the scheduler.

Each source produces an unending stream of ``Task`` objects from one change
detection mechanism. Streams are not restartable: call ``start_streaming()``
once per source instance.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from pubsearch.models import Task

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

    from pubsearch.models import SearchSnapshot, TaskSourceModel
    from pubsearch.protocols import ChangeFeed, MarkerStorage

log = structlog.get_logger()

_MIN_UPDATE_PERIOD_HOURS = 24
_MAX_UPDATE_PERIOD_HOURS = 7 * 24


def update_period_hours(updated: datetime | None, now: datetime) -> int:
    """Hours a document may age in the index before it is refreshed.

    Packages updated in the past two years get refreshed daily; each additional
    month adds an hour, up to once a week for long-neglected packages.
    """
    age_in_months = (now - (updated or now)).days // 30
    return max(_MIN_UPDATE_PERIOD_HOURS, min(age_in_months, _MAX_UPDATE_PERIOD_HOURS))


async def queue_stream(queue: asyncio.Queue[Task]) -> AsyncIterator[Task]:
    """Adapt a trigger queue to the iterable ManualTriggerTaskSource relays."""
    while True:
        yield await queue.get()


class ManualTriggerTaskSource:
    """Relays operator- or API-initiated tasks unchanged."""

    name = "manual"

    def __init__(self, triggers: AsyncIterable[Task] | None = None) -> None:
        self._triggers = triggers

    async def start_streaming(self) -> AsyncIterator[Task]:
        if self._triggers is None:
            return
        async for task in self._triggers:
            yield task


class DatastoreHeadTaskSource:
    """Polls a change feed and emits a task per changed record.

    The feed position is persisted after every batch so a restart resumes
    where the last process stopped. With ``skip_history`` the source starts
    from the current time instead, relying on the periodic sweep to cover
    anything that changed while it was down. With ``resume=False`` the stored
    position is ignored and the whole feed is replayed from the start.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        model: TaskSourceModel,
        markers: MarkerStorage,
        *,
        poll_seconds: float = 600,
        skip_history: bool = False,
        resume: bool = True,
    ) -> None:
        self._feed = feed
        self._model = model
        self._markers = markers
        self._poll_seconds = poll_seconds
        self._skip_history = skip_history
        self._resume = resume
        self.name = f"datastore-head:{model}"

    async def start_streaming(self) -> AsyncIterator[Task]:
        since: datetime | None = None
        if self._skip_history:
            since = datetime.now(UTC)
        elif self._resume:
            since = await self._markers.get_marker(self._model)
        log.info("change_feed_started", model=str(self._model), since=since)

        failures = 0
        while True:
            try:
                records, marker = await self._feed.records_changed_since(since)
            except Exception:
                failures += 1
                delay = min(self._poll_seconds * 2 ** (failures - 1), self._poll_seconds * 8)
                log.warning(
                    "change_feed_poll_failed",
                    model=str(self._model),
                    failures=failures,
                    retry_in=delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)
                continue

            failures = 0
            for record in records:
                yield Task(
                    package=record.package, version=record.version, triggered_at=record.updated
                )
            if marker is not None and marker != since:
                since = marker
                await self._markers.set_marker(self._model, marker)
            if records:
                log.debug("change_feed_polled", model=str(self._model), records=len(records))
            await asyncio.sleep(self._poll_seconds)


class PeriodicUpdateTaskSource:
    """Emits update tasks for documents that have aged past their update period.

    Scans the live snapshot every ``interval_seconds`` (two hours by default).
    """

    name = "periodic-update"

    def __init__(self, snapshot: SearchSnapshot, *, interval_seconds: float = 2 * 3600) -> None:
        self._snapshot = snapshot
        self._interval_seconds = interval_seconds

    def select_stale(self, now: datetime) -> list[Task]:
        return [
            Task(package=doc.package, version=doc.version, triggered_at=now)
            for doc in self._snapshot.values()
            if now - doc.timestamp >= timedelta(hours=update_period_hours(doc.updated, now))
        ]

    async def start_streaming(self) -> AsyncIterator[Task]:
        while True:
            await asyncio.sleep(self._interval_seconds)
            tasks = self.select_stale(datetime.now(UTC))
            log.info("periodic_update_scan", packages=len(tasks))
            for task in tasks:
                yield task

