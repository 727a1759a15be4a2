"""Unit tests for pubsearch.tasks.sources."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from pubsearch.models import ChangeRecord, SearchSnapshot, Task, TaskSourceModel
from pubsearch.tasks import (
    DatastoreHeadTaskSource,
    ManualTriggerTaskSource,
    PeriodicUpdateTaskSource,
    queue_stream,
    update_period_hours,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from conftest import FakeChangeFeed, FakeStorage

    from pubsearch.models import PackageDocument

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _months_ago(months: int) -> datetime:
    return NOW - timedelta(days=30 * months)


# ---------------------------------------------------------------------------
# update_period_hours
# ---------------------------------------------------------------------------


class TestUpdatePeriodHours:
    def test_recent_package_is_daily(self) -> None:
        assert update_period_hours(_months_ago(1), NOW) == 24

    def test_eight_months_still_daily(self) -> None:
        assert update_period_hours(_months_ago(8), NOW) == 24

    def test_grows_an_hour_per_month_after_two_years(self) -> None:
        assert update_period_hours(_months_ago(30), NOW) == 30

    def test_capped_at_weekly(self) -> None:
        assert update_period_hours(_months_ago(400), NOW) == 168

    def test_missing_updated_is_daily(self) -> None:
        assert update_period_hours(None, NOW) == 24


# ---------------------------------------------------------------------------
# PeriodicUpdateTaskSource
# ---------------------------------------------------------------------------


class TestPeriodicUpdateSelection:
    def test_selects_only_documents_past_their_period(
        self, doc_factory: Callable[..., PackageDocument]
    ) -> None:
        snapshot = SearchSnapshot()
        # 10 days since last refresh, package a month old: daily period → stale
        snapshot.add(
            doc_factory("fresh_pkg", timestamp=NOW - timedelta(days=10), updated=_months_ago(1))
        )
        # refreshed 2 hours ago: not stale
        snapshot.add(
            doc_factory("just_done", timestamp=NOW - timedelta(hours=2), updated=_months_ago(8))
        )
        # 100 hours since refresh but 400 months old: weekly period → not stale yet
        snapshot.add(
            doc_factory("ancient", timestamp=NOW - timedelta(hours=100), updated=_months_ago(400))
        )
        # 200 hours since refresh and 400 months old → stale
        snapshot.add(
            doc_factory("ancient2", timestamp=NOW - timedelta(hours=200), updated=_months_ago(400))
        )

        tasks = PeriodicUpdateTaskSource(snapshot).select_stale(NOW)

        assert sorted(t.package for t in tasks) == ["ancient2", "fresh_pkg"]
        assert all(t.triggered_at == NOW for t in tasks)

    def test_boundary_is_inclusive(self, doc_factory: Callable[..., PackageDocument]) -> None:
        snapshot = SearchSnapshot()
        snapshot.add(doc_factory("edge", timestamp=NOW - timedelta(hours=24), updated=NOW))
        tasks = PeriodicUpdateTaskSource(snapshot).select_stale(NOW)
        assert [t.package for t in tasks] == ["edge"]

    async def test_stream_yields_after_interval(
        self, doc_factory: Callable[..., PackageDocument]
    ) -> None:
        snapshot = SearchSnapshot()
        old = datetime.now(UTC) - timedelta(days=3)
        snapshot.add(doc_factory("stale", timestamp=old, updated=old))
        source = PeriodicUpdateTaskSource(snapshot, interval_seconds=0.01)

        stream = source.start_streaming()
        task = await asyncio.wait_for(anext(stream), timeout=1)
        await stream.aclose()

        assert task.package == "stale"
        assert task.triggered_at > old

    async def test_scan_sees_later_snapshot_changes(
        self, doc_factory: Callable[..., PackageDocument]
    ) -> None:
        snapshot = SearchSnapshot()
        source = PeriodicUpdateTaskSource(snapshot, interval_seconds=0.01)
        old = datetime.now(UTC) - timedelta(days=3)
        snapshot.add(doc_factory("added_later", timestamp=old, updated=old))

        stream = source.start_streaming()
        task = await asyncio.wait_for(anext(stream), timeout=1)
        await stream.aclose()
        assert task.package == "added_later"


# ---------------------------------------------------------------------------
# ManualTriggerTaskSource
# ---------------------------------------------------------------------------


class TestManualTriggerTaskSource:
    async def test_relays_queue_unchanged(self) -> None:
        queue: asyncio.Queue[Task] = asyncio.Queue()
        first = Task(package="http", version="1.0.0", triggered_at=NOW)
        second = Task(package="http", version="1.0.0", triggered_at=NOW)
        queue.put_nowait(first)
        queue.put_nowait(second)

        stream = ManualTriggerTaskSource(queue_stream(queue)).start_streaming()
        assert await anext(stream) == first
        assert await anext(stream) == second
        await stream.aclose()

    async def test_without_triggers_stream_is_empty(self) -> None:
        tasks = [t async for t in ManualTriggerTaskSource().start_streaming()]
        assert tasks == []


# ---------------------------------------------------------------------------
# DatastoreHeadTaskSource
# ---------------------------------------------------------------------------


def _record(package: str, updated: datetime) -> ChangeRecord:
    return ChangeRecord(package=package, version="2.0.0", updated=updated)


class TestDatastoreHeadTaskSource:
    async def test_emits_task_per_record_and_persists_marker(
        self, feeds: dict[TaskSourceModel, FakeChangeFeed], storage: FakeStorage
    ) -> None:
        feed = feeds[TaskSourceModel.PACKAGE]
        marker = NOW
        feed.batches.append(
            ([_record("a", NOW - timedelta(minutes=5)), _record("b", NOW)], marker)
        )
        source = DatastoreHeadTaskSource(
            feed, TaskSourceModel.PACKAGE, storage, poll_seconds=0.01
        )

        stream = source.start_streaming()
        first = await anext(stream)
        second = await anext(stream)
        assert (first.package, second.package) == ("a", "b")
        assert second.triggered_at == NOW
        assert second.version == "2.0.0"

        # Let the source save the marker and poll again; no further records arrive.
        with pytest.raises(TimeoutError):
            await asyncio.wait_for(anext(stream), timeout=0.05)
        await stream.aclose()
        assert storage.markers["package"] == marker
        assert feed.calls[0] is None
        assert feed.calls[1] == marker

    async def test_resumes_from_stored_marker(
        self, feeds: dict[TaskSourceModel, FakeChangeFeed], storage: FakeStorage
    ) -> None:
        stored = NOW - timedelta(hours=3)
        storage.markers["package"] = stored
        feed = feeds[TaskSourceModel.PACKAGE]
        feed.batches.append(([_record("a", NOW)], NOW))
        source = DatastoreHeadTaskSource(
            feed, TaskSourceModel.PACKAGE, storage, poll_seconds=0.01
        )

        stream = source.start_streaming()
        await anext(stream)
        await stream.aclose()
        assert feed.calls[0] == stored

    async def test_without_resume_replays_from_start(
        self, feeds: dict[TaskSourceModel, FakeChangeFeed], storage: FakeStorage
    ) -> None:
        storage.markers["package"] = NOW - timedelta(minutes=1)
        feed = feeds[TaskSourceModel.PACKAGE]
        feed.batches.append(([_record("a", NOW - timedelta(days=30))], NOW))
        source = DatastoreHeadTaskSource(
            feed, TaskSourceModel.PACKAGE, storage, poll_seconds=0.01, resume=False
        )

        stream = source.start_streaming()
        await anext(stream)
        await stream.aclose()
        assert feed.calls[0] is None

    async def test_skip_history_starts_from_now(
        self, feeds: dict[TaskSourceModel, FakeChangeFeed], storage: FakeStorage
    ) -> None:
        storage.markers["scorecard"] = NOW - timedelta(days=365)
        feed = feeds[TaskSourceModel.SCORECARD]
        feed.batches.append(([_record("a", datetime.now(UTC))], None))
        source = DatastoreHeadTaskSource(
            feed, TaskSourceModel.SCORECARD, storage, poll_seconds=0.01, skip_history=True
        )

        before = datetime.now(UTC)
        stream = source.start_streaming()
        await anext(stream)
        await stream.aclose()
        assert feed.calls[0] is not None
        assert feed.calls[0] >= before

    async def test_feed_errors_do_not_end_stream(
        self, feeds: dict[TaskSourceModel, FakeChangeFeed], storage: FakeStorage
    ) -> None:
        feed = feeds[TaskSourceModel.PACKAGE]
        feed.batches.append(RuntimeError("datastore unavailable"))
        feed.batches.append(RuntimeError("datastore unavailable"))
        feed.batches.append(([_record("after_errors", NOW)], NOW))
        source = DatastoreHeadTaskSource(
            feed, TaskSourceModel.PACKAGE, storage, poll_seconds=0.001
        )

        stream = source.start_streaming()
        task = await asyncio.wait_for(anext(stream), timeout=1)
        await stream.aclose()
        assert task.package == "after_errors"
        assert len(feed.calls) == 3

    def test_name_includes_model(
        self, feeds: dict[TaskSourceModel, FakeChangeFeed], storage: FakeStorage
    ) -> None:
        source = DatastoreHeadTaskSource(
            feeds[TaskSourceModel.SCORECARD], TaskSourceModel.SCORECARD, storage
        )
        assert source.name == "datastore-head:scorecard"
