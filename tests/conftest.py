"""Shared fixtures: in-process fakes for the updater's collaborators."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from pubsearch.config import Settings
from pubsearch.errors import AnalysisMissingError, PackageRemovedError
from pubsearch.index import InMemoryPackageIndex
from pubsearch.models import PackageDocument, SearchSnapshot, TaskSourceModel

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from pubsearch.models import ChangeRecord


def make_doc(
    package: str,
    *,
    version: str = "1.0.0",
    timestamp: datetime | None = None,
    updated: datetime | None = None,
    **extra: object,
) -> PackageDocument:
    now = datetime.now(UTC)
    return PackageDocument(
        package=package,
        version=version,
        timestamp=timestamp or now,
        updated=updated if updated is not None else now,
        **extra,
    )


class RecordingIndex(InMemoryPackageIndex):
    """InMemoryPackageIndex that counts readiness transitions."""

    def __init__(self) -> None:
        super().__init__()
        self.mark_ready_calls = 0
        self.removed: list[str] = []

    async def remove_package(self, package: str) -> None:
        self.removed.append(package)
        await super().remove_package(package)

    async def mark_ready(self) -> None:
        self.mark_ready_calls += 1
        await super().mark_ready()


class FakeBackend:
    """DocumentBackend with scripted responses per package."""

    def __init__(self) -> None:
        # package → document to return, or exception instance to raise
        self.responses: dict[str, PackageDocument | Exception] = {}
        self.minimal: list[PackageDocument] = []
        self.sdk_responses: list[list[PackageDocument] | Exception | None] = []
        self.calls: list[tuple[str, bool]] = []
        self.sdk_calls = 0

    def set_document(self, doc: PackageDocument) -> None:
        self.responses[doc.package] = doc

    def set_removed(self, package: str) -> None:
        self.responses[package] = PackageRemovedError(package)

    def set_analysis_missing(self, package: str) -> None:
        self.responses[package] = AnalysisMissingError(package)

    async def fetch_document(self, package: str, *, require_analysis: bool) -> PackageDocument:
        self.calls.append((package, require_analysis))
        response = self.responses.get(package)
        if response is None:
            raise PackageRemovedError(package)
        if isinstance(response, Exception):
            raise response
        return response

    async def load_minimal_documents(self) -> AsyncIterator[PackageDocument]:
        for doc in self.minimal:
            yield doc

    async def list_package_names(self) -> AsyncIterator[str]:
        for name in self.responses:
            yield name

    async def fetch_sdk_documents(self) -> list[PackageDocument] | None:
        self.sdk_calls += 1
        if not self.sdk_responses:
            return None
        response = self.sdk_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeChangeFeed:
    """ChangeFeed returning queued batches, then empty polls."""

    def __init__(self) -> None:
        self.batches: list[tuple[list[ChangeRecord], datetime | None] | Exception] = []
        self.calls: list[datetime | None] = []

    async def records_changed_since(
        self, since: datetime | None
    ) -> tuple[list[ChangeRecord], datetime | None]:
        self.calls.append(since)
        if not self.batches:
            return [], since
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch


class FakeStorage:
    """In-memory SnapshotStorage and MarkerStorage."""

    def __init__(self, snapshot: SearchSnapshot | None = None) -> None:
        self.snapshot = snapshot
        self.recent = False
        self.fetch_error: Exception | None = None
        self.store_error: Exception | None = None
        self.stored: list[SearchSnapshot] = []
        self.markers: dict[str, datetime] = {}

    async def fetch(self) -> SearchSnapshot | None:
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.snapshot

    async def store(self, snapshot: SearchSnapshot) -> None:
        if self.store_error is not None:
            raise self.store_error
        self.stored.append(snapshot.model_copy(deep=True))

    async def was_updated_recently(self) -> bool:
        return self.recent

    async def get_marker(self, model: str) -> datetime | None:
        return self.markers.get(model)

    async def set_marker(self, model: str, marker: datetime) -> None:
        self.markers[model] = marker


@pytest.fixture()
def doc_factory() -> Callable[..., PackageDocument]:
    return make_doc


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def index() -> RecordingIndex:
    return RecordingIndex()


@pytest.fixture()
def feeds() -> dict[TaskSourceModel, FakeChangeFeed]:
    return {model: FakeChangeFeed() for model in TaskSourceModel}


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        scheduler={
            "change_feed_poll_minutes": 0.001,
            "sweep_interval_hours": 1,
            "stats_interval_minutes": 60,
        },
        updater={"sdk_retry_seconds": 0.01},
    )


@pytest.fixture()
def days_ago() -> Callable[[float], datetime]:
    def _days_ago(days: float) -> datetime:
        return datetime.now(UTC) - timedelta(days=days)

    return _days_ago


@pytest.fixture()
def sdk_index() -> RecordingIndex:
    return RecordingIndex()


@pytest.fixture()
def index_factory() -> Callable[[], RecordingIndex]:
    return RecordingIndex
