"""Structural interfaces between the update engine and its collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable
    from datetime import datetime

    from pubsearch.models import ChangeRecord, PackageDocument, SearchSnapshot, Task


class TaskSource(Protocol):
    """Producer of a live, infinite, non-restartable stream of tasks."""

    name: str

    def start_streaming(self) -> AsyncIterator[Task]: ...


class TaskRunner(Protocol):
    async def run_task(self, task: Task) -> None: ...


class PackageIndex(Protocol):
    """The live, queryable index. Written only by the IndexUpdater."""

    async def add_package(self, doc: PackageDocument) -> None: ...

    async def add_packages(self, docs: Iterable[PackageDocument]) -> None: ...

    async def remove_package(self, package: str) -> None: ...

    async def mark_ready(self) -> None: ...


class DocumentBackend(Protocol):
    async def fetch_document(
        self, package: str, *, require_analysis: bool
    ) -> PackageDocument: ...

    def load_minimal_documents(self) -> AsyncIterator[PackageDocument]: ...

    def list_package_names(self) -> AsyncIterator[str]: ...

    async def fetch_sdk_documents(self) -> list[PackageDocument] | None: ...


class ChangeFeed(Protocol):
    async def records_changed_since(
        self, since: datetime | None
    ) -> tuple[list[ChangeRecord], datetime | None]: ...


class SnapshotStorage(Protocol):
    async def fetch(self) -> SearchSnapshot | None: ...

    async def store(self, snapshot: SearchSnapshot) -> None: ...

    async def was_updated_recently(self) -> bool: ...


class MarkerStorage(Protocol):
    async def get_marker(self, model: str) -> datetime | None: ...

    async def set_marker(self, model: str, marker: datetime) -> None: ...
