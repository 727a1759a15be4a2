"""Application state shared by the service's components.

Constructed once at startup and passed explicitly to every consumer. There is
no module-level registry of updaters or indexes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pubsearch.index import InMemoryPackageIndex

if TYPE_CHECKING:
    import asyncio

    import aiosqlite
    import httpx

    from pubsearch.backend import HttpDocumentBackend
    from pubsearch.config import Settings
    from pubsearch.models import Task
    from pubsearch.storage import SnapshotStore
    from pubsearch.updater import IndexUpdater


@dataclass
class AppState:
    settings: Settings
    package_index: InMemoryPackageIndex = field(default_factory=InMemoryPackageIndex)
    sdk_index: InMemoryPackageIndex = field(default_factory=InMemoryPackageIndex)
    db: aiosqlite.Connection | None = None
    http_client: httpx.AsyncClient | None = None
    storage: SnapshotStore | None = None
    backend: HttpDocumentBackend | None = None
    updater: IndexUpdater | None = None
    # Operator- or API-initiated reindex requests.
    manual_triggers: asyncio.Queue[Task] | None = None
