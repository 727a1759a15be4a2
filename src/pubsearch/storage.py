"""SQLite persistence for the search snapshot and change-feed markers.

The snapshot is a single JSON blob replaced as a whole on every write
(``INSERT OR REPLACE`` on a one-row table), so readers see either the old or
the new snapshot, never a mix. Snapshot reads and writes raise on failure and
the ``IndexUpdater`` decides how to degrade.

Marker operations follow the opposite rule: ``aiosqlite.Error`` is caught,
logged with ``exc_info=True`` and treated as a missing marker (read) or a
no-op (write). A lost marker only means a task source replays some history,
which the updater's timestamp check turns into no-ops.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog

from pubsearch.models import SearchSnapshot

log = structlog.get_logger()

_CREATE_SNAPSHOT_TABLE = """
CREATE TABLE IF NOT EXISTS search_snapshot (
    id        INTEGER PRIMARY KEY CHECK (id = 1),
    payload   TEXT NOT NULL,
    saved_at  TEXT NOT NULL
)
"""

_CREATE_MARKER_TABLE = """
CREATE TABLE IF NOT EXISTS task_source_markers (
    model       TEXT PRIMARY KEY,
    marker      TEXT NOT NULL,
    updated_at  TEXT NOT NULL
)
"""


class SnapshotStore:
    """SQLite-backed snapshot storage implementing SnapshotStorage and MarkerStorage."""

    def __init__(self, db: aiosqlite.Connection, *, recent_hours: float = 6) -> None:
        self._db = db
        self._recent = timedelta(hours=recent_hours)

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_SNAPSHOT_TABLE)
        await self._db.execute(_CREATE_MARKER_TABLE)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def fetch(self) -> SearchSnapshot | None:
        """Return the last persisted snapshot, or ``None`` if none was stored."""
        cursor = await self._db.execute("SELECT payload FROM search_snapshot WHERE id = 1")
        row = await cursor.fetchone()
        if row is None:
            return None
        return SearchSnapshot.model_validate_json(row[0])

    async def store(self, snapshot: SearchSnapshot) -> None:
        """Replace the persisted snapshot with ``snapshot``."""
        now = datetime.now(UTC)
        payload = snapshot.model_copy(update={"saved_at": now}).model_dump_json()
        await self._db.execute(
            "INSERT OR REPLACE INTO search_snapshot (id, payload, saved_at) VALUES (1, ?, ?)",
            (payload, now.isoformat()),
        )
        await self._db.commit()
        log.info("snapshot_stored", documents=len(snapshot), saved_at=now.isoformat())

    async def saved_at(self) -> datetime | None:
        cursor = await self._db.execute("SELECT saved_at FROM search_snapshot WHERE id = 1")
        row = await cursor.fetchone()
        if row is None:
            return None
        return datetime.fromisoformat(row[0])

    async def was_updated_recently(self) -> bool:
        """Whether any process persisted a snapshot within the recent window.

        Advisory only: two writers may both pass this check and both write.
        """
        saved_at = await self.saved_at()
        if saved_at is None:
            return False
        return datetime.now(UTC) - saved_at < self._recent

    # ------------------------------------------------------------------
    # Change-feed markers
    # ------------------------------------------------------------------

    async def get_marker(self, model: str) -> datetime | None:
        """Read a high-water mark. Returns ``None`` when missing or on read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT marker FROM task_source_markers WHERE model = ?", (model,)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return datetime.fromisoformat(row[0])
        except aiosqlite.Error:
            log.warning("marker_read_error", model=model, exc_info=True)
            return None

    async def set_marker(self, model: str, marker: datetime) -> None:
        """Write a high-water mark. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO task_source_markers (model, marker, updated_at) "
                "VALUES (?, ?, ?)",
                (model, marker.isoformat(), datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("marker_write_error", model=model, exc_info=True)
