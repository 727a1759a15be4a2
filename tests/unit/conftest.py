"""Unit-specific fixtures (no I/O beyond in-memory SQLite)."""

from __future__ import annotations

import aiosqlite
import pytest

from pubsearch.storage import SnapshotStore


@pytest.fixture()
async def store():
    """In-memory SQLite snapshot store for unit tests."""
    async with aiosqlite.connect(":memory:") as db:
        s = SnapshotStore(db)
        await s.init_db()
        yield s
