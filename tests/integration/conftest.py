"""Integration test fixtures.

Provides a file-backed SQLite snapshot store so that separate updater
instances can share persisted state the way two processes would.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from pubsearch.storage import SnapshotStore

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "index.db"


@pytest.fixture()
async def file_store(db_path: Path):
    """Snapshot store on a real database file."""
    async with aiosqlite.connect(db_path) as db:
        store = SnapshotStore(db)
        await store.init_db()
        yield store


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Environment for server subprocesses, isolated from the user's data dir."""
    env = os.environ.copy()
    env["PUBSEARCH__STORAGE__DB_PATH"] = str(tmp_path / "server" / "index.db")
    env["PUBSEARCH__LOGGING__LEVEL"] = "WARNING"
    return env
