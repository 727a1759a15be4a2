"""Service entry point: ``python -m pubsearch.server``.

Wires the components from settings, restores or bootstraps the index, and
runs the update scheduler until SIGINT/SIGTERM. ``--update-all`` performs a
one-off full rebuild instead and exits.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from pathlib import Path

import aiosqlite
import structlog

from pubsearch.backend import HttpChangeFeed, HttpDocumentBackend, build_http_client
from pubsearch.config import Settings
from pubsearch.logging_config import configure_logging
from pubsearch.models import TaskSourceModel
from pubsearch.state import AppState
from pubsearch.storage import SnapshotStore
from pubsearch.tasks import queue_stream
from pubsearch.updater import IndexUpdater

log = structlog.get_logger()


def build_updater(state: AppState) -> IndexUpdater:
    """Create the IndexUpdater from the connections held in ``state``."""
    assert state.http_client is not None
    assert state.storage is not None
    cfg = state.settings.backend
    state.backend = HttpDocumentBackend(
        state.http_client, cfg.base_url, sdk_docs_url=cfg.sdk_docs_url
    )
    feeds = {
        model: HttpChangeFeed(state.http_client, cfg.base_url, model) for model in TaskSourceModel
    }
    state.updater = IndexUpdater(
        state.backend,
        state.package_index,
        state.storage,
        state.storage,
        feeds,
        settings=state.settings,
        sdk_index=state.sdk_index,
    )
    return state.updater


async def _wait_for_shutdown() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support.
            pass
    await stop.wait()


async def run(settings: Settings, *, update_all: bool = False) -> None:
    db_path = Path(settings.storage.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db, build_http_client(settings.backend) as client:
        storage = SnapshotStore(db, recent_hours=settings.storage.snapshot_recent_hours)
        await storage.init_db()
        state = AppState(
            settings=settings,
            db=db,
            http_client=client,
            storage=storage,
            manual_triggers=asyncio.Queue(),
        )
        updater = build_updater(state)

        if update_all:
            log.info("update_all_started")
            await updater.update_all_packages()
            await storage.store(updater.snapshot)
            return

        try:
            await updater.init()
            updater.init_sdk_index()
            assert state.manual_triggers is not None
            updater.run_scheduler(queue_stream(state.manual_triggers))
            log.info("server_ready", documents=len(state.package_index))
            await _wait_for_shutdown()
        finally:
            log.info("server_shutting_down")
            await updater.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="pubsearch", description=__doc__)
    parser.add_argument(
        "--update-all",
        action="store_true",
        help="rebuild every package document, persist the snapshot and exit",
    )
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(settings.logging)
    asyncio.run(run(settings, update_all=args.update_all))


if __name__ == "__main__":
    main()
