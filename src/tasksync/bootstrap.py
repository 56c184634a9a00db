# src/tasksync/bootstrap.py

"""
Composition root.

- loads settings once (or takes injected settings),
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store/queue/remote/connectivity/engine),
- starts and stops the background loops (connectivity probe, periodic sync).
"""

from __future__ import annotations

import asyncio
import logging

from .config import get_settings
from .core.ports import RemoteTaskClient
from .core.state import AppState
from .sync.background import run_periodic_sync
from .sync.connectivity import ConnectivityMonitor, run_connectivity_probe
from .sync.engine import SyncEngine
from .sync.in_memory_remote import InMemoryTaskServer
from .sync.remote import HttpTaskClient
from .tasks.change_queue import ChangeQueue
from .tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_remote(settings) -> RemoteTaskClient:
    if settings.use_in_memory_remote or not settings.remote_base_url:
        logger.info("Remote: in-memory server (no backend configured)")
        return InMemoryTaskServer()

    logger.info("Remote: %s", settings.remote_base_url)
    return HttpTaskClient(
        settings.remote_base_url,
        timeout_seconds=settings.remote_timeout_seconds,
        connect_timeout_seconds=settings.remote_connect_timeout_seconds,
        max_retries=settings.remote_max_retries,
    )


def create_initial_state(*, settings=None, remote: RemoteTaskClient | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings and the remote injectable makes the library easy to test and avoids
    hidden global config reads. If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_db_path)
    queue = ChangeQueue(settings.tasks_db_path, max_attempts=settings.queue_max_attempts)
    if remote is None:
        remote = build_remote(settings)
    connectivity = ConnectivityMonitor(online=False)
    engine = SyncEngine(store, remote, connectivity, queue)

    return AppState(
        settings=settings,
        store=store,
        queue=queue,
        remote=remote,
        connectivity=connectivity,
        engine=engine,
    )


async def start_background_services(state: AppState) -> list[asyncio.Task[None]]:
    """
    Start following connectivity and launch the background loops.

    The first probe flips the monitor online (if reachable), which triggers the
    initial sync through the engine's edge trigger.
    """
    settings = state.settings
    state.engine.start()

    probe = asyncio.create_task(
        run_connectivity_probe(
            state.connectivity,
            state.remote.ping,
            interval_seconds=getattr(settings, "connectivity_probe_interval_seconds", 30.0),
        ),
        name="tasksync.connectivity_probe",
    )
    periodic = asyncio.create_task(
        run_periodic_sync(
            state.engine,
            interval_seconds=getattr(settings, "sync_interval_seconds", 15 * 60.0),
            run_immediately=False,
        ),
        name="tasksync.periodic_sync",
    )
    logger.info("Background sync services started")
    return [probe, periodic]


async def shutdown(state: AppState, tasks: list[asyncio.Task[None]] | None = None) -> None:
    """Cancel background loops, let any in-flight sync finish, close the remote client."""
    for t in tasks or []:
        t.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)

    await state.engine.stop()

    try:
        await state.remote.aclose()
    except Exception:
        logger.exception("Remote client close failed.")

    state.store.close()
    logger.info("Sync services stopped")
