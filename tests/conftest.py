# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from tasksync.sync.connectivity import ConnectivityMonitor
from tasksync.sync.engine import SyncEngine
from tasksync.sync.in_memory_remote import InMemoryTaskServer
from tasksync.tasks.change_queue import ChangeQueue
from tasksync.tasks.task_store import TaskStore

from .fakes import FakeClock


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="tasksync-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        remote_base_url="",
        remote_timeout_seconds=1.0,
        remote_connect_timeout_seconds=1.0,
        remote_max_retries=0,
        use_in_memory_remote=True,
        sync_interval_seconds=0.01,
        connectivity_probe_interval_seconds=0.01,
        queue_max_attempts=3,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(settings: SimpleNamespace, clock: FakeClock) -> TaskStore:
    return TaskStore(settings.tasks_db_path, clock=clock)


@pytest.fixture()
def queue(settings: SimpleNamespace) -> ChangeQueue:
    return ChangeQueue(settings.tasks_db_path, max_attempts=settings.queue_max_attempts)


@pytest.fixture()
def remote() -> InMemoryTaskServer:
    return InMemoryTaskServer()


@pytest.fixture()
def monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True)


@pytest.fixture()
def engine(
    store: TaskStore,
    remote: InMemoryTaskServer,
    monitor: ConnectivityMonitor,
    queue: ChangeQueue,
) -> SyncEngine:
    """
    Engine wired with real SQLite store/queue and the in-memory remote.

    NOTE: We keep the real stores here because their durability is part of
    what we want to test.
    """
    return SyncEngine(store, remote, monitor, queue)
