# src/tasksync/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..sync.connectivity import ConnectivityMonitor
from ..sync.engine import SyncEngine
from ..tasks.change_queue import ChangeQueue
from ..tasks.task_store import TaskStore
from .ports import RemoteTaskClient


@dataclass
class AppState:
    """The composed service graph, owned by the application's composition root."""

    # Store Settings on the state for easy access in other modules later.
    settings: object

    store: TaskStore
    queue: ChangeQueue
    remote: RemoteTaskClient
    connectivity: ConnectivityMonitor
    engine: SyncEngine
