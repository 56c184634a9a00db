# src/tasksync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the sync engine.

The engine depends on Protocols instead of concrete implementations.
This keeps the backend/storage/network source swappable and makes testing easier.
"""

from typing import Any, Awaitable, Callable, Iterable, Protocol

from ..tasks.task_models import ConflictResolution, QueueAction, QueueItem, SyncStatus, Task, TaskStatus

Unsubscribe = Callable[[], None]


class RemoteTaskClient(Protocol):
    """
    Authoritative backend.

    create/update return None when the network is unreachable; update raises
    RemoteNotFoundError for a vanished record; delete raises on every failure.
    """

    def create_remote(self, task: Task) -> Awaitable[Any]: ...
    def update_remote(self, server_id: str, task: Task) -> Awaitable[Any]: ...
    def delete_remote(self, server_id: str) -> Awaitable[None]: ...
    def ping(self) -> Awaitable[bool]: ...
    def aclose(self) -> Awaitable[None]: ...


class ConnectivitySource(Protocol):
    def is_online(self) -> bool: ...
    def subscribe(self, listener: Callable[[bool], None]) -> Unsubscribe: ...


class TaskRepo(Protocol):
    # Shell-facing API
    def create(self, title: str, **fields: Any) -> Task: ...
    def find(self, task_id: str) -> Task: ...
    def list(self, *, sync_statuses: Iterable[SyncStatus] | None = None) -> list[Task]: ...
    def update(self, task_id: str, **fields: Any) -> Task: ...
    def delete(self, task_id: str) -> Task: ...
    def subscribe(self, listener: Callable[[list[Task]], None]) -> Unsubscribe: ...

    # Engine API
    def mark_as_syncing(self, task_id: str) -> Task: ...
    def mark_pending(self, task_id: str) -> Task: ...
    def mark_as_synced(
            self,
            task_id: str,
            server_id: str,
            server_status: TaskStatus,
            *,
            pushed_updated_at: int | None = None,
    ) -> Task: ...
    def record_conflict(
            self,
            task_id: str,
            resolution: ConflictResolution,
            final_status: TaskStatus,
    ) -> Task: ...


class QueueRepo(Protocol):
    def enqueue(
            self,
            task_id: str,
            action: QueueAction,
            *,
            data: dict[str, Any] | None = None,
            timestamp: int | None = None,
    ) -> QueueItem: ...

    def drain(
            self,
            is_online: Callable[[], bool],
            processor: Callable[[QueueItem], Awaitable[None]],
    ) -> Awaitable[Any]: ...
