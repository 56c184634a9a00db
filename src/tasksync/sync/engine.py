# src/tasksync/sync/engine.py

"""
Sync engine.

Reconciles local tasks with the remote authority:
- pushes every dirty task (pending_sync, or syncing left over from a crash), one at a time,
- detects three-way status divergence and applies the conflict policy,
- drains the change queue (remote deletes of tasks already gone locally),
- publishes the online/syncing flags to listeners.

The engine never raises for network trouble: a task that could not be pushed is left
pending_sync for the next trigger (reconnect, periodic loop, or an explicit request).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.listeners import ListenerSet, Unsubscribe
from ..core.ports import ConnectivitySource, QueueRepo, RemoteTaskClient, TaskRepo
from ..tasks.change_queue import DrainReport
from ..tasks.task_models import (
    SYNC_ELIGIBLE,
    ConflictResolution,
    QueueAction,
    QueueItem,
    SyncStatus,
    Task,
    TaskStatus,
)
from ..tasks.task_store import TaskNotFoundError
from .conflicts import is_conflict, resolve_conflict
from .remote import RemoteConnectivityError, RemoteNotFoundError, task_from_payload

logger = logging.getLogger(__name__)

SyncListener = Callable[[], None]


class TaskOutcome(StrEnum):
    CREATED = "created"
    SYNCED = "synced"
    CONFLICT = "conflict"
    RETRY = "retry"
    FAILED = "failed"
    GONE = "gone"


@dataclass(slots=True)
class SyncReport:
    created: int = 0
    synced: int = 0
    conflicts: int = 0
    retryable: int = 0
    failed: int = 0
    gone: int = 0
    queue: DrainReport | None = None

    def add(self, outcome: TaskOutcome) -> None:
        if outcome == TaskOutcome.CREATED:
            self.created += 1
        elif outcome == TaskOutcome.SYNCED:
            self.synced += 1
        elif outcome == TaskOutcome.CONFLICT:
            self.conflicts += 1
        elif outcome == TaskOutcome.RETRY:
            self.retryable += 1
        elif outcome == TaskOutcome.FAILED:
            self.failed += 1
        else:
            self.gone += 1


@dataclass(frozen=True, slots=True)
class SyncState:
    online: bool
    syncing: bool


class SyncEngine:
    def __init__(
        self,
        store: TaskRepo,
        remote: RemoteTaskClient,
        connectivity: ConnectivitySource,
        queue: QueueRepo,
    ) -> None:
        self._store = store
        self._remote = remote
        self._connectivity = connectivity
        self._queue = queue

        self._syncing = False
        self._listeners: ListenerSet[[]] = ListenerSet("SyncEngine")
        self._background: set[asyncio.Task[Any]] = set()
        self._unsubscribe_connectivity: Unsubscribe | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Follow connectivity: every offline -> online edge schedules one sync."""
        if self._unsubscribe_connectivity is None:
            self._unsubscribe_connectivity = self._connectivity.subscribe(self._on_connectivity_change)

    async def stop(self) -> None:
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None
        await self.wait_idle()

    def _on_connectivity_change(self, online: bool) -> None:
        self._notify()
        if online:
            logger.info("Network came online, triggering sync")
            self.request_sync()

    # ---- status API ----

    def is_online(self) -> bool:
        return self._connectivity.is_online()

    def is_syncing(self) -> bool:
        return self._syncing

    def state(self) -> SyncState:
        return SyncState(online=self.is_online(), syncing=self._syncing)

    def add_listener(self, listener: SyncListener) -> Unsubscribe:
        return self._listeners.add(listener)

    def remove_listener(self, listener: SyncListener) -> None:
        self._listeners.discard(listener)

    def _notify(self) -> None:
        self._listeners.notify()

    # ---- triggers ----

    def request_sync(self) -> asyncio.Task[Any] | None:
        """
        Schedule sync_all() in the background if online.

        Returns the scheduled task, or None when offline or outside an event loop.
        """
        if not self.is_online():
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("request_sync: no running event loop; skipped")
            return None

        task = loop.create_task(self.sync_all(), name="tasksync.sync_all")
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background sync failed", exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for every background sync scheduled by this engine."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ---- shell operations ----

    def delete_task(self, task_id: str) -> Task:
        """Delete locally; a task the server knows about gets one queued remote delete."""
        task = self._store.delete(task_id)
        if task.server_id:
            self._queue.enqueue(task.server_id, QueueAction.DELETE)
        return task

    # ---- sync ----

    async def sync_all(self) -> SyncReport | None:
        """
        One sync cycle. Returns None when skipped (already running, or offline).

        Individual task failures never abort the batch.
        """
        if self._syncing:
            logger.debug("sync_all: already running; call coalesced")
            return None
        if not self.is_online():
            logger.debug("sync_all: offline; skipped")
            return None

        self._syncing = True
        self._notify()
        report = SyncReport()
        try:
            dirty = self._store.list(sync_statuses=SYNC_ELIGIBLE)
            if dirty:
                logger.info("Syncing %d task(s)", len(dirty))
            for task in dirty:
                report.add(await self._sync_task(task))

            report.queue = await self._queue.drain(self.is_online, self._process_queue_item)
        finally:
            self._syncing = False
            self._notify()

        logger.info(
            "Sync finished created=%d synced=%d conflicts=%d retry=%d failed=%d",
            report.created,
            report.synced,
            report.conflicts,
            report.retryable,
            report.failed,
        )
        return report

    async def _sync_task(self, task: Task) -> TaskOutcome:
        try:
            task = self._store.mark_as_syncing(task.id)
        except TaskNotFoundError:
            return TaskOutcome.GONE

        try:
            if not task.server_id:
                return await self._create(task)
            return await self._update(task)
        except TaskNotFoundError:
            logger.info("Task %s was deleted locally during sync", task.id)
            return TaskOutcome.GONE
        except Exception:
            logger.exception("Error syncing task %s", task.id)
            with contextlib.suppress(TaskNotFoundError):
                self._store.mark_pending(task.id)
            return TaskOutcome.FAILED

    async def _create(self, task: Task) -> TaskOutcome:
        result = await self._remote.create_remote(task)
        if result is None:
            self._store.mark_pending(task.id)
            return TaskOutcome.RETRY

        try:
            self._store.mark_as_synced(task.id, result.id, result.status, pushed_updated_at=task.updated_at)
        except TaskNotFoundError:
            # Deleted while the create was in flight: remove the orphan on the server too.
            self._queue.enqueue(result.id, QueueAction.DELETE)
            logger.info("Task %s deleted during create; queued delete of %s", task.id, result.id)
            return TaskOutcome.GONE

        logger.info("Task %s created remotely as %s", task.id, result.id)
        return TaskOutcome.CREATED

    async def _update(self, task: Task) -> TaskOutcome:
        server_id = task.server_id
        assert server_id is not None

        try:
            result = await self._remote.update_remote(server_id, task)
        except RemoteNotFoundError:
            logger.info("Task %s missing on server (server_id=%s); re-creating", task.id, server_id)
            return await self._create(task)

        if result is None:
            self._store.mark_pending(task.id)
            return TaskOutcome.RETRY

        if is_conflict(task.status, result.status, task.server_status):
            await self._handle_conflict(task, result.status)
            return TaskOutcome.CONFLICT

        self._store.mark_as_synced(task.id, server_id, result.status, pushed_updated_at=task.updated_at)
        return TaskOutcome.SYNCED

    async def _handle_conflict(self, task: Task, server_status: TaskStatus) -> None:
        server_id = task.server_id
        assert server_id is not None

        current = self._store.find(task.id)
        if current.sync_status != SyncStatus.SYNCING or current.updated_at != task.updated_at:
            # A newer local edit supersedes what we compared; push it on the next cycle.
            self._store.mark_pending(task.id)
            return

        outcome = resolve_conflict(task.status, server_status)
        logger.warning(
            "Conflict on task %s: local=%s server=%s previous_server=%s -> %s",
            task.id,
            task.status.value,
            server_status.value,
            task.server_status.value if task.server_status else None,
            outcome.resolution.value,
        )
        resolved = self._store.record_conflict(task.id, outcome.resolution, outcome.final_status)

        if outcome.resolution == ConflictResolution.CLIENT_WINS:
            pushed = await self._remote.update_remote(server_id, resolved)
            if pushed is None:
                logger.info("Task %s: client-wins push deferred (offline)", task.id)
                self._store.mark_pending(task.id)
                return
            self._store.mark_as_synced(
                task.id, server_id, outcome.final_status, pushed_updated_at=resolved.updated_at
            )
        elif outcome.resolution == ConflictResolution.SERVER_WINS:
            self._store.mark_as_synced(
                task.id, server_id, server_status, pushed_updated_at=resolved.updated_at
            )
        else:
            # Manual: keep the local status, tagged for a human; not retried automatically.
            self._store.mark_as_synced(
                task.id, server_id, outcome.final_status, pushed_updated_at=resolved.updated_at
            )

    async def _process_queue_item(self, item: QueueItem) -> None:
        if item.action == QueueAction.DELETE:
            try:
                await self._remote.delete_remote(item.task_id)
            except RemoteNotFoundError:
                logger.info("Remote task %s already gone; dropping queued delete", item.task_id)
            return

        if not item.data:
            raise ValueError(f"queued {item.action.value} for {item.task_id} has no data")

        task = task_from_payload(item.data)
        if item.action == QueueAction.CREATE:
            result = await self._remote.create_remote(task)
        else:
            result = await self._remote.update_remote(item.task_id, task)
        if result is None:
            raise RemoteConnectivityError(f"queued {item.action.value} for {item.task_id}: offline")
