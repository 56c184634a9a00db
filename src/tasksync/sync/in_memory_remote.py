# src/tasksync/sync/in_memory_remote.py

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from ..tasks.task_models import Task, TaskStatus, ms_to_iso, now_ms
from .remote import (
    CreateResult,
    RemoteConnectivityError,
    RemoteNotFoundError,
    UpdateResult,
    task_to_payload,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RemoteCall:
    op: str
    server_id: str | None
    task_id: str | None = None


@dataclass(slots=True)
class InMemoryTaskServer:
    """
    In-process remote authority.

    Used when no backend URL is configured (offline demos) and as a realistic
    collaborator in tests:
    - `online=False` behaves like an unreachable network
    - `override_status()` simulates a server-side edit that wins over client pushes
    - `fail_next()` injects a one-shot error into the next call
    """

    online: bool = True
    latency_seconds: float = 0.0

    records: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[RemoteCall] = field(default_factory=list)
    _next_id: int = 1
    _pinned: dict[str, TaskStatus] = field(default_factory=dict)
    _fail_next: Exception | None = None

    def reset(self) -> None:
        """Drop all server data (like a backend wipe)."""
        self.records.clear()
        self.calls.clear()
        self._pinned.clear()
        self._next_id = 1
        self._fail_next = None

    def fail_next(self, exc: Exception) -> None:
        self._fail_next = exc

    def override_status(self, server_id: str, status: TaskStatus) -> None:
        if server_id not in self.records:
            raise KeyError(server_id)
        self._pinned[server_id] = TaskStatus(status)
        self.records[server_id]["status"] = TaskStatus(status).value

    async def _enter(self, op: str, server_id: str | None, task: Task | None = None) -> bool:
        self.calls.append(RemoteCall(op=op, server_id=server_id, task_id=task.id if task else None))
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        if self._fail_next is not None:
            exc, self._fail_next = self._fail_next, None
            raise exc
        return self.online

    def _store(self, server_id: str, task: Task, *, created_at: str | None) -> dict[str, Any]:
        payload = task_to_payload(task)
        stamp = ms_to_iso(now_ms())
        pinned = self._pinned.get(server_id)
        record = {
            **payload,
            "id": server_id,
            "status": pinned.value if pinned else payload["status"],
            "created_at": created_at or stamp,
            "updated_at": stamp,
        }
        self.records[server_id] = record
        return record

    async def create_remote(self, task: Task) -> CreateResult | None:
        if not await self._enter("create", None, task):
            return None
        server_id = f"task_{self._next_id}"
        self._next_id += 1
        record = self._store(server_id, task, created_at=None)
        logger.debug("in-memory create %s -> %s", task.id, server_id)
        return CreateResult(id=server_id, status=TaskStatus(record["status"]))

    async def update_remote(self, server_id: str, task: Task) -> UpdateResult | None:
        if not await self._enter("update", server_id, task):
            return None
        existing = self.records.get(server_id)
        if existing is None:
            raise RemoteNotFoundError(f"update server_id={server_id}: not found", status_code=404)
        record = self._store(server_id, task, created_at=existing["created_at"])
        return UpdateResult(status=TaskStatus(record["status"]))

    async def delete_remote(self, server_id: str) -> None:
        if not await self._enter("delete", server_id):
            raise RemoteConnectivityError(f"delete server_id={server_id}: offline")
        if self.records.pop(server_id, None) is None:
            raise RemoteNotFoundError(f"delete server_id={server_id}: not found", status_code=404)
        self._pinned.pop(server_id, None)

    async def ping(self) -> bool:
        return self.online

    async def aclose(self) -> None:
        return
