# src/tasksync/tasks/task_models.py

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """User-facing workflow status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class SyncStatus(StrEnum):
    """
    Relationship of a local task to the remote authority.

    pending_sync -> syncing -> synced, or back to pending_sync on failure.
    A task stranded in "syncing" (crash mid-sync) is picked up again like pending_sync.
    """

    PENDING_SYNC = "pending_sync"
    SYNCING = "syncing"
    SYNCED = "synced"

    @classmethod
    def from_db(cls, raw: str | None) -> SyncStatus:
        if not raw:
            return cls.PENDING_SYNC
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING_SYNC


SYNC_ELIGIBLE = (SyncStatus.PENDING_SYNC, SyncStatus.SYNCING)


class ConflictResolution(StrEnum):
    CLIENT_WINS = "client_wins"
    SERVER_WINS = "server_wins"
    MANUAL = "manual"


class QueueAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class QueueItemState(StrEnum):
    PENDING = "pending"
    DEAD = "dead"  # exceeded max attempts, skipped by drain


def now_ms() -> int:
    """Current wall clock as epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_iso(ms: int | None) -> str | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def iso_to_ms(raw: str | None) -> int | None:
    if not raw:
        return None
    s = raw.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def new_task_id() -> str:
    return f"task_{uuid.uuid4().hex}"


@dataclass(frozen=True, slots=True)
class Location:
    lat: float
    lng: float
    address: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "address": self.address}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Location:
        try:
            lat = float(raw["lat"])
            lng = float(raw["lng"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"location needs numeric lat/lng: {raw!r}") from e
        return cls(lat=lat, lng=lng, address=str(raw.get("address") or ""))


@dataclass(slots=True)
class Task:
    id: str
    title: str
    status: TaskStatus
    sync_status: SyncStatus
    created_at: int
    updated_at: int

    description: str | None = None
    price: float | None = None
    location: Location | None = None
    image_refs: list[str] = field(default_factory=list)
    expires_at: int | None = None

    server_id: str | None = None
    server_status: TaskStatus | None = None
    conflict_resolution: ConflictResolution | None = None
    synced_at: int | None = None


@dataclass(frozen=True, slots=True)
class QueueItem:
    """
    A pending remote operation.

    task_id is the server-side id: the local record may already be gone.
    """

    seq: int
    task_id: str
    action: QueueAction
    timestamp: int
    data: dict[str, Any] | None = None
    attempts: int = 0
    last_error: str | None = None
    state: QueueItemState = QueueItemState.PENDING
