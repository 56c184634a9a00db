# src/tasksync/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from ..core.listeners import ListenerSet, Unsubscribe
from .task_models import (
    ConflictResolution,
    Location,
    SyncStatus,
    Task,
    TaskStatus,
    new_task_id,
    now_ms,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()

TasksListener = Callable[[list[Task]], None]


class TaskNotFoundError(LookupError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


def _clean_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValueError("title is required")
    return title.strip()


def _clean_status(status: Any) -> TaskStatus:
    try:
        return TaskStatus(status)
    except ValueError as e:
        raise ValueError(f"unknown status: {status!r}") from e


def _clean_location(location: Any) -> Location | None:
    if location is None or isinstance(location, Location):
        return location
    if isinstance(location, dict):
        return Location.from_dict(location)
    raise ValueError(f"location must be a Location or a dict: {location!r}")


def _clean_image_refs(refs: Iterable[str] | None) -> list[str]:
    if refs is None:
        return []
    if isinstance(refs, str):
        raise ValueError("image_refs must be a sequence of strings, not a string")
    out: list[str] = []
    for ref in refs:
        if not isinstance(ref, str) or not ref.strip():
            raise ValueError(f"invalid image ref: {ref!r}")
        out.append(ref)
    return out


def _clean_price(price: Any) -> float | None:
    if price is None:
        return None
    try:
        return float(price)
    except (TypeError, ValueError) as e:
        raise ValueError(f"price must be a number: {price!r}") from e


def _clean_expires_at(expires_at: Any) -> int | None:
    if expires_at is None:
        return None
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        raise ValueError(f"expires_at must be epoch milliseconds: {expires_at!r}")
    return int(expires_at)


def _parse_legacy_images(raw: str | None) -> list[str]:
    """Old installs kept images in one text column: a JSON array or a bare string."""
    if not raw:
        return []
    try:
        val = json.loads(raw)
    except ValueError:
        return [raw]
    if isinstance(val, list):
        return [str(v) for v in val if v]
    if isinstance(val, str) and val:
        return [val]
    return [raw]


class TaskStore:
    """
    SQLite task store.

    The schema is additive-only:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed
    - backfill the task_images relation from the legacy image_url column once

    Durability:
    - each method opens its own SQLite connection and commits before returning
    - subscribers are notified after the commit with the full task list
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._listeners: ListenerSet[[list[Task]]] = ListenerSet("TaskStore")
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    sync_status TEXT NOT NULL DEFAULT 'pending_sync',
                    server_id TEXT,
                    server_status TEXT,
                    conflict_resolution TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    synced_at INTEGER
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                cols.add(name)
                logger.info("TaskStore migration: added column %s", name)

            add_col("description", "TEXT")
            add_col("status", "TEXT NOT NULL DEFAULT 'pending'")
            add_col("sync_status", "TEXT NOT NULL DEFAULT 'pending_sync'")
            add_col("server_id", "TEXT")
            add_col("server_status", "TEXT")
            add_col("conflict_resolution", "TEXT")
            add_col("synced_at", "INTEGER")
            add_col("price", "REAL")
            add_col("location_lat", "REAL")
            add_col("location_lng", "REAL")
            add_col("location_address", "TEXT")
            add_col("expires_at", "INTEGER")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_images (
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    ref TEXT NOT NULL,
                    PRIMARY KEY (task_id, position)
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_sync_status ON tasks(sync_status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_updated_at ON tasks(updated_at)")

            if "image_url" in cols:
                self._backfill_legacy_images(cur)

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _backfill_legacy_images(cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            SELECT id, image_url
            FROM tasks
            WHERE image_url IS NOT NULL AND image_url != ''
              AND NOT EXISTS (SELECT 1 FROM task_images WHERE task_images.task_id = tasks.id)
            """
        )
        rows = cur.fetchall()
        for row in rows:
            refs = _parse_legacy_images(row["image_url"])
            cur.executemany(
                "INSERT INTO task_images(task_id, position, ref) VALUES (?, ?, ?)",
                [(row["id"], pos, ref) for pos, ref in enumerate(refs)],
            )
        if rows:
            logger.info("TaskStore migration: backfilled images for %d legacy tasks", len(rows))

    @staticmethod
    def _write_images(conn: sqlite3.Connection, task_id: str, refs: list[str]) -> None:
        conn.execute("DELETE FROM task_images WHERE task_id = ?", (task_id,))
        conn.executemany(
            "INSERT INTO task_images(task_id, position, ref) VALUES (?, ?, ?)",
            [(task_id, pos, ref) for pos, ref in enumerate(refs)],
        )

    @staticmethod
    def _load_images(conn: sqlite3.Connection, task_ids: list[str]) -> dict[str, list[str]]:
        if not task_ids:
            return {}
        out: dict[str, list[str]] = {tid: [] for tid in task_ids}
        placeholders = ",".join("?" for _ in task_ids)
        rows = conn.execute(
            f"""
            SELECT task_id, ref
            FROM task_images
            WHERE task_id IN ({placeholders})
            ORDER BY task_id, position ASC
            """,
            task_ids,
        ).fetchall()
        for row in rows:
            out[row["task_id"]].append(row["ref"])
        return out

    @staticmethod
    def _row_to_task(row: sqlite3.Row, image_refs: list[str]) -> Task:
        location = None
        if row["location_lat"] is not None and row["location_lng"] is not None:
            location = Location(
                lat=float(row["location_lat"]),
                lng=float(row["location_lng"]),
                address=str(row["location_address"] or ""),
            )
        server_status = row["server_status"]
        resolution = row["conflict_resolution"]
        return Task(
            id=str(row["id"]),
            title=str(row["title"]),
            status=TaskStatus.from_db(row["status"]),
            sync_status=SyncStatus.from_db(row["sync_status"]),
            created_at=int(row["created_at"] or 0),
            updated_at=int(row["updated_at"] or 0),
            description=row["description"],
            price=float(row["price"]) if row["price"] is not None else None,
            location=location,
            image_refs=image_refs,
            expires_at=int(row["expires_at"]) if row["expires_at"] is not None else None,
            server_id=row["server_id"],
            server_status=TaskStatus.from_db(server_status) if server_status else None,
            conflict_resolution=ConflictResolution(resolution) if resolution else None,
            synced_at=int(row["synced_at"]) if row["synced_at"] is not None else None,
        )

    def _fetch(self, conn: sqlite3.Connection, task_id: str) -> Task:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            raise TaskNotFoundError(task_id)
        images = self._load_images(conn, [task_id])
        return self._row_to_task(row, images[task_id])

    def _next_updated_at(self, current: Task) -> int:
        # Strictly after the previous version, even if the wall clock stalls or steps back.
        return max(int(self._clock()), current.updated_at + 1, current.created_at)

    def _update_columns(self, task_id: str, columns: dict[str, Any]) -> Task:
        assignments = ", ".join(f"{name} = ?" for name in columns)
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?",
                (*columns.values(), task_id),
            )
            if cur.rowcount != 1:
                raise TaskNotFoundError(task_id)
            conn.commit()
            task = self._fetch(conn, task_id)
        finally:
            conn.close()
        self._notify()
        return task

    def _notify(self) -> None:
        if not len(self._listeners):
            return
        self._listeners.notify(self.list())

    # ---- subscriptions ----

    def subscribe(self, listener: TasksListener) -> Unsubscribe:
        """
        Register a listener that receives the full task list after every committed mutation.

        Returns the unsubscribe handle.
        """
        return self._listeners.add(listener)

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def create(
        self,
        title: str,
        *,
        description: str | None = None,
        status: TaskStatus | str = TaskStatus.PENDING,
        price: float | None = None,
        location: Location | dict[str, Any] | None = None,
        image_refs: Iterable[str] | None = None,
        expires_at: int | None = None,
    ) -> Task:
        clean_title = _clean_title(title)
        clean_status = _clean_status(status)
        clean_location = _clean_location(location)
        refs = _clean_image_refs(image_refs)
        clean_price = _clean_price(price)
        clean_expires = _clean_expires_at(expires_at)

        task_id = new_task_id()
        now = int(self._clock())

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, title, description, status, sync_status,
                    created_at, updated_at,
                    price, location_lat, location_lng, location_address, expires_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    clean_title,
                    description,
                    clean_status.value,
                    SyncStatus.PENDING_SYNC.value,
                    now,
                    now,
                    clean_price,
                    clean_location.lat if clean_location else None,
                    clean_location.lng if clean_location else None,
                    clean_location.address if clean_location else None,
                    clean_expires,
                ),
            )
            self._write_images(conn, task_id, refs)
            conn.commit()
            task = self._fetch(conn, task_id)
        finally:
            conn.close()

        logger.debug("Task created id=%s status=%s images=%d", task_id, clean_status.value, len(refs))
        self._notify()
        return task

    def find(self, task_id: str) -> Task:
        conn = self._get_conn()
        try:
            return self._fetch(conn, task_id)
        finally:
            conn.close()

    def list(self, *, sync_statuses: Iterable[SyncStatus] | None = None) -> list[Task]:
        """
        All tasks, most recently updated first.

        sync_statuses narrows the result (the engine uses it to find dirty tasks).
        """
        where = ""
        params: list[Any] = []
        if sync_statuses is not None:
            wanted = [SyncStatus(s).value for s in sync_statuses]
            if not wanted:
                return []
            where = f"WHERE sync_status IN ({','.join('?' for _ in wanted)})"
            params.extend(wanted)

        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM tasks {where} ORDER BY updated_at DESC, created_at DESC",
                params,
            ).fetchall()
            images = self._load_images(conn, [r["id"] for r in rows])
            return [self._row_to_task(r, images[r["id"]]) for r in rows]
        finally:
            conn.close()

    def update(
        self,
        task_id: str,
        *,
        title: str = _UNSET,
        description: str | None = _UNSET,
        status: TaskStatus | str = _UNSET,
        price: float | None = _UNSET,
        location: Location | dict[str, Any] | None = _UNSET,
        image_refs: Iterable[str] | None = _UNSET,
        expires_at: int | None = _UNSET,
    ) -> Task:
        """
        Apply a user edit.

        Omitted fields are kept; None clears an optional field. Any edit advances
        updated_at and moves a synced task back to pending_sync.
        """
        columns: dict[str, Any] = {}
        new_images: list[str] | None = None

        if title is not _UNSET:
            columns["title"] = _clean_title(title)
        if description is not _UNSET:
            columns["description"] = description
        if status is not _UNSET:
            columns["status"] = _clean_status(status).value
        if price is not _UNSET:
            columns["price"] = _clean_price(price)
        if location is not _UNSET:
            loc = _clean_location(location)
            columns["location_lat"] = loc.lat if loc else None
            columns["location_lng"] = loc.lng if loc else None
            columns["location_address"] = loc.address if loc else None
        if expires_at is not _UNSET:
            columns["expires_at"] = _clean_expires_at(expires_at)
        if image_refs is not _UNSET:
            new_images = _clean_image_refs(image_refs)

        if not columns and new_images is None:
            return self.find(task_id)

        conn = self._get_conn()
        try:
            current = self._fetch(conn, task_id)
            columns["updated_at"] = self._next_updated_at(current)
            if current.sync_status != SyncStatus.PENDING_SYNC:
                # synced -> dirty again; syncing -> the in-flight push is already stale
                columns["sync_status"] = SyncStatus.PENDING_SYNC.value

            assignments = ", ".join(f"{name} = ?" for name in columns)
            conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?",
                (*columns.values(), task_id),
            )
            if new_images is not None:
                self._write_images(conn, task_id, new_images)
            conn.commit()
            task = self._fetch(conn, task_id)
        finally:
            conn.close()

        logger.debug("Task edited id=%s fields=%s sync_status=%s", task_id, sorted(columns), task.sync_status.value)
        self._notify()
        return task

    def update_status(self, task_id: str, new_status: TaskStatus | str) -> Task:
        return self.update(task_id, status=new_status)

    def delete(self, task_id: str) -> Task:
        conn = self._get_conn()
        try:
            task = self._fetch(conn, task_id)
            conn.execute("DELETE FROM task_images WHERE task_id = ?", (task_id,))
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
        finally:
            conn.close()
        logger.debug("Task deleted id=%s server_id=%s", task_id, task.server_id)
        self._notify()
        return task

    # ---- sync metadata (engine only) ----

    def mark_as_syncing(self, task_id: str) -> Task:
        return self._update_columns(task_id, {"sync_status": SyncStatus.SYNCING.value})

    def mark_pending(self, task_id: str) -> Task:
        return self._update_columns(task_id, {"sync_status": SyncStatus.PENDING_SYNC.value})

    def mark_as_synced(
        self,
        task_id: str,
        server_id: str,
        server_status: TaskStatus | str,
        *,
        pushed_updated_at: int | None = None,
    ) -> Task:
        """
        Record a successful round trip.

        If pushed_updated_at is given, the push is stale when the task left "syncing"
        (a user edit moves it back to pending_sync) or its version moved past the one
        sent. The server metadata is still recorded but the task stays pending_sync.
        """
        if not server_id:
            raise ValueError("server_id is required to mark a task synced")

        conn = self._get_conn()
        try:
            current = self._fetch(conn, task_id)
            stale = pushed_updated_at is not None and (
                current.sync_status != SyncStatus.SYNCING or current.updated_at != pushed_updated_at
            )
            sync_status = SyncStatus.PENDING_SYNC if stale else SyncStatus.SYNCED
            conn.execute(
                """
                UPDATE tasks
                SET sync_status = ?, synced_at = ?, server_id = ?, server_status = ?
                WHERE id = ?
                """,
                (
                    sync_status.value,
                    int(self._clock()),
                    server_id,
                    TaskStatus(server_status).value,
                    task_id,
                ),
            )
            conn.commit()
            task = self._fetch(conn, task_id)
        finally:
            conn.close()

        if stale:
            logger.debug("Task %s edited during sync; kept pending_sync", task_id)
        self._notify()
        return task

    def record_conflict(
        self,
        task_id: str,
        resolution: ConflictResolution,
        final_status: TaskStatus,
    ) -> Task:
        """
        Store the outcome of a conflict.

        A task in the middle of a sync stays "syncing" so the engine can still mark it
        synced; otherwise it becomes pending_sync.
        """
        current = self.find(task_id)
        in_flight = current.sync_status == SyncStatus.SYNCING
        return self._update_columns(
            task_id,
            {
                "conflict_resolution": ConflictResolution(resolution).value,
                "status": TaskStatus(final_status).value,
                "sync_status": (SyncStatus.SYNCING if in_flight else SyncStatus.PENDING_SYNC).value,
                "updated_at": self._next_updated_at(current),
            },
        )
