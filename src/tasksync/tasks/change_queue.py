# src/tasksync/tasks/change_queue.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..sync.remote import RemoteConnectivityError
from .task_models import QueueAction, QueueItem, QueueItemState, now_ms

logger = logging.getLogger(__name__)

QueueProcessor = Callable[[QueueItem], Awaitable[None]]


@dataclass(slots=True)
class DrainReport:
    processed: int = 0
    retained: int = 0
    failed: int = 0
    dead_lettered: list[int] = field(default_factory=list)
    stopped_offline: bool = False


class ChangeQueue:
    """
    Durable, ordered log of remote operations not tied to a live local task.

    Lives in the same SQLite file as the tasks. Items are appended with a single INSERT
    and removed/updated by primary key, so an enqueue that lands while a drain is awaiting
    the network is never overwritten. Drains themselves are serialized.

    Retry policy:
    - RemoteConnectivityError: item kept as is (expected, not counted)
    - any other error: attempts += 1; after max_attempts the item is dead-lettered
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        max_attempts: int = 5,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._max_attempts = max(1, int(max_attempts))
        self._drain_lock = asyncio.Lock()
        self._ensure_schema()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_queue (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    data TEXT
                )
                """
            )

            cur.execute("PRAGMA table_info(sync_queue)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE sync_queue ADD COLUMN {name} {decl}")
                logger.info("ChangeQueue migration: added column %s", name)

            add_col("attempts", "INTEGER NOT NULL DEFAULT 0")
            add_col("last_error", "TEXT")
            add_col("state", "TEXT NOT NULL DEFAULT 'pending'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_sync_queue_state ON sync_queue(state, seq)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> QueueItem:
        data = None
        if row["data"]:
            try:
                val = json.loads(row["data"])
                data = val if isinstance(val, dict) else None
            except ValueError:
                logger.warning("ChangeQueue: unreadable data for seq=%s", row["seq"])
        return QueueItem(
            seq=int(row["seq"]),
            task_id=str(row["task_id"]),
            action=QueueAction(row["action"]),
            timestamp=int(row["timestamp"]),
            data=data,
            attempts=int(row["attempts"] or 0),
            last_error=row["last_error"],
            state=QueueItemState(row["state"] or QueueItemState.PENDING),
        )

    def _select(self, state: QueueItemState) -> list[QueueItem]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM sync_queue WHERE state = ? ORDER BY seq ASC",
                (state.value,),
            ).fetchall()
            return [self._row_to_item(r) for r in rows]
        finally:
            conn.close()

    # ---- public API ----

    def enqueue(
        self,
        task_id: str,
        action: QueueAction | str,
        *,
        data: dict[str, Any] | None = None,
        timestamp: int | None = None,
    ) -> QueueItem:
        if not task_id:
            raise ValueError("task_id is required")
        act = QueueAction(action)
        ts = int(timestamp) if timestamp is not None else now_ms()
        data_str = json.dumps(data, ensure_ascii=False) if data is not None else None

        conn = self._get_conn()
        try:
            cur = conn.execute(
                "INSERT INTO sync_queue(task_id, action, timestamp, data) VALUES (?, ?, ?, ?)",
                (task_id, act.value, ts, data_str),
            )
            conn.commit()
            seq = cur.lastrowid
            if seq is None:
                raise RuntimeError("SQLite did not return lastrowid for sync_queue insert")
        finally:
            conn.close()

        logger.debug("Queued %s for server_id=%s seq=%s", act.value, task_id, seq)
        return QueueItem(seq=int(seq), task_id=task_id, action=act, timestamp=ts, data=data)

    def items(self) -> list[QueueItem]:
        """Pending items in insertion order."""
        return self._select(QueueItemState.PENDING)

    def dead_letters(self) -> list[QueueItem]:
        return self._select(QueueItemState.DEAD)

    def count(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE state = ?",
                (QueueItemState.PENDING.value,),
            ).fetchone()
            return int(n)
        finally:
            conn.close()

    def clear(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM sync_queue")
            conn.commit()
        finally:
            conn.close()

    def requeue_dead_letters(self, seqs: Iterable[int] | None = None) -> int:
        """Give dead-lettered items a fresh set of attempts. Returns how many were revived."""
        conn = self._get_conn()
        try:
            if seqs is None:
                cur = conn.execute(
                    "UPDATE sync_queue SET state = ?, attempts = 0, last_error = NULL WHERE state = ?",
                    (QueueItemState.PENDING.value, QueueItemState.DEAD.value),
                )
            else:
                ids = [int(s) for s in seqs]
                if not ids:
                    return 0
                placeholders = ",".join("?" for _ in ids)
                cur = conn.execute(
                    f"""
                    UPDATE sync_queue
                    SET state = ?, attempts = 0, last_error = NULL
                    WHERE state = ? AND seq IN ({placeholders})
                    """,
                    (QueueItemState.PENDING.value, QueueItemState.DEAD.value, *ids),
                )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    def _remove(self, seq: int) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM sync_queue WHERE seq = ?", (seq,))
            conn.commit()
        finally:
            conn.close()

    def _record_failure(self, item: QueueItem, error: str) -> bool:
        """Count a hard failure. Returns True if the item was dead-lettered."""
        attempts = item.attempts + 1
        dead = attempts >= self._max_attempts
        state = QueueItemState.DEAD if dead else QueueItemState.PENDING
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE sync_queue SET attempts = ?, last_error = ?, state = ? WHERE seq = ?",
                (attempts, error[:500], state.value, item.seq),
            )
            conn.commit()
        finally:
            conn.close()
        return dead

    async def drain(self, is_online: Callable[[], bool], processor: QueueProcessor) -> DrainReport:
        """
        Process pending items in insertion order.

        Successful items are removed; failed ones stay where they are. Stops early
        (keeping everything left) as soon as is_online() reports offline.
        """
        report = DrainReport()
        async with self._drain_lock:
            for item in self.items():
                if not is_online():
                    report.stopped_offline = True
                    report.retained += 1
                    continue

                try:
                    await processor(item)
                except RemoteConnectivityError as e:
                    report.retained += 1
                    logger.info("Queue item seq=%s %s kept for retry (offline: %s)", item.seq, item.action.value, e)
                    continue
                except Exception as e:
                    report.failed += 1
                    report.retained += 1
                    logger.exception(
                        "Queue item seq=%s %s server_id=%s failed (attempt %d/%d)",
                        item.seq,
                        item.action.value,
                        item.task_id,
                        item.attempts + 1,
                        self._max_attempts,
                    )
                    if self._record_failure(item, f"{e.__class__.__name__}: {e}"):
                        report.retained -= 1
                        report.dead_lettered.append(item.seq)
                        logger.error("Queue item seq=%s moved to dead letter", item.seq)
                    continue

                self._remove(item.seq)
                report.processed += 1

        if report.processed or report.retained:
            logger.info(
                "Queue drained processed=%d retained=%d failed=%d dead=%d",
                report.processed,
                report.retained,
                report.failed,
                len(report.dead_lettered),
            )
        return report
