# src/tasksync/sync/background.py

from __future__ import annotations

"""
Periodic background sync.

A small polling loop that calls sync_all() every interval. It is the safety net for
triggers that were dropped (a sync_all() that arrived while another was running is a
no-op, not queued).
"""

import asyncio
import logging

from .engine import SyncEngine

logger = logging.getLogger(__name__)


async def run_periodic_sync(
        engine: SyncEngine,
        *,
        interval_seconds: float = 15 * 60,
        run_immediately: bool = True,
) -> None:
    """
    Every interval_seconds:
    - skip if offline (sync_all() is a no-op then)
    - run one sync cycle, logging (never raising) unexpected failures

    To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    if not run_immediately:
        await asyncio.sleep(sleep_s)

    while True:
        try:
            report = await engine.sync_all()
            if report is not None:
                logger.debug("Background sync cycle done: %s", report)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Background sync cycle failed")

        await asyncio.sleep(sleep_s)
