# src/tasksync/sync/connectivity.py

from __future__ import annotations

"""
Connectivity monitor.

Holds the current online flag and publishes transitions. Nothing here knows how
reachability is measured: the platform shell calls set_online(), or the probe loop
below polls the backend.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..core.listeners import ListenerSet, Unsubscribe

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    def __init__(self, *, online: bool = False) -> None:
        self._online = bool(online)
        self._listeners: ListenerSet[[bool]] = ListenerSet("ConnectivityMonitor")
        self._online_callbacks: ListenerSet[[]] = ListenerSet("ConnectivityMonitor.on_online")

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Unsubscribe:
        """listener(online) fires on every transition, never on a repeated state."""
        return self._listeners.add(listener)

    def on_online(self, callback: Callable[[], None]) -> Unsubscribe:
        """callback() fires once per offline -> online edge."""
        return self._online_callbacks.add(callback)

    def set_online(self, online: bool) -> bool:
        """Record the platform's view of the network. Returns True if the state changed."""
        online = bool(online)
        was_online = self._online
        if online == was_online:
            return False

        self._online = online
        logger.info("Connectivity: %s", "online" if online else "offline")
        self._listeners.notify(online)
        if online:
            self._online_callbacks.notify()
        return True


async def run_connectivity_probe(
        monitor: ConnectivityMonitor,
        probe: Probe,
        *,
        interval_seconds: float = 30.0,
) -> None:
    """
    Poll a reachability probe and feed the monitor.

    A probe that raises counts as offline. To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        try:
            reachable = bool(await probe())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.debug("connectivity probe failed", exc_info=True)
            reachable = False

        monitor.set_online(reachable)
        await asyncio.sleep(sleep_s)
