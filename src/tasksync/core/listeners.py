# src/tasksync/core/listeners.py

"""
Typed in-process publish/subscribe.

Every subscription returns an explicit unsubscribe handle. Delivery is synchronous,
in subscription order; a failing listener is logged and never blocks the others.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Generic, ParamSpec

logger = logging.getLogger(__name__)

P = ParamSpec("P")

Unsubscribe = Callable[[], None]


class ListenerSet(Generic[P]):
    def __init__(self, name: str) -> None:
        self._name = name
        self._lock = threading.Lock()
        self._listeners: list[Callable[P, None]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def add(self, listener: Callable[P, None]) -> Unsubscribe:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.discard(listener)

        return _unsubscribe

    def discard(self, listener: Callable[P, None]) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def notify(self, *args: P.args, **kwargs: P.kwargs) -> None:
        with self._lock:
            snapshot = list(self._listeners)
        for listener in snapshot:
            try:
                listener(*args, **kwargs)
            except Exception:
                logger.exception("%s listener failed: %r", self._name, listener)
