# tests/fakes.py

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from tasksync.sync.in_memory_remote import InMemoryTaskServer
from tasksync.sync.remote import CreateResult, UpdateResult
from tasksync.tasks.task_models import Task


@dataclass(slots=True)
class FakeClock:
    """
    Deterministic millisecond clock.

    Every reading advances by `step` so consecutive writes get distinct timestamps.
    """

    now: int = 1_700_000_000_000
    step: int = 1

    def __call__(self) -> int:
        self.now += self.step
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class GatedTaskServer(InMemoryTaskServer):
    """
    In-memory server whose create_remote blocks until released.

    Lets a test hold a sync cycle open and observe what overlapping calls do.
    """

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def create_remote(self, task: Task) -> CreateResult | None:
        self.entered.set()
        await self.release.wait()
        return await super().create_remote(task)


class InterruptedTaskServer(InMemoryTaskServer):
    """
    In-memory server that lets `updates_ok` updates through, then interrupts the next one.

    The interruption is a network drop (online=False) unless `error` is given, in which
    case that error is raised once. Later updates behave normally.
    """

    def __init__(self, *, updates_ok: int = 1, error: Exception | None = None) -> None:
        super().__init__()
        self.updates_ok = updates_ok
        self.error = error

    async def update_remote(self, server_id: str, task: Task) -> UpdateResult | None:
        if self.updates_ok == 0:
            if self.error is not None:
                self.fail_next(self.error)
            else:
                self.online = False
        self.updates_ok -= 1
        return await super().update_remote(server_id, task)
