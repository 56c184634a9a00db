# tests/test_change_queue.py

from __future__ import annotations

import asyncio

import pytest

from tasksync.sync.remote import RemoteConnectivityError, RemoteError
from tasksync.tasks.change_queue import ChangeQueue
from tasksync.tasks.task_models import QueueAction, QueueItem, QueueItemState


def _always_online() -> bool:
    return True


def test_enqueue_preserves_order_and_survives_reopen(settings, queue: ChangeQueue) -> None:
    queue.enqueue("task_1", QueueAction.DELETE, timestamp=10)
    queue.enqueue("task_2", QueueAction.UPDATE, data={"title": "x", "status": "done"}, timestamp=5)
    queue.enqueue("task_3", "delete")

    reopened = ChangeQueue(settings.tasks_db_path)
    items = reopened.items()
    assert [i.task_id for i in items] == ["task_1", "task_2", "task_3"]
    assert items[1].data == {"title": "x", "status": "done"}
    assert items[0].timestamp == 10
    assert reopened.count() == 3


def test_enqueue_rejects_unknown_action(queue: ChangeQueue) -> None:
    with pytest.raises(ValueError):
        queue.enqueue("task_1", "archive")
    assert queue.count() == 0


@pytest.mark.asyncio
async def test_drain_removes_processed_items(queue: ChangeQueue) -> None:
    queue.enqueue("task_1", QueueAction.DELETE)
    queue.enqueue("task_2", QueueAction.DELETE)
    seen: list[str] = []

    async def processor(item: QueueItem) -> None:
        seen.append(item.task_id)

    report = await queue.drain(_always_online, processor)

    assert seen == ["task_1", "task_2"]
    assert report.processed == 2
    assert report.retained == 0
    assert queue.items() == []


@pytest.mark.asyncio
async def test_connectivity_failures_keep_items_in_order(queue: ChangeQueue) -> None:
    for n in range(1, 5):
        queue.enqueue(f"task_{n}", QueueAction.DELETE)

    async def processor(item: QueueItem) -> None:
        if item.task_id in {"task_1", "task_3"}:
            raise RemoteConnectivityError("unreachable")

    report = await queue.drain(_always_online, processor)

    remaining = queue.items()
    assert [i.task_id for i in remaining] == ["task_1", "task_3"]
    assert all(i.attempts == 0 for i in remaining)
    assert report.processed == 2
    assert report.retained == 2
    assert report.failed == 0


@pytest.mark.asyncio
async def test_hard_failures_dead_letter_after_max_attempts(queue: ChangeQueue) -> None:
    assert queue.max_attempts == 3
    queue.enqueue("task_bad", QueueAction.DELETE)
    queue.enqueue("task_ok", QueueAction.DELETE)
    calls: list[str] = []

    async def processor(item: QueueItem) -> None:
        calls.append(item.task_id)
        if item.task_id == "task_bad":
            raise RemoteError("HTTP 500", status_code=500)

    first = await queue.drain(_always_online, processor)
    assert first.failed == 1
    assert first.processed == 1
    [item] = queue.items()
    assert item.attempts == 1
    assert item.last_error is not None and "HTTP 500" in item.last_error

    await queue.drain(_always_online, processor)
    third = await queue.drain(_always_online, processor)

    assert third.dead_lettered == [item.seq]
    assert queue.items() == []
    [dead] = queue.dead_letters()
    assert dead.state == QueueItemState.DEAD
    assert dead.attempts == 3

    # Dead letters are skipped by later drains.
    calls.clear()
    await queue.drain(_always_online, processor)
    assert calls == []

    assert queue.requeue_dead_letters() == 1
    [revived] = queue.items()
    assert revived.attempts == 0
    assert revived.last_error is None


@pytest.mark.asyncio
async def test_offline_drain_calls_nothing(queue: ChangeQueue) -> None:
    queue.enqueue("task_1", QueueAction.DELETE)
    called = False

    async def processor(item: QueueItem) -> None:
        nonlocal called
        called = True

    report = await queue.drain(lambda: False, processor)

    assert called is False
    assert report.stopped_offline is True
    assert report.retained == 1
    assert queue.count() == 1


@pytest.mark.asyncio
async def test_going_offline_mid_drain_keeps_the_rest(queue: ChangeQueue) -> None:
    for n in range(1, 4):
        queue.enqueue(f"task_{n}", QueueAction.DELETE)
    online = True

    async def processor(item: QueueItem) -> None:
        nonlocal online
        online = False

    report = await queue.drain(lambda: online, processor)

    assert report.processed == 1
    assert report.stopped_offline is True
    assert [i.task_id for i in queue.items()] == ["task_2", "task_3"]


@pytest.mark.asyncio
async def test_enqueue_during_drain_is_not_lost(queue: ChangeQueue) -> None:
    queue.enqueue("task_1", QueueAction.DELETE)
    entered = asyncio.Event()
    release = asyncio.Event()

    async def processor(item: QueueItem) -> None:
        entered.set()
        await release.wait()

    drain = asyncio.create_task(queue.drain(_always_online, processor))
    await entered.wait()
    queue.enqueue("task_2", QueueAction.DELETE)
    release.set()
    await drain

    assert [i.task_id for i in queue.items()] == ["task_2"]


def test_clear_empties_queue(queue: ChangeQueue) -> None:
    queue.enqueue("task_1", QueueAction.DELETE)
    queue.clear()
    assert queue.count() == 0
    assert queue.dead_letters() == []
