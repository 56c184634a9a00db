# tests/test_conflicts.py

from __future__ import annotations

import itertools

import pytest

from tasksync.sync.conflicts import is_conflict, resolve_conflict
from tasksync.tasks.task_models import ConflictResolution, TaskStatus


@pytest.mark.parametrize(
    ("local", "server", "resolution", "final"),
    [
        (TaskStatus.DONE, TaskStatus.CANCELLED, ConflictResolution.CLIENT_WINS, TaskStatus.DONE),
        (TaskStatus.CANCELLED, TaskStatus.DONE, ConflictResolution.SERVER_WINS, TaskStatus.DONE),
        (TaskStatus.IN_PROGRESS, TaskStatus.DONE, ConflictResolution.MANUAL, TaskStatus.IN_PROGRESS),
        (TaskStatus.PENDING, TaskStatus.CANCELLED, ConflictResolution.MANUAL, TaskStatus.PENDING),
    ],
)
def test_resolution_table(local, server, resolution, final) -> None:
    outcome = resolve_conflict(local, server)
    assert outcome.resolution == resolution
    assert outcome.final_status == final


def test_resolution_is_total_and_deterministic() -> None:
    for local, server in itertools.product(TaskStatus, repeat=2):
        first = resolve_conflict(local, server)
        assert first == resolve_conflict(local, server)
        if first.resolution == ConflictResolution.MANUAL:
            assert first.final_status == local


def test_is_conflict_needs_three_way_divergence() -> None:
    # server agrees with local
    assert not is_conflict(TaskStatus.DONE, TaskStatus.DONE, TaskStatus.PENDING)
    # never seen a server status: first push
    assert not is_conflict(TaskStatus.DONE, TaskStatus.PENDING, None)
    # server is just behind our own last push
    assert not is_conflict(TaskStatus.DONE, TaskStatus.PENDING, TaskStatus.DONE)
    # server moved somewhere else while we changed too
    assert is_conflict(TaskStatus.DONE, TaskStatus.CANCELLED, TaskStatus.PENDING)
