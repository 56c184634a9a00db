# src/tasksync/sync/conflicts.py

from __future__ import annotations

from dataclasses import dataclass

from ..tasks.task_models import ConflictResolution, TaskStatus


@dataclass(frozen=True, slots=True)
class ConflictOutcome:
    resolution: ConflictResolution
    final_status: TaskStatus


def is_conflict(
    local_status: TaskStatus,
    observed_status: TaskStatus,
    previous_server_status: TaskStatus | None,
) -> bool:
    """
    Three-way divergence check.

    The server disagreeing with us is only a conflict when the last status we saw from
    the server also disagreed with the local one; otherwise the server is just behind.
    """
    if observed_status == local_status:
        return False
    if previous_server_status is None:
        return False
    return previous_server_status != local_status


def resolve_conflict(local_status: TaskStatus, server_status: TaskStatus) -> ConflictOutcome:
    """
    Deterministic policy over (local, server):

        done      vs cancelled -> client_wins, done
        cancelled vs done      -> server_wins, done
        anything else          -> manual, local status kept
    """
    local_status = TaskStatus(local_status)
    server_status = TaskStatus(server_status)

    if local_status == TaskStatus.DONE and server_status == TaskStatus.CANCELLED:
        return ConflictOutcome(ConflictResolution.CLIENT_WINS, local_status)
    if local_status == TaskStatus.CANCELLED and server_status == TaskStatus.DONE:
        return ConflictOutcome(ConflictResolution.SERVER_WINS, server_status)
    return ConflictOutcome(ConflictResolution.MANUAL, local_status)
