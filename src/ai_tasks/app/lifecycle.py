"""Task state machine: pending -> processing -> {completed, failed}."""

from __future__ import annotations

from .errors import ProtocolViolation
from .models import TERMINAL_STATUSES, Task

STATUS_RANK: dict[str, int] = {
    "pending": 0,
    "processing": 1,
    "completed": 2,
    "failed": 2,
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def is_valid_transition(previous: str, current: str) -> bool:
    """Return True when ``previous -> current`` is allowed by the lifecycle.

    Repeating a non-terminal status is allowed (the task simply has not moved
    yet). Terminal states are absorbing: the only valid successor of a terminal
    status is itself.
    """
    if is_terminal(previous):
        return current == previous
    return STATUS_RANK[current] >= STATUS_RANK[previous]


def check_observation(previous: Task | None, current: Task) -> None:
    """Raise ProtocolViolation if ``current`` cannot follow ``previous``."""
    if previous is None:
        return
    if current.id != previous.id:
        raise ProtocolViolation(
            f"Status query for task {previous.id} returned task {current.id}",
            expected_task_id=previous.id,
            received_task_id=current.id,
        )
    if not is_valid_transition(previous.status, current.status):
        raise ProtocolViolation(
            f"Task {current.id} moved from {previous.status} to {current.status}",
            task_id=current.id,
            previous_status=previous.status,
            status=current.status,
        )
    if current.updated_at < previous.updated_at:
        raise ProtocolViolation(
            f"Task {current.id} updated_at went backwards",
            task_id=current.id,
            previous_updated_at=previous.updated_at.isoformat(),
            updated_at=current.updated_at.isoformat(),
        )
