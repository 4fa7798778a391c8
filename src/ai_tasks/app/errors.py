"""Error taxonomy shared by the gateway, poller, cancellation controller and storage.

Every error carries a stable ``kind`` plus structured ``details`` so a caller
can render a specific message instead of a generic failure.
"""

from __future__ import annotations

from typing import Any


class TaskError(Exception):
    """Base class for all orchestration errors."""

    kind = "task_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, "details": dict(self.details)}


class ValidationError(TaskError):
    """Malformed generation request; raised before any remote call."""

    kind = "validation_error"

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, errors=errors or [])
        self.errors = errors or []


class TransportError(TaskError):
    """The remote processor could not be reached or refused the request."""

    kind = "transport_error"

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, operation=operation, status_code=status_code)
        self.operation = operation
        self.status_code = status_code


class TaskFailed(TaskError):
    """The remote processor reported a terminal generation failure."""

    kind = "task_failed"

    def __init__(self, task_id: str, error_message: str | None) -> None:
        text = error_message or "Task failed"
        super().__init__(text, task_id=task_id, error_message=error_message)
        self.task_id = task_id
        self.error_message = error_message


class PollingTimeout(TaskError):
    """Attempts were exhausted before a terminal state; the outcome is unknown."""

    kind = "polling_timeout"

    def __init__(self, task_id: str, *, attempts: int, last_status: str | None) -> None:
        super().__init__(
            f"Task {task_id} did not finish after {attempts} status checks",
            task_id=task_id,
            attempts=attempts,
            last_status=last_status,
        )
        self.task_id = task_id
        self.attempts = attempts
        self.last_status = last_status


class ProtocolViolation(TaskError):
    """The remote processor broke the task lifecycle contract."""

    kind = "protocol_violation"


class NotFound(TaskError):
    """History item is missing or owned by another account."""

    kind = "not_found"


class InvalidArgument(TaskError):
    """A history operation argument is out of range."""

    kind = "invalid_argument"


class StorageError(TaskError):
    """The history store could not complete a read or write."""

    kind = "storage_error"
