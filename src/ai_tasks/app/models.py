"""Pydantic models shared across gateway, poller, cancellation, storage and API.

Terms used in this file:
- Task: one remote generation job, advanced only by the remote processor.
- Terminal status: ``completed`` or ``failed``; no transition leaves it.
- HistoryItem: a retained artifact owned by one account, independent of its Task.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from .errors import ValidationError

# Closed set of generation categories, shared by Task.kind and HistoryItem.content_type.
ContentType = Literal["cover_letter", "job_match", "interview_questions"]
CONTENT_TYPES: tuple[str, ...] = ("cover_letter", "job_match", "interview_questions")

# Task lifecycle states reported by the remote processor.
TaskStatus = Literal["pending", "processing", "completed", "failed"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

ExecutionMode = Literal["sync", "async"]
CancelOutcome = Literal["cancelled", "already_finished"]


class Task(BaseModel):
    """Snapshot of a remote task as observed at one point in time."""

    id: str
    kind: ContentType
    status: TaskStatus
    result: dict[str, Any] | None = None
    error_message: str | None = None
    # Cancellation is a variant of ``failed`` rather than its own status.
    cancelled: bool = False
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_status_fields(self) -> Task:
        if self.result is not None and self.status != "completed":
            raise ValueError("result is only allowed on completed tasks")
        if self.error_message is not None and self.status != "failed":
            raise ValueError("error_message is only allowed on failed tasks")
        if self.cancelled and self.status != "failed":
            raise ValueError("cancelled tasks must have status 'failed'")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class HistoryItem(BaseModel):
    """Retained generation artifact with curation fields."""

    id: str
    owner_id: str
    content_type: ContentType
    payload: dict[str, Any] = Field(default_factory=dict)
    # Validated generation inputs that produced the payload.
    parameters: dict[str, Any] = Field(default_factory=dict)
    task_id: str | None = None
    is_favorite: bool = False
    rating: int | None = Field(default=None, ge=1, le=5)
    created_at: datetime
    updated_at: datetime


class HistoryPage(BaseModel):
    """One page of history items plus the cursor for the next page."""

    items: list[HistoryItem] = Field(default_factory=list)
    next_cursor: str | None = None


class CancelAck(BaseModel):
    """Remote processor answer to a cancel request."""

    task_id: str
    accepted: bool
    status: TaskStatus | None = None


class CancelResult(BaseModel):
    """Caller-facing outcome of a cancel request."""

    task_id: str
    outcome: CancelOutcome
    task: Task | None = None


class SubmitOptions(BaseModel):
    """Per-call submission options; ``None`` falls back to gateway defaults."""

    mode: ExecutionMode | None = None
    save_to_history: bool | None = None


@dataclass(frozen=True)
class GatewayDefaults:
    """Explicit submission defaults handed to the gateway at construction."""

    mode: ExecutionMode = "sync"
    save_to_history: bool = True
    # Async retentions not claimed within this window are dropped.
    retention_ttl_s: float = 3600.0


ProgressCallback = Callable[[Task], Awaitable[None] | None]


@dataclass(frozen=True)
class PollOptions:
    """Polling configuration: spacing, hard attempt ceiling and progress hook."""

    interval_s: float = 2.0
    max_attempts: int = 30
    on_progress: ProgressCallback | None = None

    def __post_init__(self) -> None:
        errors: list[dict[str, Any]] = []
        if self.interval_s < 0:
            errors.append({"loc": ["interval_s"], "msg": "must be >= 0"})
        if self.max_attempts < 1:
            errors.append({"loc": ["max_attempts"], "msg": "must be >= 1"})
        if errors:
            raise ValidationError("Invalid polling options", errors=errors)


class GenerateRequest(BaseModel):
    """Request body for POST /generate/{kind}."""

    parameters: dict[str, Any] = Field(default_factory=dict)
    mode: ExecutionMode | None = None
    save_to_history: bool | None = None


class WaitRequest(BaseModel):
    """Request body for POST /tasks/{task_id}/wait."""

    interval_s: float | None = Field(default=None, ge=0.0)
    max_attempts: int | None = Field(default=None, ge=1)


class RateRequest(BaseModel):
    """Request body for POST /history/{item_id}/rate."""

    # Range is enforced by the store so the error kind stays InvalidArgument.
    rating: Any
